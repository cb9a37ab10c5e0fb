"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # ElevenLabs Conversational AI
    elevenlabs_agent_id: str | None = Field(default=None)
    elevenlabs_api_key: str | None = Field(
        default=None,
        description="If set, connections use a signed URL (required for private agents).",
    )
    elevenlabs_ws_url: str = Field(default="wss://api.elevenlabs.io/v1/convai/conversation")
    elevenlabs_api_base_url: str = Field(default="https://api.elevenlabs.io")
    elevenlabs_open_timeout_seconds: float = Field(default=10.0, gt=0)
    greeting_template: str = Field(
        default="Hello, {name}.",
        description="Greeting sent to the agent when the lead name is known. '{name}' is substituted.",
    )

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +1555...")
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL for Twilio webhooks (e.g. https://<ngrok>.ngrok-free.app).",
    )
    twilio_status_callback_events: list[str] = Field(
        default_factory=lambda: ["initiated", "ringing", "answered", "completed"],
    )
    outbound_call_api_key: str | None = Field(
        default=None,
        description="Optional API key required to call the outbound-call endpoint.",
    )

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/") or None

    @field_validator("greeting_template")
    @classmethod
    def check_greeting_template(cls, value: str) -> str:
        try:
            value.format(name="")
        except (KeyError, IndexError, ValueError) as exc:
            raise ValueError(f"greeting_template may only use the '{{name}}' placeholder: {exc!r}") from exc
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
