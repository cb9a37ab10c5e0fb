"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OutboundCallRequest(BaseModel):
    to: str | None = Field(default=None, description="E.164 destination number, e.g. +1555...")
    name: str | None = None
    email: str | None = None
    phone: str | None = Field(default=None, description="Lead phone; defaults to the destination number.")


class OutboundCallResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = "Call initiated"
    call_sid: str = Field(alias="callSid")
    lead_details: dict[str, str] = Field(alias="leadDetails")


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    active_sessions: int
