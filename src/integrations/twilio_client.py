from __future__ import annotations

from dataclasses import dataclass

from bridge.errors import TwilioNotConfiguredError
from config.settings import get_settings


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    from_number: str
    status_callback_events: tuple[str, ...] = ("initiated", "ringing", "answered", "completed")


def get_twilio_config() -> TwilioConfig:
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        raise TwilioNotConfiguredError("Twilio credentials are not configured")
    if not settings.twilio_from_number:
        raise TwilioNotConfiguredError("Twilio from-number is not configured")

    return TwilioConfig(
        account_sid=settings.twilio_account_sid,
        auth_token=settings.twilio_auth_token,
        from_number=settings.twilio_from_number,
        status_callback_events=tuple(settings.twilio_status_callback_events),
    )


def build_twilio_client():
    from twilio.rest import Client

    cfg = get_twilio_config()
    return Client(cfg.account_sid, cfg.auth_token)
