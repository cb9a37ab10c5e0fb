"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from starlette.requests import HTTPConnection

from bridge.session_registry import SessionRegistry
from integrations.elevenlabs_convai import ConvaiConnector
from integrations.twilio_client import TwilioConfig, build_twilio_client, get_twilio_config


def get_session_registry(connection: HTTPConnection) -> SessionRegistry:
    # Created by the application lifespan; shared by HTTP routes and websockets.
    return connection.app.state.session_registry


def get_convai_connector() -> ConvaiConnector:
    return ConvaiConnector.from_settings()


def get_twilio_client():
    return build_twilio_client()


def get_twilio_cfg() -> TwilioConfig:
    return get_twilio_config()
