"""Twilio Media Streams frame codec.

Twilio sends JSON text frames tagged by ``event`` (``connected``, ``start``,
``media``, ``mark``, ``stop``) and accepts ``media``, ``mark`` and ``clear``
frames back on the same socket.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from bridge.errors import MalformedFrameError


def parse_twilio_ws_message(text: str) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except (TypeError, json.JSONDecodeError) as exc:
        raise MalformedFrameError(f"Invalid Twilio frame: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedFrameError("Twilio frame is not a JSON object")
    return message


def stream_sid_from_start(message: dict[str, Any]) -> str:
    start = message.get("start") or {}
    stream_sid = start.get("streamSid") if isinstance(start, dict) else None
    if not isinstance(stream_sid, str) or not stream_sid:
        raise MalformedFrameError("Twilio start frame without streamSid")
    return stream_sid


def inbound_media_payload(message: dict[str, Any]) -> str | None:
    """Return the re-encoded caller audio of a ``media`` frame.

    Frames for other tracks yield ``None``. A missing or undecodable payload
    raises MalformedFrameError.
    """

    media = message.get("media") or {}
    if not isinstance(media, dict):
        raise MalformedFrameError("Twilio media frame without media object")
    if media.get("track") and media.get("track") != "inbound":
        return None

    payload = media.get("payload")
    if not isinstance(payload, str) or not payload:
        raise MalformedFrameError("Twilio media frame without payload")
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedFrameError(f"Twilio media payload is not base64: {exc}") from exc
    return base64.b64encode(raw).decode("ascii")


def build_media_frame(stream_sid: str, payload_b64: str) -> dict[str, Any]:
    return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload_b64}}


def build_clear_frame(stream_sid: str) -> dict[str, Any]:
    return {"event": "clear", "streamSid": stream_sid}
