"""ElevenLabs Conversational AI websocket client.

Protocol summary:
- Endpoint: wss://api.elevenlabs.io/v1/convai/conversation?agent_id=...
- Private agents need a signed URL fetched with the ``xi-api-key`` header.
- Lead context travels as the ``agent_state`` query parameter (JSON object),
  so it is known to the agent before the first frame.
- Inbound frames are tagged by ``type``; the server sends ``ping`` frames that
  must be answered with a ``pong`` carrying the same ``event_id``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import websockets
from websockets.exceptions import WebSocketException

from bridge.errors import AIConnectionError, MalformedFrameError
from bridge.session_registry import LeadDetails
from config.settings import Settings, get_settings

if TYPE_CHECKING:  # pragma: no cover
    from websockets.asyncio.client import ClientConnection

LOGGER = logging.getLogger(__name__)

SIGNED_URL_PATH = "/v1/convai/conversation/get_signed_url"
MAX_MESSAGE_BYTES = 16 * 1024 * 1024


def build_conversation_url(base_url: str, *, agent_id: str | None, lead: LeadDetails) -> str:
    """Add ``agent_id`` and ``agent_state`` to ``base_url``, keeping any existing query."""

    parts = urlsplit(base_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    present = {key for key, _ in query}

    if agent_id and "agent_id" not in present:
        query.append(("agent_id", agent_id))

    agent_state = lead.agent_state()
    if agent_state:
        query.append(("agent_state", json.dumps(agent_state)))

    return urlunsplit(parts._replace(query=urlencode(query)))


def build_greeting(template: str, lead: LeadDetails) -> dict[str, Any] | None:
    if not lead.name:
        return None
    return {"text": template.format(name=lead.name), "is_final": True}


def build_user_audio_chunk(payload_b64: str) -> dict[str, Any]:
    return {"user_audio_chunk": payload_b64}


def build_pong(event_id: Any) -> dict[str, Any]:
    return {"type": "pong", "event_id": event_id}


def parse_convai_message(text: str | bytes) -> dict[str, Any]:
    try:
        message = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise MalformedFrameError(f"Invalid ElevenLabs frame: {exc}") from exc
    if not isinstance(message, dict):
        raise MalformedFrameError("ElevenLabs frame is not a JSON object")
    return message


class ConvaiConnector:
    """Opens one ElevenLabs conversation websocket per call."""

    def __init__(
        self,
        *,
        agent_id: str | None,
        api_key: str | None = None,
        ws_url: str = "wss://api.elevenlabs.io/v1/convai/conversation",
        api_base_url: str = "https://api.elevenlabs.io",
        open_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._agent_id = agent_id
        self._api_key = api_key
        self._ws_url = ws_url
        self._api_base_url = api_base_url.rstrip("/")
        self._open_timeout = open_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ConvaiConnector:
        settings = settings or get_settings()
        return cls(
            agent_id=settings.elevenlabs_agent_id,
            api_key=settings.elevenlabs_api_key,
            ws_url=settings.elevenlabs_ws_url,
            api_base_url=settings.elevenlabs_api_base_url,
            open_timeout=settings.elevenlabs_open_timeout_seconds,
        )

    async def connect(self, lead: LeadDetails) -> ClientConnection:
        if not self._agent_id:
            raise AIConnectionError("ELEVENLABS_AGENT_ID is not configured")

        base_url = await self.conversation_base_url()
        url = build_conversation_url(base_url, agent_id=self._agent_id, lead=lead)
        LOGGER.info("Connecting to ElevenLabs agent %s", self._agent_id)

        try:
            return await websockets.connect(
                url,
                open_timeout=self._open_timeout,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
                max_size=MAX_MESSAGE_BYTES,
            )
        except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
            raise AIConnectionError(f"ElevenLabs connection failed: {exc}") from exc

    async def conversation_base_url(self) -> str:
        """Public endpoint, or a signed URL when an API key is configured."""

        if not self._api_key:
            return self._ws_url

        try:
            async with httpx.AsyncClient(timeout=self._open_timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self._api_base_url}{SIGNED_URL_PATH}",
                    params={"agent_id": self._agent_id},
                    headers={"xi-api-key": self._api_key},
                )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.error("ElevenLabs signed URL request failed: %s", exc)
            raise AIConnectionError(f"Failed to get signed URL: {exc}") from exc

        try:
            signed_url = response.json().get("signed_url")
        except (ValueError, AttributeError) as exc:
            raise AIConnectionError(f"Unexpected signed URL response: {exc}") from exc
        if not signed_url:
            raise AIConnectionError("No signed_url in ElevenLabs response")
        return signed_url
