"""Per-call relay between a Twilio media stream and an ElevenLabs conversation.

Lifecycle: ``CONNECTING_AI`` -> ``ACTIVE`` -> ``CLOSED``.

The Twilio socket is not read until the ElevenLabs socket is open, so caller
audio that arrives during setup waits in the transport instead of being
dropped. Agent audio that arrives before Twilio's ``start`` frame has no
stream to address and is dropped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState
from websockets.exceptions import ConnectionClosed

from bridge.errors import AIConnectionError, MalformedFrameError
from bridge.metadata import MetadataResolver
from bridge.session_registry import CallSession, LeadDetails, SessionRegistry, SessionState
from integrations.elevenlabs_convai import (
    build_greeting,
    build_pong,
    build_user_audio_chunk,
    parse_convai_message,
)
from integrations.twilio_streaming import (
    build_clear_frame,
    build_media_frame,
    inbound_media_payload,
    parse_twilio_ws_message,
    stream_sid_from_start,
)

LOGGER = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


class AIConnector(Protocol):
    async def connect(self, lead: LeadDetails) -> Any: ...


class RelayState(str, Enum):
    CONNECTING_AI = "connecting_ai"
    ACTIVE = "active"
    CLOSED = "closed"


class MediaRelay:
    """Owns one Twilio websocket and one ElevenLabs websocket for a single call."""

    def __init__(
        self,
        edge: WebSocket,
        *,
        registry: SessionRegistry,
        resolver: MetadataResolver,
        connector: AIConnector,
        greeting_template: str = "Hello, {name}.",
    ) -> None:
        self._edge = edge
        self._registry = registry
        self._resolver = resolver
        self._connector = connector
        self._greeting_template = greeting_template

        self._ai = None
        self._session: CallSession | None = None
        self._state = RelayState.CONNECTING_AI
        self._claimed = False
        self._closing = False
        self._stop_requested = False

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def _label(self) -> str:
        if self._session and self._session.call_sid:
            return self._session.call_sid
        return "unknown"

    async def run(self) -> None:
        self._session = await self._resolver.resolve()

        if self._session.call_sid is not None:
            if not await self._registry.claim(self._session):
                LOGGER.warning("[%s] Call already has an active media relay; refusing stream", self._label)
                self._state = RelayState.CLOSED
                await self._close_edge(code=POLICY_VIOLATION)
                return
            self._claimed = True

        try:
            self._ai = await self._connector.connect(self._session.lead)
        except AIConnectionError as exc:
            LOGGER.error("[%s] Conversational AI setup failed: %s", self._label, exc.detail)
            await self.close()
            return
        LOGGER.info("[%s] Connected to Conversational AI", self._label)

        edge_task = ai_task = None
        try:
            greeting = build_greeting(self._greeting_template, self._session.lead)
            if greeting is not None:
                await self._send_ai(greeting)

            self._state = RelayState.ACTIVE
            self._session.state = SessionState.STREAMING

            edge_task = asyncio.create_task(self._pump_edge())
            ai_task = asyncio.create_task(self._pump_ai())
            done, _ = await asyncio.wait({edge_task, ai_task}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                exc = task.exception()
                if exc is not None:
                    LOGGER.warning("[%s] Transport error, ending call: %r", self._label, exc)
        except ConnectionClosed as exc:
            LOGGER.warning("[%s] Conversational AI closed during setup: %s", self._label, exc)
        finally:
            pending = [task for task in (edge_task, ai_task) if task is not None and not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            await self.close()

    async def close(self) -> None:
        """Tear down both connections and drop the registry entry. Safe to call repeatedly."""

        if self._closing:
            return
        self._closing = True
        self._state = RelayState.CLOSED
        if self._session is not None:
            self._session.state = SessionState.CLOSED

        try:
            await self._close_ai()
            await self._close_edge()
        finally:
            if self._claimed and self._session is not None and self._session.call_sid:
                await self._registry.remove(self._session.call_sid)
            LOGGER.info("[%s] Media relay closed", self._label)

    async def _pump_edge(self) -> None:
        while self._state is RelayState.ACTIVE and not self._stop_requested:
            message = await self._edge.receive()
            if message["type"] == "websocket.disconnect":
                LOGGER.info("[%s] Twilio disconnected (code=%s)", self._label, message.get("code"))
                return
            text = message.get("text")
            if text is None:
                LOGGER.warning("[%s] Dropping non-text Twilio frame", self._label)
                continue
            await self.handle_edge_message(text)

    async def _pump_ai(self) -> None:
        try:
            async for raw in self._ai:
                await self.handle_ai_message(raw)
                if self._state is not RelayState.ACTIVE or self._stop_requested:
                    return
        except ConnectionClosed as exc:
            LOGGER.warning("[%s] Conversational AI connection dropped: %s", self._label, exc)
            return
        LOGGER.info("[%s] Disconnected from Conversational AI", self._label)

    async def handle_edge_message(self, text: str) -> None:
        try:
            message = parse_twilio_ws_message(text)
            event = message.get("event")
            if event == "start":
                self._on_start(message)
            elif event == "media":
                payload = inbound_media_payload(message)
                if payload is not None:
                    await self._send_ai(build_user_audio_chunk(payload))
            elif event == "stop":
                # Teardown happens in run() once the pumps have returned.
                LOGGER.info("[%s] Twilio stream stopped", self._label)
                self._stop_requested = True
            else:
                LOGGER.info("[%s] Received unhandled Twilio event: %s", self._label, event)
        except MalformedFrameError as exc:
            LOGGER.warning("[%s] Dropping Twilio frame: %s", self._label, exc.detail)

    async def handle_ai_message(self, raw: str | bytes) -> None:
        try:
            message = parse_convai_message(raw)
        except MalformedFrameError as exc:
            LOGGER.warning("[%s] Dropping Conversational AI frame: %s", self._label, exc.detail)
            return

        kind = message.get("type")
        if kind == "conversation_initiation_metadata":
            event = message.get("conversation_initiation_metadata_event") or {}
            self._session.conversation_id = event.get("conversation_id")
            LOGGER.info(
                "[%s] Received conversation initiation metadata (conversation=%s)",
                self._label,
                self._session.conversation_id,
            )
        elif kind == "audio":
            payload = (message.get("audio_event") or {}).get("audio_base_64")
            stream_sid = self._stream_sid_or_drop(kind)
            if payload and stream_sid:
                await self._send_edge(build_media_frame(stream_sid, payload))
        elif kind == "interruption":
            stream_sid = self._stream_sid_or_drop(kind)
            if stream_sid:
                await self._send_edge(build_clear_frame(stream_sid))
        elif kind == "ping":
            event_id = (message.get("ping_event") or {}).get("event_id")
            if event_id is None:
                LOGGER.warning("[%s] Ping without event_id", self._label)
                return
            await self._send_ai(build_pong(event_id))
        elif kind in ("user_transcript", "agent_response"):
            LOGGER.debug("[%s] %s: %s", self._label, kind, message)
        else:
            LOGGER.info("[%s] Received unhandled Conversational AI message: %s", self._label, kind)

    def _on_start(self, message: dict[str, Any]) -> None:
        stream_sid = stream_sid_from_start(message)
        if not self._session.bind_stream(stream_sid):
            LOGGER.warning(
                "[%s] Ignoring start for stream %s; already bound to %s",
                self._label,
                stream_sid,
                self._session.stream_sid,
            )
            return
        LOGGER.info("[%s] Stream started with ID: %s", self._label, stream_sid)

    def _stream_sid_or_drop(self, kind: str) -> str | None:
        stream_sid = self._session.stream_sid
        if stream_sid is None:
            LOGGER.debug("[%s] Dropping %s before Twilio stream start", self._label, kind)
        return stream_sid

    async def _send_ai(self, frame: dict[str, Any]) -> None:
        if self._ai is None or self._closing:
            return
        await self._ai.send(json.dumps(frame))

    async def _send_edge(self, frame: dict[str, Any]) -> None:
        if self._closing or not self._edge_open():
            return
        await self._edge.send_json(frame)

    def _edge_open(self) -> bool:
        return (
            self._edge.client_state == WebSocketState.CONNECTED
            and self._edge.application_state == WebSocketState.CONNECTED
        )

    async def _close_ai(self) -> None:
        if self._ai is None:
            return
        await self._ai.close()

    async def _close_edge(self, code: int = 1000) -> None:
        if not self._edge_open():
            return
        try:
            await self._edge.close(code=code)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            LOGGER.debug("[%s] Twilio socket already gone: %r", self._label, exc)
