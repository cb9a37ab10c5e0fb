from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before the settings are first read.
os.environ["ELEVENLABS_AGENT_ID"] = "agent-test"
os.environ["PUBLIC_BASE_URL"] = "https://bridge.example.com"
for _name in ("ELEVENLABS_API_KEY", "OUTBOUND_CALL_API_KEY"):
    os.environ.pop(_name, None)

from starlette.websockets import WebSocketState  # noqa: E402
from websockets.exceptions import ConnectionClosedError  # noqa: E402

_CLOSED = object()
_DROPPED = object()


class FakeEdge:
    """Stands in for the Twilio-facing starlette WebSocket."""

    def __init__(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict] = []
        self.close_codes: list[int] = []
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, frame) -> None:
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self._incoming.put_nowait({"type": "websocket.receive", "text": text})

    def push_bytes(self, data: bytes) -> None:
        self._incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def hang_up(self, code: int = 1000) -> None:
        self._incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    async def receive(self) -> dict:
        message = await self._incoming.get()
        if message["type"] == "websocket.disconnect":
            self.client_state = WebSocketState.DISCONNECTED
        return message

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.close_codes.append(code)
        self._incoming.put_nowait({"type": "websocket.disconnect", "code": code})


class FakeAIConnection:
    """Stands in for the ElevenLabs websocket client connection."""

    def __init__(self, on_send=None) -> None:
        self.sent: list[dict] = []
        self.close_calls = 0
        self._on_send = on_send
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, message) -> None:
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        self._incoming.put_nowait(_DROPPED)

    async def send(self, text: str) -> None:
        frame = json.loads(text)
        self.sent.append(frame)
        if self._on_send is not None:
            for reply in self._on_send(frame):
                self.push(reply)

    async def close(self) -> None:
        self.close_calls += 1
        self._incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._incoming.get()
            if item is _CLOSED:
                return
            if item is _DROPPED:
                raise ConnectionClosedError(None, None)
            yield item


class FakeConnector:
    def __init__(self, connection: FakeAIConnection | None = None, error: Exception | None = None) -> None:
        self.connection = connection or FakeAIConnection()
        self.error = error
        self.leads: list = []

    async def connect(self, lead):
        self.leads.append(lead)
        if self.error is not None:
            raise self.error
        return self.connection


class FakeTwilioCall:
    def __init__(self, sid: str) -> None:
        self.sid = sid


class FakeTwilioCalls:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.created: list[dict] = []

    def create(self, **kwargs):
        self.created.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeTwilioCall("CA123")


class FakeTwilioClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = FakeTwilioCalls(error)


@pytest.fixture(scope="session")
def app():
    import main

    return main.app


@pytest.fixture()
def twilio_client() -> FakeTwilioClient:
    return FakeTwilioClient()


@pytest.fixture()
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture()
def client(app, twilio_client, connector):
    import api.dependencies as deps
    from integrations.twilio_client import TwilioConfig

    app.dependency_overrides[deps.get_twilio_client] = lambda: twilio_client
    app.dependency_overrides[deps.get_twilio_cfg] = lambda: TwilioConfig(
        account_sid="AC123",
        auth_token="token",
        from_number="+15005550006",
    )
    app.dependency_overrides[deps.get_convai_connector] = lambda: connector

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture()
def settings_env(monkeypatch):
    """Set env vars for a single test and re-read settings around it."""

    from config.settings import get_settings

    get_settings.cache_clear()
    yield monkeypatch
    monkeypatch.undo()
    get_settings.cache_clear()
