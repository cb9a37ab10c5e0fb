"""In-memory registry of call sessions keyed by Twilio CallSid."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

LOGGER = logging.getLogger(__name__)

LEAD_FIELDS: tuple[str, ...] = ("name", "email", "phone")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True, slots=True)
class LeadDetails:
    """Lead context passed through to the conversational agent.

    Blank values are stored as ``None`` so they never leak downstream as empty
    strings.
    """

    name: str | None = None
    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        for key in LEAD_FIELDS:
            object.__setattr__(self, key, _clean(getattr(self, key)))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> LeadDetails:
        return cls(**{key: data.get(key) for key in LEAD_FIELDS})

    @property
    def is_empty(self) -> bool:
        return not self.as_dict()

    def as_dict(self) -> dict[str, str]:
        """Present fields only."""

        return {key: value for key in LEAD_FIELDS if (value := getattr(self, key)) is not None}

    def agent_state(self) -> dict[str, str]:
        return {f"lead_{key}": value for key, value in self.as_dict().items()}


class SessionState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass
class CallSession:
    call_sid: str | None
    lead: LeadDetails = field(default_factory=LeadDetails)
    state: SessionState = SessionState.PENDING
    stream_sid: str | None = None
    conversation_id: str | None = None

    def bind_stream(self, stream_sid: str) -> bool:
        """Record the stream id once. Returns False if a different id is already bound."""

        if self.stream_sid is None:
            self.stream_sid = stream_sid
            return True
        return self.stream_sid == stream_sid


class SessionRegistry:
    """In-memory store for call sessions.

    Note: This is a single-process store. Entries live from call initiation
    until the media relay tears the call down; there is no expiry, so a relay
    that dies without teardown leaks its entry.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._sessions: dict[str, CallSession] = {}
        self._claimed: set[str] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_sid: object) -> bool:
        return call_sid in self._sessions

    async def put(self, call_sid: str, session: CallSession) -> None:
        async with self._lock:
            if call_sid in self._sessions:
                LOGGER.debug("Overwriting session for call %s", call_sid)
            self._sessions[call_sid] = session

    async def get(self, call_sid: str) -> CallSession | None:
        async with self._lock:
            return self._sessions.get(call_sid)

    async def remove(self, call_sid: str) -> CallSession | None:
        async with self._lock:
            self._claimed.discard(call_sid)
            return self._sessions.pop(call_sid, None)

    async def claim(self, session: CallSession) -> bool:
        """Bind a media relay to ``session.call_sid``.

        Stores ``session`` under its call sid. Returns False without touching
        the registry if another relay already holds that call sid.
        """

        if session.call_sid is None:
            raise ValueError("Cannot claim a session without a call sid")
        async with self._lock:
            if session.call_sid in self._claimed:
                return False
            self._claimed.add(session.call_sid)
            self._sessions[session.call_sid] = session
            return True

    def snapshot(self) -> dict[str, CallSession]:
        """Shallow copy of the current entries, for inspection and shutdown reporting."""

        return dict(self._sessions)
