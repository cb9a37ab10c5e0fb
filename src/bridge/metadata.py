"""Resolution of lead metadata for a media stream connection.

Twilio opens the media stream with whatever the incoming-call webhook put on
the stream address: either just the ``callSid`` (look the lead up in the
registry) or the lead fields themselves.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from bridge.session_registry import LEAD_FIELDS, CallSession, LeadDetails, SessionRegistry

LOGGER = logging.getLogger(__name__)

CALL_SID_PARAM = "callSid"


class MetadataResolver(ABC):
    """Produces the CallSession a media relay will own."""

    @abstractmethod
    async def resolve(self) -> CallSession:
        """Return a pending session for the connecting stream."""


class ResolveByRegistry(MetadataResolver):
    def __init__(self, registry: SessionRegistry, call_sid: str | None) -> None:
        self._registry = registry
        self._call_sid = call_sid

    async def resolve(self) -> CallSession:
        if not self._call_sid:
            LOGGER.info("Media stream carried no call sid; continuing with empty metadata")
            return CallSession(call_sid=None)

        session = await self._registry.get(self._call_sid)
        if session is None:
            LOGGER.info("No registered session for call %s; continuing with empty metadata", self._call_sid)
            return CallSession(call_sid=self._call_sid)
        return session


class ResolveFromParameters(MetadataResolver):
    def __init__(self, params: Mapping[str, Any]) -> None:
        self._call_sid = _call_sid_from(params)
        self._lead = LeadDetails.from_mapping(params)

    async def resolve(self) -> CallSession:
        return CallSession(call_sid=self._call_sid, lead=self._lead)


def _call_sid_from(params: Mapping[str, Any]) -> str | None:
    value = str(params.get(CALL_SID_PARAM) or "").strip()
    return value or None


def has_inline_lead(params: Mapping[str, Any]) -> bool:
    return any(str(params.get(key) or "").strip() for key in LEAD_FIELDS)


def select_resolver(params: Mapping[str, Any], registry: SessionRegistry) -> MetadataResolver:
    """Inline lead fields win; otherwise fall back to a registry lookup by call sid."""

    if has_inline_lead(params):
        return ResolveFromParameters(params)
    return ResolveByRegistry(registry, _call_sid_from(params))
