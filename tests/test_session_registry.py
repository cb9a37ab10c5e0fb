from __future__ import annotations

import asyncio

import pytest

from bridge.session_registry import CallSession, LeadDetails, SessionRegistry, SessionState


def _run(coro):
    return asyncio.run(coro)


def test_put_get_remove():
    registry = SessionRegistry()
    session = CallSession(call_sid="CA1", lead=LeadDetails(name="Jane"))

    async def scenario():
        await registry.put("CA1", session)
        found = await registry.get("CA1")
        removed = await registry.remove("CA1")
        missing = await registry.get("CA1")
        return found, removed, missing

    found, removed, missing = _run(scenario())
    assert found is session
    assert found.state is SessionState.PENDING
    assert removed is session
    assert missing is None
    assert len(registry) == 0


def test_remove_unknown_is_noop():
    registry = SessionRegistry()
    assert _run(registry.remove("nope")) is None


def test_put_overwrites_silently():
    registry = SessionRegistry()

    async def scenario():
        await registry.put("CA1", CallSession(call_sid="CA1", lead=LeadDetails(name="Old")))
        await registry.put("CA1", CallSession(call_sid="CA1", lead=LeadDetails(name="New")))
        return await registry.get("CA1")

    assert _run(scenario()).lead.name == "New"


def test_claim_allows_one_relay_per_call():
    registry = SessionRegistry()

    async def scenario():
        first = await registry.claim(CallSession(call_sid="CA1"))
        second = await registry.claim(CallSession(call_sid="CA1"))
        await registry.remove("CA1")
        third = await registry.claim(CallSession(call_sid="CA1"))
        return first, second, third

    assert _run(scenario()) == (True, False, True)


def test_concurrent_claims_have_a_single_winner():
    registry = SessionRegistry()

    async def scenario():
        return await asyncio.gather(*(registry.claim(CallSession(call_sid="CA1")) for _ in range(10)))

    results = _run(scenario())
    assert results.count(True) == 1


def test_claim_requires_call_sid():
    with pytest.raises(ValueError):
        _run(SessionRegistry().claim(CallSession(call_sid=None)))


def test_lead_details_drop_blank_fields():
    lead = LeadDetails(name="  Jane ", email="", phone=None)
    assert lead.as_dict() == {"name": "Jane"}
    assert lead.agent_state() == {"lead_name": "Jane"}
    assert not lead.is_empty
    assert LeadDetails.from_mapping({"name": " ", "other": "x"}).is_empty


def test_stream_sid_binds_once():
    session = CallSession(call_sid="CA1")
    assert session.bind_stream("SM1") is True
    assert session.bind_stream("SM1") is True
    assert session.bind_stream("SM2") is False
    assert session.stream_sid == "SM1"
