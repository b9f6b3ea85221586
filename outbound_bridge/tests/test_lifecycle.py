"""
Lifecycle notification tests.
"""

import pytest

from outbound_bridge.src.lifecycle import CallIdentity, CloseReason, LifecycleNotifier

from .conftest import RecordingTransport


def identity() -> CallIdentity:
    return CallIdentity(
        session_id="MZ1",
        call_id="CA1",
        callee_identity="Dana",
        campaign_tag="spring",
        outbound_id="42",
    )


@pytest.mark.asyncio
async def test_payloads_carry_identity_and_close_details():
    transport = RecordingTransport()
    notifier = LifecycleNotifier(transport)

    notifier.call_started(identity())
    notifier.call_ended(identity(), CloseReason.CALLER_IDLE, 12.34567)
    await notifier.drain()

    started, ended = transport.payloads
    assert started["event"] == "call_started"
    assert started["direction"] == "outbound"
    assert started["stream_sid"] == "MZ1"
    assert started["call_sid"] == "CA1"
    assert started["campaign"] == "spring"
    assert started["callee"] == "Dana"
    assert "timestamp" in started
    assert "close_reason" not in started

    assert ended["event"] == "call_ended"
    assert ended["close_reason"] == "caller_idle"
    assert ended["duration_seconds"] == 12.346


@pytest.mark.asyncio
async def test_each_kind_is_dispatched_once():
    transport = RecordingTransport()
    notifier = LifecycleNotifier(transport)

    assert notifier.call_ended(identity(), CloseReason.CALLER_HUNG_UP, 1.0) is not None
    assert notifier.call_ended(identity(), CloseReason.MAX_DURATION, 2.0) is None
    await notifier.drain()

    assert transport.events() == ["call_ended"]
    assert transport.payloads[0]["close_reason"] == "caller_hung_up"


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed():
    notifier = LifecycleNotifier(RecordingTransport(error=ConnectionError("webhook down")))

    event = notifier.call_started(identity())
    await notifier.drain()

    assert event is not None


@pytest.mark.asyncio
async def test_no_transport_still_decides():
    notifier = LifecycleNotifier()

    event = notifier.call_ended(identity(), CloseReason.DIALOGUE_ERROR, 0.5)

    assert event.to_payload()["close_reason"] == "dialogue_service_error"
