"""
TimerSet tests using short real deadlines.
"""

import asyncio

import pytest

from outbound_bridge.src.config import TimerConfig
from outbound_bridge.src.timers import TimerKind, TimerSet


def make_timers(**overrides):
    fired: list[TimerKind] = []
    config = TimerConfig(**{
        "idle_warning_ms": 30,
        "idle_hangup_ms": 30,
        "max_call_ms": 5000,
        "max_call_warning_ms": 1000,
        **overrides,
    })
    return TimerSet(config, on_fire=fired.append), fired


@pytest.mark.asyncio
async def test_idle_warning_fires_once_before_hangup():
    timers, fired = make_timers()
    timers.reset_idle()

    await asyncio.sleep(0.1)

    assert fired == [TimerKind.IDLE_WARNING, TimerKind.IDLE_HANGUP]
    assert timers.deadlines == {}


@pytest.mark.asyncio
async def test_reset_reschedules_both_idle_deadlines():
    timers, fired = make_timers(idle_warning_ms=50, idle_hangup_ms=50)
    timers.reset_idle()
    first = timers.deadlines[TimerKind.IDLE_WARNING].fire_at

    await asyncio.sleep(0.03)
    timers.reset_idle()
    second = timers.deadlines

    assert second[TimerKind.IDLE_WARNING].fire_at > first
    assert second[TimerKind.IDLE_HANGUP].fire_at - second[TimerKind.IDLE_WARNING].fire_at == pytest.approx(0.05, abs=1e-3)

    await asyncio.sleep(0.03)
    assert fired == []
    timers.cancel_all()


@pytest.mark.asyncio
async def test_max_duration_is_armed_once():
    timers, fired = make_timers(max_call_ms=60, max_call_warning_ms=30)
    timers.arm_max_duration()
    hangup_at = timers.deadlines[TimerKind.MAX_DURATION_HANGUP].fire_at

    await asyncio.sleep(0.01)
    timers.arm_max_duration()
    assert timers.deadlines[TimerKind.MAX_DURATION_HANGUP].fire_at == hangup_at

    await asyncio.sleep(0.1)
    assert fired == [TimerKind.MAX_DURATION_WARNING, TimerKind.MAX_DURATION_HANGUP]


@pytest.mark.asyncio
async def test_max_duration_without_warning():
    timers, fired = make_timers(max_call_ms=20, max_call_warning_ms=0)
    timers.arm_max_duration()

    assert not timers.is_armed(TimerKind.MAX_DURATION_WARNING)
    await asyncio.sleep(0.05)
    assert fired == [TimerKind.MAX_DURATION_HANGUP]


@pytest.mark.asyncio
async def test_cancel_all_is_final():
    timers, fired = make_timers(max_call_ms=40, max_call_warning_ms=20)
    timers.reset_idle()
    timers.arm_max_duration()

    timers.cancel_all()
    timers.reset_idle()
    timers.arm_max_duration()

    await asyncio.sleep(0.1)
    assert fired == []
    assert timers.deadlines == {}


def test_timer_config_validation():
    with pytest.raises(ValueError):
        TimerConfig(max_call_ms=1000, max_call_warning_ms=1000)
    with pytest.raises(ValueError):
        TimerConfig(idle_warning_ms=0)
