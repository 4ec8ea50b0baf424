import asyncio

import pytest

from timers import AsyncioTimerHost, ManualTimerHost, TimerHost, TimerSlot


def test_manual_one_shot_fires_once_at_deadline():
    host = ManualTimerHost()
    fired = []
    host.call_later(100, lambda: fired.append(host.now()))

    host.advance(99)
    assert fired == []
    host.advance(1)
    assert fired == [100]
    host.advance(1000)
    assert fired == [100]
    assert host.pending == 0


def test_manual_repeating_fires_on_cadence():
    host = ManualTimerHost()
    fired = []
    host.call_repeating(16, lambda: fired.append(host.now()))

    host.advance(50)
    assert fired == [16, 32, 48]
    assert host.now() == 50


def test_manual_fires_in_deadline_order():
    host = ManualTimerHost()
    order = []
    host.call_later(30, lambda: order.append("b"))
    host.call_later(10, lambda: order.append("a"))
    host.call_later(30, lambda: order.append("c"))
    host.advance(30)
    assert order == ["a", "b", "c"]


def test_manual_cancel_is_immediate():
    host = ManualTimerHost()
    fired = []
    handle = host.call_repeating(10, lambda: fired.append(1))
    host.advance(10)
    handle.cancel()
    host.advance(100)
    assert fired == [1]
    assert handle.cancelled


def test_manual_cancel_from_inside_callback():
    host = ManualTimerHost()
    fired = []

    def tick():
        fired.append(host.now())
        handle.cancel()

    handle = host.call_repeating(10, tick)
    host.advance(100)
    assert fired == [10]


def test_manual_stall_delays_next_frame():
    host = ManualTimerHost()
    fired = []
    host.call_repeating(16, lambda: fired.append(host.now()))
    host.advance(16)
    host.stall(40)
    host.advance(100)
    assert fired[:3] == [16, 72, 88]


def test_manual_clock_cannot_go_backwards():
    with pytest.raises(ValueError):
        ManualTimerHost().advance(-1)


def test_repeating_period_must_be_positive():
    with pytest.raises(ValueError):
        ManualTimerHost().call_repeating(0, lambda: None)


def test_slot_holds_a_single_timer():
    host = ManualTimerHost()
    slot = TimerSlot(host)
    fired = []

    slot.arm_repeating(10, lambda: fired.append("first"))
    slot.arm_repeating(10, lambda: fired.append("second"))
    assert host.pending == 1

    host.advance(10)
    assert fired == ["second"]

    slot.disarm()
    assert not slot.armed
    host.advance(100)
    assert fired == ["second"]


def test_slot_one_shot_disarms_itself():
    host = ManualTimerHost()
    slot = TimerSlot(host)
    fired = []
    slot.arm_once(5, lambda: fired.append(slot.armed))
    assert slot.armed
    host.advance(5)
    assert fired == [False]
    assert not slot.armed


def test_asyncio_host_repeating_and_cancel():
    async def scenario():
        host = AsyncioTimerHost()
        ticks = []
        start = host.now()
        handle = host.call_repeating(5, lambda: ticks.append(host.now() - start))
        await asyncio.sleep(0.06)
        handle.cancel()
        count = len(ticks)
        await asyncio.sleep(0.03)
        return ticks, count

    ticks, count = asyncio.run(scenario())
    assert count >= 3
    assert len(ticks) == count
    assert ticks == sorted(ticks)
    assert ticks[0] >= 4


def test_asyncio_host_one_shot():
    async def scenario():
        host = AsyncioTimerHost()
        fired = []
        host.call_later(10, lambda: fired.append("go"))
        cancelled = host.call_later(10, lambda: fired.append("never"))
        cancelled.cancel()
        await asyncio.sleep(0.05)
        return fired

    assert asyncio.run(scenario()) == ["go"]


def test_timer_host_requires_every_method():
    class NoRepeat(TimerHost):
        def now(self):
            return 0.0

        def call_later(self, delay_ms, callback):
            return None

    with pytest.raises(TypeError):
        NoRepeat()
    with pytest.raises(TypeError):
        TimerHost()
