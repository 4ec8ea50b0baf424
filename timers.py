"""
timers.py

Cooperative timer hosts the schedulers run on.

- AsyncioTimerHost: real event loop (loop.call_at / loop.time)
- ManualTimerHost: virtual clock, advanced explicitly (replays, tests)
- TimerSlot: exclusive owner of at most one live timer handle

All times are milliseconds. Everything here is single-threaded: callbacks
run on the host's loop, and cancel() is synchronous, so once it returns the
callback will not run again.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

Callback = Callable[[], None]


class TimerHandle:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class TimerHost(ABC):
    """Interface every scheduler talks to. Subclasses provide the clock."""

    @abstractmethod
    def now(self) -> float:
        pass

    @abstractmethod
    def call_later(self, delay_ms: float, callback: Callback) -> TimerHandle:
        pass

    @abstractmethod
    def call_repeating(self, period_ms: float, callback: Callback) -> TimerHandle:
        pass


# ============================================================
# asyncio
# ============================================================
class _AsyncioOneShot(TimerHandle):
    def __init__(self, loop: asyncio.AbstractEventLoop, delay_ms: float, callback: Callback) -> None:
        super().__init__()
        self._callback = callback
        self._handle = loop.call_later(max(0.0, delay_ms) / 1000.0, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._callback()

    def cancel(self) -> None:
        super().cancel()
        self._handle.cancel()


class _AsyncioRepeating(TimerHandle):
    def __init__(self, loop: asyncio.AbstractEventLoop, period_ms: float, callback: Callback) -> None:
        super().__init__()
        if period_ms <= 0:
            raise ValueError(f"period must be positive, got {period_ms}")
        self._loop = loop
        self._period = period_ms / 1000.0
        self._callback = callback
        self._deadline = loop.time() + self._period
        self._handle = loop.call_at(self._deadline, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        now = self._loop.time()
        self._deadline += self._period
        if self._deadline <= now:
            # fell behind (blocked loop); drop the missed frames
            self._deadline = now + self._period
        self._handle = self._loop.call_at(self._deadline, self._fire)
        self._callback()

    def cancel(self) -> None:
        super().cancel()
        self._handle.cancel()


class AsyncioTimerHost(TimerHost):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time() * 1000.0

    def call_later(self, delay_ms: float, callback: Callback) -> TimerHandle:
        return _AsyncioOneShot(self.loop, delay_ms, callback)

    def call_repeating(self, period_ms: float, callback: Callback) -> TimerHandle:
        return _AsyncioRepeating(self.loop, period_ms, callback)


# ============================================================
# Virtual clock
# ============================================================
class _ManualHandle(TimerHandle):
    def __init__(self, deadline: float, callback: Callback, period: Optional[float]) -> None:
        super().__init__()
        self.deadline = deadline
        self.callback = callback
        self.period = period


class ManualTimerHost(TimerHost):
    """Timer host driven by explicit ``advance`` calls.

    Due timers fire in deadline order (ties in creation order) and the clock
    reads each timer's deadline while its callback runs, so a repeating
    timer sees exact deltas unless ``stall`` was used to make it late.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._clock = float(start_ms)
        self._handles: List[_ManualHandle] = []

    def now(self) -> float:
        return self._clock

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)

    def call_later(self, delay_ms: float, callback: Callback) -> TimerHandle:
        handle = _ManualHandle(self._clock + max(0.0, delay_ms), callback, None)
        self._handles.append(handle)
        return handle

    def call_repeating(self, period_ms: float, callback: Callback) -> TimerHandle:
        if period_ms <= 0:
            raise ValueError(f"period must be positive, got {period_ms}")
        handle = _ManualHandle(self._clock + period_ms, callback, float(period_ms))
        self._handles.append(handle)
        return handle

    def stall(self, ms: float) -> None:
        """Push every pending deadline back by ``ms`` (a late frame)."""
        for handle in self._handles:
            if not handle.cancelled:
                handle.deadline += ms

    def advance(self, ms: float) -> None:
        if ms < 0:
            raise ValueError("cannot move the clock backwards")
        target = self._clock + ms
        while True:
            handle = self._next_due(target)
            if handle is None:
                break
            self._clock = max(self._clock, handle.deadline)
            if handle.period is None:
                handle.cancel()
            else:
                handle.deadline += handle.period
            handle.callback()
        self._clock = target
        self._handles = [h for h in self._handles if not h.cancelled]

    def _next_due(self, target: float) -> Optional[_ManualHandle]:
        due = [h for h in self._handles if not h.cancelled and h.deadline <= target]
        return min(due, key=lambda h: h.deadline) if due else None


# ============================================================
# Exclusive ownership
# ============================================================
class TimerSlot:
    """Holds at most one live timer; arming always cancels the previous one."""

    def __init__(self, host: TimerHost) -> None:
        self._host = host
        self._handle: Optional[TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None and not self._handle.cancelled

    def arm_repeating(self, period_ms: float, callback: Callback) -> None:
        self.disarm()
        self._handle = self._host.call_repeating(period_ms, callback)

    def arm_once(self, delay_ms: float, callback: Callback) -> None:
        self.disarm()

        def fire() -> None:
            self._handle = None
            callback()

        self._handle = self._host.call_later(delay_ms, fire)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
