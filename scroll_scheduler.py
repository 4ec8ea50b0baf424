"""
scroll_scheduler.py

Continuous scroll pacing: moves an offset across a rendered text block so
the whole block passes the viewport in exactly the reading time for the
text at the target WPM.

Each frame advances by the time actually elapsed since the previous frame,
so late or dropped frames do not slow the reading down.
"""

from __future__ import annotations

import logging
from typing import Callable

from pacing import (
    INTRO_DELAY_MS,
    InvalidInput,
    advance,
    frame_period_ms,
    reached,
    reading_duration_ms,
)
from timers import TimerHost, TimerSlot

logger = logging.getLogger(__name__)


class ScrollScheduler:
    def __init__(
        self,
        host: TimerHost,
        on_offset: Callable[[float], None],
        on_complete: Callable[[], None],
        on_intro: Callable[[bool], None],
        high_refresh: bool = True,
        intro_delay_ms: float = INTRO_DELAY_MS,
    ) -> None:
        self._host = host
        self._frames = TimerSlot(host)
        self._intro = TimerSlot(host)
        self._on_offset = on_offset
        self._on_complete = on_complete
        self._on_intro = on_intro
        self.frame_ms = frame_period_ms(high_refresh)
        self.intro_delay_ms = intro_delay_ms

        self.total_distance = 0.0
        self.duration_ms = 0.0
        self.pixels_per_ms = 0.0
        self.position = 0.0
        self.intro_visible = False
        self._last_tick = 0.0

    @property
    def running(self) -> bool:
        return self._frames.armed

    @property
    def pixels_per_tick(self) -> float:
        return self.pixels_per_ms * self.frame_ms

    def load(self, total_distance: float, word_count: int, rate_wpm: int) -> None:
        if total_distance <= 0:
            raise InvalidInput("Scroll distance unknown: lay out the text first")
        if word_count <= 0:
            raise InvalidInput("Nothing to read: text has no words")
        self.stop()
        self.total_distance = float(total_distance)
        self.duration_ms = reading_duration_ms(word_count, rate_wpm)
        self.pixels_per_ms = self.total_distance / self.duration_ms
        self.position = 0.0
        logger.debug(
            "Scroll: %.1f px over %.0f ms (%.3f px/frame at %d ms)",
            self.total_distance, self.duration_ms, self.pixels_per_tick, self.frame_ms,
        )

    def start(self) -> None:
        if self.duration_ms <= 0:
            raise InvalidInput("Scroll schedule not loaded")
        self.position = 0.0
        self._arm()
        self._show_intro()

    def resume(self) -> None:
        if self.duration_ms <= 0:
            raise InvalidInput("Scroll schedule not loaded")
        # measure the next delta from now, not from before the pause
        self._arm()

    def stop(self) -> None:
        self._frames.disarm()

    def reset(self) -> None:
        self.stop()
        self._intro.disarm()
        self.position = 0.0
        self.total_distance = 0.0
        self.duration_ms = 0.0
        self.pixels_per_ms = 0.0
        if self.intro_visible:
            self.intro_visible = False
            self._on_intro(False)

    def _arm(self) -> None:
        self._last_tick = self._host.now()
        self._frames.arm_repeating(self.frame_ms, self._tick)

    def _tick(self) -> None:
        now = self._host.now()
        delta = now - self._last_tick
        self._last_tick = now
        self.position = advance(self.position, delta, self.pixels_per_ms)

        if reached(self.position, self.total_distance):
            self.stop()
            self._on_offset(self.total_distance)
            self._on_complete()
            return
        self._on_offset(self.position)

    # -------------------------------
    # "get ready" overlay
    # -------------------------------
    def _show_intro(self) -> None:
        # one-shot, independent of the frame loop; pause does not hold it
        self.intro_visible = True
        self._intro.arm_once(self.intro_delay_ms, self._hide_intro)
        self._on_intro(True)

    def _hide_intro(self) -> None:
        if self.intro_visible:
            self.intro_visible = False
            self._on_intro(False)
