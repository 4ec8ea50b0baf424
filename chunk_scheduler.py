"""
chunk_scheduler.py

Reveals one chunk of words at a time at a constant cadence derived from WPM.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Sequence

from pacing import CHUNK_SIZE, InvalidInput, ms_per_chunk
from timers import TimerHost, TimerSlot

logger = logging.getLogger(__name__)


class ChunkScheduler:
    """Cycles through ``chunks`` on a repeating timer.

    ``on_chunk(index, text)`` fires for every revealed chunk, the first one
    synchronously from ``start()``. ``on_complete()`` fires on the tick after
    the last chunk, instead of a chunk.
    """

    def __init__(
        self,
        host: TimerHost,
        on_chunk: Callable[[int, str], None],
        on_complete: Callable[[], None],
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._slot = TimerSlot(host)
        self._on_chunk = on_chunk
        self._on_complete = on_complete
        self.chunk_size = chunk_size
        self.chunks: List[str] = []
        self.period_ms = 0.0
        self.index = 0

    @property
    def running(self) -> bool:
        return self._slot.armed

    def load(self, chunks: Sequence[str], rate_wpm: int) -> None:
        self.stop()
        self.chunks = list(chunks)
        self.period_ms = ms_per_chunk(rate_wpm, self.chunk_size)
        self.index = 0
        logger.debug("Loaded %d chunks, %.1f ms per chunk", len(self.chunks), self.period_ms)

    def start(self, announce: bool = True) -> None:
        """Arm the timer, then emit chunk 0 unless ``announce`` is False."""
        if not self.chunks:
            raise InvalidInput("Nothing to read: text produced no chunks")
        self.index = 0
        # armed before the first emit so a listener can still stop us
        self._slot.arm_repeating(self.period_ms, self._tick)
        if announce:
            self._on_chunk(0, self.chunks[0])

    def resume(self) -> None:
        # fresh full period, no carry-over of time spent inside the paused one
        if not self.chunks:
            raise InvalidInput("Nothing to read: text produced no chunks")
        self._slot.arm_repeating(self.period_ms, self._tick)

    def stop(self) -> None:
        self._slot.disarm()

    def reset(self) -> None:
        self.stop()
        self.index = 0
        self.chunks = []
        self.period_ms = 0.0

    def _tick(self) -> None:
        self.index += 1
        if self.index >= len(self.chunks):
            self.index = len(self.chunks) - 1
            self.stop()
            self._on_complete()
            return
        self._on_chunk(self.index, self.chunks[self.index])
