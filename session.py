"""
session.py

Session controller: owns the text, rate, mode, play state and progress of
one reading session and drives whichever scheduler the mode selects.

The presentation layer only ever sees three callbacks:
- on_render(RenderEvent)
- on_state_change(ScheduleState)
- on_intro_visibility_change(bool)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple, Union

from chunk_scheduler import ChunkScheduler
from pacing import (
    CHUNK_SIZE,
    INTRO_DELAY_MS,
    InvalidInput,
    build_chunks,
    parse_rate,
    tokenize_words,
    validate_distance,
    validate_text,
)
from scroll_scheduler import ScrollScheduler
from timers import TimerHost

logger = logging.getLogger(__name__)


class ScheduleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class Mode(str, Enum):
    CHUNK = "chunk"
    SCROLL = "scroll"

    @classmethod
    def coerce(cls, value: Union["Mode", str]) -> "Mode":
        if isinstance(value, Mode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInput(f"Unknown mode {value!r} (expected 'chunk' or 'scroll')") from None


@dataclass(frozen=True)
class RenderEvent:
    mode: Mode
    state: ScheduleState
    chunk: str = ""
    chunk_index: int = 0
    chunk_count: int = 0
    offset: float = 0.0
    total_distance: float = 0.0

    @property
    def is_playing(self) -> bool:
        return self.state is ScheduleState.RUNNING

    @property
    def content(self) -> Union[str, float]:
        return self.chunk if self.mode is Mode.CHUNK else self.offset

    @property
    def fraction(self) -> float:
        if self.state is ScheduleState.COMPLETED:
            return 1.0
        if self.mode is Mode.CHUNK:
            return self.chunk_index / self.chunk_count if self.chunk_count else 0.0
        return self.offset / self.total_distance if self.total_distance else 0.0

    def as_dict(self) -> dict:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["state"] = self.state.value
        data["fraction"] = self.fraction
        data["is_playing"] = self.is_playing
        return data


RenderCallback = Callable[[RenderEvent], None]
StateCallback = Callable[[ScheduleState], None]
IntroCallback = Callable[[bool], None]


class SessionController:
    """Single owner of a reading session's state and progress.

    Only this class changes ``state``. Schedulers report progress back through
    the ``_on_*`` callbacks below, which are the only writers of progress.
    """

    def __init__(
        self,
        host: TimerHost,
        on_render: Optional[RenderCallback] = None,
        on_state_change: Optional[StateCallback] = None,
        on_intro_visibility_change: Optional[IntroCallback] = None,
        high_refresh: bool = True,
        intro_delay_ms: float = INTRO_DELAY_MS,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.on_render = on_render
        self.on_state_change = on_state_change
        self.on_intro_visibility_change = on_intro_visibility_change

        self._chunker = ChunkScheduler(host, self._on_chunk, self._on_complete, chunk_size=chunk_size)
        self._scroller = ScrollScheduler(
            host,
            self._on_offset,
            self._on_complete,
            self._on_intro,
            high_refresh=high_refresh,
            intro_delay_ms=intro_delay_ms,
        )

        self._state = ScheduleState.IDLE
        self._mode = Mode.CHUNK
        self._text: Optional[str] = None
        self._rate: Optional[int] = None
        self._total_distance: Optional[float] = None

        self._chunks: List[str] = []
        self._chunk = ""
        self._index = 0
        self._offset = 0.0

    # -------------------------------
    # Read-only view
    # -------------------------------
    @property
    def state(self) -> ScheduleState:
        return self._state

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def text(self) -> Optional[str]:
        return self._text

    @property
    def rate_wpm(self) -> Optional[int]:
        return self._rate

    @property
    def total_distance(self) -> Optional[float]:
        return self._total_distance

    @property
    def chunks(self) -> Tuple[str, ...]:
        return tuple(self._chunks)

    @property
    def progress(self) -> Union[int, float]:
        return self._index if self._mode is Mode.CHUNK else self._offset

    @property
    def intro_visible(self) -> bool:
        return self._scroller.intro_visible

    @property
    def frame_ms(self) -> int:
        return self._scroller.frame_ms

    def snapshot(self) -> RenderEvent:
        return RenderEvent(
            mode=self._mode,
            state=self._state,
            chunk=self._chunk,
            chunk_index=self._index,
            chunk_count=len(self._chunks),
            offset=self._offset,
            total_distance=self._scroller.total_distance or (self._total_distance or 0.0),
        )

    # -------------------------------
    # Controls
    # -------------------------------
    def configure(self, text: str, rate_wpm: Union[int, str], mode: Union[Mode, str] = Mode.CHUNK) -> None:
        try:
            text = validate_text(text)
            rate = parse_rate(rate_wpm)
            new_mode = Mode.coerce(mode)
        except InvalidInput as e:
            logger.info("Rejected session configuration: %s", e)
            raise

        if self._state is not ScheduleState.IDLE or self._chunks:
            self.reset()

        self._text = text
        self._rate = rate
        self._mode = new_mode
        self._total_distance = None
        logger.debug("Configured %s session: %d WPM, %d chars", new_mode.value, rate, len(text))

    def set_total_distance(self, distance: Union[int, float]) -> None:
        """Rendered height of the text block; Scroll mode only.

        Validated in every mode, but ignored (not stored) in Chunk mode.
        """
        try:
            value = validate_distance(distance)
        except InvalidInput as e:
            logger.info("Rejected scroll distance: %s", e)
            raise
        if self._mode is not Mode.SCROLL:
            logger.debug("Scroll distance ignored in %s mode", self._mode.value)
            return
        self._total_distance = value

    def start(self) -> None:
        if self._state is ScheduleState.RUNNING:
            logger.debug("start() while running ignored")
            return

        if self._state is ScheduleState.PAUSED:
            self._active().resume()
            self._set_state(ScheduleState.RUNNING)
            if self._state is ScheduleState.RUNNING:
                self._render()
            return

        if self._text is None or self._rate is None:
            logger.info("Rejected start: no text configured")
            raise InvalidInput("Nothing to read: configure text and speed first")
        if self._mode is Mode.SCROLL and self._total_distance is None:
            logger.info("Rejected start: scroll distance not set")
            raise InvalidInput("Scroll distance unknown: lay out the text first")

        if self._state is ScheduleState.COMPLETED:
            self._clear_schedule()

        self._compute_schedule()
        # armed before RUNNING is announced; listeners may pause or reset
        if self._mode is Mode.CHUNK:
            self._chunker.start(announce=False)
            self._index = 0
            self._chunk = self._chunks[0]
        else:
            self._scroller.start()
        self._set_state(ScheduleState.RUNNING)
        if self._state is ScheduleState.RUNNING:
            self._render()

    resume = start

    def pause(self) -> None:
        if self._state is not ScheduleState.RUNNING:
            logger.debug("pause() while %s ignored", self._state.value)
            return
        self._active().stop()
        self._set_state(ScheduleState.PAUSED)
        self._render()

    def reset(self) -> None:
        self._clear_schedule()
        self._set_state(ScheduleState.IDLE)
        self._render()

    def close(self) -> None:
        """Tear down: cancel every timer and stop talking to the renderer."""
        self.on_render = None
        self.on_state_change = None
        self.on_intro_visibility_change = None
        self._clear_schedule()
        self._state = ScheduleState.IDLE

    # -------------------------------
    # Internals
    # -------------------------------
    def _active(self):
        return self._chunker if self._mode is Mode.CHUNK else self._scroller

    def _compute_schedule(self) -> None:
        tokens = tokenize_words(self._text or "")
        if self._mode is Mode.CHUNK:
            self._chunks = build_chunks(tokens, self._chunker.chunk_size)
            self._chunker.load(self._chunks, self._rate)
        else:
            self._chunks = []
            self._scroller.load(self._total_distance or 0.0, len(tokens), self._rate)
        logger.debug("Schedule computed: %d words, mode=%s", len(tokens), self._mode.value)

    def _clear_schedule(self) -> None:
        self._chunker.reset()
        self._scroller.reset()
        self._chunks = []
        self._chunk = ""
        self._index = 0
        self._offset = 0.0

    def _set_state(self, state: ScheduleState) -> None:
        if state is self._state:
            return
        logger.debug("Session %s -> %s", self._state.value, state.value)
        self._state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _render(self) -> None:
        if self.on_render is not None:
            self.on_render(self.snapshot())

    def _on_chunk(self, index: int, text: str) -> None:
        self._index = index
        self._chunk = text
        self._render()

    def _on_offset(self, offset: float) -> None:
        # never step backwards, never report past the end
        self._offset = min(max(self._offset, offset), self._scroller.total_distance)
        self._render()

    def _on_complete(self) -> None:
        self._set_state(ScheduleState.COMPLETED)
        self._render()

    def _on_intro(self, visible: bool) -> None:
        if self.on_intro_visibility_change is not None:
            self.on_intro_visibility_change(visible)
