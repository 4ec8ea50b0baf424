import os
import sys
from typing import Generator, List

import pytest

# Append sys.path so the flat top-level modules import from the tests folder
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from session import RenderEvent, ScheduleState, SessionController
from timers import ManualTimerHost


class Recorder:
    """Collects everything a SessionController tells the presentation layer."""

    def __init__(self) -> None:
        self.renders: List[RenderEvent] = []
        self.states: List[ScheduleState] = []
        self.intros: List[bool] = []

    def on_render(self, event: RenderEvent) -> None:
        self.renders.append(event)

    def on_state_change(self, state: ScheduleState) -> None:
        self.states.append(state)

    def on_intro(self, visible: bool) -> None:
        self.intros.append(visible)

    @property
    def chunks(self) -> List[str]:
        """Distinct chunk texts in the order they were first shown."""
        shown: List[str] = []
        for event in self.renders:
            if event.chunk and (not shown or shown[-1] != event.chunk):
                shown.append(event.chunk)
        return shown

    @property
    def offsets(self) -> List[float]:
        return [event.offset for event in self.renders]


@pytest.fixture(name="host")
def host_fixture() -> ManualTimerHost:
    return ManualTimerHost()


@pytest.fixture(name="recorder")
def recorder_fixture() -> Recorder:
    return Recorder()


@pytest.fixture(name="controller")
def controller_fixture(host: ManualTimerHost, recorder: Recorder) -> Generator[SessionController, None, None]:
    """A controller on a virtual clock with every event recorded.

    Yields:
        SessionController: closed again after the test.
    """
    controller = SessionController(
        host,
        on_render=recorder.on_render,
        on_state_change=recorder.on_state_change,
        on_intro_visibility_change=recorder.on_intro,
    )
    yield controller
    controller.close()
