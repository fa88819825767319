"""
Shared fixtures: a virtual clock, a manual timer service and recording callbacks.

Nothing here touches the real event-loop clock, so scheduler and queue
timing can be asserted exactly.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Callable, Optional

import pytest

from command_parser import CommandParser
from message_content import MappingMessageSource
from message_scheduler import MessageScheduler, ScheduledMessage
from message_selector import MessageSelector
from settings import SchedulerSettings


class FakeClock:
    """Virtual monotonic clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        await asyncio.sleep(0)


@dataclass
class FakeTimer:
    due: float
    callback: Callable[[], None]
    label: str
    _cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class FakeTimerService:
    """TimerService whose timers fire only when ``advance`` is called."""

    now_s: float = 0.0
    timers: list[FakeTimer] = field(default_factory=list)

    def call_later(self, delay_seconds: float, callback: Callable[[], None], *, label: str = "") -> FakeTimer:
        timer = FakeTimer(self.now_s + max(0.0, delay_seconds), callback, label)
        self.timers.append(timer)
        return timer

    def now(self) -> float:
        return self.now_s

    def armed(self, prefix: str = "") -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled() and not t.fired and t.label.startswith(prefix)]

    def cancelled_labels(self) -> list[str]:
        return [t.label for t in self.timers if t.cancelled()]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in due order."""
        target = self.now_s + seconds
        while True:
            due = [t for t in self.armed() if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now_s = max(self.now_s, timer.due)
            timer.fired = True
            timer.callback()
        self.now_s = target


TEST_MAPPINGS = {
    "modes": {
        "mode-a": {
            "displayName": "Mode A",
            "names": ["alpha"],
            "minDelaySeconds": 10,
            "maxDelaySeconds": 20,
            "messages": [f"a-{i}" for i in range(10)],
        },
        "mode-b": {
            "displayName": "Mode B",
            "names": ["beta"],
            "minDelaySeconds": 10,
            "maxDelaySeconds": 20,
            "messages": [f"b-{i}" for i in range(10)],
        },
        "mixed": {
            "displayName": "Mixed",
            "names": [],
            "messageProbabilities": {"cliche": 0.5, "other": 0.5},
        },
    },
    "masterMessages": {
        "cliche": [f"cliche-{i}" for i in range(6)],
        "other": [f"other-{i}" for i in range(6)],
    },
}


class RecordingUI:
    """Collects everything the scheduler emits."""

    def __init__(self) -> None:
        self.shown: list[ScheduledMessage] = []
        self.dropped: list[tuple[str, str]] = []
        self.errors: list[tuple[str, Optional[BaseException]]] = []

    def on_message_show(self, message: ScheduledMessage) -> None:
        self.shown.append(message)

    def on_message_dropped(self, text: str, reason: str) -> None:
        self.dropped.append((text, reason))

    def on_error(self, message: str, error: Optional[BaseException]) -> None:
        self.errors.append((message, error))


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> FakeTimerService:
    return FakeTimerService()


@pytest.fixture
def ui() -> RecordingUI:
    return RecordingUI()


@pytest.fixture
def mappings() -> dict:
    return TEST_MAPPINGS


@pytest.fixture
def content_source(mappings) -> MappingMessageSource:
    return MappingMessageSource(mappings, selector=MessageSelector(rng=random.Random(7)))


@pytest.fixture
def scheduler(content_source, timers, ui) -> MessageScheduler:
    return MessageScheduler(
        content_source,
        timers,
        SchedulerSettings(),
        selector=MessageSelector(rng=random.Random(1)),
        on_message_show=ui.on_message_show,
        on_error=ui.on_error,
        on_message_dropped=ui.on_message_dropped,
        rng=random.Random(2),
    )


@pytest.fixture
def parser() -> CommandParser:
    return CommandParser()
