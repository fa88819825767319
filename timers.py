"""
Cancellable one-shot timers on top of the asyncio event loop.

The message scheduler and the mode switch coordinator never sleep; they
arm timers through a ``TimerService`` and keep the returned handle so it
can be cancelled on pause, stop, mode switch or teardown. Tests swap in a
manual timer service driven by a virtual clock.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    """Handle to an armed timer. ``asyncio.TimerHandle`` satisfies this."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class TimerService(Protocol):
    """Arms one-shot timers and reports the current time in seconds."""

    def call_later(
        self,
        delay_seconds: float,
        callback: Callable[[], None],
        *,
        label: str = "",
    ) -> TimerHandle: ...

    def now(self) -> float: ...


class LoopTimerService:
    """
    TimerService backed by ``loop.call_later``.

    Args:
        loop: Event loop to schedule on. If None, the running loop is looked
              up on every call, so the service can be built before the loop
              starts.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop if self._loop is not None else asyncio.get_running_loop()

    def call_later(
        self,
        delay_seconds: float,
        callback: Callable[[], None],
        *,
        label: str = "",
    ) -> asyncio.TimerHandle:
        # label is informational only for the real loop
        return self._get_loop().call_later(max(0.0, delay_seconds), callback)

    def now(self) -> float:
        return self._get_loop().time()
