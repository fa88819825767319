"""
Message Scheduler for ambient persona messages.

Decides when a message appears, which text it shows and how many messages
are visible at once. Scheduling is self-perpetuating: each fired timer
shows a message and arms the next one with a fresh random delay, so
independent schedulers never fall into lockstep.

Key Features:
- Random delay within the mode's range, compressed by the animation speed
- At most max_concurrent_messages live messages; overflow waits in a small
  side queue that drains as messages are cleaned up
- Smallest-free stack slots so live messages never overlap
- Every timer handle is stored and cancelled on pause/stop/mode switch

State machine:
    IDLE -> RUNNING <-> PAUSED -> STOPPED; start(mode) from any state builds
    a fresh session after tearing the previous one down.
"""

from __future__ import annotations

import itertools
import logging
import random
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from error_reporting import report_error
from message_content import MessageSource, ModeContent
from message_selector import MessageSelector
from metrics import live_messages_gauge, messages_dropped_total, messages_shown_total
from settings import SchedulerSettings
from stack_allocator import StackAllocator, StackOffset
from timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class ScheduledMessage:
    """
    A message currently (or formerly) on screen.

    The UI receives these through on_message_show and must treat them as
    read-only; early dismissal goes through MessageScheduler.cleanup(id).
    """
    id: str
    text: str
    category: str
    mode: str
    created_at: float
    lifetime_ms: float
    stack_slot: int
    offset: StackOffset
    popup_style: str = "overlay"
    animation_type: str = "normal"

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "category": self.category,
            "mode": self.mode,
            "created_at": self.created_at,
            "lifetime_ms": self.lifetime_ms,
            "stack_slot": self.stack_slot,
            "offset": self.offset.as_dict(),
            "popup_style": self.popup_style,
            "animation_type": self.animation_type,
        }


@dataclass
class SchedulerSession:
    """Scheduling state for the active mode; replaced wholesale on mode switch."""
    mode: str
    content: ModeContent
    min_delay_seconds: float
    max_delay_seconds: float
    is_paused: bool = False
    next_timer_handle: Optional[TimerHandle] = None


@dataclass
class SchedulerStats:
    messages_shown: int = 0
    total_scheduled: int = 0
    average_delay: float = 0.0
    last_message_time: Optional[float] = None
    messages_queued: int = 0
    messages_dropped: int = 0

    def record_delay(self, delay: float) -> None:
        self.total_scheduled += 1
        self.average_delay += (delay - self.average_delay) / self.total_scheduled


class MessageScheduler:
    """
    Orchestrates ambient message timing, admission and cleanup.

    Args:
        content_source: Loads the message pool for a mode
        timers: Arms cancellable one-shot timers
        settings: Timing and concurrency limits
        selector: Anti-repetition message picker
        allocator: Stack slot allocator
        on_message_show: Called with each new ScheduledMessage
        on_error: Called as on_error(message, error) on failures
        on_message_dropped: Called as on_message_dropped(text, reason) when the
                            side queue rejects a candidate
        rng: Random source for delays
    """

    def __init__(
        self,
        content_source: MessageSource,
        timers: TimerService,
        settings: Optional[SchedulerSettings] = None,
        *,
        selector: Optional[MessageSelector] = None,
        allocator: Optional[StackAllocator] = None,
        on_message_show: Optional[Callable[[ScheduledMessage], None]] = None,
        on_error: Callable[[str, Optional[BaseException]], None] = report_error,
        on_message_dropped: Optional[Callable[[str, str], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or SchedulerSettings()
        self._content_source = content_source
        self._timers = timers
        self._selector = selector or MessageSelector()
        self._allocator = allocator or StackAllocator()
        self._rng = rng or random.Random()

        self.on_message_show = on_message_show
        self.on_error = on_error
        self.on_message_dropped = on_message_dropped

        self.state = SchedulerState.IDLE
        self._session: Optional[SchedulerSession] = None

        self._live: dict[str, ScheduledMessage] = {}
        self._cleanup_timers: dict[str, TimerHandle] = {}
        self._side_queue: deque[str] = deque()
        self._history: deque[str] = deque(maxlen=self.settings.history_size)
        self._ids = itertools.count(1)
        self.stats = SchedulerStats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def current_mode(self) -> Optional[str]:
        return self._session.mode if self._session else None

    def start(self, mode: str) -> bool:
        """
        Start scheduling for ``mode``.

        Tears down the previous session first (timers, live messages, side
        queue, history). A no-op if already running ``mode``.

        Returns:
            True if the scheduler is running ``mode`` afterwards
        """
        if self.state is SchedulerState.RUNNING and self.current_mode == mode:
            return True

        previous = self.current_mode
        self._teardown()

        try:
            content = self._content_source.load(mode)
        except Exception as e:
            self.state = SchedulerState.STOPPED
            self._report_error(f"Failed to start scheduler: invalid mode {mode}", e)
            return False

        s = self.settings
        self._session = SchedulerSession(
            mode=mode,
            content=content,
            min_delay_seconds=content.min_delay_seconds if content.min_delay_seconds is not None else s.min_delay_seconds,
            max_delay_seconds=content.max_delay_seconds if content.max_delay_seconds is not None else s.max_delay_seconds,
        )
        self.state = SchedulerState.RUNNING
        self.schedule_next()

        logger.info("[MessageScheduler] Started for mode %s (previous: %s)", mode, previous)
        return True

    def stop(self) -> None:
        """Cancel the pending timer and force-clear every live message."""
        self._teardown()
        self.state = SchedulerState.STOPPED
        logger.info("[MessageScheduler] Stopped")

    def pause(self) -> None:
        """Stop new admissions; live messages run to completion."""
        if self.state is not SchedulerState.RUNNING or self._session is None:
            logger.debug("[MessageScheduler] Pause ignored in state %s", self.state.value)
            return

        self._cancel_next_timer()
        self._session.is_paused = True
        self.state = SchedulerState.PAUSED
        logger.info("[MessageScheduler] Paused")

    def resume(self) -> None:
        """Re-arm scheduling with a fresh delay; no catch-up for paused time."""
        if self.state is not SchedulerState.PAUSED or self._session is None:
            logger.warning("[MessageScheduler] Cannot resume: no paused mode")
            return

        self._session.is_paused = False
        self.state = SchedulerState.RUNNING
        self.schedule_next()
        logger.info("[MessageScheduler] Resumed")

    def close(self) -> None:
        """Stop and forget the selection history."""
        self.stop()
        self._history.clear()
        logger.info("[MessageScheduler] Closed")

    def _teardown(self) -> None:
        self._cancel_next_timer()
        self.clear_all_messages()
        self._history.clear()
        self._session = None

    def _cancel_next_timer(self) -> None:
        if self._session is not None and self._session.next_timer_handle is not None:
            self._session.next_timer_handle.cancel()
            self._session.next_timer_handle = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule_next(self) -> None:
        """Arm the one-shot timer for the next message."""
        session = self._session
        if session is None or self.state is not SchedulerState.RUNNING:
            return

        self._cancel_next_timer()

        delay = self._rng.uniform(session.min_delay_seconds, session.max_delay_seconds)
        adjusted = delay / self.settings.animation_speed_multiplier
        self.stats.record_delay(adjusted)

        session.next_timer_handle = self._timers.call_later(
            adjusted,
            lambda: self._on_next_timer(session),
            label=f"next:{session.mode}",
        )
        logger.debug("[MessageScheduler] Next message in %.1fs", adjusted)

    def _on_next_timer(self, session: SchedulerSession) -> None:
        if session is not self._session:
            return  # stale session
        session.next_timer_handle = None
        try:
            self.show_message()
        finally:
            self.schedule_next()

    def show_message(self, forced: Optional[str] = None) -> Optional[ScheduledMessage]:
        """
        Show a message now, or park it in the side queue when at capacity.

        Args:
            forced: Text to show instead of selecting one

        Returns:
            The new ScheduledMessage, or None if nothing was shown
        """
        session = self._session
        if session is None:
            logger.warning("[MessageScheduler] Cannot show message: no active mode")
            return None

        if len(self._live) >= self.settings.max_concurrent_messages:
            self._enqueue_side(forced if forced is not None else self._select(session))
            return None

        text = forced if forced is not None else self._select(session)
        if text is None:
            logger.warning("[MessageScheduler] No message available to show")
            return None

        slot = self._allocator.allocate()
        message = ScheduledMessage(
            id=f"msg-{next(self._ids)}",
            text=text,
            category=session.content.category_of(text),
            mode=session.mode,
            created_at=self._timers.now(),
            lifetime_ms=self.message_lifetime_ms(),
            stack_slot=slot,
            offset=self._allocator.offset_for(slot),
            popup_style=session.content.popup_style,
            animation_type=session.content.animation_type,
        )

        self._live[message.id] = message
        self._cleanup_timers[message.id] = self._timers.call_later(
            message.lifetime_ms / 1000.0,
            lambda: self.cleanup(message.id),
            label=f"cleanup:{session.mode}:{message.id}",
        )
        self._history.append(text)

        self.stats.messages_shown += 1
        self.stats.last_message_time = message.created_at
        messages_shown_total.labels(mode=session.mode).inc()
        live_messages_gauge.set(len(self._live))

        logger.info(
            "[MessageScheduler] Showing %s at slot %d: '%s...'",
            message.id, slot, text[:50],
        )

        if self.on_message_show is not None:
            try:
                self.on_message_show(message)
            except Exception as e:
                self._report_error("on_message_show callback failed", e)

        return message

    def test_popup(self) -> Optional[ScheduledMessage]:
        """Show a message immediately."""
        if self._session is None:
            logger.warning("[MessageScheduler] Cannot test popup: no active mode")
            return None
        return self.show_message()

    def message_lifetime_ms(self) -> float:
        s = self.settings
        return s.base_message_duration_ms * s.accessibility_lifespan_multiplier / s.animation_speed_multiplier

    def _select(self, session: SchedulerSession) -> Optional[str]:
        return self._selector.select(session.content.messages, list(self._history))

    def _enqueue_side(self, text: Optional[str]) -> None:
        if text is None:
            return

        mode = self.current_mode or "none"
        if len(self._side_queue) >= self.settings.side_queue_capacity:
            # Already-queued candidates keep their place; the newcomer is rejected
            self.stats.messages_dropped += 1
            messages_dropped_total.labels(mode=mode, reason="side_queue_full").inc()
            logger.warning(
                "[MessageScheduler] Side queue full (%d), dropping message: '%s...'",
                len(self._side_queue), text[:50],
            )
            if self.on_message_dropped is not None:
                self.on_message_dropped(text, "side_queue_full")
            return

        self._side_queue.append(text)
        self.stats.messages_queued += 1
        logger.debug("[MessageScheduler] Message queued due to limit (queue: %d)", len(self._side_queue))

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup(self, message_id: str) -> bool:
        """
        Remove a message: cancel its timer, free its slot, drain the side queue.

        Safe to call more than once and from the UI for early dismissal.

        Returns:
            True if a live message was removed
        """
        handle = self._cleanup_timers.pop(message_id, None)
        if handle is not None:
            handle.cancel()

        message = self._live.pop(message_id, None)
        if message is not None:
            self._allocator.release(message.stack_slot)
            live_messages_gauge.set(len(self._live))
            logger.debug("[MessageScheduler] Message cleaned up: %s", message_id)

        self._process_side_queue()
        return message is not None

    def _process_side_queue(self) -> None:
        if self._side_queue and len(self._live) < self.settings.max_concurrent_messages:
            self.show_message(self._side_queue.popleft())

    def clear_all_messages(self) -> None:
        """Cancel all cleanup timers and drop every live and queued message."""
        for handle in self._cleanup_timers.values():
            handle.cancel()
        cleared = len(self._live)
        self._cleanup_timers.clear()
        self._live.clear()
        self._side_queue.clear()
        self._allocator.reset()
        live_messages_gauge.set(0)
        if cleared:
            logger.debug("[MessageScheduler] Cleared %d live messages", cleared)

    # ------------------------------------------------------------------
    # Configuration and introspection
    # ------------------------------------------------------------------

    def update_config(self, **changes: Any) -> None:
        """Replace scheduler settings fields, e.g. update_config(animation_speed_multiplier=2.0)."""
        self.settings = self.settings.updated(**changes)
        if "history_size" in changes:
            self._history = deque(self._history, maxlen=self.settings.history_size)
        logger.info("[MessageScheduler] Config updated: %s", ", ".join(sorted(changes)))

    def reload_messages(self) -> bool:
        """Reload the current mode's content from the source."""
        session = self._session
        if session is None:
            return False
        self._content_source.invalidate(session.mode)
        try:
            session.content = self._content_source.load(session.mode)
        except Exception as e:
            self._report_error(f"Failed to reload messages for {session.mode}", e)
            return False
        logger.info("[MessageScheduler] Messages reloaded for mode %s", session.mode)
        return True

    @property
    def live_messages(self) -> list[ScheduledMessage]:
        return list(self._live.values())

    @property
    def side_queue(self) -> list[str]:
        return list(self._side_queue)

    @property
    def history(self) -> list[str]:
        return list(self._history)

    @property
    def current_messages(self) -> list[str]:
        return list(self._session.content.messages) if self._session else []

    def pending_timer_count(self) -> int:
        """Armed timers owned by the scheduler (next-message + cleanup)."""
        next_timer = 1 if self._session is not None and self._session.next_timer_handle is not None else 0
        return next_timer + len(self._cleanup_timers)

    def get_status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_running": self.state is SchedulerState.RUNNING,
            "is_paused": self.state is SchedulerState.PAUSED,
            "current_mode": self.current_mode,
            "active_messages": len(self._live),
            "message_history": len(self._history),
            "stats": {
                "messages_shown": self.stats.messages_shown,
                "total_scheduled": self.stats.total_scheduled,
                "average_delay": self.stats.average_delay,
                "last_message_time": self.stats.last_message_time,
                "messages_queued": self.stats.messages_queued,
                "messages_dropped": self.stats.messages_dropped,
            },
        }

    def get_detailed_status(self) -> dict[str, Any]:
        status = self.get_status()
        status["stacking_info"] = {
            "active_message_ids": list(self._live),
            "stack_slots": {msg_id: msg.stack_slot for msg_id, msg in self._live.items()},
            "queue_length": len(self._side_queue),
            "cleanup_timers": len(self._cleanup_timers),
        }
        return status

    def _report_error(self, message: str, error: Optional[BaseException]) -> None:
        try:
            self.on_error(message, error)
        except Exception:
            logger.exception("[MessageScheduler] on_error callback failed")
