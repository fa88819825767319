"""
Mode switch coordination.

Translates a free-text persona name into a mode id, applies the mode
through an external callback and restarts the message scheduler for it.
Loading state and a short switch history are kept for status reporting.
"""

from __future__ import annotations

import difflib
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from command_results import CommandResult
from constants import MODE_SWITCH_ERROR_RESET_MS, MODE_SWITCH_HISTORY_SIZE
from error_reporting import add_sentry_breadcrumb, add_sentry_context, report_error
from exceptions import AmbiguousModeError, ModeNotFoundError, ModeResolutionError
from message_scheduler import MessageScheduler
from metrics import track_mode_switch
from timers import TimerHandle, TimerService

logger = logging.getLogger(__name__)

SIMILARITY_CUTOFF = 0.4  # Below this a name is not offered as a suggestion
CONFIDENT_MATCH = 0.7  # Above this only the best match is suggested
SUGGESTION_LIMIT = 3


class LoadingState(str, Enum):
    READY = "Ready"
    SWITCHING = "Switching"
    ERROR = "Error"


@dataclass
class ModeSwitchRecord:
    """One entry of the switch history ring."""
    from_mode: Optional[str]
    to_mode: str
    timestamp: float
    duration_ms: float
    success: bool


class ModeSwitchCoordinator:
    """
    Drives persona transitions.

    Args:
        name_table: lower-case persona name -> mode id
        display_names: mode id -> display name
        scheduler: Restarted for the new mode after a successful switch
        timers: Arms the error -> ready reset timer
        on_mode_apply: Awaitable callback that applies a mode (theme, scene, ...)
        on_loading_state_change: Called with each LoadingState transition
        on_error: Called as on_error(message, error) when a switch fails
        initial_mode: Mode considered active before the first switch
        available_modes: Modes that can be switched to; defaults to display_names keys
    """

    def __init__(
        self,
        name_table: Mapping[str, str],
        display_names: Mapping[str, str],
        scheduler: MessageScheduler,
        timers: TimerService,
        *,
        on_mode_apply: Optional[Callable[[str], Awaitable[Any]]] = None,
        on_loading_state_change: Optional[Callable[[LoadingState], None]] = None,
        on_error: Callable[[str, Optional[BaseException]], None] = report_error,
        initial_mode: Optional[str] = None,
        available_modes: Optional[Sequence[str]] = None,
        error_reset_ms: float = MODE_SWITCH_ERROR_RESET_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name_table = {name.lower(): mode_id for name, mode_id in name_table.items()}
        self.display_names = dict(display_names)
        self.available_modes = list(available_modes) if available_modes is not None else list(display_names)
        self.scheduler = scheduler
        self._timers = timers
        self.on_mode_apply = on_mode_apply
        self.on_loading_state_change = on_loading_state_change
        self.on_error = on_error
        self.error_reset_ms = error_reset_ms
        self._clock = clock

        self.current_mode = initial_mode
        self.loading_state = LoadingState.READY
        self.last_switch_time: Optional[float] = None
        self.switch_history: deque[ModeSwitchRecord] = deque(maxlen=MODE_SWITCH_HISTORY_SIZE)
        self._reset_handle: Optional[TimerHandle] = None

    def display_name(self, mode_id: str) -> str:
        return self.display_names.get(mode_id, mode_id)

    def resolve(self, name: str) -> str:
        """
        Resolve a persona name to a mode id.

        Exact case-insensitive match on names and mode ids first, then
        substring matching over names. Never guesses between modes.

        Raises:
            ModeNotFoundError: No mode matches
            AmbiguousModeError: More than one mode matches
        """
        normalized = (name or "").lower().strip()
        if not normalized:
            raise ModeNotFoundError(name)

        if normalized in self.name_table:
            return self.name_table[normalized]
        if normalized in self.available_modes:
            return normalized

        matches: dict[str, None] = {}
        for known, mode_id in self.name_table.items():
            if normalized in known or known in normalized:
                matches[mode_id] = None

        if len(matches) == 1:
            return next(iter(matches))
        if matches:
            raise AmbiguousModeError(name, [self.display_name(m) for m in matches])
        raise self._not_found(name, normalized)

    def similar_names(self, normalized: str) -> list[tuple[str, float]]:
        """
        Display names of modes whose names look like ``normalized``, best first.

        Candidates are the name table, mode ids and display names. Each mode
        appears once, scored by its closest name.

        Returns:
            Up to SUGGESTION_LIMIT (display name, similarity) pairs
        """
        candidates: dict[str, str] = {}
        for known, mode_id in self.name_table.items():
            candidates.setdefault(known, mode_id)
        for mode_id in self.available_modes:
            candidates.setdefault(mode_id, mode_id)
            candidates.setdefault(self.display_name(mode_id).lower(), mode_id)

        close = difflib.get_close_matches(normalized, list(candidates), n=len(candidates), cutoff=SIMILARITY_CUTOFF)

        similar: dict[str, float] = {}
        for known in close:
            mode_id = candidates[known]
            if mode_id not in similar:
                similar[mode_id] = difflib.SequenceMatcher(None, normalized, known).ratio()
            if len(similar) == SUGGESTION_LIMIT:
                break
        return [(self.display_name(mode_id), score) for mode_id, score in similar.items()]

    def _not_found(self, name: str, normalized: str) -> ModeNotFoundError:
        similar = self.similar_names(normalized) if normalized else []
        if not similar:
            return ModeNotFoundError(name)

        names = [display for display, _ in similar]
        best, score = similar[0]
        if score > CONFIDENT_MATCH:
            suggestion = f'Did you mean "{best}"? (Type: !switch {best})'
        else:
            suggestion = f"Similar characters: {', '.join(names)}"
        return ModeNotFoundError(name, names, suggestion)

    async def switch_to(self, mode_id: str) -> CommandResult:
        """
        Apply ``mode_id`` and restart scheduling for it.

        Failures are returned as failed results; the switch is not retried.
        """
        if mode_id not in self.available_modes:
            return CommandResult.fail(
                f'Mode "{mode_id}" is not available',
                suggestion=f"Available modes: {', '.join(self.available_modes)}",
                error_kind="ModeNotFound",
            )

        display = self.display_name(mode_id)
        if self.current_mode == mode_id and self.scheduler.current_mode == mode_id:
            return CommandResult.ok(
                f"Already in {display} mode",
                action="no-change",
                data={"mode_id": mode_id, "display_name": display},
            )

        from_mode = self.current_mode
        self._cancel_reset()
        self._set_loading_state(LoadingState.SWITCHING)
        add_sentry_breadcrumb("Mode switch started", category="mode", from_mode=from_mode, to_mode=mode_id)
        started = self._clock()

        with track_mode_switch() as outcome:
            try:
                if self.on_mode_apply is not None:
                    await self.on_mode_apply(mode_id)
            except Exception as e:
                self._report_error(f"Mode switch failed: {mode_id}", e)
                return self._fail_switch(from_mode, mode_id, started, f"Failed to switch to {display}: {e}")

            # The scheduler reports its own load error through on_error
            if not self.scheduler.start(mode_id):
                logger.warning("[ModeSwitch] Scheduler did not start for %s", mode_id)
                return self._fail_switch(
                    from_mode, mode_id, started, f"Failed to switch to {display}: no messages could be loaded"
                )
            outcome["status"] = "success"

        duration_ms = (self._clock() - started) * 1000
        self.current_mode = mode_id
        self.last_switch_time = time.time()
        self._record(from_mode, mode_id, started, duration_ms, success=True)
        self._set_loading_state(LoadingState.READY)
        add_sentry_context("mode", {"current_mode": mode_id, "previous_mode": from_mode})

        logger.info("[ModeSwitch] %s -> %s completed in %.0fms", from_mode, mode_id, duration_ms)
        return CommandResult.ok(
            f"Switched to {display}",
            action="switch-character",
            data={"mode_id": mode_id, "display_name": display, "switch_time_ms": duration_ms},
        )

    async def handle_switch(self, name: str) -> CommandResult:
        """Resolve a persona name and switch to it."""
        try:
            mode_id = self.resolve(name)
        except ModeResolutionError as e:
            return CommandResult.failure(e)
        return await self.switch_to(mode_id)

    def get_available_characters(self) -> list[dict[str, Any]]:
        return [
            {"id": mode_id, "name": self.display_name(mode_id), "current": mode_id == self.current_mode}
            for mode_id in self.available_modes
        ]

    def get_status(self) -> dict[str, Any]:
        return {
            "current_character": self.display_name(self.current_mode) if self.current_mode else None,
            "current_mode": self.current_mode,
            "loading_state": self.loading_state.value,
            "last_switch_time": self.last_switch_time,
            "available_modes": list(self.available_modes),
            "switch_history": [vars(record).copy() for record in list(self.switch_history)[:3]],
        }

    def close(self) -> None:
        self._cancel_reset()

    def _fail_switch(self, from_mode: Optional[str], mode_id: str, started: float, message: str) -> CommandResult:
        """Record a failed switch, enter ERROR and arm the reset timer. current_mode is left as is."""
        duration_ms = (self._clock() - started) * 1000
        self._record(from_mode, mode_id, started, duration_ms, success=False)
        self._set_loading_state(LoadingState.ERROR)
        self._reset_handle = self._timers.call_later(
            self.error_reset_ms / 1000.0,
            self._reset_after_error,
            label="mode-switch:error-reset",
        )
        return CommandResult.fail(
            message,
            suggestion="Please try again or check if the character name is valid",
            error_kind="ExecutionFailed",
        )

    def _record(self, from_mode: Optional[str], to_mode: str, started: float, duration_ms: float, success: bool) -> None:
        self.switch_history.appendleft(
            ModeSwitchRecord(
                from_mode=from_mode,
                to_mode=to_mode,
                timestamp=started,
                duration_ms=duration_ms,
                success=success,
            )
        )

    def _set_loading_state(self, state: LoadingState) -> None:
        self.loading_state = state
        if self.on_loading_state_change is not None:
            try:
                self.on_loading_state_change(state)
            except Exception:
                logger.exception("[ModeSwitch] on_loading_state_change callback failed")

    def _reset_after_error(self) -> None:
        self._reset_handle = None
        if self.loading_state is LoadingState.ERROR:
            self._set_loading_state(LoadingState.READY)

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _report_error(self, message: str, error: BaseException) -> None:
        try:
            self.on_error(message, error)
        except Exception:
            logger.exception("[ModeSwitch] on_error callback failed")
