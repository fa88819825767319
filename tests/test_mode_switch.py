"""
Tests for ModeSwitchCoordinator: name resolution, switching and error recovery.
"""

from __future__ import annotations

import random

import pytest

from config import get_display_names, get_name_table
from exceptions import AmbiguousModeError, ModeNotFoundError
from message_content import MappingMessageSource
from message_scheduler import MessageScheduler, SchedulerState
from mode_switch import LoadingState, ModeSwitchCoordinator


class ApplyRecorder:
    """on_mode_apply stand-in that can be told to fail."""

    def __init__(self) -> None:
        self.applied: list[str] = []
        self.fail_with: BaseException | None = None

    async def __call__(self, mode: str) -> None:
        self.applied.append(mode)
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture
def apply() -> ApplyRecorder:
    return ApplyRecorder()


@pytest.fixture
def states() -> list[LoadingState]:
    return []


@pytest.fixture
def coordinator(mappings, scheduler, timers, apply, states, ui, fake_clock) -> ModeSwitchCoordinator:
    return ModeSwitchCoordinator(
        get_name_table(mappings),
        get_display_names(mappings),
        scheduler,
        timers,
        on_mode_apply=apply,
        on_loading_state_change=states.append,
        on_error=ui.on_error,
        clock=fake_clock,
    )


class TestResolve:
    """Persona name -> mode id."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Mode A", "mode-a"),
            ("  mode b ", "mode-b"),
            ("ALPHA", "mode-a"),
            ("mode-b", "mode-b"),
            ("bet", "mode-b"),
            ("mixed up", "mixed"),
        ],
    )
    def test_resolves(self, coordinator, name, expected):
        assert coordinator.resolve(name) == expected

    def test_ambiguous_name_lists_candidates(self, coordinator):
        with pytest.raises(AmbiguousModeError) as exc_info:
            coordinator.resolve("mode")

        assert set(exc_info.value.candidates) == {"Mode A", "Mode B"}
        assert "Did you mean" in exc_info.value.suggestion

    def test_unknown_name(self, coordinator):
        with pytest.raises(ModeNotFoundError):
            coordinator.resolve("pirate")
        with pytest.raises(ModeNotFoundError):
            coordinator.resolve("   ")

    def test_aliases_of_one_mode_are_not_ambiguous(self, mappings, scheduler, timers):
        coordinator = ModeSwitchCoordinator(
            {"zen monk": "zen-monk", "zen": "zen-monk", "monk": "zen-monk"},
            {"zen-monk": "Zen Monk"},
            scheduler,
            timers,
        )

        assert coordinator.resolve("zen monk please") == "zen-monk"


class TestSwitch:
    """Applying modes and restarting the scheduler."""

    async def test_successful_switch(self, coordinator, scheduler, apply, states, fake_clock):
        result = await coordinator.switch_to("mode-a")

        assert result.success
        assert result.action == "switch-character"
        assert result.data["display_name"] == "Mode A"
        assert apply.applied == ["mode-a"]
        assert states == [LoadingState.SWITCHING, LoadingState.READY]
        assert coordinator.current_mode == "mode-a"
        assert scheduler.current_mode == "mode-a"
        assert scheduler.state is SchedulerState.RUNNING

        record = coordinator.switch_history[0]
        assert (record.from_mode, record.to_mode, record.success) == (None, "mode-a", True)

    async def test_same_mode_is_no_change(self, coordinator, apply):
        await coordinator.switch_to("mode-a")

        result = await coordinator.switch_to("mode-a")

        assert result.success
        assert result.action == "no-change"
        assert apply.applied == ["mode-a"]
        assert len(coordinator.switch_history) == 1

    async def test_unavailable_mode_fails(self, coordinator, apply):
        result = await coordinator.switch_to("nope")

        assert not result.success
        assert result.error_kind == "ModeNotFound"
        assert apply.applied == []

    async def test_handle_switch_turns_resolution_errors_into_results(self, coordinator):
        ambiguous = await coordinator.handle_switch("mode")
        missing = await coordinator.handle_switch("pirate")

        assert ambiguous.error_kind == "AmbiguousMode"
        assert missing.error_kind == "ModeNotFound"
        assert missing.suggestion == "Type !characters to see available options"

    async def test_history_is_newest_first_and_bounded(self, coordinator):
        for _ in range(6):
            await coordinator.switch_to("mode-a")
            await coordinator.switch_to("mode-b")

        history = list(coordinator.switch_history)
        assert len(history) == 10
        assert history[0].to_mode == "mode-b"
        assert history[1].to_mode == "mode-a"
        assert len(coordinator.get_status()["switch_history"]) == 3

    async def test_mid_flight_switch_cleans_up_old_messages(self, coordinator, scheduler, timers):
        """Two live A messages, then switch to B."""
        await coordinator.switch_to("mode-a")
        old = [scheduler.show_message(), scheduler.show_message()]

        result = await coordinator.switch_to("mode-b")

        assert result.success
        assert scheduler.live_messages == []
        cancelled = timers.cancelled_labels()
        for message in old:
            assert f"cleanup:mode-a:{message.id}" in cancelled
        assert [t.label for t in timers.armed()] == ["next:mode-b"]

        [next_timer] = timers.armed("next:")
        timers.advance(next_timer.due - timers.now())
        assert [m.mode for m in scheduler.live_messages] == ["mode-b"]


class TestSwitchFailure:
    """Error state and automatic reset."""

    async def test_failure_sets_error_then_resets_after_two_seconds(self, coordinator, apply, states, ui, timers):
        apply.fail_with = RuntimeError("theme exploded")

        result = await coordinator.switch_to("mode-b")

        assert not result.success
        assert "theme exploded" in result.message
        assert result.error_kind == "ExecutionFailed"
        assert coordinator.loading_state is LoadingState.ERROR
        assert coordinator.current_mode is None
        assert len(ui.errors) == 1
        assert coordinator.switch_history[0].success is False

        timers.advance(1.9)
        assert coordinator.loading_state is LoadingState.ERROR
        timers.advance(0.2)
        assert coordinator.loading_state is LoadingState.READY
        assert states == [LoadingState.SWITCHING, LoadingState.ERROR, LoadingState.READY]

    async def test_failure_is_not_retried(self, coordinator, apply):
        apply.fail_with = ConnectionError("network down")

        await coordinator.switch_to("mode-b")

        assert apply.applied == ["mode-b"]

    async def test_new_switch_cancels_pending_reset(self, coordinator, apply, timers):
        apply.fail_with = RuntimeError("boom")
        await coordinator.switch_to("mode-b")
        apply.fail_with = None

        await coordinator.switch_to("mode-a")

        assert "mode-switch:error-reset" in timers.cancelled_labels()
        assert coordinator.loading_state is LoadingState.READY

    async def test_close_cancels_reset_timer(self, coordinator, apply, timers):
        apply.fail_with = RuntimeError("boom")
        await coordinator.switch_to("mode-b")

        coordinator.close()

        assert timers.armed("mode-switch:") == []


class TestStatus:
    """Character listing and status."""

    async def test_available_characters_marks_current(self, coordinator):
        await coordinator.switch_to("mode-b")

        characters = coordinator.get_available_characters()

        assert characters == [
            {"id": "mode-a", "name": "Mode A", "current": False},
            {"id": "mode-b", "name": "Mode B", "current": True},
            {"id": "mixed", "name": "Mixed", "current": False},
        ]

    async def test_status(self, coordinator):
        await coordinator.switch_to("mode-a")

        status = coordinator.get_status()

        assert status["current_character"] == "Mode A"
        assert status["loading_state"] == "Ready"
        assert status["available_modes"] == ["mode-a", "mode-b", "mixed"]


class TestSchedulerStartFailure:
    """A mode whose content cannot be loaded must not count as switched."""

    @pytest.fixture
    def broken_mappings(self, mappings) -> dict:
        modes = dict(mappings["modes"])
        modes["empty"] = {"displayName": "Empty", "names": [], "messages": []}
        return {**mappings, "modes": modes}

    @pytest.fixture
    def broken_coordinator(self, broken_mappings, timers, apply, states, ui, fake_clock) -> ModeSwitchCoordinator:
        scheduler = MessageScheduler(
            MappingMessageSource(broken_mappings),
            timers,
            on_error=ui.on_error,
            rng=random.Random(3),
        )
        return ModeSwitchCoordinator(
            get_name_table(broken_mappings),
            get_display_names(broken_mappings),
            scheduler,
            timers,
            on_mode_apply=apply,
            on_loading_state_change=states.append,
            on_error=ui.on_error,
            clock=fake_clock,
        )

    async def test_empty_mode_fails_and_keeps_previous_mode(self, broken_coordinator, states, ui, timers):
        await broken_coordinator.switch_to("mode-a")
        states.clear()

        result = await broken_coordinator.switch_to("empty")

        assert not result.success
        assert result.error_kind == "ExecutionFailed"
        assert broken_coordinator.current_mode == "mode-a"
        assert broken_coordinator.loading_state is LoadingState.ERROR
        assert broken_coordinator.switch_history[0].to_mode == "empty"
        assert broken_coordinator.switch_history[0].success is False
        assert broken_coordinator.scheduler.state is SchedulerState.STOPPED
        assert [message for message, _ in ui.errors] == ["Failed to start scheduler: invalid mode empty"]
        assert timers.armed("mode-switch:error-reset")

        timers.advance(2.1)
        assert states == [LoadingState.SWITCHING, LoadingState.ERROR, LoadingState.READY]

    async def test_previous_mode_can_be_restarted_after_failure(self, broken_coordinator, apply):
        await broken_coordinator.switch_to("mode-a")
        await broken_coordinator.switch_to("empty")

        result = await broken_coordinator.switch_to("mode-a")

        assert result.success
        assert result.action == "switch-character"
        assert apply.applied == ["mode-a", "empty", "mode-a"]
        assert broken_coordinator.scheduler.state is SchedulerState.RUNNING
        assert broken_coordinator.scheduler.current_mode == "mode-a"

    async def test_stopped_scheduler_is_restarted_for_same_mode(self, coordinator, scheduler):
        await coordinator.switch_to("mode-b")
        scheduler.stop()

        result = await coordinator.switch_to("mode-b")

        assert result.action == "switch-character"
        assert scheduler.state is SchedulerState.RUNNING


class TestNameSuggestions:
    """Unknown names get close-match suggestions but never a switch."""

    def test_close_typo_suggests_single_mode(self, coordinator):
        with pytest.raises(ModeNotFoundError) as exc_info:
            coordinator.resolve("bleta")

        error = exc_info.value
        assert error.candidates[0] == "Mode B"
        assert error.suggestion == 'Did you mean "Mode B"? (Type: !switch Mode B)'

    def test_loose_match_lists_similar_modes(self, coordinator):
        with pytest.raises(ModeNotFoundError) as exc_info:
            coordinator.resolve("moxie")

        error = exc_info.value
        assert error.candidates[0] == "Mixed"
        assert set(error.candidates) == {"Mixed", "Mode A", "Mode B"}
        assert error.suggestion == f"Similar characters: {', '.join(error.candidates)}"

    def test_unrelated_name_keeps_generic_suggestion(self, coordinator):
        with pytest.raises(ModeNotFoundError) as exc_info:
            coordinator.resolve("pirate")

        assert exc_info.value.candidates == []
        assert exc_info.value.suggestion == "Type !characters to see available options"

    async def test_typo_does_not_switch(self, coordinator, apply):
        result = await coordinator.handle_switch("bleta")

        assert not result.success
        assert result.error_kind == "ModeNotFound"
        assert "Mode B" in result.suggestion
        assert apply.applied == []
        assert coordinator.current_mode is None
