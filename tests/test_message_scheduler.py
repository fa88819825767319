"""
Tests for MessageScheduler: timing, admission, cleanup and teardown.

Timers run on FakeTimerService, so every armed and cancelled timer is
visible by label ("next:<mode>" and "cleanup:<mode>:<id>").
"""

from __future__ import annotations

import random

import pytest

from message_scheduler import SchedulerState


class TestLifecycle:
    """start / pause / resume / stop."""

    def test_start_arms_one_next_timer(self, scheduler, timers):
        assert scheduler.start("mode-a")

        assert scheduler.state is SchedulerState.RUNNING
        assert scheduler.current_mode == "mode-a"
        [timer] = timers.armed("next:")
        assert timer.label == "next:mode-a"
        assert 10 <= timer.due <= 20

    def test_start_same_mode_is_noop(self, scheduler, timers):
        scheduler.start("mode-a")
        armed_before = len(timers.timers)

        assert scheduler.start("mode-a")
        assert len(timers.timers) == armed_before

    def test_start_unknown_mode_reports_error(self, scheduler, ui):
        assert not scheduler.start("missing")

        assert scheduler.state is SchedulerState.STOPPED
        assert len(ui.errors) == 1
        assert "missing" in ui.errors[0][0]

    def test_schedule_is_self_perpetuating(self, scheduler, timers, ui):
        scheduler.start("mode-a")

        timers.advance(300)

        assert len(ui.shown) >= 10
        assert len(timers.armed("next:")) == 1
        assert len(scheduler.live_messages) <= 3
        assert scheduler.stats.total_scheduled == len(ui.shown) + 1

    def test_pause_cancels_only_next_timer(self, scheduler, timers, ui):
        scheduler.start("mode-a")
        scheduler.show_message()
        scheduler.show_message()

        scheduler.pause()

        assert scheduler.state is SchedulerState.PAUSED
        assert timers.armed("next:") == []
        assert len(timers.armed("cleanup:")) == 2

        timers.advance(100)
        assert scheduler.live_messages == []
        assert len(ui.shown) == 2

    def test_resume_rearms_with_fresh_delay(self, scheduler, timers):
        scheduler.start("mode-a")
        scheduler.pause()
        timers.advance(100)

        scheduler.resume()

        [timer] = timers.armed("next:")
        assert 110 <= timer.due <= 120
        assert scheduler.state is SchedulerState.RUNNING

    def test_resume_without_pause_is_ignored(self, scheduler, timers):
        scheduler.resume()

        assert scheduler.state is SchedulerState.IDLE
        assert timers.timers == []

    def test_stop_then_start_leaves_nothing_from_old_mode(self, scheduler, timers):
        scheduler.start("mode-a")
        scheduler.show_message()
        scheduler.show_message()

        scheduler.stop()
        scheduler.start("mode-b")

        assert scheduler.live_messages == []
        assert [t for t in timers.armed() if "mode-a" in t.label] == []
        cancelled = timers.cancelled_labels()
        assert "next:mode-a" in cancelled
        assert sum(1 for label in cancelled if label.startswith("cleanup:mode-a:")) == 2
        assert [t.label for t in timers.armed()] == ["next:mode-b"]

    def test_close_clears_history(self, scheduler):
        scheduler.start("mode-a")
        scheduler.show_message()

        scheduler.close()

        assert scheduler.history == []
        assert scheduler.pending_timer_count() == 0


class TestShowMessage:
    """Admission, side queue and emitted messages."""

    def test_emits_snapshot_with_slot_and_offset(self, scheduler, ui, timers):
        scheduler.start("mode-a")

        message = scheduler.show_message()

        assert ui.shown == [message]
        assert message.id == "msg-1"
        assert message.mode == "mode-a"
        assert message.category == "mode"
        assert message.text.startswith("a-")
        assert message.stack_slot == 0
        assert message.offset.as_dict() == {"x": -10, "y": 0}
        assert message.lifetime_ms == 5000
        assert timers.armed("cleanup:")[0].label == "cleanup:mode-a:msg-1"

    def test_without_mode_shows_nothing(self, scheduler, ui):
        assert scheduler.show_message() is None
        assert scheduler.test_popup() is None
        assert ui.shown == []

    def test_concurrency_cap_and_side_queue(self, scheduler, ui):
        scheduler.start("mode-a")

        shown = [scheduler.show_message() for _ in range(3)]
        extra = [scheduler.show_message() for _ in range(5)]

        assert all(shown)
        assert extra == [None] * 5
        assert len(scheduler.live_messages) == 3
        assert len(scheduler.side_queue) == 5
        assert scheduler.stats.messages_queued == 5
        assert ui.dropped == []

    def test_side_queue_overflow_rejects_newcomer(self, scheduler, ui):
        scheduler.start("mode-a")
        for _ in range(8):
            scheduler.show_message()
        queued_before = scheduler.side_queue

        scheduler.show_message("late arrival")

        assert scheduler.side_queue == queued_before
        assert ui.dropped == [("late arrival", "side_queue_full")]
        assert scheduler.stats.messages_dropped == 1

    def test_cleanup_frees_slot_and_drains_side_queue(self, scheduler, ui):
        scheduler.start("mode-a")
        first, second, third = (scheduler.show_message() for _ in range(3))
        scheduler.show_message("waiting")

        assert scheduler.cleanup(second.id)

        assert [m.id for m in scheduler.live_messages] == [first.id, third.id, "msg-4"]
        promoted = ui.shown[-1]
        assert promoted.text == "waiting"
        assert promoted.stack_slot == 1
        assert scheduler.side_queue == []

    def test_cleanup_is_idempotent(self, scheduler):
        scheduler.start("mode-a")
        message = scheduler.show_message()

        assert scheduler.cleanup(message.id)
        assert not scheduler.cleanup(message.id)
        assert not scheduler.cleanup("msg-unknown")
        assert scheduler.live_messages == []

    def test_lifetime_timer_removes_message(self, scheduler, timers):
        scheduler.start("mode-a")
        scheduler.show_message()

        timers.advance(4.9)
        assert len(scheduler.live_messages) == 1
        timers.advance(0.2)
        assert scheduler.live_messages == []

    def test_recent_messages_are_not_repeated(self, scheduler, ui):
        scheduler.start("mode-a")

        for _ in range(40):
            message = scheduler.show_message()
            scheduler.cleanup(message.id)

        texts = [m.text for m in ui.shown]
        for i in range(5, len(texts)):
            assert texts[i] not in texts[i - 5:i]

    def test_mixed_mode_uses_master_categories(self, scheduler):
        scheduler.start("mixed")

        message = scheduler.show_message()

        assert len(scheduler.current_messages) == 12
        assert message.category in {"cliche", "other"}


class TestConfiguration:
    """Runtime config updates and status."""

    def test_lifetime_scales_with_speed_and_accessibility(self, scheduler):
        scheduler.update_config(animation_speed_multiplier=2.0, accessibility_lifespan_multiplier=1.5)

        assert scheduler.message_lifetime_ms() == 3750

    def test_delay_scales_with_animation_speed(self, scheduler, timers):
        scheduler.update_config(animation_speed_multiplier=2.0)
        scheduler.start("mode-a")

        [timer] = timers.armed("next:")
        assert 5 <= timer.due <= 10

    def test_reload_messages(self, scheduler):
        assert not scheduler.reload_messages()
        scheduler.start("mode-a")

        assert scheduler.reload_messages()
        assert len(scheduler.current_messages) == 10

    def test_detailed_status(self, scheduler):
        scheduler.start("mode-a")
        first = scheduler.show_message()
        second = scheduler.show_message()

        status = scheduler.get_detailed_status()

        assert status["state"] == "running"
        assert status["active_messages"] == 2
        assert status["stats"]["messages_shown"] == 2
        assert status["stacking_info"]["stack_slots"] == {first.id: 0, second.id: 1}
        assert status["stacking_info"]["cleanup_timers"] == 2


class TestStackSlots:
    """Live messages never share a stack slot, whatever the arrival/cleanup order."""

    def assert_slots_consistent(self, scheduler, new_messages):
        live = scheduler.live_messages
        slots = [m.stack_slot for m in live]
        assert len(slots) == len(set(slots))
        assert all(0 <= slot < scheduler.settings.max_concurrent_messages for slot in slots)
        # Each new arrival took the smallest slot that was free at the time
        live_ids = {m.id for m in live}
        for message in new_messages:
            if message.id in live_ids:
                assert set(range(message.stack_slot)) <= set(slots)

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_random_arrivals_and_cleanups(self, scheduler, timers, ui, seed):
        rng = random.Random(seed)
        scheduler.start("mode-a")
        burst = scheduler.settings.max_concurrent_messages + 2

        for _ in range(60):
            shown_before = len(ui.shown)
            op = rng.choice(["show", "burst", "cleanup", "advance"])
            if op == "show":
                scheduler.show_message()
            elif op == "burst":
                for _ in range(rng.randint(1, burst)):
                    scheduler.show_message()
            elif op == "cleanup" and scheduler.live_messages:
                scheduler.cleanup(rng.choice(scheduler.live_messages).id)
            else:
                # Several timers may fire; only uniqueness is checked
                timers.advance(rng.uniform(0.5, 6.0))
                shown_before = len(ui.shown)

            self.assert_slots_consistent(scheduler, ui.shown[shown_before:])

        assert ui.shown
