"""
Tests for CommandDispatcher, driven end to end through CommandQueue.
"""

from __future__ import annotations

import pytest

from command_handlers import CommandDispatcher
from command_parser import ParsedCommand
from command_queue import CommandQueue
from config import get_display_names, get_name_table
from mode_switch import ModeSwitchCoordinator
from settings import QueueSettings


@pytest.fixture
def cleared() -> list[bool]:
    return []


@pytest.fixture
def dispatcher(mappings, scheduler, timers, parser, cleared, ui) -> CommandDispatcher:
    coordinator = ModeSwitchCoordinator(
        get_name_table(mappings),
        get_display_names(mappings),
        scheduler,
        timers,
        on_error=ui.on_error,
    )
    return CommandDispatcher(coordinator, scheduler, parser, on_clear_terminal=lambda: cleared.append(True))


@pytest.fixture
def queue(dispatcher, fake_clock) -> CommandQueue:
    queue = CommandQueue(dispatcher, QueueSettings(), clock=fake_clock, sleep=fake_clock.sleep)
    dispatcher.attach_queue(queue)
    return queue


async def run(queue: CommandQueue, parser, text: str):
    return await queue.submit(parser.parse(text))


class TestSwitching:
    async def test_switch_command_starts_scheduler(self, queue, parser, scheduler):
        result = await run(queue, parser, "!switch beta")

        assert result.success
        assert result.message == "Switched to Mode B"
        assert scheduler.current_mode == "mode-b"

    async def test_switch_to_unknown_character(self, queue, parser):
        result = await run(queue, parser, "!switch pirate")

        assert not result.success
        assert result.error_kind == "ModeNotFound"
        assert result.message == 'Character "pirate" not found'

    async def test_characters_lists_display_names(self, queue, parser):
        await run(queue, parser, "!switch alpha")

        result = await run(queue, parser, "!characters")

        assert "Mode A (current)" in result.message
        assert "Mode B" in result.message
        assert len(result.data["characters"]) == 3


class TestMessageControl:
    async def test_pause_and_resume(self, queue, parser, scheduler):
        await run(queue, parser, "!switch alpha")

        paused = await run(queue, parser, "!pause")
        again = await run(queue, parser, "!pause")
        resumed = await run(queue, parser, "!resume")

        assert paused.message == "Message rotation paused."
        assert again.message == "Message rotation already paused."
        assert resumed.message == "Message rotation resumed."
        assert scheduler.get_status()["is_running"]

    async def test_pause_without_character_fails(self, queue, parser):
        result = await run(queue, parser, "!pause")

        assert not result.success
        assert "!switch" in result.suggestion

    async def test_test_message_shows_popup(self, queue, parser, ui):
        await run(queue, parser, "!switch alpha")

        result = await run(queue, parser, "!test")

        assert result.success
        assert result.message == "Displaying test message from Mode A..."
        assert len(ui.shown) == 1
        assert result.data["message"]["id"] == ui.shown[0].id

    async def test_test_message_without_character(self, queue, parser):
        result = await run(queue, parser, "!test")

        assert not result.success
        assert result.message == "No active character"


class TestInformational:
    async def test_help(self, queue, parser):
        result = await run(queue, parser, "!help")

        assert result.success
        assert "!switch <Character Name>" in result.message

    async def test_clear_terminal(self, queue, parser, cleared):
        result = await run(queue, parser, "!clear")

        assert result.message == "Terminal cleared."
        assert cleared == [True]

    async def test_status(self, queue, parser):
        await run(queue, parser, "!switch alpha")

        result = await run(queue, parser, "!status")

        assert "Character: Mode A" in result.message
        assert "Messages: Active" in result.message
        assert result.data["scheduler"]["current_mode"] == "mode-a"

    async def test_config(self, queue, parser):
        await run(queue, parser, "!switch alpha")

        result = await run(queue, parser, "!config")

        assert "Message lifetime: 5000ms" in result.message
        assert "Command queue: max 10, 3 attempts" in result.message

    async def test_debug_includes_queue_stats(self, queue, parser):
        await run(queue, parser, "!help")

        result = await run(queue, parser, "!debug")

        assert "Commands: 10 registered" in result.message
        assert "Active retries: none" in result.message
        assert result.data["queue"]["stats"]["total"] == 1

    async def test_unknown_action(self, dispatcher):
        result = await dispatcher(ParsedCommand(success=True, command="x", action="launch-rockets"))

        assert not result.success
        assert result.error_kind == "InvalidInput"
