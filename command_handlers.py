"""
Command dispatch.

Maps the action of a ParsedCommand onto the mode switch coordinator, the
message scheduler and the command queue, and formats the text shown to
the user for informational commands. An instance is the handler passed
to CommandQueue.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from command_parser import CommandParser, ParsedCommand
from command_results import CommandResult
from exceptions import InvalidInputError
from message_scheduler import MessageScheduler, SchedulerState
from mode_switch import ModeSwitchCoordinator

if TYPE_CHECKING:
    from command_queue import CommandQueue

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """
    Executes parsed commands.

    Args:
        coordinator: Resolves and applies persona switches
        scheduler: Ambient message scheduler
        parser: Supplies help text and the command registry
        on_clear_terminal: Called for !clear to wipe the terminal history
    """

    def __init__(
        self,
        coordinator: ModeSwitchCoordinator,
        scheduler: MessageScheduler,
        parser: Optional[CommandParser] = None,
        *,
        on_clear_terminal: Optional[Callable[[], None]] = None,
    ) -> None:
        self.coordinator = coordinator
        self.scheduler = scheduler
        self.parser = parser or CommandParser()
        self.on_clear_terminal = on_clear_terminal
        self.queue: Optional[CommandQueue] = None

        self._handlers: dict[str, Callable[[ParsedCommand], Awaitable[CommandResult]]] = {
            "display-help": self._help,
            "switch-character": self._switch,
            "list-characters": self._characters,
            "show-status": self._status,
            "pause-messages": self._pause,
            "resume-messages": self._resume,
            "test-message": self._test,
            "clear-terminal": self._clear,
            "show-config": self._config,
            "show-debug": self._debug,
        }

    def attach_queue(self, queue: CommandQueue) -> None:
        """Give !debug access to the queue that calls this dispatcher."""
        self.queue = queue

    async def __call__(self, command: ParsedCommand) -> CommandResult:
        handler = self._handlers.get(command.action or "")
        if handler is None:
            logger.warning("[CommandDispatcher] No handler for action %s", command.action)
            return CommandResult.failure(InvalidInputError(f"unsupported action {command.action}"), command.action)
        logger.debug("[CommandDispatcher] Dispatching %s", command.action)
        return await handler(command)

    def _current_display_name(self) -> str:
        mode = self.coordinator.current_mode
        return self.coordinator.display_name(mode) if mode else "None"

    def _message_status(self) -> str:
        return {
            SchedulerState.RUNNING: "Active",
            SchedulerState.PAUSED: "Paused",
            SchedulerState.STOPPED: "Stopped",
            SchedulerState.IDLE: "Idle",
        }[self.scheduler.state]

    # === Handlers ===

    async def _help(self, command: ParsedCommand) -> CommandResult:
        return CommandResult.ok(self.parser.help_text(), action=command.action)

    async def _switch(self, command: ParsedCommand) -> CommandResult:
        name = command.data.get("character_name") or " ".join(command.args)
        return await self.coordinator.handle_switch(name)

    async def _characters(self, command: ParsedCommand) -> CommandResult:
        characters = self.coordinator.get_available_characters()
        lines = [f"  {c['name']}{' (current)' if c['current'] else ''}" for c in characters]
        message = "Available Characters:\n" + "\n".join(lines) + "\n\nUsage: !switch <Character Name>"
        return CommandResult.ok(message, action=command.action, data={"characters": characters})

    async def _status(self, command: ParsedCommand) -> CommandResult:
        switch_status = self.coordinator.get_status()
        scheduler_status = self.scheduler.get_status()
        message = "\n".join([
            "Current Status:",
            f"Character: {self._current_display_name()}",
            f"Messages: {self._message_status()}",
            f"Active messages: {scheduler_status['active_messages']}",
            f"Loading: {switch_status['loading_state']}",
        ])
        return CommandResult.ok(
            message,
            action=command.action,
            data={"mode_switch": switch_status, "scheduler": scheduler_status},
        )

    async def _pause(self, command: ParsedCommand) -> CommandResult:
        if self.scheduler.state is SchedulerState.PAUSED:
            return CommandResult.ok("Message rotation already paused.", action=command.action)
        if self.scheduler.state is not SchedulerState.RUNNING:
            return CommandResult.fail(
                "No message rotation to pause",
                "Switch to a character first (e.g., !switch Zen Monk)",
                action=command.action,
            )
        self.scheduler.pause()
        return CommandResult.ok("Message rotation paused.", action=command.action)

    async def _resume(self, command: ParsedCommand) -> CommandResult:
        if self.scheduler.state is SchedulerState.RUNNING:
            return CommandResult.ok("Message rotation already running.", action=command.action)
        if self.scheduler.state is not SchedulerState.PAUSED:
            return CommandResult.fail(
                "No paused message rotation to resume",
                "Switch to a character first (e.g., !switch Zen Monk)",
                action=command.action,
            )
        self.scheduler.resume()
        return CommandResult.ok("Message rotation resumed.", action=command.action)

    async def _test(self, command: ParsedCommand) -> CommandResult:
        message = self.scheduler.test_popup()
        if message is None:
            if self.scheduler.current_mode is None:
                return CommandResult.fail(
                    "No active character",
                    "Switch to a character first (e.g., !switch Zen Monk)",
                    action=command.action,
                )
            return CommandResult.ok(
                "Too many messages on screen, test message queued.",
                action=command.action,
            )
        return CommandResult.ok(
            f"Displaying test message from {self._current_display_name()}...",
            action=command.action,
            data={"message": message.snapshot()},
        )

    async def _clear(self, command: ParsedCommand) -> CommandResult:
        if self.on_clear_terminal is not None:
            self.on_clear_terminal()
        return CommandResult.ok("Terminal cleared.", action=command.action)

    async def _config(self, command: ParsedCommand) -> CommandResult:
        s = self.scheduler.settings
        lines = [
            "Current Configuration:",
            f"Character: {self._current_display_name()}",
            f"Messages: {self._message_status()}",
            f"Delay range: {s.min_delay_seconds:g}-{s.max_delay_seconds:g}s",
            f"Animation speed: {s.animation_speed_multiplier:g}x",
            f"Message lifetime: {self.scheduler.message_lifetime_ms():.0f}ms",
            f"Max concurrent messages: {s.max_concurrent_messages}",
        ]
        if self.queue is not None:
            q = self.queue.settings
            lines.append(f"Command queue: max {q.max_queue_size}, {q.max_attempts} attempts")
        return CommandResult.ok("\n".join(lines), action=command.action)

    async def _debug(self, command: ParsedCommand) -> CommandResult:
        detailed = self.scheduler.get_detailed_status()
        data = {"scheduler": detailed, "mode_switch": self.coordinator.get_status()}
        lines = [
            "Debug Information:",
            f"Commands: {len(self.parser.available_commands)} registered",
            f"Characters: {len(self.coordinator.available_modes)} available",
            f"Scheduler: {detailed['state']} ({detailed['stats']['messages_shown']} shown, "
            f"{detailed['stats']['messages_dropped']} dropped)",
            f"Stack slots: {detailed['stacking_info']['stack_slots']}",
        ]
        if self.queue is not None:
            queue_status = self.queue.get_queue_status()
            stats = self.queue.get_stats()
            data["queue"] = {"status": queue_status, "stats": stats}
            lines.append(
                f"Queue: {queue_status['length']}/{queue_status['max_size']} pending, "
                f"{stats['total']} executed, {stats['success_rate_pct']}% success"
            )
            active = self.queue.retry_policy.active_keys()
            lines.append(f"Active retries: {', '.join(active) if active else 'none'}")
        return CommandResult.ok("\n".join(lines), action=command.action, data=data)
