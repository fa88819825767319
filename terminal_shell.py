"""
Interactive terminal front end for the ambient persona shell.

Wires settings, persona content, timers, the message scheduler, the mode
switch coordinator, the retry policy, the command queue and the dispatcher
together, then reads ``!commands`` from stdin and prints ambient messages
with their stack offsets as they appear.

Run:
    ambient-shell            # or: python terminal_shell.py
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Callable, Coroutine, Optional, TextIO

from dotenv import load_dotenv

from command_handlers import CommandDispatcher
from command_parser import CommandParser
from command_queue import CommandQueue
from command_results import CommandResult
from config import get_available_modes, get_display_names, get_name_table, load_persona_mappings
from constants import DEFAULT_MODE
from error_reporting import init_sentry
from logging_config import StructuredLoggerAdapter, setup_logging
from message_content import DirectoryMessageSource, MappingMessageSource, MessageSource
from message_scheduler import MessageScheduler, ScheduledMessage
from message_selector import MessageSelector
from mode_switch import LoadingState, ModeSwitchCoordinator
from retry_policy import RetryPolicy
from settings import AmbientSettings
from timers import LoopTimerService, TimerService

logger = logging.getLogger(__name__)

EXIT_WORDS = frozenset({"exit", "quit", "!exit", "!quit"})
SHUTDOWN_GRACE_SECONDS = 5.0  # In-flight commands get this long to finish on exit


class AmbientShell:
    """
    Composition root: owns one instance of every core component.

    Args:
        settings: Queue, retry and scheduler settings
        mappings: Persona mappings (see config/persona_mappings.json)
        content_source: Overrides the mappings-backed content source
        timers: Overrides the event-loop timer service
        output: Stream the shell prints to
    """

    def __init__(
        self,
        settings: Optional[AmbientSettings] = None,
        mappings: Optional[dict[str, Any]] = None,
        *,
        content_source: Optional[MessageSource] = None,
        timers: Optional[TimerService] = None,
        output: TextIO = sys.stdout,
    ) -> None:
        self.settings = settings or AmbientSettings()
        self.mappings = mappings if mappings is not None else load_persona_mappings()
        self.output = output
        self.terminal_history: list[str] = []
        self.log = StructuredLoggerAdapter(logger, {"component": "shell"})
        self._background_tasks: set[asyncio.Task] = set()

        selector = MessageSelector()
        self.content_source = content_source or self._build_content_source(selector)
        self.timers = timers or LoopTimerService()
        self.retry_policy = RetryPolicy(self.settings.retry)

        self.scheduler = MessageScheduler(
            self.content_source,
            self.timers,
            self.settings.scheduler,
            selector=selector,
            on_message_show=self._print_message,
            on_message_dropped=self._on_message_dropped,
        )
        self.coordinator = ModeSwitchCoordinator(
            get_name_table(self.mappings),
            get_display_names(self.mappings),
            self.scheduler,
            self.timers,
            on_mode_apply=self._apply_mode_with_retry,
            on_loading_state_change=self._on_loading_state_change,
            available_modes=get_available_modes(self.mappings),
        )
        self.parser = CommandParser()
        self.dispatcher = CommandDispatcher(
            self.coordinator,
            self.scheduler,
            self.parser,
            on_clear_terminal=self.terminal_history.clear,
        )
        self.queue = CommandQueue(
            self.dispatcher,
            self.settings.queue,
            retry_policy=self.retry_policy,
            on_result=self._print_result,
        )
        self.dispatcher.attach_queue(self.queue)

    @classmethod
    def from_env(cls, **kwargs: Any) -> AmbientShell:
        return cls(AmbientSettings.from_env(), **kwargs)

    def _build_content_source(self, selector: MessageSelector) -> MessageSource:
        content_dir = self.settings.content_dir
        if content_dir:
            logger.info("[AmbientShell] Loading mode content from %s", content_dir)
            return DirectoryMessageSource(content_dir, selector=selector, settings=self.settings.scheduler)
        return MappingMessageSource(self.mappings, selector=selector, settings=self.settings.scheduler)

    # === Mode application ===

    async def _apply_mode_with_retry(self, mode: str) -> None:
        await self.retry_policy.execute_with_retry(f"mode-apply:{mode}", lambda: self._apply_mode(mode))

    async def _apply_mode(self, mode: str) -> None:
        # Loading the content up front surfaces broken modes before the old one is torn down
        content = self.content_source.load(mode)
        self.log = self.log.bind(mode=mode)
        self.log.info_event("mode_applied", f"Applied mode {mode}", message_count=len(content.messages))
        self._write(f"[ {self.coordinator.display_name(mode)} | style={content.popup_style} ]")

    def _on_loading_state_change(self, state: LoadingState) -> None:
        if state is not LoadingState.READY:
            self._write(f"[ {state.value}... ]")

    # === Output ===

    def _write(self, line: str) -> None:
        print(line, file=self.output, flush=True)

    def _print_message(self, message: ScheduledMessage) -> None:
        offset = message.offset
        indent = " " * max(0, 10 + offset.x // 2)
        self._write(f"{indent}({offset.x:+d},{offset.y}) {message.text}")

    def _on_message_dropped(self, text: str, reason: str) -> None:
        self.log.warning_event("message_dropped", "Ambient message dropped", reason=reason, preview=text[:50])

    def _print_result(self, result: CommandResult) -> None:
        prefix = "" if result.success else "Error: "
        self._write(f"{prefix}{result.message}")
        if result.suggestion and not result.success:
            self._write(f"  {result.suggestion}")

    # === Commands ===

    async def handle_line(self, line: str) -> CommandResult:
        """Parse, submit and print the outcome of one input line."""
        self.terminal_history.append(line)
        result = await self.queue.submit(self.parser.parse(line))
        self._print_result(result)
        return result

    def _create_tracked_task(self, coro: Coroutine[Any, Any, Any], name: str = "unknown") -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)

        def _task_done_callback(t: asyncio.Task) -> None:
            self._background_tasks.discard(t)
            try:
                t.result()
            except asyncio.CancelledError:
                logger.debug("[AmbientShell] Task '%s' was cancelled", name)
            except Exception as e:
                logger.error("[AmbientShell] Task '%s' failed: %s", name, e, exc_info=True)

        task.add_done_callback(_task_done_callback)
        return task

    async def _cleanup_background_tasks(self) -> None:
        if not self._background_tasks:
            return
        for task in self._background_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

    # === Lifecycle ===

    async def start(self, mode: str = DEFAULT_MODE) -> CommandResult:
        result = await self.coordinator.switch_to(mode)
        self._print_result(result)
        return result

    async def close(self) -> None:
        self.queue.close()
        self.coordinator.close()
        self.scheduler.close()
        self.retry_policy.cancel_all()
        await self._cleanup_background_tasks()
        logger.info("[AmbientShell] Closed")

    async def run(self, readline: Optional[Callable[[], str]] = None) -> None:
        """Read commands until EOF or an exit word."""
        readline = readline or sys.stdin.readline
        loop = asyncio.get_running_loop()

        self._write("Ambient persona shell. Type !help for commands, 'exit' to quit.")
        await self.start()

        try:
            while True:
                line = await loop.run_in_executor(None, readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                if line.lower() in EXIT_WORDS:
                    break
                self._create_tracked_task(self.handle_line(line), name=f"command:{line[:20]}")

            if self._background_tasks:
                await asyncio.wait(set(self._background_tasks), timeout=SHUTDOWN_GRACE_SECONDS)
        finally:
            await self.close()


def main() -> None:
    """Console entry point."""
    load_dotenv()
    setup_logging()
    init_sentry()

    logger.info("=" * 60)
    logger.info("Ambient Persona Shell")
    logger.info("=" * 60)

    try:
        asyncio.run(AmbientShell.from_env().run())
    except KeyboardInterrupt:
        logger.info("[AmbientShell] Interrupted")


if __name__ == "__main__":
    main()
