"""
Command Queue for serialized terminal command execution.

This module guarantees that user commands run one at a time, in
submission order, with a minimum gap between executions and a bounded
number of pending commands. Transient failures are retried by putting the
failing command back at the head of the queue, so it keeps its place ahead
of anything submitted later.

Key Features:
- Immediate execution when idle, FIFO queueing otherwise
- Admission control: QueueFull instead of silent drops
- Retry-by-requeue-to-head for errors RetryPolicy classifies as transient
- Rate limiting (min_execution_interval_ms) and an inter-iteration pause
- Bounded execution history for diagnostics
- Emergency clear() that cancels queued and in-flight work

Usage:
    queue = CommandQueue(dispatcher, QueueSettings())
    result = await queue.submit(parser.parse("!switch zen"))
    if result.queued:
        final = await queue.wait(result.task_id)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from command_parser import ParsedCommand
from command_results import CommandResult
from exceptions import ExecutionFailedError, InvalidInputError, NotInitializedError, QueueFullError
from metrics import command_queue_depth_gauge, command_retries_total, track_command, track_queue_rejection
from retry_policy import RetryPolicy
from settings import QueueSettings

logger = logging.getLogger(__name__)

CommandHandler = Callable[[ParsedCommand], Awaitable[CommandResult]]


@dataclass
class CommandTask:
    """A command admitted to the queue."""
    id: str
    payload: ParsedCommand
    enqueued_at: float
    attempt: int = 1
    max_attempts: int = 3
    queued: bool = False


@dataclass
class ExecutionRecord:
    """One execution attempt, kept for diagnostics."""
    command_id: str
    executed_at: float
    duration_ms: float
    success: bool
    attempt: int


class CommandQueue:
    """
    Serialized, rate-limited executor for parsed commands.

    Args:
        handler: Async callable executing one ParsedCommand and returning a
                 CommandResult. Raising an exception signals a failure that
                 may be retried; returning a failed result does not.
        settings: Queue limits and pacing
        retry_policy: Used to classify handler errors as transient
        clock: Monotonic time source in seconds
        sleep: Awaitable sleep in seconds
        on_result: Called with the final result of every queued command
    """

    def __init__(
        self,
        handler: CommandHandler,
        settings: Optional[QueueSettings] = None,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_result: Optional[Callable[[CommandResult], None]] = None,
    ) -> None:
        self._handler = handler
        self.settings = settings or QueueSettings()
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._sleep = sleep
        self.on_result = on_result

        self._pending: deque[CommandTask] = deque()
        self._futures: dict[str, asyncio.Future[CommandResult]] = {}
        self._results: OrderedDict[str, CommandResult] = OrderedDict()
        self._history: deque[ExecutionRecord] = deque(maxlen=self.settings.max_history_size)

        self._is_processing = False
        self._current_task: Optional[CommandTask] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._generation = 0
        self._last_execution_end: Optional[float] = None
        self._closed = False
        self._ids = itertools.count(1)

        logger.info(
            "[CommandQueue] Initialized (max_size=%d, max_attempts=%d, min_interval=%.0fms)",
            self.settings.max_queue_size,
            self.settings.max_attempts,
            self.settings.min_execution_interval_ms,
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def submit(self, command: Any) -> CommandResult:
        """
        Admit a parsed command.

        Executes immediately when idle and the queue is empty, returning the
        final result. Otherwise queues the command and returns
        ``{queued: True, position}``. Never raises.
        """
        if self._closed:
            track_queue_rejection("not_initialized")
            return CommandResult.failure(NotInitializedError("Command queue"))

        rejection = self._validate(command)
        if rejection is not None:
            track_queue_rejection("invalid_input")
            return rejection

        task = CommandTask(
            id=f"cmd-{next(self._ids)}",
            payload=command,
            enqueued_at=self._clock(),
            max_attempts=self.settings.max_attempts,
        )
        future: asyncio.Future[CommandResult] = asyncio.get_running_loop().create_future()
        self._futures[task.id] = future

        if not self._is_processing and not self._pending:
            logger.debug("[CommandQueue] Executing %s immediately (%s)", task.id, command.action)
            self._start_processing(task)
            return await future

        if len(self._pending) >= self.settings.max_queue_size:
            self._futures.pop(task.id, None)
            track_queue_rejection("queue_full")
            logger.warning(
                "[CommandQueue] Queue full (%d pending), rejecting %s",
                len(self._pending), command.action,
            )
            return CommandResult.failure(QueueFullError(self.settings.max_queue_size), command.action)

        task.queued = True
        self._pending.append(task)
        command_queue_depth_gauge.set(len(self._pending))
        position = len(self._pending)
        logger.info("[CommandQueue] Queued %s (%s) at position %d", task.id, command.action, position)

        return CommandResult(
            success=True,
            message=f"Command queued (position {position})",
            action=command.action,
            queued=True,
            position=position,
            task_id=task.id,
        )

    def _validate(self, command: Any) -> Optional[CommandResult]:
        if not isinstance(command, ParsedCommand):
            return CommandResult.failure(InvalidInputError("expected a parsed command"))
        if not command.success:
            return CommandResult.fail(
                command.message or "Invalid command",
                command.suggestion or InvalidInputError.suggestion,
                "InvalidInput",
            )
        if not command.action:
            return CommandResult.failure(InvalidInputError("missing action"))
        return None

    async def wait(self, task_id: str) -> CommandResult:
        """
        Wait for the final result of a submitted command.

        Raises:
            KeyError: Unknown task id, or its result has been evicted
            asyncio.CancelledError: The command was removed by clear()
        """
        if task_id in self._results:
            return self._results[task_id]
        future = self._futures.get(task_id)
        if future is None:
            raise KeyError(task_id)
        return await asyncio.shield(future)

    # ------------------------------------------------------------------
    # Execution loop
    # ------------------------------------------------------------------

    def _start_processing(self, first: CommandTask) -> None:
        self._is_processing = True
        self._current_task = first
        self._loop_task = asyncio.create_task(self._process_queue(first, self._generation))

    async def _process_queue(self, first: CommandTask, generation: int) -> None:
        """Run tasks until the queue is empty. Started only through _start_processing."""
        task = first
        try:
            while True:
                self._current_task = task
                await self._respect_rate_limit()
                result = await self._execute(task)
                if result is not None:
                    self._complete(task, result)
                self._current_task = None

                if not self._pending:
                    break
                await self._sleep(self.settings.processing_delay_ms / 1000.0)
                if not self._pending:
                    break
                task = self._pending.popleft()
                command_queue_depth_gauge.set(len(self._pending))
        finally:
            # A clear() bumps the generation and resets state itself
            if generation == self._generation:
                self._is_processing = False
                self._current_task = None
                self._loop_task = None
                logger.debug("[CommandQueue] Processing stopped")

    async def _respect_rate_limit(self) -> None:
        if self._last_execution_end is None:
            return
        elapsed_ms = (self._clock() - self._last_execution_end) * 1000
        remaining_ms = self.settings.min_execution_interval_ms - elapsed_ms
        if remaining_ms > 0:
            logger.debug("[CommandQueue] Rate limiting: waiting %.0fms", remaining_ms)
            await self._sleep(remaining_ms / 1000.0)

    async def _execute(self, task: CommandTask) -> Optional[CommandResult]:
        """
        Run one attempt of ``task``.

        Returns:
            The final result, or None if the task was re-queued for retry
        """
        action = task.payload.action or "unknown"
        started = self._clock()

        with track_command(action) as outcome:
            try:
                result = await self._handler(task.payload)
            except Exception as e:
                self._last_execution_end = self._clock()
                self._record(task, started, success=False)

                retryable = self.retry_policy.is_retryable(e)
                if retryable and task.attempt < task.max_attempts:
                    outcome["status"] = "retry"
                    task.attempt += 1
                    self._pending.appendleft(task)
                    command_queue_depth_gauge.set(len(self._pending))
                    command_retries_total.labels(action=action).inc()
                    logger.warning(
                        "[CommandQueue] %s failed (%s), retrying (attempt %d/%d)",
                        task.id, e, task.attempt, task.max_attempts,
                    )
                    return None

                reason = "max attempts exceeded" if retryable else "non-retryable error"
                logger.error(
                    "[CommandQueue] %s failed permanently after %d attempt(s): %s",
                    task.id, task.attempt, e,
                )
                final = CommandResult.failure(ExecutionFailedError(reason, task.attempt, e), action)
                final.attempt = task.attempt
                return final

            self._last_execution_end = self._clock()
            self._record(task, started, success=result.success)
            outcome["status"] = "success" if result.success else "failure"

        if not result.success:
            logger.info("[CommandQueue] %s returned failure: %s", task.id, result.message)
        result.attempt = task.attempt
        if result.action is None:
            result.action = action
        return result

    def _record(self, task: CommandTask, started: float, success: bool) -> None:
        self._history.append(
            ExecutionRecord(
                command_id=task.id,
                executed_at=started,
                duration_ms=(self._clock() - started) * 1000,
                success=success,
                attempt=task.attempt,
            )
        )

    def _complete(self, task: CommandTask, result: CommandResult) -> None:
        result.task_id = task.id
        future = self._futures.pop(task.id, None)
        if future is not None and not future.done():
            future.set_result(result)

        self._results[task.id] = result
        while len(self._results) > self.settings.max_history_size:
            self._results.popitem(last=False)

        if task.queued and self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception("[CommandQueue] on_result callback failed")

    # ------------------------------------------------------------------
    # Control and introspection
    # ------------------------------------------------------------------

    def clear(self) -> int:
        """
        Emergency stop.

        Queued commands are never executed and their waiters are cancelled.
        The in-flight command is cancelled and its caller receives a failed
        result. Returns the number of queued commands dropped.
        """
        dropped = len(self._pending)
        for task in self._pending:
            future = self._futures.pop(task.id, None)
            if future is not None and not future.done():
                future.cancel()
        self._pending.clear()

        current = self._current_task
        if current is not None:
            future = self._futures.pop(current.id, None)
            if future is not None and not future.done():
                future.set_result(
                    CommandResult.failure(ExecutionFailedError("cancelled", current.attempt), current.payload.action)
                )

        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()

        self._generation += 1
        self._loop_task = None
        self._current_task = None
        self._is_processing = False
        command_queue_depth_gauge.set(0)

        logger.info("[CommandQueue] Cleared (%d queued commands dropped)", dropped)
        return dropped

    def close(self) -> None:
        """Clear the queue and refuse further submissions."""
        self.clear()
        self._history.clear()
        self._results.clear()
        self._closed = True
        logger.info("[CommandQueue] Closed")

    @property
    def depth(self) -> int:
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._is_processing

    @property
    def history(self) -> list[ExecutionRecord]:
        return list(self._history)

    def get_stats(self) -> dict[str, Any]:
        total = len(self._history)
        successful = sum(1 for record in self._history if record.success)
        failed = total - successful
        avg_duration = sum(record.duration_ms for record in self._history) / total if total else 0.0
        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "success_rate_pct": round(successful / total * 100, 1) if total else 0.0,
            "avg_duration_ms": round(avg_duration, 1),
        }

    def get_queue_status(self) -> dict[str, Any]:
        return {
            "length": len(self._pending),
            "max_size": self.settings.max_queue_size,
            "is_processing": self._is_processing,
            "current_task_id": self._current_task.id if self._current_task else None,
        }
