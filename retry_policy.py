"""
Retry policy with exponential backoff and jitter.

Decides, for any keyed operation, whether another attempt should be made
and how long to wait before it. Used by the command queue to classify
failures and by the shell to retry mode application.

Key Features:
- Transient vs permanent error classification from an allow-list
- Exponential backoff capped at max_delay, with ±25% jitter
- One retry loop per operation key at a time
- Cancellation that only drops bookkeeping
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from exceptions import (
    AlreadyRetryingError,
    ExecutionFailedError,
    InvalidInputError,
    PermanentError,
    TransientError,
)
from settings import RetrySettings

logger = logging.getLogger(__name__)

# Always retried
TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientError,
    TimeoutError,
    ConnectionError,
)

# Never retried, whatever their message says
NON_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    PermanentError,
    InvalidInputError,
    SyntaxError,
    ValueError,
    TypeError,
)


@dataclass
class RetryState:
    """Bookkeeping for one operation key."""
    attempts: int = 0
    last_delay_ms: float = 0.0


class RetryPolicy:
    """
    Backoff calculator and keyed retry loop.

    Usage:
        policy = RetryPolicy(RetrySettings(max_retries=2))
        module = await policy.execute_with_retry("mode-apply:zen-monk", apply)
    """

    def __init__(
        self,
        settings: Optional[RetrySettings] = None,
        *,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or RetrySettings()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._states: dict[str, RetryState] = {}
        self._active: set[str] = set()

    def is_retryable(self, error: BaseException | None) -> bool:
        """
        Classify an error as transient (retryable) or permanent.

        Matches the error's message and class name, case-insensitively,
        against the configured allow-list.
        """
        if error is None:
            return False
        if isinstance(error, TRANSIENT_TYPES):
            return True
        if isinstance(error, NON_RETRYABLE_TYPES):
            return False

        message = str(error).lower()
        name = type(error).__name__.lower()
        return any(
            pattern.lower() in message or pattern.lower() in name
            for pattern in self.settings.retryable_errors
        )

    def next_delay(self, attempt: int) -> float:
        """
        Backoff delay in milliseconds before the retry following ``attempt``.

        Args:
            attempt: 1-based attempt number that just failed
        """
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")

        s = self.settings
        delay = s.base_delay_ms * s.backoff_multiplier ** (attempt - 1)
        capped = min(delay, s.max_delay_ms)

        if s.jitter:
            jitter_range = capped * s.jitter_ratio
            jitter = (self._rng.random() - 0.5) * 2 * jitter_range
            return max(0.0, capped + jitter)
        return capped

    async def execute_with_retry(
        self,
        key: str,
        operation: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Run ``operation`` until it succeeds, fails permanently or runs out of retries.

        Args:
            key: Logical operation key; only one loop per key may run at a time
            operation: Zero-argument coroutine factory

        Returns:
            Whatever ``operation`` returns

        Raises:
            AlreadyRetryingError: A loop for ``key`` is already in flight
            ExecutionFailedError: Permanent error, retries exhausted or cancelled
        """
        if key in self._active:
            raise AlreadyRetryingError(key)

        self._active.add(key)
        state = self._states.setdefault(key, RetryState())
        max_attempts = self.settings.max_retries + 1

        try:
            while True:
                state.attempts += 1
                logger.debug(
                    "[RetryPolicy] Executing %s (attempt %d/%d)",
                    key, state.attempts, max_attempts,
                )
                try:
                    result = await operation()
                except Exception as e:
                    attempts = state.attempts
                    if attempts < max_attempts and self.is_retryable(e):
                        delay_ms = self.next_delay(attempts)
                        state.last_delay_ms = delay_ms
                        logger.info(
                            "[RetryPolicy] %s failed on attempt %d (%s), retrying in %.0fms",
                            key, attempts, e, delay_ms,
                        )
                        await self._sleep(delay_ms / 1000.0)
                        if self._states.get(key) is not state:
                            raise ExecutionFailedError("cancelled", attempts, e) from e
                        continue

                    reason = "max retries exceeded" if attempts >= max_attempts else "non-retryable error"
                    logger.warning(
                        "[RetryPolicy] %s failed permanently after %d attempt(s) (%s)",
                        key, attempts, reason,
                    )
                    raise ExecutionFailedError(reason, attempts, e) from e

                logger.debug("[RetryPolicy] %s succeeded after %d attempt(s)", key, state.attempts)
                return result
        finally:
            # Only clean up if the key was not cancelled and re-acquired meanwhile
            if self._states.get(key) is state:
                self._states.pop(key, None)
                self._active.discard(key)

    def get_retry_stats(self, key: str) -> dict[str, Any]:
        state = self._states.get(key)
        return {
            "current_attempts": state.attempts if state else 0,
            "last_delay_ms": state.last_delay_ms if state else 0.0,
            "max_retries": self.settings.max_retries,
            "is_active": key in self._active,
        }

    def active_keys(self) -> list[str]:
        return sorted(self._active)

    def cancel(self, key: str) -> bool:
        """Drop bookkeeping for one key. Returns True if it was active."""
        if key in self._active:
            logger.info("[RetryPolicy] Cancelling retry operation: %s", key)
            self._active.discard(key)
            self._states.pop(key, None)
            return True
        return False

    def cancel_all(self) -> None:
        """Drop all bookkeeping; in-flight loops stop after their current attempt."""
        if self._active:
            logger.info("[RetryPolicy] Cancelling %d active retry operations", len(self._active))
        self._active.clear()
        self._states.clear()
