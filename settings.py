"""
Runtime settings for the command queue, retry policy and message scheduler.

Each core component takes one of these objects in its constructor; there
are no module-level instances. ``AmbientSettings.from_env()`` overlays
``AMBIENT_*`` environment variables on top of the defaults in
``constants.py``. Values are trusted as already sanitized.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from constants import (
    COMMAND_MAX_ATTEMPTS,
    COMMAND_MAX_HISTORY_SIZE,
    COMMAND_MAX_QUEUE_SIZE,
    COMMAND_MIN_EXECUTION_INTERVAL_MS,
    COMMAND_PROCESSING_DELAY_MS,
    DEFAULT_CATEGORY_WEIGHTS,
    MIX_TOTAL_MESSAGES,
    RETRY_BACKOFF_MULTIPLIER,
    RETRY_BASE_DELAY_MS,
    RETRY_JITTER_RATIO,
    RETRY_MAX_DELAY_MS,
    RETRY_MAX_RETRIES,
    RETRY_RETRYABLE_ERRORS,
    SCHEDULER_ACCESSIBILITY_LIFESPAN_MULTIPLIER,
    SCHEDULER_ANIMATION_SPEED_MULTIPLIER,
    SCHEDULER_BASE_MESSAGE_DURATION_MS,
    SCHEDULER_HISTORY_SIZE,
    SCHEDULER_MAX_CONCURRENT_MESSAGES,
    SCHEDULER_MAX_DELAY_SECONDS,
    SCHEDULER_MIN_DELAY_SECONDS,
    SCHEDULER_SIDE_QUEUE_CAPACITY,
)

ENV_PREFIX = "AMBIENT"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(f"{ENV_PREFIX}_{name}")
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(f"{ENV_PREFIX}_{name}")
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class QueueSettings:
    """Admission control and pacing for the command queue."""

    max_queue_size: int = COMMAND_MAX_QUEUE_SIZE
    max_attempts: int = COMMAND_MAX_ATTEMPTS
    min_execution_interval_ms: float = COMMAND_MIN_EXECUTION_INTERVAL_MS
    processing_delay_ms: float = COMMAND_PROCESSING_DELAY_MS
    max_history_size: int = COMMAND_MAX_HISTORY_SIZE


@dataclass(frozen=True)
class RetrySettings:
    """Backoff parameters and the transient-error allow-list."""

    max_retries: int = RETRY_MAX_RETRIES
    base_delay_ms: float = RETRY_BASE_DELAY_MS
    max_delay_ms: float = RETRY_MAX_DELAY_MS
    backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    jitter: bool = True
    jitter_ratio: float = RETRY_JITTER_RATIO
    retryable_errors: tuple[str, ...] = RETRY_RETRYABLE_ERRORS


@dataclass(frozen=True)
class SchedulerSettings:
    """Timing and concurrency limits for ambient messages."""

    min_delay_seconds: float = SCHEDULER_MIN_DELAY_SECONDS
    max_delay_seconds: float = SCHEDULER_MAX_DELAY_SECONDS
    animation_speed_multiplier: float = SCHEDULER_ANIMATION_SPEED_MULTIPLIER
    base_message_duration_ms: float = SCHEDULER_BASE_MESSAGE_DURATION_MS
    accessibility_lifespan_multiplier: float = SCHEDULER_ACCESSIBILITY_LIFESPAN_MULTIPLIER
    max_concurrent_messages: int = SCHEDULER_MAX_CONCURRENT_MESSAGES
    side_queue_capacity: int = SCHEDULER_SIDE_QUEUE_CAPACITY
    history_size: int = SCHEDULER_HISTORY_SIZE
    category_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_WEIGHTS))
    mix_total_messages: int = MIX_TOTAL_MESSAGES

    def updated(self, **changes: Any) -> SchedulerSettings:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class AmbientSettings:
    """Top-level settings bundle handed to the shell."""

    queue: QueueSettings = field(default_factory=QueueSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    content_dir: Optional[str] = None  # modes/ and master-messages/ tree; None uses the persona mappings

    @classmethod
    def from_env(cls) -> AmbientSettings:
        """
        Build settings from ``AMBIENT_*`` environment variables.

        Example: ``AMBIENT_MIN_DELAY_SECONDS=5 AMBIENT_MAX_QUEUE_SIZE=4``.
        Unset variables keep their defaults.
        """
        queue = QueueSettings(
            max_queue_size=_env_int("MAX_QUEUE_SIZE", COMMAND_MAX_QUEUE_SIZE),
            max_attempts=_env_int("MAX_ATTEMPTS", COMMAND_MAX_ATTEMPTS),
            min_execution_interval_ms=_env_float(
                "MIN_EXECUTION_INTERVAL_MS", COMMAND_MIN_EXECUTION_INTERVAL_MS
            ),
            processing_delay_ms=_env_float("PROCESSING_DELAY_MS", COMMAND_PROCESSING_DELAY_MS),
        )
        retry = RetrySettings(
            max_retries=_env_int("RETRY_MAX_RETRIES", RETRY_MAX_RETRIES),
            base_delay_ms=_env_float("RETRY_BASE_DELAY_MS", RETRY_BASE_DELAY_MS),
            max_delay_ms=_env_float("RETRY_MAX_DELAY_MS", RETRY_MAX_DELAY_MS),
        )
        scheduler = SchedulerSettings(
            min_delay_seconds=_env_float("MIN_DELAY_SECONDS", SCHEDULER_MIN_DELAY_SECONDS),
            max_delay_seconds=_env_float("MAX_DELAY_SECONDS", SCHEDULER_MAX_DELAY_SECONDS),
            animation_speed_multiplier=_env_float(
                "ANIMATION_SPEED_MULTIPLIER", SCHEDULER_ANIMATION_SPEED_MULTIPLIER
            ),
            accessibility_lifespan_multiplier=_env_float(
                "MESSAGE_LIFESPAN_MULTIPLIER", SCHEDULER_ACCESSIBILITY_LIFESPAN_MULTIPLIER
            ),
            max_concurrent_messages=_env_int(
                "MAX_CONCURRENT_MESSAGES", SCHEDULER_MAX_CONCURRENT_MESSAGES
            ),
        )
        content_dir = os.getenv(f"{ENV_PREFIX}_CONTENT_DIR", "").strip() or None
        return cls(queue=queue, retry=retry, scheduler=scheduler, content_dir=content_dir)
