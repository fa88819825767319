"""
Project-wide constants.

Centralizes magic numbers and configuration defaults for maintainability.
"""

from __future__ import annotations

import os
from typing import Final

# =============================================================================
# Command Queue
# =============================================================================
COMMAND_MAX_QUEUE_SIZE: Final[int] = 10
COMMAND_MAX_ATTEMPTS: Final[int] = 3  # 1 initial attempt + 2 retries
COMMAND_MIN_EXECUTION_INTERVAL_MS: Final[float] = 50.0  # Rate limit between executions
COMMAND_PROCESSING_DELAY_MS: Final[float] = 100.0  # Pause between queue iterations
COMMAND_MAX_HISTORY_SIZE: Final[int] = 50
COMMAND_MAX_INPUT_LENGTH: Final[int] = 100

# =============================================================================
# Retry Policy
# =============================================================================
RETRY_MAX_RETRIES: Final[int] = 3
RETRY_BASE_DELAY_MS: Final[float] = 1000.0
RETRY_MAX_DELAY_MS: Final[float] = 10000.0
RETRY_BACKOFF_MULTIPLIER: Final[float] = 2.0
RETRY_JITTER_RATIO: Final[float] = 0.25  # ±25% symmetric jitter
RETRY_RETRYABLE_ERRORS: Final[tuple[str, ...]] = (
    "NetworkError",
    "TimeoutError",
    "ConnectionError",
    "Loading chunk",
    "Failed to fetch",
    "ERR_NETWORK",
    "ERR_INTERNET_DISCONNECTED",
    "ChunkLoadError",
    "Module not found",
    "timeout",
)

# =============================================================================
# Message Scheduler - Timing
# =============================================================================
SCHEDULER_MIN_DELAY_SECONDS: Final[float] = 15.0
SCHEDULER_MAX_DELAY_SECONDS: Final[float] = 45.0
SCHEDULER_ANIMATION_SPEED_MULTIPLIER: Final[float] = 1.0
SCHEDULER_BASE_MESSAGE_DURATION_MS: Final[float] = 5000.0
SCHEDULER_ACCESSIBILITY_LIFESPAN_MULTIPLIER: Final[float] = 1.0

# =============================================================================
# Message Scheduler - Admission
# =============================================================================
SCHEDULER_MAX_CONCURRENT_MESSAGES: Final[int] = 3
SCHEDULER_SIDE_QUEUE_CAPACITY: Final[int] = 5
SCHEDULER_HISTORY_SIZE: Final[int] = 10

# =============================================================================
# Message Selection
# =============================================================================
SELECTOR_RECENT_WINDOW: Final[int] = 5  # Upper bound on recent messages excluded
MIX_TOTAL_MESSAGES: Final[int] = 25  # Target pool size when mixing categories
DEFAULT_CATEGORY_WEIGHTS: Final[dict[str, float]] = {
    "cliche": 0.6,
    "exaggeration": 0.2,
    "other": 0.2,
}

# =============================================================================
# Stack Layout
# =============================================================================
STACK_BASE_OFFSET: Final[int] = 60  # Vertical pixels between stacked messages
STACK_HORIZONTAL_VARIATION: Final[int] = 20

# =============================================================================
# Mode Switching
# =============================================================================
MODE_SWITCH_HISTORY_SIZE: Final[int] = 10
MODE_SWITCH_ERROR_RESET_MS: Final[float] = 2000.0
DEFAULT_MODE: Final[str] = "corporate-ai"

# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL_PRODUCTION: Final[str] = "INFO"
LOG_LEVEL_DEVELOPMENT: Final[str] = "DEBUG"
LOG_FORMAT_JSON: Final[bool] = False  # Console shell defaults to readable output

# =============================================================================
# Sentry Error Tracking Configuration
# =============================================================================
# Read from environment variable (optional - Sentry disabled if not set)
SENTRY_DSN: Final[str | None] = os.getenv("SENTRY_DSN")
SENTRY_ENVIRONMENT: Final[str] = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE: Final[float] = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))
