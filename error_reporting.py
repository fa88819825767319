"""
Sentry error reporting.

Sentry is optional: without SENTRY_DSN every function here is a cheap
no-op apart from logging. ``report_error`` is the default ``on_error``
callback for the scheduler and the mode switch coordinator.
"""

from __future__ import annotations

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

from constants import SENTRY_DSN, SENTRY_ENVIRONMENT, SENTRY_TRACES_SAMPLE_RATE
from exceptions import InvalidInputError, ModeResolutionError, QueueFullError

logger = logging.getLogger(__name__)

# User-facing errors that are part of normal operation
EXPECTED_ERRORS: tuple[type[BaseException], ...] = (
    InvalidInputError,
    QueueFullError,
    ModeResolutionError,
)


def before_send(event: dict[str, Any], hint: dict[str, Any]) -> dict[str, Any] | None:
    """Drop events caused by expected, user-facing errors."""
    exc_info = hint.get("exc_info")
    if exc_info and isinstance(exc_info[1], EXPECTED_ERRORS):
        return None
    return event


def init_sentry(dsn: str | None = SENTRY_DSN) -> bool:
    """
    Initialize Sentry if a DSN is configured.

    Returns:
        True if Sentry was initialized
    """
    if not dsn:
        logger.info("[Sentry] SENTRY_DSN not set, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=SENTRY_ENVIRONMENT,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        before_send=before_send,
    )
    logger.info("[Sentry] Initialized (environment=%s)", SENTRY_ENVIRONMENT)
    return True


def add_sentry_context(name: str, data: dict[str, Any]) -> None:
    """Attach structured context (e.g., current mode) to future events."""
    sentry_sdk.set_context(name, data)


def add_sentry_breadcrumb(message: str, category: str = "ambient", **data: Any) -> None:
    """Record a breadcrumb for key events (mode switch, queue rejection)."""
    sentry_sdk.add_breadcrumb(message=message, category=category, data=data, level="info")


def report_error(message: str, error: BaseException | None = None) -> None:
    """
    Log an error and forward it to Sentry.

    Args:
        message: Human-readable description of what failed
        error: The underlying exception, if any
    """
    logger.error("%s: %s", message, error, exc_info=error)
    if error is not None:
        sentry_sdk.capture_exception(error)
    else:
        sentry_sdk.capture_message(message, level="error")
