"""
Logging setup for the ambient persona shell.

The shell prints ambient messages and command results on stdout, so log
records go to stderr: readable lines when used interactively, JSON lines
(python-json-logger) when AMBIENT_LOG_JSON is set and the output is shipped
to a collector.

Every module logs as ``logger.info("[Component] ...")``. The JSON formatter
lifts that bracketed prefix into a ``component`` field so records can be
filtered without parsing messages.
"""

import logging
import os
import re
import sys
from functools import partialmethod
from typing import Any, Optional, TextIO

from pythonjsonlogger import jsonlogger

from constants import LOG_FORMAT_JSON, LOG_LEVEL_DEVELOPMENT, LOG_LEVEL_PRODUCTION

_COMPONENT_PREFIX = re.compile(r"^\[(?P<component>[A-Za-z][\w.]*)\]\s*")

JSON_FIELD_NAMES = {"timestamp": "@timestamp", "level": "severity"}

# Third-party loggers that are chatty at DEBUG
QUIET_LOGGERS = ("asyncio", "sentry_sdk.errors", "urllib3")


class ContextualJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for shell records.

    Always emits ``timestamp``, ``level`` and ``logger``. Values passed via
    ``extra=`` (mode, task_id, event_type, ...) become top-level keys, and a
    leading ``[Component]`` tag in the message becomes ``component``.
    """

    def __init__(self, *args, rename_fields: Optional[dict] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.rename_fields = rename_fields or {}

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        # Fields named in the format string arrive pre-filled with None
        defaults = {"timestamp": self.formatTime(record, self.datefmt), "level": record.levelname, "logger": record.name}
        for field, value in defaults.items():
            if not log_record.get(field):
                log_record[field] = value

        message = log_record.get("message")
        if isinstance(message, str):
            match = _COMPONENT_PREFIX.match(message)
            if match:
                if not log_record.get("component"):
                    log_record["component"] = match.group("component")
                log_record["message"] = message[match.end():]

        for field, renamed in self.rename_fields.items():
            if field in log_record:
                log_record[renamed] = log_record.pop(field)


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("true", "1", "yes")


def _default_level() -> str:
    explicit = os.getenv("AMBIENT_LOG_LEVEL", "").strip()
    if explicit:
        return explicit
    env = os.getenv("ENV", "production").lower()
    return LOG_LEVEL_DEVELOPMENT if env in ("dev", "development") else LOG_LEVEL_PRODUCTION


def setup_logging(
    use_json: Optional[bool] = None,
    log_level: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Replace the root handlers with a single stream handler.

    Args:
        use_json: JSON lines if True. None reads AMBIENT_LOG_JSON, falling
                  back to LOG_FORMAT_JSON.
        log_level: Level name. None reads AMBIENT_LOG_LEVEL, then picks
                   DEBUG for ENV=dev and INFO otherwise.
        stream: Destination, stderr by default

    Returns:
        The installed handler
    """
    if use_json is None:
        use_json = _env_flag("AMBIENT_LOG_JSON", LOG_FORMAT_JSON)
    level = getattr(logging, (log_level or _default_level()).upper())

    handler = logging.StreamHandler(stream or sys.stderr)
    if use_json:
        handler.setFormatter(
            ContextualJsonFormatter("%(timestamp)s %(level)s %(logger)s %(message)s", rename_fields=JSON_FIELD_NAMES)
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S"))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return handler


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Adapter that stamps fixed context onto every record.

    Call-site ``extra`` values win over the adapter's own context.

    Usage:
        log = StructuredLoggerAdapter(logging.getLogger(__name__), {"component": "shell"})
        log = log.bind(mode="zen-monk")
        log.warning_event("message_dropped", "Ambient message dropped", reason="side_queue_full")
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **context: Any) -> "StructuredLoggerAdapter":
        """New adapter with ``context`` added; this one is left untouched."""
        return StructuredLoggerAdapter(self.logger, {**self.extra, **context})

    def log_event(self, level: int, event_type: str, message: str, **context: Any) -> None:
        """Log ``message`` with ``event_type`` and ``context`` as structured fields."""
        self.log(level, message, extra={"event_type": event_type, **context})

    debug_event = partialmethod(log_event, logging.DEBUG)
    info_event = partialmethod(log_event, logging.INFO)
    warning_event = partialmethod(log_event, logging.WARNING)
    error_event = partialmethod(log_event, logging.ERROR)
