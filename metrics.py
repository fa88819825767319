"""
Prometheus metrics instrumentation for the ambient persona shell.

This module provides metrics tracking for:
- Command executions by action and outcome
- Command retries and queue rejections
- Command queue depth and execution time
- Messages shown / dropped by mode
- Live message count
- Mode switches and switch latency

Usage:
    from metrics import track_command, track_mode_switch, live_messages_gauge

    with track_command("switch-character") as outcome:
        result = await handler(command)
        outcome["status"] = "success" if result.success else "failure"
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Generator

from prometheus_client import Counter, Gauge, Histogram

# === COUNTERS ===

commands_total = Counter(
    "ambient_commands_total",
    "Command execution attempts",
    ["action", "status"],
)

command_retries_total = Counter(
    "ambient_command_retries_total",
    "Commands re-queued at the head after a transient failure",
    ["action"],
)

queue_rejections_total = Counter(
    "ambient_queue_rejections_total",
    "Commands rejected at admission",
    ["reason"],
)

messages_shown_total = Counter(
    "ambient_messages_shown_total",
    "Ambient messages emitted to the UI",
    ["mode"],
)

messages_dropped_total = Counter(
    "ambient_messages_dropped_total",
    "Ambient message candidates rejected by the side queue",
    ["mode", "reason"],
)

mode_switches_total = Counter(
    "ambient_mode_switches_total",
    "Mode switch attempts",
    ["status"],
)

# === HISTOGRAMS ===

command_duration_seconds = Histogram(
    "ambient_command_duration_seconds",
    "Time taken by a single command execution attempt",
    ["action"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, float("inf")),
)

mode_switch_duration_seconds = Histogram(
    "ambient_mode_switch_duration_seconds",
    "Time taken to apply a mode",
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, float("inf")),
)

# === GAUGES ===

command_queue_depth_gauge = Gauge(
    "ambient_command_queue_depth",
    "Commands waiting in the queue",
)

live_messages_gauge = Gauge(
    "ambient_live_messages",
    "Ambient messages currently visible",
)

# === CONTEXT MANAGERS ===


@contextmanager
def track_command(action: str) -> Generator[dict[str, str], None, None]:
    """
    Context manager to track one command execution attempt.

    The yielded dict's "status" key is recorded as the outcome label; it
    defaults to "error" so an exception escaping the block counts as one.

    Example:
        with track_command("pause-messages") as outcome:
            ...
            outcome["status"] = "success"
    """
    outcome = {"status": "error"}
    start_time = time.perf_counter()
    try:
        yield outcome
    finally:
        duration = time.perf_counter() - start_time
        command_duration_seconds.labels(action=action).observe(duration)
        commands_total.labels(action=action, status=outcome["status"]).inc()


@contextmanager
def track_mode_switch() -> Generator[dict[str, str], None, None]:
    """Context manager to track a mode switch; same outcome convention as track_command."""
    outcome = {"status": "error"}
    start_time = time.perf_counter()
    try:
        yield outcome
    finally:
        mode_switch_duration_seconds.observe(time.perf_counter() - start_time)
        mode_switches_total.labels(status=outcome["status"]).inc()


def track_queue_rejection(reason: str) -> None:
    """Count a rejected submission (e.g., "queue_full", "invalid_input")."""
    queue_rejections_total.labels(reason=reason).inc()
