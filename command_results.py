"""
Result object returned across the command and mode-switch boundary.

Errors never escape ``CommandQueue.submit`` or ``ModeSwitchCoordinator``;
they are folded into a failed ``CommandResult`` carrying the message, the
error kind and a suggestion for the user.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from exceptions import AmbientError


@dataclass
class CommandResult:
    """
    Outcome of a command, a queue admission or a mode switch.

    Attributes:
        success: Whether the operation succeeded (or was accepted, when queued)
        message: Human-readable outcome
        action: Action that produced the result, if any
        data: Action-specific payload
        suggestion: Hint shown to the user on failure
        error_kind: Short error kind, e.g. "QueueFull", "ExecutionFailed"
        queued: True if the command was queued rather than executed
        position: 1-based queue position when queued
        attempt: Attempt that produced this result
        task_id: Queue task id, usable with CommandQueue.wait()
    """
    success: bool
    message: str = ""
    action: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    suggestion: Optional[str] = None
    error_kind: Optional[str] = None
    queued: bool = False
    position: Optional[int] = None
    attempt: int = 1
    task_id: Optional[str] = None

    @classmethod
    def ok(cls, message: str, action: Optional[str] = None, data: Optional[dict[str, Any]] = None) -> CommandResult:
        return cls(success=True, message=message, action=action, data=dict(data or {}))

    @classmethod
    def fail(
        cls,
        message: str,
        suggestion: Optional[str] = None,
        error_kind: Optional[str] = None,
        action: Optional[str] = None,
    ) -> CommandResult:
        return cls(success=False, message=message, suggestion=suggestion, error_kind=error_kind, action=action)

    @classmethod
    def failure(cls, error: BaseException, action: Optional[str] = None) -> CommandResult:
        """Fold an exception into a failed result."""
        if isinstance(error, AmbientError):
            return cls.fail(str(error), error.suggestion, error.kind, action)
        return cls.fail(str(error) or type(error).__name__, None, type(error).__name__, action)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
