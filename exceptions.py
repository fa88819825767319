"""
Custom exceptions for the ambient persona shell.

Provides specific exception types for admission control, retries and
mode resolution. Errors carry an optional ``suggestion`` that is shown to
the user next to the message.
"""

from __future__ import annotations


class AmbientError(Exception):
    """Base exception for all ambient shell errors."""

    suggestion: str | None = None

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        super().__init__(message)
        if suggestion is not None:
            self.suggestion = suggestion

    @property
    def kind(self) -> str:
        """Short error kind used in results, logs and metrics."""
        return type(self).__name__.removesuffix("Error")


class InvalidInputError(AmbientError):
    """Raised when a command is malformed."""

    suggestion = "Type !help for available commands"

    def __init__(self, reason: str, suggestion: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"Invalid command: {reason}", suggestion)


class QueueFullError(AmbientError):
    """Raised when the command queue is at capacity."""

    suggestion = "Please wait for current commands to complete before entering new ones"

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        super().__init__(f"Command queue is full ({max_size} pending)")


class ExecutionFailedError(AmbientError):
    """Raised when an operation failed permanently or exhausted its retries."""

    suggestion = "Please try again or check system status"

    def __init__(self, reason: str, attempts: int = 1, original: BaseException | None = None) -> None:
        self.reason = reason
        self.attempts = attempts
        self.original = original
        detail = f": {original}" if original is not None else ""
        super().__init__(f"Execution failed after {attempts} attempt(s) ({reason}){detail}")


class NotInitializedError(AmbientError):
    """Raised when a component is used after it was closed."""

    suggestion = "Restart the shell and try again"

    def __init__(self, component: str) -> None:
        self.component = component
        super().__init__(f"{component} not initialized")


class ModeResolutionError(AmbientError):
    """Base exception for persona name resolution errors."""

    pass


class ModeNotFoundError(ModeResolutionError):
    """Raised when a persona name matches no mode."""

    suggestion = "Type !characters to see available options"

    def __init__(self, name: str, candidates: list[str] | None = None, suggestion: str | None = None) -> None:
        self.name = name
        self.candidates = list(candidates or [])
        super().__init__(f'Character "{name}" not found', suggestion)


class AmbiguousModeError(ModeResolutionError):
    """Raised when a persona name matches more than one mode."""

    def __init__(self, name: str, candidates: list[str]) -> None:
        self.name = name
        self.candidates = candidates
        super().__init__(
            f'Multiple matches found for "{name}"',
            f"Did you mean: {', '.join(candidates[:3])}?",
        )


class AlreadyRetryingError(AmbientError):
    """Raised when a retry loop for the same key is already in flight."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Operation {key} is already being retried")


class TransientError(AmbientError):
    """A failure that is worth retrying (network, timeout, loading)."""

    pass


class PermanentError(AmbientError):
    """A failure that must not be retried (validation, syntax)."""

    pass


class ContentLoadError(AmbientError):
    """Raised when mode content cannot be loaded."""

    def __init__(self, mode: str, reason: str) -> None:
        self.mode = mode
        self.reason = reason
        super().__init__(f"Failed to load content for mode {mode}: {reason}")
