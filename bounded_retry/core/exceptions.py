"""Custom exceptions for bounded retry operations.

This module defines the exception hierarchy for bounded_retry,
providing detailed error information and categorization.
"""

from typing import Any


class BoundedRetryError(Exception):
    """Base exception for bounded retry operations.

    Attributes:
        message: Human-readable error description
        error_code: Optional error code for categorization
        context: Additional context information

    """

    default_error_code: str | None = None

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.context = context or {}

    @property
    def attempts(self) -> int | None:
        """Number of attempts made before this error was surfaced."""
        return self.context.get("attempts")

    @property
    def logs(self) -> list[str]:
        """Diagnostic log lines captured from the failing attempt(s)."""
        return list(self.context.get("logs", []))


class ConfigurationError(BoundedRetryError):
    """Raised when retry or timeout settings are invalid."""

    default_error_code = "INVALID_CONFIGURATION"


class LaunchError(BoundedRetryError):
    """Raised when an attempt cannot even be started.

    Fatal: retrying cannot fix an unrunnable launch target.
    """

    default_error_code = "LAUNCH_FAILED"


class AttemptFailure(BoundedRetryError):
    """Raised when the work itself failed during an attempt."""

    default_error_code = "ATTEMPT_FAILED"


class AttemptTimeout(BoundedRetryError):
    """Raised when an attempt exceeded its per-attempt deadline."""

    default_error_code = "ATTEMPT_TIMEOUT"


class ProcessTimeout(AttemptTimeout):
    """Raised when an isolated child exceeded its window and was killed."""

    default_error_code = "PROCESS_TIMEOUT"


class ProcessStartupTimeout(BoundedRetryError):
    """Raised when an isolated child never completed the startup handshake."""

    default_error_code = "PROCESS_STARTUP_TIMEOUT"


class OverallTimeout(BoundedRetryError):
    """Raised when the cumulative time budget across attempts is exhausted."""

    default_error_code = "OVERALL_TIMEOUT"
