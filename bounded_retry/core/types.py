"""Bounded Retry Type Definitions.

Shared result types used by the executors and the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AttemptOutcome(Enum):
    """Result of a single attempt."""

    PASSED = "passed"  # Work completed normally
    FAILED = "failed"  # Work reported a failure (exception, nonzero exit)
    TIMED_OUT = "timed_out"  # Per-attempt deadline expired first
    PROCESS_TIMED_OUT = "process_timed_out"  # Child never got going or never exited
    INCONCLUSIVE = "inconclusive"  # No signal decided the attempt


@dataclass(frozen=True)
class AttemptRecord:
    """Everything observed about one attempt.

    Attributes:
        attempt: 1-based attempt number.
        outcome: How the attempt ended.
        logs: Captured diagnostic lines, in arrival order.
        error: Error describing a non-passing outcome.
        duration_seconds: Wall time spent on the attempt.
        exit_code: Child exit code (process isolation only).
        session_id: Isolation session identifier (process isolation only).
        late_signals: Names of signals that fired after the outcome was decided.

    """

    attempt: int
    outcome: AttemptOutcome
    logs: tuple[str, ...] = ()
    error: BaseException | None = None
    duration_seconds: float = 0.0
    exit_code: int | None = None
    session_id: str | None = None
    late_signals: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        """Attempt succeeded if outcome is PASSED."""
        return self.outcome == AttemptOutcome.PASSED

    @property
    def passed(self) -> bool:
        return self.outcome == AttemptOutcome.PASSED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "attempt": self.attempt,
            "outcome": self.outcome.value,
            "logs": list(self.logs),
            "error": _describe_error(self.error),
            "duration_seconds": round(self.duration_seconds, 3),
            "exit_code": self.exit_code,
            "session_id": self.session_id,
            "late_signals": list(self.late_signals),
        }


@dataclass(frozen=True)
class RunResult:
    """Final result of a bounded retry run.

    Attributes:
        outcome: PASSED, or the outcome that ended the run.
        attempts: Every attempt made, in order.
        error: The single surfaced error, None when the run passed.
        elapsed_seconds: Overall budget consumed by the run.

    """

    outcome: AttemptOutcome
    attempts: tuple[AttemptRecord, ...] = field(default_factory=tuple)
    error: BaseException | None = None
    elapsed_seconds: float = 0.0

    def __bool__(self) -> bool:
        return self.passed

    @property
    def passed(self) -> bool:
        return self.outcome == AttemptOutcome.PASSED

    @property
    def attempts_used(self) -> int:
        return len(self.attempts)

    @property
    def last_attempt(self) -> AttemptRecord | None:
        return self.attempts[-1] if self.attempts else None

    @property
    def logs(self) -> dict[int, tuple[str, ...]]:
        """Captured log lines per attempt number."""
        return {record.attempt: record.logs for record in self.attempts}

    def raise_for_outcome(self) -> None:
        """Raise the surfaced error if the run did not pass."""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.outcome.value,
            "passed": self.passed,
            "attempts_used": self.attempts_used,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "error": _describe_error(self.error),
            "attempts": [record.to_dict() for record in self.attempts],
        }


def _describe_error(error: BaseException | None) -> dict[str, Any] | None:
    if error is None:
        return None
    return {
        "type": type(error).__name__,
        "message": str(error),
        "error_code": getattr(error, "error_code", None),
    }
