"""Attempt executors.

An executor runs exactly one attempt of a unit of work under a time limit
and reports an AttemptRecord. The orchestrator decides what happens next.

InProcessExecutor races the work thread against an alarm thread. A work
thread that overruns its window is abandoned, not stopped; use
ProcessIsolationExecutor (bounded_retry.core.isolation) when a timeout must
be a hard guarantee.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from bounded_retry.core.exceptions import AttemptFailure, AttemptTimeout
from bounded_retry.core.signals import until_any_completes
from bounded_retry.core.types import AttemptOutcome, AttemptRecord
from bounded_retry.utils.logger import get_logger

logger = get_logger(__name__)

Work = Callable[[], Any]


class AttemptExecutor(ABC):
    """Abstract base class for running one attempt.

    Implementations must return exactly one AttemptRecord per call, and may
    raise LaunchError when the attempt cannot be started at all.
    """

    @abstractmethod
    def run_attempt(
        self, work: Work, attempt: int, timeout: float | None
    ) -> AttemptRecord:
        """Run one attempt.

        Args:
            work: Unit of work (interpretation is executor specific)
            attempt: 1-based attempt number
            timeout: Seconds allotted to this attempt, None for unbounded

        Returns:
            AttemptRecord describing the attempt

        """


class InProcessExecutor(AttemptExecutor):
    """Runs the work on a thread in this process, racing an alarm."""

    def run_attempt(
        self, work: Work, attempt: int, timeout: float | None
    ) -> AttemptRecord:
        name = getattr(work, "__qualname__", repr(work))
        logs = [f"Start attempt {attempt} for {name} in-process"]
        start_time = time.monotonic()

        error = until_any_completes(work, timeout)
        duration = time.monotonic() - start_time

        if error is None:
            logs.append(f"Attempt {attempt} passed in {duration:.3f}s")
            return AttemptRecord(
                attempt=attempt,
                outcome=AttemptOutcome.PASSED,
                logs=tuple(logs),
                duration_seconds=duration,
            )

        if isinstance(error, AttemptTimeout):
            logs.append(f"Attempt {attempt} exceeded {timeout}s")
            return AttemptRecord(
                attempt=attempt,
                outcome=AttemptOutcome.TIMED_OUT,
                logs=tuple(logs),
                error=error,
                duration_seconds=duration,
            )

        logs.append(f"Attempt {attempt} failed: {type(error).__name__}: {error}")
        logger.debug(
            "in_process_attempt_failed",
            attempt=attempt,
            error_type=type(error).__name__,
        )
        failure = AttemptFailure(
            f"{name} failed: {type(error).__name__}: {error}",
            context={"attempt": attempt},
        )
        failure.__cause__ = error
        return AttemptRecord(
            attempt=attempt,
            outcome=AttemptOutcome.FAILED,
            logs=tuple(logs),
            error=failure,
            duration_seconds=duration,
        )
