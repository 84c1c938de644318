"""Overall time budget across attempts.

The budget owns a monotonic stopwatch and derives how long the next attempt
may run: min(per_attempt_limit, overall_limit - elapsed). Once the overall
limit is used up no further attempt is started, whatever the retry count.
"""

from __future__ import annotations

import time

from bounded_retry.core.exceptions import ConfigurationError

# Grace per attempt for work done outside the timed window (process startup,
# scheduling, result collection)
DEFAULT_GRACE_PER_ATTEMPT = 0.5


def default_overall_timeout(
    retries: int,
    per_attempt_timeout: float,
    grace_per_attempt: float = DEFAULT_GRACE_PER_ATTEMPT,
) -> float:
    """Overall limit used when none is configured.

    Args:
        retries: Maximum number of attempts
        per_attempt_timeout: Seconds allowed for one attempt
        grace_per_attempt: Extra seconds allowed per attempt

    Returns:
        retries * per_attempt_timeout + retries * grace_per_attempt

    """
    return retries * per_attempt_timeout + retries * grace_per_attempt


class Stopwatch:
    """Accumulating stopwatch on the monotonic clock.

    elapsed never decreases: stopping freezes it, starting again resumes
    accumulation.
    """

    def __init__(self) -> None:
        self._accumulated = 0.0
        self._started_at: float | None = None

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return self._accumulated
        return self._accumulated + (time.monotonic() - self._started_at)

    def start(self) -> None:
        if self._started_at is None:
            self._started_at = time.monotonic()

    def stop(self) -> None:
        if self._started_at is not None:
            self._accumulated += time.monotonic() - self._started_at
            self._started_at = None


class TimeBudget:
    """Tracks overall elapsed time against the overall deadline.

    Usage:
        budget = TimeBudget(per_attempt_limit=0.5, overall_limit=2.1)
        budget.start()
        allotted = budget.next_attempt_limit()
        if allotted is not None and allotted <= 0:
            ...  # out of time, do not start another attempt
    """

    def __init__(
        self,
        per_attempt_limit: float,
        overall_limit: float,
        enforce_timings: bool = True,
    ):
        """Initialize time budget.

        Args:
            per_attempt_limit: Seconds allowed for one attempt
            overall_limit: Seconds allowed across all attempts
            enforce_timings: False suspends both limits (interactive debugging)

        Raises:
            ConfigurationError: If either limit is not positive

        """
        if per_attempt_limit <= 0:
            raise ConfigurationError(
                "per-attempt timeout must be positive",
                context={"per_attempt_limit": per_attempt_limit},
            )
        if overall_limit <= 0:
            raise ConfigurationError(
                "overall timeout must be positive",
                context={"overall_limit": overall_limit},
            )

        self.per_attempt_limit = per_attempt_limit
        self.overall_limit = overall_limit
        self.enforce_timings = enforce_timings
        self.stopwatch = Stopwatch()

    @classmethod
    def for_retries(
        cls,
        retries: int,
        per_attempt_limit: float,
        overall_limit: float | None = None,
        enforce_timings: bool = True,
    ) -> TimeBudget:
        """Build a budget, defaulting the overall limit from the retry count."""
        if overall_limit is None:
            overall_limit = default_overall_timeout(retries, per_attempt_limit)
        return cls(per_attempt_limit, overall_limit, enforce_timings)

    @property
    def elapsed(self) -> float:
        return self.stopwatch.elapsed

    @property
    def remaining(self) -> float:
        return self.overall_limit - self.elapsed

    def start(self) -> None:
        """Start the overall stopwatch if it is not already running."""
        self.stopwatch.start()

    def stop(self) -> None:
        self.stopwatch.stop()

    def next_attempt_limit(self) -> float | None:
        """Seconds allotted to the next attempt.

        Returns:
            min(per_attempt_limit, remaining), which may be <= 0 when the
            budget is used up, or None when timings are not enforced

        """
        if not self.enforce_timings:
            return None
        return min(self.per_attempt_limit, self.remaining)

    def is_exhausted(self) -> bool:
        if not self.enforce_timings:
            return False
        return self.elapsed >= self.overall_limit

    def __repr__(self) -> str:
        return (
            f"TimeBudget(per_attempt_limit={self.per_attempt_limit}, "
            f"overall_limit={self.overall_limit}, elapsed={self.elapsed:.3f}, "
            f"enforce_timings={self.enforce_timings})"
        )
