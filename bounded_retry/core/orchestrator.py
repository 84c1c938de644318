"""Retry Timeout Orchestrator

CONCEPT: Runs a unit of work up to N times. Each attempt gets a hard time
window, and all attempts together share one overall budget.

ATTEMPT LOOP:
1. Allot min(per-attempt timeout, remaining overall budget) to the attempt;
   stop if nothing is left
2. Delegate the attempt to an executor (in-process race or child process)
3. Record the attempt outcome and its diagnostic logs
4. Stop on the first pass, whatever retries or time remain
5. Stop with an overall timeout once the budget is used up
6. Otherwise retry while attempts remain

Attempts are strictly sequential. The time budget is the only state shared
across attempts, and only the orchestrator touches it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from bounded_retry.core.budget import TimeBudget
from bounded_retry.core.exceptions import (
    BoundedRetryError,
    ConfigurationError,
    OverallTimeout,
)
from bounded_retry.core.executors import AttemptExecutor, InProcessExecutor
from bounded_retry.core.types import AttemptOutcome, AttemptRecord, RunResult
from bounded_retry.utils.logger import get_logger

if TYPE_CHECKING:
    from bounded_retry.core.config import RetryPolicy, Settings

logger = get_logger(__name__)


class RetryTimeoutOrchestrator:
    """Bounded-attempt, time-bounded execution of a unit of work.

    Usage:
        orchestrator = RetryTimeoutOrchestrator(retries=5, per_attempt_timeout=0.5)
        result = orchestrator.run(flaky_operation)
        result.raise_for_outcome()
    """

    def __init__(
        self,
        retries: int,
        per_attempt_timeout: float,
        overall_timeout: float | None = None,
        *,
        enforce_timings: bool = True,
        executor: AttemptExecutor | None = None,
        name: str | None = None,
    ):
        """Initialize orchestrator.

        Args:
            retries: Maximum number of attempts (>= 1)
            per_attempt_timeout: Seconds allowed for one attempt (> 0)
            overall_timeout: Seconds allowed across all attempts (> 0), defaults
                to retries * per_attempt_timeout plus 0.5s grace per attempt
            enforce_timings: False suspends both deadlines (interactive debugging)
            executor: Runs each attempt, defaults to InProcessExecutor
            name: Name used in logs and error messages (defaults to the work's name)

        Raises:
            ConfigurationError: If any limit is out of range

        """
        if retries < 1:
            raise ConfigurationError(
                "retries must be at least 1", context={"retries": retries}
            )
        if per_attempt_timeout <= 0:
            raise ConfigurationError(
                "per-attempt timeout must be positive",
                context={"per_attempt_timeout": per_attempt_timeout},
            )
        if overall_timeout is not None and overall_timeout <= 0:
            raise ConfigurationError(
                "overall timeout must be positive when supplied",
                context={"overall_timeout": overall_timeout},
            )

        self.retries = retries
        self.per_attempt_timeout = per_attempt_timeout
        self.overall_timeout = overall_timeout
        self.enforce_timings = enforce_timings
        self.executor = executor or InProcessExecutor()
        self.name = name

    @classmethod
    def from_policy(
        cls,
        policy: RetryPolicy,
        executor: AttemptExecutor | None = None,
        name: str | None = None,
    ) -> RetryTimeoutOrchestrator:
        """Build an orchestrator from a validated RetryPolicy."""
        return cls(
            retries=policy.retries,
            per_attempt_timeout=policy.per_attempt_timeout,
            overall_timeout=policy.overall_timeout,
            enforce_timings=policy.enforce_timings,
            executor=executor,
            name=name,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, name: str | None = None
    ) -> RetryTimeoutOrchestrator:
        """Build an orchestrator, choosing the executor from settings."""
        executor: AttemptExecutor
        if settings.isolation.enabled:
            from bounded_retry.core.isolation import ProcessIsolationExecutor

            executor = ProcessIsolationExecutor(
                startup_timeout=settings.isolation.startup_timeout,
                python_executable=settings.isolation.python_executable,
            )
        else:
            executor = InProcessExecutor()
        return cls.from_policy(settings.retry, executor=executor, name=name)

    def new_budget(self) -> TimeBudget:
        return TimeBudget.for_retries(
            self.retries,
            self.per_attempt_timeout,
            self.overall_timeout,
            enforce_timings=self.enforce_timings,
        )

    def run(self, work: Any) -> RunResult:
        """Run work until it passes, retries run out or the budget is used up.

        Args:
            work: Unit of work understood by the executor

        Returns:
            RunResult; on failure its error is the single surfaced error,
            annotated with the attempt count and captured logs

        Raises:
            LaunchError: If an attempt cannot be started at all

        """
        name = self.name or getattr(work, "__qualname__", None) or str(work)
        budget = self.new_budget()
        records: list[AttemptRecord] = []

        logger.debug(
            "run_started",
            run=name,
            retries=self.retries,
            per_attempt_timeout=self.per_attempt_timeout,
            overall_timeout=budget.overall_limit,
            enforce_timings=self.enforce_timings,
        )

        for attempt in range(1, self.retries + 1):
            allotted = budget.next_attempt_limit()
            if allotted is not None and allotted <= 0:
                return self._overall_timeout(name, budget, records)

            budget.start()
            with structlog.contextvars.bound_contextvars(run=name, attempt=attempt):
                logger.debug("attempt_started", allotted=allotted)
                record = self.executor.run_attempt(work, attempt, allotted)
                records.append(record)
                logger.info(
                    "attempt_finished",
                    outcome=record.outcome.value,
                    progress=f"{attempt}/{self.retries}",
                    duration_seconds=round(record.duration_seconds, 3),
                )

            if record.passed:
                budget.stop()
                return RunResult(
                    outcome=AttemptOutcome.PASSED,
                    attempts=tuple(records),
                    elapsed_seconds=budget.elapsed,
                )

            # A window shortened by the overall budget that then timed out
            # ran out of overall time, not per-attempt time
            cut_short = (
                allotted is not None
                and allotted < self.per_attempt_timeout
                and record.outcome == AttemptOutcome.TIMED_OUT
            )
            if budget.is_exhausted() or cut_short:
                return self._overall_timeout(name, budget, records)

        last = records[-1]
        error = last.error or BoundedRetryError(
            f"{name}: attempt {last.attempt} ended {last.outcome.value}"
        )
        logger.info("retries_exhausted", run=name, attempts=len(records))
        return self._finish(last.outcome, error, records, budget)

    def _overall_timeout(
        self, name: str, budget: TimeBudget, records: list[AttemptRecord]
    ) -> RunResult:
        logger.info(
            "overall_timeout_exceeded",
            run=name,
            overall_timeout=budget.overall_limit,
            elapsed=round(budget.elapsed, 3),
            attempts=len(records),
        )
        last_error = records[-1].error if records else None
        if last_error is not None:
            message = (
                f"Overall execution time of {name} exceeded limit of "
                f"{budget.overall_limit:.3f}s (ran for {budget.elapsed:.3f}s): "
                f"{last_error}"
            )
        else:
            message = (
                f"Unable to complete {self.retries} attempts of {name} "
                f"within {budget.overall_limit:.3f}s"
            )
        error = OverallTimeout(
            message,
            context={
                "overall_timeout": budget.overall_limit,
                "elapsed": budget.elapsed,
            },
        )
        error.__cause__ = last_error
        outcome = records[-1].outcome if records else AttemptOutcome.TIMED_OUT
        if outcome == AttemptOutcome.PASSED:
            outcome = AttemptOutcome.TIMED_OUT
        return self._finish(outcome, error, records, budget)

    def _finish(
        self,
        outcome: AttemptOutcome,
        error: BaseException,
        records: list[AttemptRecord],
        budget: TimeBudget,
    ) -> RunResult:
        budget.stop()
        if isinstance(error, BoundedRetryError):
            error.context["attempts"] = len(records)
            error.context["logs"] = [
                line for record in records for line in record.logs
            ]
        return RunResult(
            outcome=outcome,
            attempts=tuple(records),
            error=error,
            elapsed_seconds=budget.elapsed,
        )


def run_with_retries(
    work: Callable[[], Any],
    retries: int,
    per_attempt_timeout: float,
    overall_timeout: float | None = None,
    **kwargs: Any,
) -> RunResult:
    """Run work with a one-off RetryTimeoutOrchestrator.

    Args:
        work: Zero-argument unit of work
        retries: Maximum number of attempts
        per_attempt_timeout: Seconds allowed for one attempt
        overall_timeout: Seconds allowed across all attempts
        **kwargs: Passed through to RetryTimeoutOrchestrator

    Returns:
        RunResult of the run

    """
    orchestrator = RetryTimeoutOrchestrator(
        retries, per_attempt_timeout, overall_timeout, **kwargs
    )
    return orchestrator.run(work)
