"""
Bounded Retry - resilient, time-bounded execution of a unit of work.

Runs an operation with a hard per-attempt time limit, retries on failure or
timeout, and never lets the total elapsed time exceed an overall budget.
Attempts can run in-process or in a freshly spawned child process that is
killed when its window expires.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from bounded_retry.core.budget import TimeBudget, default_overall_timeout
from bounded_retry.core.exceptions import (
    AttemptFailure,
    AttemptTimeout,
    BoundedRetryError,
    ConfigurationError,
    LaunchError,
    OverallTimeout,
    ProcessStartupTimeout,
    ProcessTimeout,
)
from bounded_retry.core.executors import AttemptExecutor, InProcessExecutor
from bounded_retry.core.isolation import ProcessIsolationExecutor
from bounded_retry.core.orchestrator import RetryTimeoutOrchestrator, run_with_retries
from bounded_retry.core.signals import RaceGate, RaceResult, Signal, until_any_completes
from bounded_retry.core.types import AttemptOutcome, AttemptRecord, RunResult

__all__ = [
    "__version__",
    "__license__",
    "AttemptExecutor",
    "AttemptFailure",
    "AttemptOutcome",
    "AttemptRecord",
    "AttemptTimeout",
    "BoundedRetryError",
    "ConfigurationError",
    "InProcessExecutor",
    "LaunchError",
    "OverallTimeout",
    "ProcessIsolationExecutor",
    "ProcessStartupTimeout",
    "ProcessTimeout",
    "RaceGate",
    "RaceResult",
    "RetryTimeoutOrchestrator",
    "RunResult",
    "Signal",
    "TimeBudget",
    "default_overall_timeout",
    "run_with_retries",
    "until_any_completes",
]
