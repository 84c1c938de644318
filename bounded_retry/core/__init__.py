"""Core bounded retry functionality.

This module contains the signal and race primitives, the time budget, the
attempt executors (in-process and process isolation) and the orchestrator
that ties them together.
"""

from .budget import Stopwatch, TimeBudget, default_overall_timeout
from .exceptions import (
    AttemptFailure,
    AttemptTimeout,
    BoundedRetryError,
    ConfigurationError,
    LaunchError,
    OverallTimeout,
    ProcessStartupTimeout,
    ProcessTimeout,
)
from .executors import AttemptExecutor, InProcessExecutor
from .isolation import IsolationSession, ProcessIsolationExecutor
from .orchestrator import RetryTimeoutOrchestrator, run_with_retries
from .signals import RaceGate, RaceResult, Signal, until_any_completes
from .types import AttemptOutcome, AttemptRecord, RunResult
