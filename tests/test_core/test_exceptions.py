"""Tests for custom exception classes."""

import pytest

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


class TestBoundedRetryError:
    """Test base BoundedRetryError exception class."""

    def test_basic_initialization(self):
        """Test creating exception with just a message."""
        error = BoundedRetryError("Test error message")

        assert str(error) == "Test error message"
        assert error.message == "Test error message"
        assert error.error_code is None
        assert error.context == {}

    def test_initialization_with_all_parameters(self):
        """Test creating exception with all parameters."""
        error = BoundedRetryError(
            "Test error", error_code="ERR002", context={"attempt": 2}
        )

        assert error.message == "Test error"
        assert error.error_code == "ERR002"
        assert error.context == {"attempt": 2}

    def test_context_defaults_to_empty_dict(self):
        """Test that context defaults to empty dict when None."""
        error = BoundedRetryError("Test", context=None)

        assert error.context == {}
        assert isinstance(error.context, dict)

    def test_attempts_and_logs_default_to_empty(self):
        """Test attempts and logs before the orchestrator annotates the error."""
        error = BoundedRetryError("Test")

        assert error.attempts is None
        assert error.logs == []

    def test_attempts_and_logs_read_from_context(self):
        """Test attempts and logs come from the annotated context."""
        error = BoundedRetryError(
            "Test", context={"attempts": 3, "logs": ["line 1", "line 2"]}
        )

        assert error.attempts == 3
        assert error.logs == ["line 1", "line 2"]

    def test_logs_returns_a_copy(self):
        """Test mutating the returned logs leaves the context alone."""
        error = BoundedRetryError("Test", context={"logs": ["line"]})

        error.logs.append("extra")

        assert error.context["logs"] == ["line"]

    def test_can_be_caught_as_exception(self):
        """Test that exception can be caught as base Exception."""
        with pytest.raises(Exception):
            raise BoundedRetryError("Test error")


class TestSubclasses:
    """Test the exception hierarchy and default error codes."""

    @pytest.mark.parametrize(
        "exc_class,error_code",
        [
            pytest.param(ConfigurationError, "INVALID_CONFIGURATION", id="config"),
            pytest.param(LaunchError, "LAUNCH_FAILED", id="launch"),
            pytest.param(AttemptFailure, "ATTEMPT_FAILED", id="failure"),
            pytest.param(AttemptTimeout, "ATTEMPT_TIMEOUT", id="timeout"),
            pytest.param(ProcessTimeout, "PROCESS_TIMEOUT", id="process-timeout"),
            pytest.param(
                ProcessStartupTimeout, "PROCESS_STARTUP_TIMEOUT", id="startup"
            ),
            pytest.param(OverallTimeout, "OVERALL_TIMEOUT", id="overall"),
        ],
    )
    def test_default_error_code(self, exc_class, error_code):
        """Test each subclass carries its own error code."""
        error = exc_class("boom")

        assert isinstance(error, BoundedRetryError)
        assert error.error_code == error_code

    def test_explicit_error_code_wins(self):
        """Test an explicit error code overrides the class default."""
        error = AttemptFailure("boom", error_code="CUSTOM")

        assert error.error_code == "CUSTOM"

    def test_process_timeout_is_an_attempt_timeout(self):
        """Test a killed child counts as a per-attempt timeout."""
        assert issubclass(ProcessTimeout, AttemptTimeout)

    def test_overall_timeout_is_not_an_attempt_timeout(self):
        """Test the overall timeout is distinguishable from a per-attempt one."""
        assert not issubclass(OverallTimeout, AttemptTimeout)
        assert not issubclass(ProcessStartupTimeout, AttemptTimeout)
