"""Tests for the bounded-retry command line."""

import json
import os

import pytest

from bounded_retry.cli.main import (
    EXIT_FAILED,
    EXIT_PASSED,
    EXIT_USAGE,
    apply_overrides,
    create_parser,
    main,
)
from bounded_retry.core.config import Settings


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch, reset_settings, reset_structlog):
    """Run each CLI test with fresh settings and logging."""
    for key in list(os.environ):
        if key.startswith("BOUNDED_RETRY_"):
            monkeypatch.delenv(key)


class TestParser:
    """Test argument parsing."""

    def test_requires_target(self, capsys):
        """Test the target argument is mandatory."""
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 2

    def test_options(self):
        """Test every option parses."""
        args = create_parser().parse_args(
            [
                "pkg.mod:func",
                "-r",
                "5",
                "-t",
                "500",
                "-T",
                "2100",
                "--isolate",
                "--startup-timeout",
                "3000",
                "--no-enforce-timings",
                "--json",
                "-v",
            ]
        )

        assert args.target == "pkg.mod:func"
        assert args.retries == 5
        assert args.timeout == 500
        assert args.overall_timeout == 2100
        assert args.isolate is True
        assert args.startup_timeout == 3000
        assert args.enforce_timings is False
        assert args.json is True
        assert args.verbose is True

    def test_unset_options_are_none(self):
        """Test unset options leave settings alone."""
        args = create_parser().parse_args(["pkg.mod:func"])

        assert args.retries is None
        assert args.isolate is None
        assert args.enforce_timings is None


class TestApplyOverrides:
    """Test merging command-line options into settings."""

    def test_overrides(self):
        """Test options replace the configured values."""
        args = create_parser().parse_args(
            ["pkg.mod:func", "-r", "5", "-t", "500", "-T", "2100", "--isolate"]
        )

        settings = apply_overrides(Settings(), args)

        assert settings.retry.retries == 5
        assert settings.retry.per_attempt_timeout == pytest.approx(0.5)
        assert settings.retry.overall_timeout == pytest.approx(2.1)
        assert settings.isolation.enabled is True

    def test_keeps_unset_values(self):
        """Test options that were not given keep the settings' values."""
        base = Settings()
        args = create_parser().parse_args(["pkg.mod:func"])

        settings = apply_overrides(base, args)

        assert settings.retry.retries == base.retry.retries
        assert settings.isolation.enabled is False


class TestMain:
    """Test running targets from the command line."""

    def test_passing_target(self, targets_module, capsys):
        """Test a passing target exits 0."""
        assert main(["retry_targets:passes", "-r", "2", "-t", "5000"]) == EXIT_PASSED

        out = capsys.readouterr().out
        assert "Passed after 1 attempt(s)" in out

    def test_failing_target(self, targets_module, capsys):
        """Test a failing target exits 1 after every retry."""
        assert main(["retry_targets:fails", "-r", "2", "-t", "5000"]) == EXIT_FAILED

        out = capsys.readouterr().out
        assert "[attempt 2] failed" in out
        assert "target failed on purpose" in out

    def test_json_output(self, targets_module, capsys):
        """Test --json prints the run result."""
        code = main(["retry_targets:fails", "-r", "3", "-t", "5000", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert code == EXIT_FAILED
        assert data["passed"] is False
        assert data["attempts_used"] == 3
        assert data["error"]["error_code"] == "ATTEMPT_FAILED"

    def test_overall_timeout(self, targets_module, capsys):
        """Test a hanging target ends with an overall timeout."""
        code = main(["retry_targets:hangs", "-r", "5", "-t", "100", "-T", "250"])

        assert code == EXIT_FAILED
        assert "Overall execution time" in capsys.readouterr().out

    def test_unknown_target(self, targets_module, capsys):
        """Test an unimportable target is a usage error."""
        assert main(["retry_targets:does_not_exist"]) == EXIT_USAGE
        assert "Cannot load target" in capsys.readouterr().err

    def test_invalid_retries(self, targets_module, capsys):
        """Test out-of-range limits are usage errors."""
        assert main(["retry_targets:passes", "-r", "0"]) == EXIT_USAGE
        assert "retries must be at least 1" in capsys.readouterr().err

    def test_invalid_startup_timeout(self, targets_module, capsys):
        """Test a non-positive handshake window is a usage error."""
        code = main(["retry_targets:passes", "--isolate", "--startup-timeout", "0"])

        assert code == EXIT_USAGE
        assert "startup timeout must be positive" in capsys.readouterr().err

    def test_isolated_run(self, targets_env, monkeypatch, capsys):
        """Test --isolate runs the target in a child process."""
        monkeypatch.setenv("PYTHONPATH", targets_env["PYTHONPATH"])

        code = main(["retry_targets:passes_on_second_attempt", "-r", "3", "--isolate"])

        assert code == EXIT_PASSED
        assert "Passed after 2 attempt(s)" in capsys.readouterr().out

    def test_isolated_unknown_target(self, targets_env, monkeypatch, capsys):
        """Test a child that cannot import its target is a usage error."""
        monkeypatch.setenv("PYTHONPATH", targets_env["PYTHONPATH"])

        assert main(["retry_targets:does_not_exist", "--isolate"]) == EXIT_USAGE
