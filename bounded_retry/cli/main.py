"""Bounded Retry - Command Line Interface

Runs a "module:function" target with bounded retries and time limits, either
in-process or with every attempt in its own child process.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

from bounded_retry import __version__
from bounded_retry.child import load_target
from bounded_retry.core.config import Settings, get_settings
from bounded_retry.core.exceptions import ConfigurationError, LaunchError
from bounded_retry.core.orchestrator import RetryTimeoutOrchestrator
from bounded_retry.core.types import RunResult
from bounded_retry.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Option defaults are None so that unset options fall back to settings
    loaded from the environment.

    Returns:
        Configured ArgumentParser

    """
    parser = argparse.ArgumentParser(
        prog="bounded-retry",
        description="Run a unit of work with bounded retries and hard time limits",
        epilog="""
Examples:
  # Up to 5 attempts of 500 ms each
  %(prog)s mypkg.checks:probe -r 5 -t 500

  # Same, but never more than 2.1 s in total, each attempt in a child process
  %(prog)s mypkg.checks:probe -r 5 -t 500 -T 2100 --isolate
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("target", help="Unit of work as module:function")

    parser.add_argument(
        "-r",
        "--retries",
        type=int,
        metavar="N",
        help="Maximum number of attempts (default: from settings, 3)",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=int,
        metavar="MS",
        help="Per-attempt timeout in milliseconds",
    )
    parser.add_argument(
        "-T",
        "--overall-timeout",
        type=int,
        metavar="MS",
        help="Overall timeout in milliseconds "
        "(default: retries * timeout + 500 ms per attempt)",
    )
    parser.add_argument(
        "--isolate",
        action="store_true",
        default=None,
        help="Run every attempt in a fresh child process",
    )
    parser.add_argument(
        "--startup-timeout",
        type=int,
        metavar="MS",
        help="Handshake window for child processes in milliseconds",
    )
    parser.add_argument(
        "--no-enforce-timings",
        action="store_false",
        dest="enforce_timings",
        default=None,
        help="Suspend both deadlines (interactive debugging)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the run result as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return a copy of settings with the command-line options applied."""
    retry: dict[str, Any] = {}
    if args.retries is not None:
        retry["retries"] = args.retries
    if args.timeout is not None:
        retry["per_attempt_timeout_ms"] = args.timeout
    if args.overall_timeout is not None:
        retry["overall_timeout_ms"] = args.overall_timeout
    if args.enforce_timings is not None:
        retry["enforce_timings"] = args.enforce_timings

    isolation: dict[str, Any] = {}
    if args.isolate is not None:
        isolation["enabled"] = args.isolate
    if args.startup_timeout is not None:
        isolation["startup_timeout_ms"] = args.startup_timeout

    return settings.model_copy(
        update={
            "retry": settings.retry.model_copy(update=retry),
            "isolation": settings.isolation.model_copy(update=isolation),
        }
    )


def resolve_work(target: str, settings: Settings) -> Any:
    """Turn the target into a unit of work for the configured executor.

    Raises:
        LaunchError: If the target cannot be loaded in-process

    """
    if settings.isolation.enabled:
        # The child process imports the target itself
        return target
    try:
        return load_target(target)
    except (ImportError, TypeError) as e:
        raise LaunchError(
            f"Cannot load target {target}: {e}", context={"target": target}
        ) from e


def print_result(result: RunResult, as_json: bool) -> None:
    """Print a run result for humans or as JSON."""
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    for record in result.attempts:
        print(f"[attempt {record.attempt}] {record.outcome.value}")
        for line in record.logs:
            print(f"    {line}")

    if result.passed:
        print(
            f"\n[+] Passed after {result.attempts_used} attempt(s) "
            f"in {result.elapsed_seconds:.3f}s"
        )
    else:
        print(f"\n[-] {result.outcome.value.upper()}: {result.error}")


def main(argv: list[str] | None = None) -> int:
    """Run a target with bounded retries.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        0 if the run passed, 1 if it failed, 2 on usage or launch errors

    """
    parser = create_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(
        log_level="DEBUG" if args.verbose else settings.logging.log_level.value,
        json_format=settings.logging.json_format,
    )

    # Targets are importable from the working directory, as with python -m
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())

    try:
        settings = apply_overrides(settings, args)
        orchestrator = RetryTimeoutOrchestrator.from_settings(
            settings, name=args.target
        )
        work = resolve_work(args.target, settings)
        result = orchestrator.run(work)
    except KeyboardInterrupt:
        print("\n\n[INTERRUPTED] Run stopped by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (ConfigurationError, LaunchError) as e:
        logger.error("run_not_started", target=args.target, error=str(e))
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_USAGE

    print_result(result, args.json)
    return EXIT_PASSED if result.passed else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
