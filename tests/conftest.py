"""
Pytest configuration and shared fixtures for bounded-retry tests.
"""

import logging
import os
import sys
import tempfile
import textwrap
from pathlib import Path
from typing import Generator

import pytest
import structlog

PROJECT_ROOT = Path(__file__).resolve().parent.parent

TARGETS_MODULE = "retry_targets"

# Units of work importable by child processes (and in-process via sys.path)
TARGETS_SOURCE = textwrap.dedent(
    '''
    """Units of work used by the test-suite."""

    import os
    import subprocess
    import sys
    import time

    from bounded_retry.child import current_attempt

    not_callable = 42


    def passes():
        print("target ran", flush=True)


    def fails():
        raise RuntimeError("target failed on purpose")


    def hangs():
        print("hanging", flush=True)
        time.sleep(60)


    def hangs_with_grandchild():
        grandchild = subprocess.Popen(
            [sys.executable, "-c", "import time; time.sleep(60)"]
        )
        with open(os.environ["RETRY_TARGETS_PID_FILE"], "w") as f:
            f.write(f"{os.getpid()} {grandchild.pid}")
        time.sleep(60)


    def report_attempt():
        print(f"attempt={current_attempt()}", flush=True)


    def passes_on_second_attempt():
        if (current_attempt() or 1) < 2:
            raise RuntimeError(f"attempt {current_attempt()} is too early")


    def slow_until_third_attempt():
        if (current_attempt() or 1) < 3:
            time.sleep(60)
    '''
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files.

    Yields:
        Path to temporary directory that will be cleaned up after test
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def targets_dir(temp_dir: Path) -> Path:
    """Directory holding the retry_targets module."""
    (temp_dir / f"{TARGETS_MODULE}.py").write_text(TARGETS_SOURCE)
    return temp_dir


@pytest.fixture
def targets_env(targets_dir: Path) -> dict[str, str]:
    """Environment that lets a child process import retry_targets and bounded_retry."""
    paths = [str(targets_dir), str(PROJECT_ROOT)]
    existing = os.environ.get("PYTHONPATH")
    if existing:
        paths.append(existing)
    return {"PYTHONPATH": os.pathsep.join(paths)}


@pytest.fixture
def targets_module(targets_dir: Path, monkeypatch: pytest.MonkeyPatch):
    """Import retry_targets in this process."""
    monkeypatch.syspath_prepend(str(targets_dir))
    sys.modules.pop(TARGETS_MODULE, None)
    module = __import__(TARGETS_MODULE)
    yield module
    sys.modules.pop(TARGETS_MODULE, None)


@pytest.fixture
def reset_settings():
    """Drop the cached settings singleton before and after a test."""
    from bounded_retry.core import config

    config._settings = None
    yield
    config._settings = None


@pytest.fixture
def reset_structlog():
    """Reset structlog configuration after each test."""
    yield
    structlog.reset_defaults()
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
