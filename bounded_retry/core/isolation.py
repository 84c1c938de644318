"""Process isolation for attempts that must really stop on timeout.

A thread that ignores its deadline cannot be stopped safely, but a process
can always be killed. ProcessIsolationExecutor runs each attempt in a
freshly spawned child and kills the whole process tree when the attempt
window expires.

HANDSHAKE PROTOCOL:
1. The parent launches the child with two environment variables: the
   isolation marker (embedding a per-attempt session id) and the attempt
   number.
2. The child echoes the marker to its output, then blocks reading one line
   from stdin (await_handshake()).
3. The parent scans the child's interleaved stdout/stderr for the marker,
   bounded by a startup timeout that absorbs interpreter cold start.
4. On seeing the marker the parent writes a newline to the child's stdin
   and only then starts the attempt window.
5. Exit code 0 = passed, any other exit code = failed, killed or
   unresponsive = timed out.
"""

from __future__ import annotations

import os
import subprocess
import sys
import threading
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from types import TracebackType
from typing import Any

import psutil

from bounded_retry.core.exceptions import (
    AttemptFailure,
    BoundedRetryError,
    ConfigurationError,
    LaunchError,
    ProcessStartupTimeout,
    ProcessTimeout,
)
from bounded_retry.core.executors import AttemptExecutor
from bounded_retry.core.signals import RaceGate, Signal
from bounded_retry.core.types import AttemptOutcome, AttemptRecord
from bounded_retry.utils.logger import get_logger

logger = get_logger(__name__)

ISOLATION_MARKER_ENV = "__BOUNDED_RETRY_ISOLATION_MARKER__"
ATTEMPT_ENV = "__BOUNDED_RETRY_ATTEMPT__"

# Allow interpreter startup and imports to finish before the window opens
DEFAULT_STARTUP_TIMEOUT = 10.0
# How long to wait for a killed process to be reaped
KILL_WAIT_TIMEOUT = 5.0
# How long to wait for the output reader to drain after the child is gone
LOG_COLLECT_TIMEOUT = 2.0
# How long a child that closed its output gets to exit before it is killed
EXIT_AFTER_EOF_TIMEOUT = 1.0
# Extra time the gate waits past the attempt window for the alarm to report
GATE_SLACK = 1.0

# Exit code the child entry point uses when its target cannot be imported
EXIT_TARGET_UNAVAILABLE = 3

CHILD_MODULE = "bounded_retry.child"


def make_isolation_marker(session_id: str) -> str:
    """Marker the child must echo before doing any real work."""
    return f">>> attempt execution starts: {session_id}"


# =============================================================================
# Child side
# =============================================================================


def is_isolated_child() -> bool:
    """Check whether this process was launched by ProcessIsolationExecutor."""
    return ISOLATION_MARKER_ENV in os.environ


def current_attempt() -> int | None:
    """Attempt number passed by the parent, None outside isolation."""
    value = os.environ.get(ATTEMPT_ENV)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def await_handshake() -> bool:
    """Perform the child half of the startup handshake.

    Echoes the isolation marker and blocks until the parent releases the
    child with a line on stdin. Does nothing outside isolation.

    Returns:
        True if a handshake was performed

    """
    marker = os.environ.get(ISOLATION_MARKER_ENV)
    if marker is None:
        return False

    sys.stderr.write(marker + "\n")
    sys.stderr.flush()
    sys.stdin.readline()
    return True


# =============================================================================
# Parent side
# =============================================================================


def callable_target(func: Callable[..., Any]) -> str:
    """Derive an importable "module:qualname" target from a function.

    Raises:
        LaunchError: If the function cannot be imported by a child process

    """
    module = getattr(func, "__module__", None)
    qualname = getattr(func, "__qualname__", None)
    if not module or not qualname:
        raise LaunchError(
            f"Cannot derive an import target from {func!r}",
            context={"work": repr(func)},
        )
    if module == "__main__" or "<locals>" in qualname or "<lambda>" in qualname:
        raise LaunchError(
            f"{module}.{qualname} cannot be imported by a child process; "
            "define it at module level in an importable module",
            context={"target": f"{module}:{qualname}"},
        )
    return f"{module}:{qualname}"


def kill_process_tree(process: subprocess.Popen[str]) -> bool:
    """Unconditionally kill a process and all of its descendants.

    Args:
        process: Process to kill

    Returns:
        True if the process is confirmed gone (exit code available)

    """
    if process.poll() is not None:
        return True

    children: list[psutil.Process] = []
    try:
        children = psutil.Process(process.pid).children(recursive=True)
    except psutil.NoSuchProcess:
        pass

    for child in children:
        try:
            child.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug("child process already gone or inaccessible", error=str(e))

    try:
        process.kill()
    except ProcessLookupError:
        pass

    _, alive = psutil.wait_procs(children, timeout=KILL_WAIT_TIMEOUT)
    if alive:
        logger.warning(
            "descendants survived kill", pids=[proc.pid for proc in alive]
        )

    try:
        process.wait(timeout=KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("process did not exit after kill", pid=process.pid)
        return False

    logger.debug(
        "process_tree_killed",
        pid=process.pid,
        children_count=len(children),
        exit_code=process.returncode,
    )
    return True


class IsolationSession:
    """One child process for one attempt.

    Owns the process handle, the append-only log buffer and the signals
    used to race the child against its deadline. Never reused: create one
    per attempt and close it (or use it as a context manager) when done.
    """

    def __init__(
        self,
        attempt: int,
        command: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ):
        self.session_id = uuid.uuid4().hex
        self.attempt = attempt
        self.command = list(command)
        self.marker = make_isolation_marker(self.session_id)
        self._env = dict(env or {})
        self._cwd = cwd

        self.ready = Signal("ready")
        self.passed = Signal("passed")
        self.failed = Signal("failed")
        self.timed_out = Signal("timed_out")
        self.logs_collected = Signal("logs_collected")

        self._lines: list[str] = []
        self._lines_lock = threading.Lock()
        self._alarm_cancelled = threading.Event()
        self._reader: threading.Thread | None = None
        self._monitor: threading.Thread | None = None
        self.process: subprocess.Popen[str] | None = None
        self.exit_code: int | None = None

    def __enter__(self) -> IsolationSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def log(self, line: str) -> None:
        with self._lines_lock:
            self._lines.append(line)

    def start(self) -> None:
        """Launch the child process and begin collecting its output.

        Raises:
            LaunchError: If the command cannot be executed

        """
        child_env = os.environ.copy()
        child_env.update(self._env)
        child_env[ISOLATION_MARKER_ENV] = self.marker
        child_env[ATTEMPT_ENV] = str(self.attempt)

        self.log(
            f"Start attempt {self.attempt} (session {self.session_id}): "
            f"{' '.join(self.command)}"
        )

        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=child_env,
                cwd=self._cwd,
            )
        except OSError as e:
            raise LaunchError(
                f"Unable to launch {self.command[0]}: {e}",
                context={"command": self.command},
            ) from e

        self._reader = threading.Thread(
            target=self._read_output,
            name=f"isolation-reader-{self.session_id[:8]}",
            daemon=True,
        )
        self._reader.start()

    def _read_output(self) -> None:
        assert self.process is not None and self.process.stdout is not None
        try:
            for raw_line in self.process.stdout:
                line = raw_line.rstrip("\r\n")
                self.log(line)
                if not self.ready.is_set and self.marker in line:
                    self.ready.set()
        except (OSError, ValueError) as e:
            # Pipe closed underneath us during teardown
            logger.debug("output reader stopped", error=str(e))
        finally:
            self.logs_collected.set()

    def wait_until_ready(self, timeout: float, gate: RaceGate) -> bool:
        """Wait for the child to echo the isolation marker.

        Returns early if the child closes its output (exits) first.

        Returns:
            True if the marker was seen within timeout

        """
        gate.wait_for_any(timeout, self.ready, self.logs_collected)
        return self.ready.is_set

    def release(self) -> None:
        """Release the child from the handshake."""
        assert self.process is not None and self.process.stdin is not None
        try:
            self.process.stdin.write("\n")
            self.process.stdin.flush()
        except (BrokenPipeError, OSError) as e:
            # Child already gone, the exit monitor will report it
            logger.debug("handshake release failed", error=str(e))

    def start_monitor(self) -> None:
        """Watch for child exit and set passed/failed accordingly."""

        def monitor() -> None:
            assert self.process is not None
            exit_code = self.process.wait()
            if exit_code == 0:
                self.passed.set()
            else:
                self.failed.set()

        self._monitor = threading.Thread(
            target=monitor,
            name=f"isolation-monitor-{self.session_id[:8]}",
            daemon=True,
        )
        self._monitor.start()

    def start_alarm(self, timeout: float | None) -> None:
        """Set timed_out after timeout seconds unless cancelled first."""
        if timeout is None:
            return

        def alarm() -> None:
            if self._alarm_cancelled.wait(max(timeout, 0.0)):
                return
            self.timed_out.set()

        threading.Thread(
            target=alarm,
            name=f"isolation-alarm-{self.session_id[:8]}",
            daemon=True,
        ).start()

    def kill(self) -> bool:
        """Kill the child process tree.

        Returns:
            True if the child is confirmed gone

        """
        if self.process is None:
            return True
        gone = kill_process_tree(self.process)
        if gone:
            self.exit_code = self.process.returncode
        return gone

    def collected_logs(self) -> tuple[str, ...]:
        """Snapshot of the log buffer once output collection has finished."""
        if not self.logs_collected.wait(LOG_COLLECT_TIMEOUT):
            self.log("(output collection did not finish, logs may be incomplete)")
        with self._lines_lock:
            return tuple(self._lines)

    def close(self) -> None:
        """Tear the session down: kill the child if alive and release handles."""
        self._alarm_cancelled.set()
        if self.process is None:
            self.logs_collected.set()
            return

        if self.process.poll() is None and self.logs_collected.is_set:
            # Output closed, the child is most likely exiting on its own
            try:
                self.process.wait(timeout=EXIT_AFTER_EOF_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.debug(
                    "child still running after output closed", pid=self.process.pid
                )

        if self.process.poll() is None:
            self.kill()
        else:
            self.exit_code = self.process.returncode

        if self._monitor is not None and self.process.returncode is not None:
            # Let the exit monitor report so late signals are complete
            self._monitor.join(LOG_COLLECT_TIMEOUT)

        if self.process.stdin is not None:
            try:
                self.process.stdin.close()
            except (BrokenPipeError, OSError):
                pass

        if self._reader is not None:
            self._reader.join(LOG_COLLECT_TIMEOUT)

        if self.process.stdout is not None:
            try:
                self.process.stdout.close()
            except OSError:
                pass


class ProcessIsolationExecutor(AttemptExecutor):
    """Runs each attempt in a freshly spawned child process.

    The unit of work handed to run_attempt() may be:
    - an argv sequence, launched as is (it must speak the handshake);
    - a "module:function" string, run through the bounded_retry.child
      entry point;
    - a module-level function, converted to a "module:function" target.

    Usage:
        executor = ProcessIsolationExecutor(startup_timeout=10.0)
        record = executor.run_attempt("mypkg.checks:probe", 1, 0.5)
    """

    def __init__(
        self,
        command: Sequence[str] | None = None,
        *,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        python_executable: str | None = None,
        gate: RaceGate | None = None,
    ):
        """Initialize process isolation executor.

        Args:
            command: Fixed argv to launch for every attempt (overrides work)
            startup_timeout: Seconds allowed for the child to complete the handshake
            env: Extra environment variables for the child
            cwd: Working directory for the child
            python_executable: Interpreter used for "module:function" targets
            gate: RaceGate used for waits (a default one is created)

        """
        if startup_timeout <= 0:
            raise ConfigurationError(
                "startup timeout must be positive",
                context={"startup_timeout": startup_timeout},
            )

        self.command = list(command) if command is not None else None
        self.startup_timeout = startup_timeout
        self.env = dict(env or {})
        self.cwd = cwd
        self.python_executable = python_executable or sys.executable
        self.gate = gate or RaceGate()

    @classmethod
    def for_callable(cls, target: str, **kwargs: Any) -> ProcessIsolationExecutor:
        """Build an executor that always runs the given "module:function" target."""
        executor = cls(**kwargs)
        executor.command = executor.child_command(target)
        return executor

    def child_command(self, target: str) -> list[str]:
        """Argv that runs target through the child entry point."""
        module, sep, func = target.partition(":")
        if not sep or not module or not func:
            raise LaunchError(
                f"Invalid target {target!r}, expected 'module:function'",
                context={"target": target},
            )
        return [self.python_executable, "-m", CHILD_MODULE, target]

    def build_command(self, work: Any) -> list[str]:
        """Resolve the argv for one attempt.

        Raises:
            LaunchError: If no runnable command can be derived

        """
        if self.command is not None:
            return list(self.command)
        if isinstance(work, str):
            return self.child_command(work)
        if callable(work):
            return self.child_command(callable_target(work))
        if isinstance(work, Sequence) and work:
            return [str(part) for part in work]
        raise LaunchError(
            f"Cannot build a child command from {work!r}",
            context={"work": repr(work)},
        )

    def _uses_child_entry_point(self, command: Sequence[str]) -> bool:
        return len(command) >= 3 and command[1:3] == ["-m", CHILD_MODULE]

    def run_attempt(
        self, work: Any, attempt: int, timeout: float | None
    ) -> AttemptRecord:
        command = self.build_command(work)
        start_time = time.monotonic()

        with IsolationSession(attempt, command, env=self.env, cwd=self.cwd) as session:
            session.start()

            if not session.wait_until_ready(self.startup_timeout, self.gate):
                session.close()
                logs = session.collected_logs()
                logger.warning(
                    "handshake_timeout",
                    session_id=session.session_id,
                    startup_timeout=self.startup_timeout,
                    exit_code=session.exit_code,
                )
                if (
                    session.exit_code == EXIT_TARGET_UNAVAILABLE
                    and self._uses_child_entry_point(command)
                ):
                    raise LaunchError(
                        f"Child could not import its target: {command[-1]}",
                        context={"command": command, "logs": list(logs)},
                    )
                error = ProcessStartupTimeout(
                    f"Child process did not complete the handshake within "
                    f"{self.startup_timeout:.1f}s",
                    context={
                        "session_id": session.session_id,
                        "attempt": attempt,
                        "exit_code": session.exit_code,
                    },
                )
                return AttemptRecord(
                    attempt=attempt,
                    outcome=AttemptOutcome.PROCESS_TIMED_OUT,
                    logs=logs,
                    error=error,
                    duration_seconds=time.monotonic() - start_time,
                    exit_code=session.exit_code,
                    session_id=session.session_id,
                )

            session.release()
            window_start = time.monotonic()
            session.start_monitor()
            session.start_alarm(timeout)

            max_wait = None if timeout is None else max(timeout, 0.0) + GATE_SLACK
            race = self.gate.wait_for_any(
                max_wait, session.timed_out, session.passed, session.failed
            )
            window = time.monotonic() - window_start

            outcome, error = self._decide(session, race.winner, attempt, timeout)
            session.close()
            logs = session.collected_logs()

        late = tuple(
            sorted(
                s.name
                for s in (session.timed_out, session.passed, session.failed)
                if s.is_set and s is not race.winner
            )
        )
        logger.debug(
            "isolated_attempt_finished",
            session_id=session.session_id,
            outcome=outcome.value,
            exit_code=session.exit_code,
            window_seconds=round(window, 3),
            late_signals=late,
        )
        if error is not None:
            error.context.setdefault("logs", list(logs))

        return AttemptRecord(
            attempt=attempt,
            outcome=outcome,
            logs=logs,
            error=error,
            duration_seconds=time.monotonic() - start_time,
            exit_code=session.exit_code,
            session_id=session.session_id,
            late_signals=late,
        )

    def _decide(
        self,
        session: IsolationSession,
        winner: Signal | None,
        attempt: int,
        timeout: float | None,
    ) -> tuple[AttemptOutcome, BoundedRetryError | None]:
        context = {"session_id": session.session_id, "attempt": attempt}

        if winner is session.passed:
            session.exit_code = 0
            return AttemptOutcome.PASSED, None

        if winner is session.failed:
            assert session.process is not None
            session.exit_code = session.process.returncode
            return AttemptOutcome.FAILED, AttemptFailure(
                f"Child process exited with code {session.exit_code}",
                context={**context, "exit_code": session.exit_code},
            )

        # Timed out, or the gate gave up without any signal
        killed = session.kill()
        logger.info(
            "process_killed",
            session_id=session.session_id,
            timeout=timeout,
            confirmed=killed,
        )
        error = ProcessTimeout(
            f"Child process exceeded its {timeout}s window and was killed",
            context={**context, "timeout_seconds": timeout},
        )
        if not killed:
            return AttemptOutcome.PROCESS_TIMED_OUT, error
        return AttemptOutcome.TIMED_OUT, error
