"""Signals and first-signal-wins races.

A Signal is a one-shot, thread-safe latch. RaceGate waits for the first of
several signals (or a time limit), and until_any_completes races a unit of
work against an alarm.

Neither primitive forcibly stops a losing racer: a Python thread cannot be
killed safely, so losers are left to finish on their own and their results
are discarded. Use the process isolation executor when a timed-out attempt
must really stop.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from bounded_retry.core.exceptions import AttemptTimeout, ConfigurationError
from bounded_retry.utils.logger import get_logger

logger = get_logger(__name__)

# How often a losing watcher re-checks whether the race is already decided
DEFAULT_POLL_INTERVAL = 0.05


class Signal:
    """One-shot boolean latch.

    Once set it stays set; further calls to set() are no-ops. The call that
    performs the transition gets True back, which is how a racer learns it
    won.
    """

    def __init__(self, name: str = "signal") -> None:
        self.name = name
        self._condition = threading.Condition()
        self._is_set = False
        self.set_at: float | None = None

    @property
    def is_set(self) -> bool:
        return self._is_set

    def set(self) -> bool:
        """Set the signal and wake all waiters.

        Returns:
            True if this call performed the transition, False if the signal
            was already set

        """
        with self._condition:
            if self._is_set:
                return False
            self._is_set = True
            self.set_at = time.monotonic()
            self._condition.notify_all()
            return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the signal is set or timeout seconds elapse.

        Returns:
            True if the signal is set

        """
        with self._condition:
            return self._condition.wait_for(lambda: self._is_set, timeout)

    def __repr__(self) -> str:
        state = "set" if self._is_set else "clear"
        return f"Signal({self.name!r}, {state})"


@dataclass(frozen=True)
class RaceResult:
    """Outcome of RaceGate.wait_for_any().

    Attributes:
        fired: Whether any signal fired before the time limit
        winner: The first signal observed set (authoritative), if any
        fired_signals: Every signal that was set when the race was decided

    """

    fired: bool
    winner: Signal | None
    fired_signals: frozenset[Signal]

    def __bool__(self) -> bool:
        return self.fired

    @property
    def late_signals(self) -> frozenset[Signal]:
        """Signals that were also set but lost the race."""
        if self.winner is None:
            return self.fired_signals
        return self.fired_signals - {self.winner}


class RaceGate:
    """Wait for the first of N signals, or time out.

    Every signal gets its own watcher thread. Watchers (and the caller)
    rendezvous on a barrier before anyone starts waiting, so a signal that
    fires immediately cannot slip past a watcher that has not started yet.
    The first watcher to see its signal set decides the race; the others
    notice the race is closed within one poll interval and exit.
    """

    def __init__(self, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        if poll_interval <= 0:
            raise ConfigurationError(
                "poll interval must be positive",
                context={"poll_interval": poll_interval},
            )
        self.poll_interval = poll_interval

    def wait_for_any(self, max_wait: float | None, *signals: Signal) -> RaceResult:
        """Block until at least one signal is set or max_wait seconds elapse.

        Args:
            max_wait: Maximum seconds to wait, None waits without limit
            *signals: Signals to race

        Returns:
            RaceResult naming the winning signal

        """
        if not signals:
            raise ValueError("wait_for_any() needs at least one signal")

        decided = Signal("race-decided")
        closed = threading.Event()
        claim_lock = threading.Lock()
        claimed: list[Signal] = []
        barrier = threading.Barrier(len(signals) + 1)
        deadline = None if max_wait is None else time.monotonic() + max_wait

        def watch(signal: Signal) -> None:
            try:
                barrier.wait()
            except threading.BrokenBarrierError:
                return

            while not closed.is_set():
                wait_slice = self.poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return
                    wait_slice = min(wait_slice, remaining)

                if signal.wait(wait_slice):
                    with claim_lock:
                        if not claimed:
                            claimed.append(signal)
                    decided.set()
                    return

        for signal in signals:
            threading.Thread(
                target=watch,
                args=(signal,),
                name=f"race-watch-{signal.name}",
                daemon=True,
            ).start()

        barrier.wait()
        decided.wait(max_wait)
        closed.set()

        with claim_lock:
            winner = claimed[0] if claimed else None
            fired_signals = frozenset(s for s in signals if s.is_set)

        # Signal set right at the deadline, before any watcher claimed it
        if winner is None and fired_signals:
            winner = min(fired_signals, key=lambda s: s.set_at or 0.0)

        if winner is not None and len(fired_signals) > 1:
            logger.debug(
                "late_signals_ignored",
                winner=winner.name,
                late=sorted(s.name for s in fired_signals if s is not winner),
            )

        return RaceResult(
            fired=winner is not None,
            winner=winner,
            fired_signals=fired_signals,
        )


def until_any_completes(
    work: Callable[[], object],
    timeout: float | None,
    on_timeout: Callable[[], None] | None = None,
) -> BaseException | None:
    """Race work against an alarm that fires after timeout seconds.

    Both racers push at most one tagged result into a channel and the
    first result taken decides. The work thread is never stopped: if the
    alarm wins, the work keeps running in the background and its result
    is ignored.

    Args:
        work: Zero-argument callable to run
        timeout: Seconds before the alarm fires, None disables the alarm
        on_timeout: Optional hook invoked by the alarm before it reports

    Returns:
        None if the work completed first, the exception it raised if it
        failed first, or an AttemptTimeout if the alarm fired first

    """
    if timeout is not None and timeout <= 0:
        return AttemptTimeout(
            "No time left to start the attempt",
            context={"timeout_seconds": timeout},
        )

    results: queue.Queue[tuple[str, BaseException | None]] = queue.Queue()
    cancelled = threading.Event()

    def run_work() -> None:
        try:
            work()
        # pytest outcome exceptions derive from BaseException
        except BaseException as e:
            results.put(("work", e))
            return
        results.put(("work", None))

    def alarm() -> None:
        if cancelled.wait(timeout):
            return
        if on_timeout is not None:
            on_timeout()
        results.put(
            (
                "timeout",
                AttemptTimeout(
                    f"Attempt took more than {timeout:.3f}s to run",
                    context={"timeout_seconds": timeout},
                ),
            )
        )

    threading.Thread(target=run_work, name="race-work", daemon=True).start()
    if timeout is not None:
        threading.Thread(target=alarm, name="race-alarm", daemon=True).start()

    source, error = results.get()
    cancelled.set()
    logger.debug("race_decided", source=source, failed=error is not None)
    return error
