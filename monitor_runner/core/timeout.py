"""Timeout Enforcement - keep a probe from outliving its deadline.

Two interchangeable strategies, selected once at startup:

- WatchdogEnforcer: a dedicated watchdog thread sleeps until the deadline,
  then checks liveness without blocking and kills the probe if it is still
  running. The calling thread blocks on the probe's exit meanwhile.
- PollingEnforcer: the calling thread polls liveness with exponential
  backoff and kills the probe itself once the deadline has passed.

Both send at most one termination signal per run, and both treat an
observed exit as authoritative: a probe that exits just before the
deadline is reported with its own exit code, never as killed. Neither
reaps the probe while a kill could still be sent, so the pid cannot be
reused underneath the watchdog.
"""

from __future__ import annotations

import contextvars
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from monitor_runner.core.clock import Clock
from monitor_runner.core.constants import (
    DEFAULT_KILL_GRACE,
    KILL_SIGNAL,
    POLL_INITIAL_DELAY,
    POLL_MAX_DELAY,
)
from monitor_runner.core.exceptions import KillError, WaitError
from monitor_runner.core.process import ProcessHandle
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EnforcementResult:
    """What the enforcer observed for one probe run.

    Attributes:
        exit_code: Reaped exit code, None if the probe could not be reaped.
        signal_sent: A termination signal reached the probe.
        kill_failed: The deadline passed and the probe could not be killed.
        kill_error: Why the kill failed.

    """

    exit_code: int | None
    signal_sent: bool = False
    kill_failed: bool = False
    kill_error: str | None = None

    @property
    def timed_out(self) -> bool:
        """Whether the run ended because of the deadline."""
        if self.kill_failed:
            return True
        return self.signal_sent and self.exit_code == -KILL_SIGNAL


class TimeoutEnforcer(ABC):
    """Guarantees a probe is not alive past its deadline."""

    name: str = "base"

    def __init__(
        self, kill_grace: float = DEFAULT_KILL_GRACE, clock: Clock = time.monotonic
    ):
        """Initialize enforcer.

        Args:
            kill_grace: Seconds to wait for a killed probe to exit
            clock: Monotonic clock used for deadlines

        """
        self.kill_grace = kill_grace
        self.clock = clock

    @abstractmethod
    def enforce(
        self, handle: ProcessHandle, deadline: float, cycle_end: float | None = None
    ) -> EnforcementResult:
        """Supervise the probe until it exits or the deadline is reached.

        Args:
            handle: Running probe
            deadline: Monotonic instant after which the probe must be dead
            cycle_end: Monotonic instant at which the enclosing interval ends

        Returns:
            EnforcementResult for the run

        Raises:
            WaitError: If the probe's status cannot be observed

        """

    def _kill_failed(
        self, handle: ProcessHandle, reason: str, signal_sent: bool
    ) -> EnforcementResult:
        logger.error("probe_kill_failed", pid=handle.pid, error=reason)
        return EnforcementResult(
            exit_code=None,
            signal_sent=signal_sent,
            kill_failed=True,
            kill_error=reason,
        )


class PollingEnforcer(TimeoutEnforcer):
    """Cooperative polling with exponential backoff, no extra thread.

    The poll delay starts at ``initial_delay`` and doubles after every poll
    that finds the probe running, capped at ``max_delay`` and never sleeping
    past the deadline or the end of the interval. Natural exits are detected
    with at most ``max_delay`` latency.
    """

    name = "polling"

    def __init__(
        self,
        kill_grace: float = DEFAULT_KILL_GRACE,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        initial_delay: float = POLL_INITIAL_DELAY,
        max_delay: float = POLL_MAX_DELAY,
    ):
        super().__init__(kill_grace=kill_grace, clock=clock)
        self.sleep = sleep
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    def enforce(
        self, handle: ProcessHandle, deadline: float, cycle_end: float | None = None
    ) -> EnforcementResult:
        delay = self.initial_delay
        while True:
            if handle.try_wait() is not None:
                return EnforcementResult(exit_code=handle.wait())

            now = self.clock()
            if now >= deadline:
                return self._kill(handle)

            step = min(delay, self.max_delay, deadline - now)
            if cycle_end is not None and cycle_end > now:
                step = min(step, cycle_end - now)
            self.sleep(step)
            delay = min(delay * 2, self.max_delay)

    def _kill(self, handle: ProcessHandle) -> EnforcementResult:
        logger.warning("probe_timeout", pid=handle.pid, strategy=self.name)
        try:
            sent = handle.terminate()
        except KillError as e:
            return self._kill_failed(handle, str(e), signal_sent=False)

        if not handle.wait_for_exit(self.kill_grace):
            return self._kill_failed(
                handle,
                f"probe still alive {self.kill_grace}s after kill",
                signal_sent=sent,
            )
        return EnforcementResult(exit_code=handle.wait(), signal_sent=sent)


@dataclass(frozen=True)
class _WatchdogReport:
    signal_sent: bool = False
    kill_error: str | None = None


class WatchdogEnforcer(TimeoutEnforcer):
    """Dedicated watchdog thread with a single check-and-maybe-kill.

    One short-lived watchdog thread per run is joined before ``enforce``
    returns. It receives only the handle and the deadline; its verdict comes
    back through the future. The only shared resource is the probe itself,
    arbitrated by the OS.
    """

    name = "watchdog"

    def enforce(
        self, handle: ProcessHandle, deadline: float, cycle_end: float | None = None
    ) -> EnforcementResult:
        exit_observed = threading.Event()
        with ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="probe-watchdog"
        ) as pool:
            verdict = pool.submit(
                contextvars.copy_context().run,
                self._watch,
                handle,
                deadline,
                exit_observed,
            )
            try:
                exited = handle.wait_for_exit(
                    max(deadline - self.clock(), 0.0) + self.kill_grace
                )
            except WaitError:
                # watchdog stays armed, the deadline is still enforced on join
                raise
            except BaseException:
                exit_observed.set()
                raise
            if exited:
                exit_observed.set()
            report = verdict.result()

        if report.kill_error is not None:
            # a late natural exit does not undo the overrun
            if exited:
                handle.wait()
            return self._kill_failed(handle, report.kill_error, signal_sent=False)

        if not exited and report.signal_sent:
            exited = handle.wait_for_exit(self.kill_grace)

        if not exited:
            return self._kill_failed(
                handle,
                f"probe still alive {self.kill_grace}s after deadline",
                signal_sent=report.signal_sent,
            )
        return EnforcementResult(
            exit_code=handle.wait(), signal_sent=report.signal_sent
        )

    def _watch(
        self,
        handle: ProcessHandle,
        deadline: float,
        exit_observed: threading.Event,
    ) -> _WatchdogReport:
        remaining = deadline - self.clock()
        while remaining > 0:
            if exit_observed.wait(remaining):
                return _WatchdogReport()
            remaining = deadline - self.clock()

        if handle.try_wait() is not None:
            logger.debug("watchdog_noop", pid=handle.pid)
            return _WatchdogReport()

        logger.warning("probe_timeout", pid=handle.pid, strategy=self.name)
        try:
            sent = handle.terminate()
        except KillError as e:
            logger.warning("watchdog_kill_error", pid=handle.pid, error=str(e))
            return _WatchdogReport(kill_error=str(e))
        return _WatchdogReport(signal_sent=sent)


ENFORCERS: dict[str, type[TimeoutEnforcer]] = {
    WatchdogEnforcer.name: WatchdogEnforcer,
    PollingEnforcer.name: PollingEnforcer,
}


def create_enforcer(
    kind: str, kill_grace: float = DEFAULT_KILL_GRACE, clock: Clock = time.monotonic
) -> TimeoutEnforcer:
    """Create the enforcer for a configured strategy name.

    Raises:
        ValueError: If the strategy name is unknown

    """
    try:
        enforcer_cls = ENFORCERS[kind]
    except KeyError:
        raise ValueError(f"Unknown enforcer: {kind}") from None
    return enforcer_cls(kill_grace=kill_grace, clock=clock)
