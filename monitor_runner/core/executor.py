"""Run Executor - one supervised probe run per cycle.

Launches the probe, races it against the timeout enforcer and turns what
was observed into a RunOutcome. Every per-cycle failure (launch, wait,
kill) ends up in the outcome; nothing raised here is allowed to stop the
cadence loop.
"""

from __future__ import annotations

import time
import uuid

from monitor_runner.core.clock import Clock, CycleClock
from monitor_runner.core.config import RuntimeConfig
from monitor_runner.core.exceptions import KillError, LaunchError, WaitError
from monitor_runner.core.outcome import RunOutcome, TerminationReason
from monitor_runner.core.process import ProcessHandle, ProcessLauncher
from monitor_runner.core.timeout import TimeoutEnforcer, create_enforcer
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)


def new_run_id() -> str:
    """Generate a short unique run identifier."""
    return uuid.uuid4().hex[:12]


class RunExecutor:
    """Executes one supervised probe run.

    The executor never retries: a failed launch is reported once and the
    cycle still consumes its interval slot.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        launcher: ProcessLauncher | None = None,
        enforcer: TimeoutEnforcer | None = None,
        clock: Clock = time.monotonic,
    ):
        """Initialize executor.

        Args:
            config: Runtime configuration
            launcher: Process launcher (default: one honoring kill_process_tree)
            enforcer: Timeout enforcer (default: the configured strategy)
            clock: Monotonic clock shared with the enforcer

        """
        self.config = config
        self.clock = clock
        self.launcher = launcher or ProcessLauncher(
            kill_process_tree=config.kill_process_tree
        )
        self.enforcer = enforcer or create_enforcer(
            config.enforcer, kill_grace=config.kill_grace, clock=clock
        )
        self._inflight: ProcessHandle | None = None

    def execute(
        self,
        cycle_clock: CycleClock | None = None,
        cycle: int = 1,
        run_id: str | None = None,
    ) -> RunOutcome:
        """Run the probe once under the configured timeout.

        Args:
            cycle_clock: Start of the cycle (default: now)
            cycle: 1-based cycle number
            run_id: Run identifier (default: freshly generated)

        Returns:
            RunOutcome describing how the run ended

        """
        cycle_clock = cycle_clock or CycleClock.start(self.clock)
        run_id = run_id or new_run_id()
        deadline = cycle_clock.deadline(self.config.timeout)
        cycle_end = cycle_clock.cycle_end(self.config.interval)

        def outcome(reason: TerminationReason, **fields) -> RunOutcome:
            return RunOutcome(
                run_id=run_id,
                cycle=cycle,
                termination_reason=reason,
                duration=cycle_clock.elapsed(),
                started_at=cycle_clock.started_at,
                **fields,
            )

        try:
            handle = self.launcher.launch(self.config.argv)
        except LaunchError as e:
            logger.error(
                "probe_launch_failed",
                error=e.message,
                error_code=e.error_code,
                argv=self.config.argv,
            )
            return outcome(
                TerminationReason.LAUNCH_FAILED, exit_code=None, error=e.message
            )

        self._inflight = handle
        try:
            result = self.enforcer.enforce(handle, deadline, cycle_end)
        except WaitError as e:
            logger.error("probe_wait_failed", pid=handle.pid, error=e.message)
            handle.reap_nowait()
            return outcome(
                TerminationReason.WAIT_ERROR,
                exit_code=None,
                pid=handle.pid,
                error=e.message,
            )
        except BaseException:
            self.shutdown()
            raise
        finally:
            self._inflight = None

        if result.timed_out:
            return outcome(
                TerminationReason.KILLED_BY_TIMEOUT,
                exit_code=None,
                pid=handle.pid,
                signal_sent=result.signal_sent,
                kill_failed=result.kill_failed,
                error=result.kill_error,
            )

        return outcome(
            TerminationReason.EXITED,
            exit_code=result.exit_code,
            pid=handle.pid,
            signal_sent=result.signal_sent,
        )

    def shutdown(self) -> bool:
        """Kill the probe of a run that is still in flight.

        Returns:
            True if a kill signal was sent

        """
        handle = self._inflight
        if handle is None:
            return False
        try:
            sent = handle.terminate()
        except (KillError, WaitError) as e:
            logger.error("shutdown_kill_failed", pid=handle.pid, error=e.message)
            return False
        if sent:
            logger.info("inflight_probe_killed", pid=handle.pid)
            if handle.wait_for_exit(self.config.kill_grace):
                handle.reap_nowait()
        return sent
