"""Cadence Scheduler - the outer supervision loop.

Each cycle's end-of-cycle sleep is computed from that cycle's own start
timestamp (``interval - elapsed``), never from an accumulated schedule,
so a single overrun cannot compound into later cycles. An overrunning
cycle is logged and the next one starts immediately.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from monitor_runner.core.clock import Clock, CycleClock
from monitor_runner.core.config import RuntimeConfig
from monitor_runner.core.executor import RunExecutor, new_run_id
from monitor_runner.core.outcome import RunOutcome
from monitor_runner.reporting.reporter import CycleReporter
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CycleReport:
    """Timing summary of one completed cycle.

    Attributes:
        cycle: 1-based cycle number.
        outcome: Outcome of the run, None if the executor itself crashed.
        elapsed: Seconds from cycle start until the outcome was reported.
        slept: Seconds slept to align the next cycle.
        overrun: Whether the cycle took at least a full interval.

    """

    cycle: int
    outcome: RunOutcome | None
    elapsed: float
    slept: float
    overrun: bool


class CadenceScheduler:
    """Runs one supervised probe per interval, forever or for N cycles."""

    def __init__(
        self,
        config: RuntimeConfig,
        executor: RunExecutor | None = None,
        reporter: CycleReporter | None = None,
        clock: Clock = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize scheduler.

        Args:
            config: Runtime configuration
            executor: Per-cycle executor (default: built from config)
            reporter: Outcome reporter (default: log sink, no archival)
            clock: Monotonic clock
            sleep: Sleep function used for cadence alignment

        """
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.executor = executor or RunExecutor(config, clock=clock)
        self.reporter = reporter or CycleReporter(config)

    def run_cycle(self, cycle: int, pace: bool = True) -> CycleReport:
        """Execute, report and pace one cycle.

        Args:
            cycle: 1-based cycle number
            pace: Sleep out the rest of the interval after the run

        Returns:
            CycleReport for the cycle

        """
        cycle_clock = CycleClock.start(self.clock)
        run_id = new_run_id()

        outcome: RunOutcome | None = None
        with structlog.contextvars.bound_contextvars(run_id=run_id, cycle=cycle):
            try:
                outcome = self.executor.execute(cycle_clock, cycle=cycle, run_id=run_id)
            except Exception:
                logger.exception("cycle_failed")

            if outcome is not None:
                logger.info(
                    "cycle_complete",
                    config=str(self.config),
                    duration_ms=outcome.duration_ms,
                    status=str(outcome),
                    reason=outcome.termination_reason.value,
                    exit_code=outcome.exit_code,
                )
                try:
                    self.reporter.report(outcome)
                except Exception:
                    logger.exception("cycle_report_failed")

            elapsed = cycle_clock.elapsed()
            if elapsed >= self.config.interval:
                logger.warning(
                    "cycle_overrun",
                    elapsed_s=round(elapsed, 3),
                    interval_s=self.config.interval,
                )
                return CycleReport(cycle, outcome, elapsed, 0.0, overrun=True)

        slept = 0.0
        if pace:
            slept = self.config.interval - elapsed
            self.sleep(slept)
        return CycleReport(cycle, outcome, elapsed, slept, overrun=False)

    def run(self, max_cycles: int | None = None) -> int:
        """Run the cadence loop.

        Args:
            max_cycles: Stop after this many cycles (None runs forever)

        Returns:
            Number of completed cycles

        """
        logger.info(
            "scheduler_started",
            config=str(self.config),
            enforcer=self.config.enforcer,
            max_cycles=max_cycles,
        )
        cycle = 0
        try:
            while max_cycles is None or cycle < max_cycles:
                cycle += 1
                last = max_cycles is not None and cycle >= max_cycles
                self.run_cycle(cycle, pace=not last)
        finally:
            self.executor.shutdown()
            logger.info("scheduler_stopped", cycles=cycle)
        return cycle
