"""Run Outcome Record.

The immutable result of one supervised cycle, handed to the metrics and
archival collaborators and then discarded.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from monitor_runner.core.constants import MISSING_EXIT_CODE


class TerminationReason(Enum):
    """How a probe run ended."""

    EXITED = "exited"  # Probe exited on its own before the deadline
    KILLED_BY_TIMEOUT = "killed_by_timeout"  # Deadline reached, kill issued
    WAIT_ERROR = "wait_error"  # Observing the probe's status failed
    LAUNCH_FAILED = "launch_failed"  # Probe could not be started


@dataclass(frozen=True)
class RunOutcome:
    """Outcome of one probe run.

    Attributes:
        run_id: Identifier of the run, unique per process lifetime.
        cycle: 1-based cycle number.
        termination_reason: How the run ended.
        exit_code: Exit code for EXITED runs; None when killed or unobserved.
        duration: Wall-clock seconds from cycle start to outcome.
        started_at: UTC wall-clock time of the cycle start.
        pid: Probe pid, None if the launch failed.
        signal_sent: Whether a termination signal was delivered.
        kill_failed: Whether the timeout kill failed or did not take effect.
        error: Error message for failed launches, waits, or kills.

    """

    run_id: str
    cycle: int
    termination_reason: TerminationReason
    exit_code: int | None
    duration: float
    started_at: datetime
    pid: int | None = None
    signal_sent: bool = False
    kill_failed: bool = False
    error: str | None = None

    @property
    def failed(self) -> bool:
        """Whether the run counts as a probe failure (triggers archival)."""
        if self.termination_reason == TerminationReason.KILLED_BY_TIMEOUT:
            return True
        if self.termination_reason == TerminationReason.EXITED:
            return self.exit_code != 0
        return False

    @property
    def succeeded(self) -> bool:
        """Probe exited with status 0."""
        return (
            self.termination_reason == TerminationReason.EXITED and self.exit_code == 0
        )

    @property
    def duration_ms(self) -> int:
        """Run duration in whole milliseconds."""
        return int(self.duration * 1000)

    @property
    def metric_exit_code(self) -> int:
        """Exit code for the metric line, with a sentinel when absent."""
        return self.exit_code if self.exit_code is not None else MISSING_EXIT_CODE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "cycle": self.cycle,
            "termination_reason": self.termination_reason.value,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat(),
            "pid": self.pid,
            "signal_sent": self.signal_sent,
            "kill_failed": self.kill_failed,
            "error": self.error,
        }

    def __str__(self) -> str:
        status = self.termination_reason.value
        if self.exit_code is not None:
            status = f"{status}({self.exit_code})"
        if self.kill_failed:
            status += " [kill failed]"
        return status
