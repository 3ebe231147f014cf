"""
Monitor Runner - periodic, timeout-bounded execution of monitoring probes.

Runs an external probe command on a fixed cadence, kills runs that
outlive their timeout, and reports one metric line per cycle.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from monitor_runner.core.config import RuntimeConfig, load_settings
from monitor_runner.core.executor import RunExecutor
from monitor_runner.core.outcome import RunOutcome, TerminationReason
from monitor_runner.core.scheduler import CadenceScheduler

__all__ = [
    "__version__",
    "__license__",
    "CadenceScheduler",
    "RunExecutor",
    "RunOutcome",
    "RuntimeConfig",
    "TerminationReason",
    "load_settings",
]
