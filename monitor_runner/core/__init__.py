"""Core supervision components: config, process handling, timeouts, cadence."""

from monitor_runner.core.clock import CycleClock
from monitor_runner.core.config import (
    ArtifactsConfig,
    InfluxDBConfig,
    MonitorSettings,
    RuntimeConfig,
    load_settings,
)
from monitor_runner.core.exceptions import (
    ConfigError,
    KillError,
    LaunchError,
    MonitorRunnerError,
    WaitError,
)
from monitor_runner.core.executor import RunExecutor
from monitor_runner.core.outcome import RunOutcome, TerminationReason
from monitor_runner.core.process import ProcessHandle, ProcessLauncher
from monitor_runner.core.timeout import (
    PollingEnforcer,
    TimeoutEnforcer,
    WatchdogEnforcer,
    create_enforcer,
)

__all__ = [
    "ArtifactsConfig",
    "ConfigError",
    "CycleClock",
    "InfluxDBConfig",
    "KillError",
    "LaunchError",
    "MonitorRunnerError",
    "MonitorSettings",
    "PollingEnforcer",
    "ProcessHandle",
    "ProcessLauncher",
    "RunExecutor",
    "RunOutcome",
    "RuntimeConfig",
    "TerminationReason",
    "TimeoutEnforcer",
    "WaitError",
    "WatchdogEnforcer",
    "create_enforcer",
    "load_settings",
]
