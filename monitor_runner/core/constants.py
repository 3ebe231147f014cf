"""Shared constants for probe supervision and reporting."""

from __future__ import annotations

import signal
from typing import Final

# =============================================================================
# Exit Codes
# =============================================================================

#: Serialized in the metric line whenever the outcome carries no exit code
MISSING_EXIT_CODE: Final[int] = -1

#: Signal used to stop a probe that overran its deadline
KILL_SIGNAL: Final[int] = signal.SIGKILL

# =============================================================================
# Polling Backoff (PollingEnforcer)
# =============================================================================

#: First delay between liveness polls (500 microseconds)
POLL_INITIAL_DELAY: Final[float] = 0.0005

#: Upper bound for a single poll delay
POLL_MAX_DELAY: Final[float] = 0.5

#: Poll step used by ProcessHandle.wait_for_exit when pidfd is unavailable
EXIT_POLL_STEP: Final[float] = 0.01

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_INTERVAL: Final[float] = 10.0
DEFAULT_TIMEOUT: Final[float] = 5.0
DEFAULT_KILL_GRACE: Final[float] = 2.0
DEFAULT_ROUTING_KEY: Final[str] = "monitor-pilot"
DEFAULT_MEASUREMENT: Final[str] = "monitor"
DEFAULT_INFLUXDB_PORT: Final[int] = 8086
DEFAULT_INFLUXDB_DBNAME: Final[str] = "monitor"
