"""Custom exceptions for monitor runner operations.

This module defines the exception hierarchy for the monitor runner.
Only ConfigError is fatal; the per-cycle errors are captured into the
cycle's outcome record and never stop the cadence loop.
"""

from typing import Any


class MonitorRunnerError(Exception):
    """Base exception for monitor runner operations.

    Attributes:
        message: Human-readable error description
        error_code: Optional error code for categorization
        context: Additional context information

    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}


class ConfigError(MonitorRunnerError):
    """Raised at startup when the runtime configuration is invalid."""

    pass


class LaunchError(MonitorRunnerError):
    """Raised when the probe command cannot be tokenized or spawned."""

    pass


class WaitError(MonitorRunnerError):
    """Raised when observing the probe's status fails at the OS level."""

    pass


class KillError(MonitorRunnerError):
    """Raised when the termination signal cannot be delivered."""

    pass
