"""Configuration Management - Runtime and Collaborator Settings.

Settings are loaded from ``MONITOR_*`` environment variables (and an
optional ``.env`` file) through pydantic-settings, overridden by explicit
values such as command-line flags, then frozen into the immutable
``RuntimeConfig`` consumed by the scheduler. Invalid configurations fail
with ConfigError before any probe is launched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from monitor_runner.core.constants import (
    DEFAULT_INFLUXDB_DBNAME,
    DEFAULT_INFLUXDB_PORT,
    DEFAULT_INTERVAL,
    DEFAULT_KILL_GRACE,
    DEFAULT_MEASUREMENT,
    DEFAULT_ROUTING_KEY,
    DEFAULT_TIMEOUT,
)
from monitor_runner.core.exceptions import ConfigError
from monitor_runner.core.process import tokenize_command

EnforcerKind = Literal["watchdog", "polling"]


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class RuntimeConfig:
    """Immutable configuration of the supervision loop.

    Attributes:
        app_name: Name of the application under test.
        test_name: Name of the probe.
        probe_command: Command string, tokenized on whitespace (no shell quoting).
        interval: Cycle length in seconds.
        timeout: Maximum probe runtime in seconds, at most ``interval``.
        routing_key: Label passed through to the metric line, uninterpreted.
        probe_argv: Optional structured argv, takes precedence over ``probe_command``.
        enforcer: Timeout enforcement strategy ("watchdog" or "polling").
        kill_grace: Seconds to wait for a kill to take effect before giving up.
        kill_process_tree: Also kill the probe's descendants on timeout.

    """

    app_name: str
    test_name: str
    probe_command: str
    interval: float = DEFAULT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT
    routing_key: str = DEFAULT_ROUTING_KEY
    probe_argv: tuple[str, ...] | None = None
    enforcer: EnforcerKind = "watchdog"
    kill_grace: float = DEFAULT_KILL_GRACE
    kill_process_tree: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.probe_argv is not None and not isinstance(self.probe_argv, tuple):
            object.__setattr__(self, "probe_argv", tuple(self.probe_argv))

        if not self.app_name:
            raise ConfigError("app_name is required", error_code="missing_app_name")
        if not self.test_name:
            raise ConfigError("test name is required", error_code="missing_name")

        if self.interval <= 0:
            raise ConfigError(
                f"interval must be positive, got {self.interval}",
                error_code="invalid_interval",
            )
        if self.timeout <= 0:
            raise ConfigError(
                f"timeout must be positive, got {self.timeout}",
                error_code="invalid_timeout",
            )
        if self.timeout > self.interval:
            raise ConfigError(
                f"timeout ({self.timeout}s) must not exceed "
                f"interval ({self.interval}s)",
                error_code="timeout_exceeds_interval",
                context={"timeout": self.timeout, "interval": self.interval},
            )
        if self.kill_grace < 0:
            raise ConfigError(
                "kill_grace must be non-negative",
                error_code="invalid_kill_grace",
                context={"kill_grace": self.kill_grace},
            )
        if self.enforcer not in ("watchdog", "polling"):
            raise ConfigError(
                f"unknown enforcer: {self.enforcer}",
                error_code="unknown_enforcer",
                context={"enforcer": self.enforcer},
            )

        if not self.argv:
            raise ConfigError(
                "probe command is empty", error_code="empty_probe_command"
            )

    @property
    def argv(self) -> list[str]:
        """Argument vector for the probe; first token is the executable."""
        if self.probe_argv:
            return list(self.probe_argv)
        return tokenize_command(self.probe_command)

    @property
    def command_display(self) -> str:
        """Command as shown in log lines."""
        if self.probe_argv:
            return " ".join(self.probe_argv)
        return self.probe_command

    def __str__(self) -> str:
        return (
            f"({self.app_name}/{self.test_name}: {self.command_display} "
            f"every {self.interval:g}s for {self.timeout:g}s)"
        )


@dataclass(frozen=True)
class InfluxDBConfig:
    """Connection settings for the InfluxDB metrics sink."""

    host: str
    port: int = DEFAULT_INFLUXDB_PORT
    username: str | None = None
    password: str | None = None
    dbname: str = DEFAULT_INFLUXDB_DBNAME
    rpname: str | None = None

    @property
    def write_url(self) -> str:
        """URL of the 1.x-compatible write endpoint."""
        return f"http://{self.host}:{self.port}/write"

    def __repr__(self) -> str:
        # keep the password out of logs and tracebacks
        return (
            f"InfluxDBConfig(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, dbname={self.dbname!r}, "
            f"rpname={self.rpname!r})"
        )


@dataclass(frozen=True)
class ArtifactsConfig:
    """Sources and destination for failure artifacts."""

    archive_dir: Path
    artifact_glob: str | None = None
    image_path: Path | None = None

    @property
    def enabled(self) -> bool:
        """Whether any artifact source is configured."""
        return bool(self.artifact_glob or self.image_path)


class MonitorSettings(BaseSettings):
    """Settings bound to ``MONITOR_*`` environment variables.

    Usage:
        settings = load_settings(interval=30)
        config = settings.runtime_config()
    """

    model_config = SettingsConfigDict(
        env_prefix="MONITOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Probe
    test_cmd: str = Field(description="Shell command which runs the test one time")
    app_name: str = Field(description="Name of application under test")
    name: str = Field(description="Name of test")
    interval: float = Field(
        default=DEFAULT_INTERVAL, gt=0, description="How often to run the test (s)"
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        gt=0,
        description="Seconds to wait before killing a test run",
    )
    routing_key: str = Field(
        default=DEFAULT_ROUTING_KEY,
        description="OpsGenie team name, passed to InfluxDB",
    )

    # Supervision
    enforcer: EnforcerKind = Field(
        default="watchdog", description="Timeout enforcement strategy"
    )
    kill_grace: float = Field(
        default=DEFAULT_KILL_GRACE,
        ge=0,
        description="Seconds to wait for a killed probe to exit",
    )
    kill_process_tree: bool = Field(
        default=True, description="Kill the probe's child processes on timeout"
    )

    # InfluxDB
    influxdb_host: str | None = Field(default=None, description="InfluxDB host")
    influxdb_port: int = Field(default=DEFAULT_INFLUXDB_PORT, gt=0, lt=65536)
    influxdb_username: str | None = None
    influxdb_password: SecretStr | None = None
    influxdb_dbname: str = DEFAULT_INFLUXDB_DBNAME
    influxdb_rpname: str | None = None
    measurement: str = Field(default=DEFAULT_MEASUREMENT, min_length=1)

    # Artifacts
    artifact_glob: str | None = Field(
        default=None, description="Glob of artifacts to archive on failures"
    )
    image_path: Path | None = Field(
        default=None, description="Image artifact to archive on failures"
    )
    archive_dir: Path = Field(default=Path("./artifacts/monitor"))

    # Logging
    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: Literal["console", "json"] = Field(default="console")
    log_file: Path | None = Field(
        default=None, description="Also write log lines to this file"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Accept lower-case level names."""
        if isinstance(v, str):
            v = v.upper()
        return v

    @field_validator(
        "influxdb_host", "artifact_glob", "influxdb_rpname", "log_file", mode="before"
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat empty environment values as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def runtime_config(self) -> RuntimeConfig:
        """Freeze the probe settings into a validated RuntimeConfig.

        Raises:
            ConfigError: If the settings violate a runtime invariant

        """
        return RuntimeConfig(
            app_name=self.app_name,
            test_name=self.name,
            probe_command=self.test_cmd,
            interval=self.interval,
            timeout=self.timeout,
            routing_key=self.routing_key,
            enforcer=self.enforcer,
            kill_grace=self.kill_grace,
            kill_process_tree=self.kill_process_tree,
        )

    def influxdb_config(self) -> InfluxDBConfig | None:
        """InfluxDB settings, or None when no host is configured."""
        if not self.influxdb_host:
            return None
        return InfluxDBConfig(
            host=self.influxdb_host,
            port=self.influxdb_port,
            username=self.influxdb_username,
            password=(
                self.influxdb_password.get_secret_value()
                if self.influxdb_password
                else None
            ),
            dbname=self.influxdb_dbname,
            rpname=self.influxdb_rpname,
        )

    def artifacts_config(self) -> ArtifactsConfig:
        """Artifact archival settings."""
        return ArtifactsConfig(
            archive_dir=self.archive_dir,
            artifact_glob=self.artifact_glob,
            image_path=self.image_path,
        )


def load_settings(**overrides: Any) -> MonitorSettings:
    """Load settings from the environment, applying explicit overrides.

    Args:
        **overrides: Values that win over the environment (None values are ignored)

    Returns:
        MonitorSettings instance

    Raises:
        ConfigError: If a value is missing or invalid

    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return MonitorSettings(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(
            f"invalid configuration: {problems}", error_code="invalid_settings"
        ) from e
