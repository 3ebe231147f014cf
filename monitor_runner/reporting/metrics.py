"""Metric Line Formatting and Sinks.

Every completed cycle produces one InfluxDB line-protocol record::

    monitor,app=<app>,name=<name>,ret_code=<code> value=1,duration=<ms>,
        interval=<s>,routing_key="<key>",artifact_url="<url>",image_url="<url>" <ns>

A missing exit code (killed, unobserved, not launched) is written as -1.
Sinks deliver the line; delivery problems are logged, never raised.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from monitor_runner.core.config import InfluxDBConfig, RuntimeConfig
from monitor_runner.core.constants import DEFAULT_MEASUREMENT
from monitor_runner.core.outcome import RunOutcome
from monitor_runner.reporting.artifacts import ArtifactUrls
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)


def _escape_measurement(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")


def _escape_tag(value: str) -> str:
    value = value.replace("\n", " ")
    return (
        value.replace("\\", "\\\\")
        .replace(",", "\\,")
        .replace("=", "\\=")
        .replace(" ", "\\ ")
    )


def _string_field(value: str) -> str:
    value = value.replace("\n", " ")
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _timestamp_ns(outcome: RunOutcome) -> int:
    started = outcome.started_at
    return int(started.timestamp()) * 1_000_000_000 + started.microsecond * 1_000


def format_metric_line(
    config: RuntimeConfig,
    outcome: RunOutcome,
    urls: ArtifactUrls | None = None,
    measurement: str = DEFAULT_MEASUREMENT,
) -> str:
    """Render the metric line for one cycle.

    Args:
        config: Runtime configuration
        outcome: Outcome of the cycle
        urls: Archived artifact URLs (empty for successful runs)
        measurement: InfluxDB measurement name

    Returns:
        Line-protocol record with a nanosecond timestamp of the cycle start

    """
    urls = urls or ArtifactUrls()
    tags = ",".join(
        [
            f"app={_escape_tag(config.app_name)}",
            f"name={_escape_tag(config.test_name)}",
            f"ret_code={outcome.metric_exit_code}",
        ]
    )
    fields = ",".join(
        [
            "value=1",
            f"duration={outcome.duration_ms}",
            f"interval={config.interval:g}",
            f"routing_key={_string_field(config.routing_key)}",
            f"artifact_url={_string_field(urls.artifact_url)}",
            f"image_url={_string_field(urls.image_url)}",
        ]
    )
    timestamp = _timestamp_ns(outcome)
    return f"{_escape_measurement(measurement)},{tags} {fields} {timestamp}"


class MetricsSink(ABC):
    """Destination for metric lines."""

    @abstractmethod
    def emit(self, line: str) -> bool:
        """Deliver one metric line.

        Returns:
            True if the line was delivered

        """

    def close(self) -> None:
        """Release resources held by the sink."""


class LogMetricsSink(MetricsSink):
    """Writes metric lines to the log when no backend is configured."""

    def emit(self, line: str) -> bool:
        logger.info("metric_line", line=line)
        return True


class InfluxDBSink(MetricsSink):
    """Posts metric lines to an InfluxDB ``/write`` endpoint."""

    def __init__(
        self,
        config: InfluxDBConfig,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
    ):
        """Initialize sink.

        Args:
            config: InfluxDB connection settings
            client: HTTP client (default: a new client with ``timeout``)
            timeout: Request timeout in seconds for the default client

        """
        self.config = config
        self._client = client or httpx.Client(timeout=timeout)
        self._auth = (
            httpx.BasicAuth(config.username, config.password or "")
            if config.username
            else None
        )

    @property
    def params(self) -> dict[str, str]:
        """Query parameters of the write request."""
        params = {"db": self.config.dbname, "precision": "ns"}
        if self.config.rpname:
            params["rp"] = self.config.rpname
        return params

    def emit(self, line: str) -> bool:
        try:
            response = self._client.post(
                self.config.write_url,
                params=self.params,
                content=line.encode("utf-8"),
                auth=self._auth,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "metrics_write_failed", url=self.config.write_url, error=str(e)
            )
            return False

        logger.debug("metrics_written", url=self.config.write_url)
        return True

    def close(self) -> None:
        self._client.close()


def create_metrics_sink(influxdb: InfluxDBConfig | None) -> MetricsSink:
    """Pick the sink for the configured backend."""
    if influxdb is None:
        return LogMetricsSink()
    return InfluxDBSink(influxdb)
