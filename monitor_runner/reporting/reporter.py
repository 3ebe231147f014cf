"""Cycle Reporter - hands each outcome to the reporting collaborators."""

from __future__ import annotations

from monitor_runner.core.config import RuntimeConfig
from monitor_runner.core.constants import DEFAULT_MEASUREMENT
from monitor_runner.core.outcome import RunOutcome
from monitor_runner.reporting.artifacts import (
    ArtifactHook,
    ArtifactUrls,
    NullArtifactHook,
)
from monitor_runner.reporting.metrics import (
    LogMetricsSink,
    MetricsSink,
    format_metric_line,
)
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)


class CycleReporter:
    """Archives failed runs, then emits the metric line of every run."""

    def __init__(
        self,
        config: RuntimeConfig,
        metrics_sink: MetricsSink | None = None,
        artifact_hook: ArtifactHook | None = None,
        measurement: str = DEFAULT_MEASUREMENT,
    ):
        self.config = config
        self.metrics_sink = metrics_sink or LogMetricsSink()
        self.artifact_hook = artifact_hook or NullArtifactHook()
        self.measurement = measurement

    def report(self, outcome: RunOutcome) -> str:
        """Report one outcome.

        The archival hook is invoked only for failed runs. An archival error
        is logged and the metric line is still emitted, without URLs.

        Returns:
            The emitted metric line

        """
        urls = ArtifactUrls()
        if outcome.failed:
            try:
                urls = self.artifact_hook.archive(self.config, outcome)
            except Exception:
                logger.exception("artifact_archival_failed", run_id=outcome.run_id)

        line = format_metric_line(self.config, outcome, urls, self.measurement)
        self.metrics_sink.emit(line)
        return line

    def close(self) -> None:
        self.metrics_sink.close()
