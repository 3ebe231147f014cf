"""Reporting collaborators: metric lines, sinks and failure archival."""

from monitor_runner.reporting.artifacts import (
    ArtifactHook,
    ArtifactUrls,
    LocalArtifactArchiver,
    NullArtifactHook,
    create_artifact_hook,
)
from monitor_runner.reporting.metrics import (
    InfluxDBSink,
    LogMetricsSink,
    MetricsSink,
    create_metrics_sink,
    format_metric_line,
)
from monitor_runner.reporting.reporter import CycleReporter

__all__ = [
    "ArtifactHook",
    "ArtifactUrls",
    "CycleReporter",
    "InfluxDBSink",
    "LocalArtifactArchiver",
    "LogMetricsSink",
    "MetricsSink",
    "NullArtifactHook",
    "create_artifact_hook",
    "create_metrics_sink",
    "format_metric_line",
]
