"""Monitor Runner - Command Line Interface

Runs a probe command periodically under a hard timeout and reports one
metric line per cycle. Every flag falls back to its ``MONITOR_*``
environment variable when omitted.
"""

from __future__ import annotations

import argparse
import signal
import sys
from pathlib import Path
from typing import Any

from monitor_runner import __version__
from monitor_runner.core.config import load_settings
from monitor_runner.core.exceptions import ConfigError
from monitor_runner.core.executor import RunExecutor
from monitor_runner.core.scheduler import CadenceScheduler
from monitor_runner.reporting.artifacts import create_artifact_hook
from monitor_runner.reporting.metrics import create_metrics_sink
from monitor_runner.reporting.reporter import CycleReporter
from monitor_runner.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

EPILOG = """
Examples:
  # Check an endpoint every 30 seconds, killing runs after 10 seconds
  monitor-runner "curl -fsS http://localhost:8080/health" \\
      --app-name shop --name health --interval 30 --timeout 10

  # Same, configured from the environment
  MONITOR_TEST_CMD="./probe.sh" MONITOR_APP_NAME=shop MONITOR_NAME=checkout \\
      monitor-runner --influxdb-host influx.local

Note: the probe command is split on whitespace; shell quoting is not
supported.
"""

# flags whose MonitorSettings field has a different name
RENAMED_FIELDS = {
    "artifacts_glob": "artifact_glob",
    "image_artifact": "image_path",
}

# flags that are not settings
RUN_OPTIONS = {"cycles"}


def positive_int(value: str) -> int:
    """Argparse type for a strictly positive integer."""
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Defaults are None so that unset flags fall through to the environment.
    """
    parser = argparse.ArgumentParser(
        prog="monitor-runner",
        description="Run a monitoring probe periodically with a hard timeout.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument(
        "test_cmd",
        nargs="?",
        metavar="TEST_CMD",
        help="Shell command which runs the test one time (env: MONITOR_TEST_CMD)",
    )

    probe = parser.add_argument_group("probe")
    probe.add_argument("--app-name", help="Name of application under test")
    probe.add_argument("--name", help="Name of test")
    probe.add_argument(
        "--interval", type=float, help="How often to run the test, seconds"
    )
    probe.add_argument(
        "--timeout", type=float, help="Seconds to wait before killing a test run"
    )
    probe.add_argument("--routing-key", help="Routing key passed to the metric line")

    supervision = parser.add_argument_group("supervision")
    supervision.add_argument(
        "--enforcer",
        choices=["watchdog", "polling"],
        help="Timeout enforcement strategy (default: watchdog)",
    )
    supervision.add_argument(
        "--kill-grace",
        type=float,
        help="Seconds to wait for a killed probe to exit",
    )
    supervision.add_argument(
        "--no-kill-tree",
        dest="kill_process_tree",
        action="store_const",
        const=False,
        help="Only kill the probe itself, not its child processes",
    )

    influx = parser.add_argument_group("influxdb")
    influx.add_argument("--influxdb-host", help="InfluxDB host (omit to log metrics)")
    influx.add_argument("--influxdb-port", type=int, help="InfluxDB port")
    influx.add_argument("--influxdb-username", help="InfluxDB username")
    influx.add_argument("--influxdb-password", help="InfluxDB password")
    influx.add_argument("--influxdb-dbname", help="InfluxDB database")
    influx.add_argument("--influxdb-rpname", help="InfluxDB retention policy")
    influx.add_argument("--measurement", help="Measurement name of the metric line")

    artifacts = parser.add_argument_group("artifacts")
    artifacts.add_argument(
        "--artifacts-glob", help="Glob of artifacts to archive on failures"
    )
    artifacts.add_argument(
        "--image-artifact", type=Path, help="Image artifact to archive on failures"
    )
    artifacts.add_argument(
        "--archive-dir", type=Path, help="Directory receiving archived artifacts"
    )

    output = parser.add_argument_group("output")
    output.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level (default: INFO)",
    )
    output.add_argument(
        "--log-format", choices=["console", "json"], help="Log output format"
    )
    output.add_argument(
        "--log-file", type=Path, help="Also write log lines to this file"
    )
    parser.add_argument(
        "--cycles",
        type=positive_int,
        help="Stop after N cycles (default: run until terminated)",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map parsed flags onto MonitorSettings fields, skipping unset flags."""
    return {
        RENAMED_FIELDS.get(dest, dest): value
        for dest, value in vars(args).items()
        if value is not None and dest not in RUN_OPTIONS
    }


def _raise_system_exit(signum: int, frame: Any) -> None:
    raise SystemExit(0)


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code: 0 on a clean stop, 1 on a configuration error.

    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(**settings_overrides(args))
        config = settings.runtime_config()
    except ConfigError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 1

    configure_logging(
        settings.log_level.value,
        json_format=settings.log_format == "json",
        log_file=settings.log_file,
    )

    executor = RunExecutor(config)
    reporter = CycleReporter(
        config,
        metrics_sink=create_metrics_sink(settings.influxdb_config()),
        artifact_hook=create_artifact_hook(settings.artifacts_config()),
        measurement=settings.measurement,
    )
    scheduler = CadenceScheduler(config, executor=executor, reporter=reporter)

    previous_handler = signal.signal(signal.SIGTERM, _raise_system_exit)
    try:
        scheduler.run(args.cycles)
    except KeyboardInterrupt:
        logger.info("interrupted")
    except SystemExit:
        logger.info("terminated")
    finally:
        executor.shutdown()
        reporter.close()
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)
    return 0


if __name__ == "__main__":
    sys.exit(main())
