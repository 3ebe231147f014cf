"""
Pytest configuration and shared fixtures for monitor runner tests.
"""

import logging
import sys
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from monitor_runner.core.config import RuntimeConfig


class FakeClock:
    """Monotonic clock advanced by hand (or by FakeClock.sleep)."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files.

    Yields:
        Path to temporary directory that will be cleaned up after test
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a hand-driven monotonic clock."""
    return FakeClock()


@pytest.fixture
def clock_factory() -> type[FakeClock]:
    """Provide the FakeClock class for tests needing several clocks."""
    return FakeClock


@pytest.fixture
def python_argv():
    """Build an argv running a Python snippet in a fresh interpreter."""

    def build(code: str) -> tuple[str, ...]:
        return (sys.executable, "-c", code)

    return build


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    """Minimal valid runtime configuration."""
    return RuntimeConfig(
        app_name="shop",
        test_name="checkout",
        probe_command="true",
        interval=10.0,
        timeout=5.0,
    )


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove MONITOR_* variables and run from a directory without a .env file."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("MONITOR_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


@pytest.fixture
def reset_structlog():
    """Reset structlog configuration after each test.

    This ensures tests don't interfere with each other's logging configuration.
    """
    yield

    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)


@pytest.fixture
def capture_logs(reset_structlog):
    """Capture log output for testing.

    Returns:
        List that will contain captured log entries
    """
    captured = []

    def capture_processor(logger, method_name, event_dict):
        """Capture event dict before rendering."""
        entry = event_dict.copy()
        if "level" in entry:
            entry.setdefault("log_level", entry["level"])
        captured.append(entry)
        return event_dict

    logging.basicConfig(level=logging.DEBUG)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            capture_processor,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    yield captured

    captured.clear()
