"""Per-cycle clock.

A cycle's deadline and its end-of-cycle sleep are both derived from a
single monotonic start timestamp, so nothing accumulates across cycles.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

Clock = Callable[[], float]


@dataclass(frozen=True)
class CycleClock:
    """Start of one cycle on the monotonic clock."""

    started: float
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    clock: Clock = time.monotonic

    @classmethod
    def start(cls, clock: Clock = time.monotonic) -> CycleClock:
        """Capture the current instant as a cycle start."""
        return cls(started=clock(), clock=clock)

    def elapsed(self) -> float:
        """Seconds since the cycle started."""
        return self.clock() - self.started

    def deadline(self, timeout: float) -> float:
        """Monotonic instant after which the probe must not be alive."""
        return self.started + timeout

    def cycle_end(self, interval: float) -> float:
        """Monotonic instant at which the next cycle is due."""
        return self.started + interval

    def remaining(self, interval: float) -> float:
        """Seconds left in the cycle, zero once it has overrun."""
        return max(self.cycle_end(interval) - self.clock(), 0.0)
