# src/billing_fanout/engine/clock.py
"""Clock abstraction for testable flush timing and partitioning.

Flush triggers need a monotonic clock; partition paths need UTC wall time at
the moment of flush. Production code uses SystemClock. Tests inject MockClock
to control both without sleeping.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock for time-based operations."""

    def monotonic(self) -> float:
        """Return monotonic time in seconds (never goes backwards)."""
        ...

    def now(self) -> datetime:
        """Return the current timezone-aware UTC wall time."""
        ...


class SystemClock:
    """Production clock backed by time.monotonic() and datetime.now(UTC)."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic testing.

    advance() moves monotonic and wall time together.

    Example:
        clock = MockClock(wall=datetime(2024, 3, 5, 14, 59, 30, tzinfo=UTC))
        clock.advance(45)
        assert clock.now().hour == 15
    """

    def __init__(self, start: float = 0.0, wall: datetime | None = None) -> None:
        self._current = start
        self._wall = wall if wall is not None else datetime(2024, 1, 1, tzinfo=UTC)
        if self._wall.tzinfo is None:
            raise ValueError("MockClock wall time must be timezone-aware")

    def monotonic(self) -> float:
        return self._current

    def now(self) -> datetime:
        return self._wall

    def advance(self, seconds: float) -> None:
        """Advance both clocks.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds
        self._wall = self._wall + timedelta(seconds=seconds)

    def set_wall(self, value: datetime) -> None:
        """Set wall time without touching the monotonic clock."""
        if value.tzinfo is None:
            raise ValueError("MockClock wall time must be timezone-aware")
        self._wall = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
