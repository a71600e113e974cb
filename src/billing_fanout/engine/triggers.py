# src/billing_fanout/engine/triggers.py
"""Flush trigger evaluation for archive buffers.

Two triggers, combined with OR logic (first one to fire wins):
- size: fires when buffered payload bytes >= size threshold
- interval: fires when batch age >= interval seconds

The archiver owns one evaluator per buffer (primary and backup) and calls
should_trigger() after each append and on every flusher tick. An empty
buffer never triggers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from billing_fanout.contracts.enums import FlushReason
from billing_fanout.engine.clock import DEFAULT_CLOCK

if TYPE_CHECKING:
    from billing_fanout.engine.clock import Clock


class FlushTrigger:
    """Tracks buffer size and age and decides when to flush.

    Example:
        trigger = FlushTrigger(size_bytes=64 * 1024 * 1024, interval_seconds=60)

        trigger.record_append(len(line))
        if trigger.should_trigger():
            archiver.flush(trigger.flush_reason())
            trigger.reset()
    """

    def __init__(self, *, size_bytes: int, interval_seconds: float, clock: Clock | None = None) -> None:
        if size_bytes <= 0:
            raise ValueError(f"size_bytes must be > 0, got {size_bytes}")
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self._size_threshold = size_bytes
        self._interval = interval_seconds
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._buffered_bytes = 0
        self._record_count = 0
        self._first_append_time: float | None = None
        # When the size threshold was first crossed, for "first to fire wins"
        self._size_fire_time: float | None = None
        self._last_triggered: Literal["size", "interval"] | None = None

    @property
    def buffered_bytes(self) -> int:
        return self._buffered_bytes

    @property
    def record_count(self) -> int:
        return self._record_count

    @property
    def batch_age_seconds(self) -> float:
        """Seconds since the first append into this batch."""
        if self._first_append_time is None:
            return 0.0
        return self._clock.monotonic() - self._first_append_time

    def record_append(self, size_bytes: int) -> None:
        """Record one appended record of the given encoded size."""
        now = self._clock.monotonic()
        if self._first_append_time is None:
            self._first_append_time = now
        self._record_count += 1
        self._buffered_bytes += size_bytes
        if self._size_fire_time is None and self._buffered_bytes >= self._size_threshold:
            self._size_fire_time = now

    def should_trigger(self) -> bool:
        """Evaluate whether either trigger has fired.

        When both are satisfied, the one that fired earliest is reported by
        which_triggered().
        """
        self._last_triggered = None
        if self._first_append_time is None:
            return False

        candidates: list[tuple[float, Literal["size", "interval"]]] = []

        interval_fire_time = self._first_append_time + self._interval
        if self._clock.monotonic() >= interval_fire_time:
            candidates.append((interval_fire_time, "interval"))

        if self._size_fire_time is not None:
            candidates.append((self._size_fire_time, "size"))

        if not candidates:
            return False

        candidates.sort(key=lambda c: c[0])
        self._last_triggered = candidates[0][1]
        return True

    def which_triggered(self) -> Literal["size", "interval"] | None:
        """Which trigger fired on the last should_trigger() call."""
        return self._last_triggered

    def flush_reason(self) -> FlushReason | None:
        if self._last_triggered == "size":
            return FlushReason.SIZE
        elif self._last_triggered == "interval":
            return FlushReason.INTERVAL
        return None

    def seconds_until_due(self) -> float | None:
        """Seconds until the interval trigger fires, None for an empty buffer."""
        if self._first_append_time is None:
            return None
        return max(0.0, self._first_append_time + self._interval - self._clock.monotonic())

    def reset(self) -> None:
        """Reset state for a new batch."""
        self._buffered_bytes = 0
        self._record_count = 0
        self._first_append_time = None
        self._size_fire_time = None
        self._last_triggered = None
