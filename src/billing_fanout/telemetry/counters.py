"""Thread-safe delivery counters incremented by the router and its paths."""

import threading
from collections import Counter

# Counter names
DISPATCHED = "dispatched"
REJECTED = "rejected"
SKIPPED = "skipped"
TIME_ANOMALIES = "time_anomalies"
ARCHIVE_ACCEPTED = "archive_accepted"
ARCHIVE_BACKPRESSURE = "archive_backpressure"
WORKFLOW_SUBMITTED = "workflow_submitted"
WORKFLOW_SUCCEEDED = "workflow_succeeded"
WORKFLOW_FAILED = "workflow_failed"
WORKFLOW_CANCELLED = "workflow_cancelled"


class DeliveryCounters:
    """Monotonic named counters.

    Example:
        counters = DeliveryCounters()
        counters.increment("dispatched")
        assert counters.get("dispatched") == 1
    """

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(sorted(self._counts.items()))
