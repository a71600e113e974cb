# tests/conftest.py
"""Shared test fixtures.

Time is always injected through MockClock and retry backoff through a no-op
sleep, so no test depends on wall-clock timing.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from billing_fanout.core.catalog import transaction_table
from billing_fanout.core.config import ArchiverSettings, RetrySettings
from billing_fanout.engine.archiver import BatchArchiver
from billing_fanout.engine.clock import MockClock
from billing_fanout.plugins.destinations import InMemoryObjectStore
from billing_fanout.telemetry.reporter import CollectingReporter

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Raw events
# =============================================================================

RawEventFactory = Callable[..., dict[str, Any]]


def build_raw_event(
    transaction_id: str = "tx-0001",
    *,
    amount: Any = "125.50",
    from_account: str = "A1",
    to_account: str = "A2",
    customer_id: str = "C-42",
    received: str = "2024-03-05T14:10:00Z",
    initiated: str = "2024-03-05T14:09:58Z",
    **overrides: Any,
) -> dict[str, Any]:
    """An inbound transaction-initiated envelope as the bus delivers it."""
    envelope: dict[str, Any] = {
        "id": transaction_id,
        "source": "com.anycompany",
        "detail-type": "transaction-initiated",
        "time": received,
        "detail": {
            "customer-id": customer_id,
            "initiated-at": initiated,
            "from-account": from_account,
            "to-account": to_account,
            "transaction-amount": amount,
        },
    }
    envelope.update(overrides)
    return envelope


@pytest.fixture
def raw_event() -> RawEventFactory:
    """Factory for inbound envelopes; keyword arguments override fields."""
    return build_raw_event


# =============================================================================
# Time, retry and reporting
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    """MockClock positioned inside the 2024-03-05 14:00 UTC hour."""
    return MockClock(wall=datetime(2024, 3, 5, 14, 30, 0, tzinfo=UTC))


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Replacement for time.sleep in retry backoff."""

    def _sleep(seconds: float) -> None:
        return None

    return _sleep


@pytest.fixture
def reporter() -> CollectingReporter:
    return CollectingReporter()


# =============================================================================
# Archiver
# =============================================================================


@pytest.fixture
def primary() -> InMemoryObjectStore:
    return InMemoryObjectStore(name="primary")


@pytest.fixture
def backup() -> InMemoryObjectStore:
    return InMemoryObjectStore(name="backup")


@pytest.fixture
def error_store() -> InMemoryObjectStore:
    return InMemoryObjectStore(name="error")


@pytest.fixture
def make_archiver(
    primary: InMemoryObjectStore,
    backup: InMemoryObjectStore,
    error_store: InMemoryObjectStore,
    reporter: CollectingReporter,
    clock: MockClock,
    no_sleep: Callable[[float], None],
) -> Callable[..., BatchArchiver]:
    """Factory for a BatchArchiver wired to in-memory destinations.

    Keyword arguments override ArchiverSettings fields; primary/backup/error
    override the destinations.
    """

    def _make(**overrides: Any) -> BatchArchiver:
        destinations = {
            "primary": overrides.pop("primary", primary),
            "backup": overrides.pop("backup", backup),
            "error": overrides.pop("error", error_store),
        }
        overrides.setdefault("retry", RetrySettings(max_attempts=2, initial_delay_seconds=0.01, jitter_seconds=0))
        archiver_settings = ArchiverSettings(**overrides)
        return BatchArchiver(
            archiver_settings,
            table=transaction_table(),
            reporter=reporter,
            clock=clock,
            retry_sleep=no_sleep,
            **destinations,
        )

    return _make
