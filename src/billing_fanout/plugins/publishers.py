# src/billing_fanout/plugins/publishers.py
"""Downstream publisher adapters.

Invoked by the workflow's PublishProcessed step to put the
"transaction-processed" entry back onto the bus.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

from billing_fanout.contracts.errors import PublishError

if TYPE_CHECKING:
    from billing_fanout.contracts.events import ProcessedEvent
    from billing_fanout.core.config import PublisherSettings

logger = structlog.get_logger(__name__)

# Throttling and server-side failures are worth retrying; other 4xx are not.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


class EventPublisher(Protocol):
    def publish(self, event: ProcessedEvent) -> None:
        """Put one entry on the bus.

        Raises:
            PublishError: If the bus did not accept the entry
        """
        ...


class InMemoryEventPublisher:
    """Collects published entries. Useful for tests and dry runs."""

    def __init__(self) -> None:
        self._entries: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def publish(self, event: ProcessedEvent) -> None:
        with self._lock:
            self._entries.append(event.to_entry())

    @property
    def entries(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._entries)


class HttpEventPublisher:
    """POSTs the put-events payload to a publishing proxy endpoint.

    The endpoint receives ``{"EventBusName", "Source", "DetailType", "Detail"}``
    as JSON and is expected to answer 2xx once the entry is on the bus.
    httpx.Client is thread-safe; one client is shared across executions.
    """

    def __init__(self, endpoint: str, *, timeout: float = 10.0, client: httpx.Client | None = None) -> None:
        self._endpoint = endpoint
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def publish(self, event: ProcessedEvent) -> None:
        try:
            response = self._client.post(self._endpoint, json=event.to_entry())
        except httpx.HTTPError as e:
            raise PublishError(f"publish to {self._endpoint} failed: {e}", retryable=True) from e

        if 200 <= response.status_code < 300:
            return

        retryable = response.status_code in RETRYABLE_STATUS_CODES
        logger.warning(
            "Publisher rejected entry",
            endpoint=self._endpoint,
            status_code=response.status_code,
            retryable=retryable,
            transaction_id=event.detail.get("transaction_id"),
        )
        raise PublishError(
            f"publish to {self._endpoint} returned HTTP {response.status_code}",
            status_code=response.status_code,
            retryable=retryable,
        )

    def close(self) -> None:
        self._client.close()


def create_publisher(settings: PublisherSettings) -> EventPublisher:
    if settings.kind == "http":
        assert settings.endpoint is not None, "validated by PublisherSettings"
        return HttpEventPublisher(settings.endpoint, timeout=settings.timeout_seconds)
    return InMemoryEventPublisher()
