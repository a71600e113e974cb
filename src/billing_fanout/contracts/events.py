"""Canonical transaction event and the outbound processed-event envelope."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

# Column order shared by the catalog, the key-value record and the processed event.
TRANSACTION_FIELDS: tuple[str, ...] = (
    "transaction_id",
    "customer_id",
    "received_datetime",
    "requested_datetime",
    "source_account",
    "destination_account",
    "total_amount",
)


@dataclass(frozen=True, slots=True)
class TransactionEvent:
    """The canonical unit of work shared by both paths.

    Timestamps are normalized ISO-8601 UTC strings (``...Z``). The amount is
    a Decimal so currency scale survives every hop; it is rendered as its
    exact string form whenever the event leaves the process.
    """

    transaction_id: str
    customer_id: str
    received_datetime: str
    requested_datetime: str
    source_account: str
    destination_account: str
    total_amount: Decimal

    def to_record(self) -> dict[str, str]:
        """Flat string record, as persisted and published."""
        record: dict[str, str] = {}
        for name in TRANSACTION_FIELDS:
            value = getattr(self, name)
            record[name] = str(value)
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> TransactionEvent:
        """Inverse of to_record(). Raises KeyError for absent fields."""
        return cls(
            transaction_id=str(record["transaction_id"]),
            customer_id=str(record["customer_id"]),
            received_datetime=str(record["received_datetime"]),
            requested_datetime=str(record["requested_datetime"]),
            source_account=str(record["source_account"]),
            destination_account=str(record["destination_account"]),
            total_amount=Decimal(str(record["total_amount"])),
        )

    @property
    def received_at(self) -> datetime:
        return datetime.fromisoformat(self.received_datetime)

    @property
    def requested_at(self) -> datetime:
        return datetime.fromisoformat(self.requested_datetime)

    @property
    def has_time_anomaly(self) -> bool:
        """True when the bus received the event before it was initiated upstream."""
        return self.received_at < self.requested_at


@dataclass(frozen=True, slots=True)
class ProcessedEvent:
    """Outbound "transaction-processed" entry handed to the publisher adapter."""

    event_bus_name: str
    source: str
    detail_type: str
    detail: dict[str, str]

    @classmethod
    def for_transaction(cls, event: TransactionEvent, *, event_bus_name: str, source: str, detail_type: str) -> ProcessedEvent:
        return cls(
            event_bus_name=event_bus_name,
            source=source,
            detail_type=detail_type,
            detail=event.to_record(),
        )

    def to_entry(self) -> dict[str, Any]:
        """Bus entry in the put-events request shape."""
        return {
            "EventBusName": self.event_bus_name,
            "Source": self.source,
            "DetailType": self.detail_type,
            "Detail": dict(self.detail),
        }
