# src/billing_fanout/engine/transformer.py
"""Map a raw "transaction-initiated" envelope to a TransactionEvent.

Inbound shape (the only consumer of it):

    {
      "id": "...",                      -> transaction_id
      "time": "...",                    -> received_datetime
      "detail": {
        "customer-id": "...",           -> customer_id
        "initiated-at": "...",          -> requested_datetime
        "from-account": "...",          -> source_account
        "to-account": "...",            -> destination_account
        "transaction-amount": "125.50"  -> total_amount (Decimal)
      }
    }

transform() is pure: no I/O, no logging, no shared state. The same input
always yields an equal TransactionEvent.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from billing_fanout.contracts.errors import TransformError
from billing_fanout.contracts.events import TransactionEvent

# canonical field -> path into the envelope
FIELD_PATHS: dict[str, tuple[str, ...]] = {
    "transaction_id": ("id",),
    "customer_id": ("detail", "customer-id"),
    "received_datetime": ("time",),
    "requested_datetime": ("detail", "initiated-at"),
    "source_account": ("detail", "from-account"),
    "destination_account": ("detail", "to-account"),
    "total_amount": ("detail", "transaction-amount"),
}

_MISSING = object()


def _extract(raw: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = raw
    for key in path:
        if not isinstance(node, Mapping) or key not in node:
            return _MISSING
        node = node[key]
    return node


def _require(raw: Mapping[str, Any], field: str) -> Any:
    path = FIELD_PATHS[field]
    value = _extract(raw, path)
    if value is _MISSING or value is None or (isinstance(value, str) and not value.strip()):
        raise TransformError.missing(field, "$." + ".".join(path))
    return value


def coerce_string(field: str, value: Any) -> str:
    # bool is an int subclass; "True" is never a valid identifier
    if isinstance(value, bool) or not isinstance(value, str | int):
        raise TransformError.mismatch(field, f"expected string, got {type(value).__name__}")
    return str(value)


def coerce_timestamp(field: str, value: Any) -> str:
    """Normalize to ISO-8601 UTC with a trailing Z. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value.strip())
        except ValueError:
            raise TransformError.mismatch(field, f"not an ISO-8601 timestamp: {value!r}") from None
    else:
        raise TransformError.mismatch(field, f"expected timestamp string, got {type(value).__name__}")

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat().replace("+00:00", "Z")


def coerce_amount(field: str, value: Any) -> Decimal:
    """Exact decimal conversion. Floats go through repr so 125.5 stays 125.5."""
    if isinstance(value, bool):
        raise TransformError.mismatch(field, "expected decimal, got bool")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, str | int | float):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise TransformError.mismatch(field, f"not a decimal number: {value!r}") from None
    else:
        raise TransformError.mismatch(field, f"expected decimal, got {type(value).__name__}")

    if not amount.is_finite():
        raise TransformError.mismatch(field, f"amount must be finite, got {value!r}")
    if amount < 0:
        raise TransformError.mismatch(field, f"amount must be non-negative, got {value!r}")
    return amount


def parse_envelope(raw: Mapping[str, Any] | str | bytes) -> Mapping[str, Any]:
    """Accept an already-decoded envelope or its JSON text."""
    if isinstance(raw, str | bytes):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TransformError.mismatch("envelope", f"invalid JSON: {e.msg}") from None
        raw = decoded
    if not isinstance(raw, Mapping):
        raise TransformError.mismatch("envelope", f"expected JSON object, got {type(raw).__name__}")
    return raw


def transform(raw: Mapping[str, Any] | str | bytes) -> TransactionEvent:
    """Extract, rename and coerce the inbound envelope.

    Raises:
        TransformError: MISSING_FIELD when a required value is absent or
            empty, TYPE_MISMATCH when a value cannot be coerced.
    """
    envelope = parse_envelope(raw)
    return TransactionEvent(
        transaction_id=coerce_string("transaction_id", _require(envelope, "transaction_id")),
        customer_id=coerce_string("customer_id", _require(envelope, "customer_id")),
        received_datetime=coerce_timestamp("received_datetime", _require(envelope, "received_datetime")),
        requested_datetime=coerce_timestamp("requested_datetime", _require(envelope, "requested_datetime")),
        source_account=coerce_string("source_account", _require(envelope, "source_account")),
        destination_account=coerce_string("destination_account", _require(envelope, "destination_account")),
        total_amount=coerce_amount("total_amount", _require(envelope, "total_amount")),
    )


def envelope_id(raw: Mapping[str, Any] | str | bytes) -> str | None:
    """Best-effort event id for diagnostics on rejected envelopes."""
    try:
        envelope = parse_envelope(raw)
    except TransformError:
        return None
    value = envelope.get("id")
    return value if isinstance(value, str) else None
