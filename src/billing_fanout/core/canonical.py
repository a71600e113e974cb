# src/billing_fanout/core/canonical.py
"""
Canonical JSON serialization for archived and persisted records.

Two-phase approach:
1. Normalize: Convert Decimal/datetime/bytes to JSON-safe primitives (our code)
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

NaN and Infinity are strictly REJECTED, not silently converted. A record that
cannot be canonicalized cannot be backed up byte-for-byte.
"""

from __future__ import annotations

import base64
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import rfc8785


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to a JSON-safe primitive.

    Raises:
        ValueError: If value contains NaN or Infinity
        TypeError: If value has no JSON representation
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}")
        return obj

    if obj is None or isinstance(obj, str | int | bool):
        return obj

    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise ValueError(f"Cannot canonicalize non-finite Decimal: {obj}")
        # Exact string form; a float here would lose currency scale.
        return str(obj)

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    if isinstance(obj, bytes):
        return {"__bytes__": base64.b64encode(obj).decode("ascii")}

    if isinstance(obj, Mapping):
        return {str(k): _normalize_value(v) for k, v in obj.items()}

    if isinstance(obj, list | tuple):
        return [_normalize_value(v) for v in obj]

    raise TypeError(f"Cannot canonicalize value of type {type(obj).__name__}")


def canonical_json(obj: Any) -> str:
    """Serialize to RFC 8785 canonical JSON.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains unsupported types
    """
    normalized = _normalize_value(obj)
    try:
        result: bytes = rfc8785.dumps(normalized)
    except rfc8785.CanonicalizationError as e:
        # Integers outside the JavaScript-safe range land here.
        raise ValueError(f"Cannot canonicalize value: {e}") from e
    return result.decode("utf-8")


def canonical_line(obj: Any) -> bytes:
    """Canonical JSON encoded as one UTF-8 JSON-lines entry."""
    return canonical_json(obj).encode("utf-8") + b"\n"
