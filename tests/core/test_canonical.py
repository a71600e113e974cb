# tests/core/test_canonical.py
"""Tests for canonical JSON serialization."""

import math
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest


class TestNormalization:
    """Values that need converting before RFC 8785 serialization."""

    def test_decimal_keeps_exact_scale(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        assert canonical_json({"total_amount": Decimal("125.50")}) == '{"total_amount":"125.50"}'

    def test_naive_datetime_treated_as_utc(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        assert canonical_json(datetime(2024, 3, 5, 14, 10)) == '"2024-03-05T14:10:00+00:00"'

    def test_aware_datetime_converted_to_utc(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        moment = datetime(2024, 3, 5, 16, 10, tzinfo=timezone(timedelta(hours=2)))

        assert canonical_json(moment) == '"2024-03-05T14:10:00+00:00"'

    def test_bytes_wrapped_as_base64(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        assert canonical_json(b"\x00\x01") == '{"__bytes__":"AAE="}'

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf, Decimal("NaN"), Decimal("Infinity")])
    def test_non_finite_rejected(self, value: object) -> None:
        from billing_fanout.core.canonical import canonical_json

        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"total_amount": value})

    def test_unsupported_type_rejected(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        with pytest.raises(TypeError, match="set"):
            canonical_json({"x": {1, 2}})

    def test_unsafe_integer_rejected(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        with pytest.raises(ValueError):
            canonical_json(2**60)


class TestDeterminism:
    def test_key_order_does_not_matter(self) -> None:
        from billing_fanout.core.canonical import canonical_json

        assert canonical_json({"b": 1, "a": [1, "x"]}) == canonical_json({"a": [1, "x"], "b": 1})

    def test_canonical_line_is_newline_terminated_utf8(self) -> None:
        from billing_fanout.core.canonical import canonical_line

        line = canonical_line({"customer_id": "Zoë", "at": datetime(2024, 1, 1, tzinfo=UTC)})

        assert line.endswith(b"\n")
        assert line.count(b"\n") == 1
        assert "Zoë".encode() in line
