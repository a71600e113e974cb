# tests/core/test_catalog.py
"""Tests for the table catalog."""

import pyarrow as pa
import pytest

from billing_fanout.contracts.events import TRANSACTION_FIELDS
from billing_fanout.core.catalog import Column, StaticCatalog, TableNotFoundError, transaction_table


class TestColumn:
    @pytest.mark.parametrize(
        ("type_name", "expected"),
        [
            ("string", pa.string()),
            ("double", pa.float64()),
            ("decimal(38,2)", pa.decimal128(38, 2)),
            ("decimal(10, 4)", pa.decimal128(10, 4)),
        ],
    )
    def test_arrow_type(self, type_name: str, expected: pa.DataType) -> None:
        assert Column("c", type_name).arrow_type() == expected

    def test_unsupported_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unsupported column type"):
            Column("c", "timestamp")

    def test_decimal_spec(self) -> None:
        assert Column("c", "decimal(38,2)").decimal_spec == (38, 2)
        assert Column("c", "string").decimal_spec is None


class TestTransactionTable:
    def test_seven_columns_in_field_order(self) -> None:
        table = transaction_table()

        assert table.column_names == TRANSACTION_FIELDS
        assert table.qualified_name == "app2025.transactions"
        assert table.partition_keys == ("year", "month", "day", "hour")

    def test_amount_type_configurable(self) -> None:
        schema = transaction_table(amount_type="double").arrow_schema()

        assert schema.field("total_amount").type == pa.float64()
        assert schema.field("customer_id").type == pa.string()
        assert not schema.field("customer_id").nullable


class TestStaticCatalog:
    def test_get_table(self) -> None:
        table = transaction_table()

        assert StaticCatalog([table]).get_table("app2025", "transactions") is table

    def test_unknown_table(self) -> None:
        with pytest.raises(TableNotFoundError, match="app2025.missing"):
            StaticCatalog([transaction_table()]).get_table("app2025", "missing")
