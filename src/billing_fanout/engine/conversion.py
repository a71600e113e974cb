# src/billing_fanout/engine/conversion.py
"""Schema-validated conversion of archive records to the columnar format.

Each record is validated on its own against the catalog table, so one bad
record becomes a ConversionError for that record only. Valid rows are then
encoded together as one GZIP-compressed Parquet object.
"""

from __future__ import annotations

import base64
import gzip
import io
import json
from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Context, Decimal, InvalidOperation
from typing import Any

import pyarrow as pa
import pyarrow.parquet as pq

from billing_fanout.contracts.errors import ConversionError
from billing_fanout.core.catalog import Column, TableSchema

PARQUET_COMPRESSION = "gzip"


class RecordConverter:
    """Validates records against a TableSchema and encodes the survivors."""

    def __init__(self, schema: TableSchema) -> None:
        self._schema = schema
        self._arrow_schema = schema.arrow_schema()

    @property
    def schema(self) -> TableSchema:
        return self._schema

    def convert(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Return a row typed for the catalog, or raise ConversionError."""
        if not isinstance(record, Mapping):
            raise ConversionError(f"record must be a JSON object, got {type(record).__name__}")
        row: dict[str, Any] = {}
        for column in self._schema.columns:
            value = record.get(column.name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ConversionError("required column is missing or empty", column=column.name)
            row[column.name] = self._convert_value(column, value)
        return row

    def _convert_value(self, column: Column, value: Any) -> Any:
        if column.type == "string":
            if isinstance(value, bool) or not isinstance(value, str | int):
                raise ConversionError(f"expected string, got {type(value).__name__}", column=column.name)
            return str(value)

        if isinstance(value, bool) or not isinstance(value, str | int | float | Decimal):
            raise ConversionError(f"expected number, got {type(value).__name__}", column=column.name)
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except InvalidOperation:
            raise ConversionError(f"not numeric: {value!r}", column=column.name) from None
        if not amount.is_finite():
            raise ConversionError(f"not finite: {value!r}", column=column.name)
        if amount < 0:
            raise ConversionError(f"negative amount: {value!r}", column=column.name)

        spec = column.decimal_spec
        if spec is None:
            return float(amount)
        precision, scale = spec
        try:
            # The default 28-digit context would reject valid decimal(38,s) values
            quantized = amount.quantize(Decimal(1).scaleb(-scale), context=Context(prec=precision))
        except InvalidOperation:
            raise ConversionError(f"{value!r} exceeds precision {precision}", column=column.name) from None
        if quantized != amount:
            raise ConversionError(f"{value!r} has more than {scale} fractional digits", column=column.name)
        if len(quantized.as_tuple().digits) > precision:
            raise ConversionError(f"{value!r} exceeds precision {precision}", column=column.name)
        return quantized

    def encode(self, rows: list[dict[str, Any]]) -> bytes:
        """Encode converted rows as GZIP-compressed Parquet bytes."""
        table = pa.Table.from_pylist(rows, schema=self._arrow_schema)
        buffer = io.BytesIO()
        pq.write_table(table, buffer, compression=PARQUET_COMPRESSION)
        return buffer.getvalue()


def gzip_lines(lines: Iterable[bytes]) -> bytes:
    """Concatenate JSON-lines entries and gzip them."""
    return gzip.compress(b"".join(lines))


def error_line(
    raw_data: bytes,
    error: ConversionError,
    *,
    arrived_at: datetime,
    table: TableSchema,
) -> bytes:
    """One error-output entry: the raw record plus the reason it failed."""
    entry = {
        "error_code": error.output_type.value,
        "error_message": str(error),
        "column": error.column,
        "raw_data": base64.b64encode(raw_data).decode("ascii"),
        "arrival_timestamp": int(arrived_at.timestamp() * 1000),
        "catalog_table": table.qualified_name,
    }
    return json.dumps(entry, sort_keys=True).encode("utf-8") + b"\n"
