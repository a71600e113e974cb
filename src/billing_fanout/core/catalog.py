# src/billing_fanout/core/catalog.py
"""Table schema consulted by the archiver to validate and convert records.

The catalog is an external, read-only collaborator. StaticCatalog is the
in-process implementation built from configuration; anything exposing
get_table() can stand in for it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

import pyarrow as pa

from billing_fanout.contracts.events import TRANSACTION_FIELDS

PARTITION_KEYS: tuple[str, ...] = ("year", "month", "day", "hour")

_DECIMAL_PATTERN = re.compile(r"^decimal\((\d+),\s*(\d+)\)$")


class TableNotFoundError(LookupError):
    """Raised when the catalog has no table with the requested name."""


@dataclass(frozen=True, slots=True)
class Column:
    """A catalog column. type is "string", "double" or "decimal(p,s)"."""

    name: str
    type: str

    def __post_init__(self) -> None:
        if self.type not in ("string", "double") and _DECIMAL_PATTERN.match(self.type) is None:
            raise ValueError(f"Unsupported column type {self.type!r} for column {self.name!r}")

    @property
    def decimal_spec(self) -> tuple[int, int] | None:
        """(precision, scale) for decimal columns, None otherwise."""
        match = _DECIMAL_PATTERN.match(self.type)
        if match is None:
            return None
        return int(match.group(1)), int(match.group(2))

    def arrow_type(self) -> pa.DataType:
        if self.type == "string":
            return pa.string()
        if self.type == "double":
            return pa.float64()
        spec = self.decimal_spec
        assert spec is not None, "validated in __post_init__"
        precision, scale = spec
        return pa.decimal128(precision, scale)


@dataclass(frozen=True, slots=True)
class TableSchema:
    """Named table layout with hive-style time partition keys."""

    database: str
    name: str
    columns: tuple[Column, ...]
    partition_keys: tuple[str, ...] = PARTITION_KEYS

    @property
    def qualified_name(self) -> str:
        return f"{self.database}.{self.name}"

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def arrow_schema(self) -> pa.Schema:
        """Arrow schema of the data columns (partition keys live in the path)."""
        return pa.schema([pa.field(c.name, c.arrow_type(), nullable=False) for c in self.columns])


def transaction_table(database: str = "app2025", table: str = "transactions", amount_type: str = "decimal(38,2)") -> TableSchema:
    """The seven-column transaction layout."""
    columns = tuple(Column(name, amount_type if name == "total_amount" else "string") for name in TRANSACTION_FIELDS)
    return TableSchema(database=database, name=table, columns=columns)


class Catalog(Protocol):
    """Read-only schema registry."""

    def get_table(self, database: str, table: str) -> TableSchema: ...


class StaticCatalog:
    """Catalog backed by a fixed set of table schemas."""

    def __init__(self, tables: list[TableSchema]) -> None:
        self._tables = {(t.database, t.name): t for t in tables}

    def get_table(self, database: str, table: str) -> TableSchema:
        try:
            return self._tables[(database, table)]
        except KeyError:
            raise TableNotFoundError(f"Table {database}.{table} not found in catalog") from None
