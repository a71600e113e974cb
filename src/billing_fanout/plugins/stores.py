# src/billing_fanout/plugins/stores.py
"""Key-value stores backing the WriteRecord step.

Contract: put(key, value) with idempotent overwrite semantics. Writing the
same record twice leaves exactly one stored item equal to the input.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from billing_fanout.contracts.errors import StoreError
from billing_fanout.core.canonical import canonical_json

if TYPE_CHECKING:
    from billing_fanout.core.config import StoreSettings


class KeyValueStore(Protocol):
    def put(self, key: str, value: Mapping[str, str]) -> None:
        """Insert or overwrite the item under key.

        Raises:
            StoreError: If the item could not be written
        """
        ...

    def get(self, key: str) -> dict[str, str] | None: ...


class InMemoryKeyValueStore:
    """Thread-safe dict-backed store."""

    def __init__(self) -> None:
        self._items: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Mapping[str, str]) -> None:
        with self._lock:
            self._items[key] = dict(value)

    def get(self, key: str) -> dict[str, str] | None:
        with self._lock:
            item = self._items.get(key)
            return dict(item) if item is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class SqlKeyValueStore:
    """Key-value table on any SQLAlchemy-supported database.

    One row per key: ``id`` (primary key) and ``item`` (canonical JSON of the
    record). Overwrites are an UPDATE, first writes an INSERT; a concurrent
    first write that loses the insert race falls back to UPDATE.
    """

    def __init__(self, url: str, *, table: str = "transactions", engine: Engine | None = None) -> None:
        self._engine = engine if engine is not None else create_engine(url)
        self._metadata = MetaData()
        self._table = Table(
            table,
            self._metadata,
            Column("id", String(255), primary_key=True),
            Column("item", Text, nullable=False),
        )
        self._metadata.create_all(self._engine)

    def put(self, key: str, value: Mapping[str, str]) -> None:
        payload = canonical_json(dict(value))
        try:
            with self._engine.begin() as conn:
                result = conn.execute(update(self._table).where(self._table.c.id == key).values(item=payload))
                if result.rowcount == 0:
                    conn.execute(insert(self._table).values(id=key, item=payload))
        except IntegrityError:
            try:
                with self._engine.begin() as conn:
                    conn.execute(update(self._table).where(self._table.c.id == key).values(item=payload))
            except SQLAlchemyError as e:
                raise StoreError(f"put {key!r} failed: {e}") from e
        except SQLAlchemyError as e:
            raise StoreError(f"put {key!r} failed: {e}") from e

    def get(self, key: str) -> dict[str, str] | None:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(select(self._table.c.item).where(self._table.c.id == key)).first()
        except SQLAlchemyError as e:
            raise StoreError(f"get {key!r} failed: {e}") from e
        if row is None:
            return None
        item: dict[str, str] = json.loads(row[0])
        return item

    def close(self) -> None:
        self._engine.dispose()


def create_store(settings: StoreSettings) -> KeyValueStore:
    if settings.kind == "sql":
        assert settings.url is not None, "validated by StoreSettings"
        return SqlKeyValueStore(settings.url, table=settings.table)
    return InMemoryKeyValueStore()
