# tests/plugins/test_stores.py
"""Tests for key-value stores backing WriteRecord."""

from pathlib import Path

import pytest
from sqlalchemy import create_engine

from billing_fanout.contracts.errors import StoreError
from billing_fanout.core.config import StoreSettings
from billing_fanout.plugins.stores import InMemoryKeyValueStore, SqlKeyValueStore, create_store

RECORD = {
    "transaction_id": "tx-1",
    "customer_id": "C-42",
    "received_datetime": "2024-03-05T14:10:00Z",
    "requested_datetime": "2024-03-05T14:09:58Z",
    "source_account": "A1",
    "destination_account": "A2",
    "total_amount": "125.50",
}


@pytest.fixture
def sql_store(tmp_path: Path):
    # File-backed: an in-memory SQLite database is private to one connection
    store = SqlKeyValueStore(f"sqlite:///{tmp_path / 'kv.db'}")
    yield store
    store.close()


class TestInMemoryKeyValueStore:
    def test_put_get(self) -> None:
        store = InMemoryKeyValueStore()

        store.put("tx-1", RECORD)

        assert store.get("tx-1") == RECORD
        assert store.get("missing") is None

    def test_overwrite_is_idempotent(self) -> None:
        store = InMemoryKeyValueStore()

        store.put("tx-1", RECORD)
        store.put("tx-1", RECORD)

        assert len(store) == 1
        assert store.get("tx-1") == RECORD

    def test_returned_item_is_a_copy(self) -> None:
        store = InMemoryKeyValueStore()
        store.put("tx-1", RECORD)

        item = store.get("tx-1")
        assert item is not None
        item["total_amount"] = "0"

        assert store.get("tx-1") == RECORD


class TestSqlKeyValueStore:
    def test_put_get(self, sql_store: SqlKeyValueStore) -> None:
        sql_store.put("tx-1", RECORD)

        assert sql_store.get("tx-1") == RECORD
        assert sql_store.get("missing") is None

    def test_second_put_overwrites_single_row(self, tmp_path: Path) -> None:
        engine = create_engine(f"sqlite:///{tmp_path / 'kv.db'}")
        store = SqlKeyValueStore("unused", engine=engine)

        store.put("tx-1", RECORD)
        store.put("tx-1", {**RECORD, "total_amount": "99.00"})

        with engine.connect() as conn:
            count = conn.exec_driver_sql("SELECT COUNT(*) FROM transactions").scalar_one()
        assert count == 1
        stored = store.get("tx-1")
        assert stored is not None
        assert stored["total_amount"] == "99.00"
        store.close()

    def test_amount_stored_as_exact_string(self, sql_store: SqlKeyValueStore) -> None:
        sql_store.put("tx-1", RECORD)

        stored = sql_store.get("tx-1")
        assert stored is not None
        assert stored["total_amount"] == "125.50"

    def test_database_failure_becomes_store_error(self, tmp_path: Path) -> None:
        engine = create_engine(f"sqlite:///{tmp_path / 'kv.db'}")
        store = SqlKeyValueStore("unused", engine=engine)
        with engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE transactions")

        with pytest.raises(StoreError):
            store.put("tx-1", RECORD)
        store.close()


class TestCreateStore:
    def test_memory_default(self) -> None:
        assert isinstance(create_store(StoreSettings()), InMemoryKeyValueStore)

    def test_sql(self, tmp_path: Path) -> None:
        store = create_store(StoreSettings(kind="sql", url=f"sqlite:///{tmp_path / 'kv.db'}", table="tx"))

        assert isinstance(store, SqlKeyValueStore)
        store.close()
