# tests/plugins/test_destinations.py
"""Tests for object-store destinations."""

from pathlib import Path

import pytest

from billing_fanout.contracts.errors import DestinationWriteError
from billing_fanout.core.config import DestinationSettings
from billing_fanout.plugins.destinations import FilesystemObjectStore, InMemoryObjectStore, create_object_store


class TestFilesystemObjectStore:
    def test_put_creates_partition_directories(self, tmp_path: Path) -> None:
        store = FilesystemObjectStore(tmp_path, name="primary")

        store.put("transactions/year=2024/month=03/day=05/hour=14/a.parquet", b"data")

        assert (tmp_path / "transactions" / "year=2024" / "month=03" / "day=05" / "hour=14" / "a.parquet").read_bytes() == b"data"

    def test_put_overwrites(self, tmp_path: Path) -> None:
        store = FilesystemObjectStore(tmp_path)

        store.put("k/obj", b"one")
        store.put("k/obj", b"two")

        assert (tmp_path / "k" / "obj").read_bytes() == b"two"
        assert [p.name for p in (tmp_path / "k").iterdir()] == ["obj"]

    def test_os_error_becomes_destination_write_error(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocked"
        blocker.write_bytes(b"")  # a file where a directory is needed
        store = FilesystemObjectStore(tmp_path, name="backup")

        with pytest.raises(DestinationWriteError) as exc_info:
            store.put("blocked/obj", b"data")

        assert exc_info.value.destination == "backup"
        assert exc_info.value.key == "blocked/obj"

    @pytest.mark.parametrize("key", ["/etc/passwd", "../escape", "a/../../b", ""])
    def test_rejects_unsafe_keys(self, tmp_path: Path, key: str) -> None:
        with pytest.raises(ValueError):
            FilesystemObjectStore(tmp_path).put(key, b"x")


class TestInMemoryObjectStore:
    def test_keys_filtered_by_prefix(self) -> None:
        store = InMemoryObjectStore()
        store.put("transactions/a", b"1")
        store.put("transactionserror/conversion/b", b"2")

        assert store.keys("transactions/") == ["transactions/a"]
        assert store.get("transactionserror/conversion/b") == b"2"


class TestCreateObjectStore:
    def test_filesystem(self, tmp_path: Path) -> None:
        store = create_object_store(DestinationSettings(kind="filesystem", path=tmp_path), name="primary")

        assert isinstance(store, FilesystemObjectStore)
        assert store.name == "primary"

    def test_memory(self) -> None:
        assert isinstance(create_object_store(DestinationSettings(kind="memory"), name="backup"), InMemoryObjectStore)
