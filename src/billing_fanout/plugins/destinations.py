# src/billing_fanout/plugins/destinations.py
"""Object-store destinations for archiver output.

The archiver writes three logical streams (primary, backup, error) through
this interface. put() either stores the whole object or raises
DestinationWriteError; partial objects are never visible.
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

from billing_fanout.contracts.errors import DestinationWriteError

if TYPE_CHECKING:
    from billing_fanout.core.config import DestinationSettings


def _validate_key(key: str) -> PurePosixPath:
    path = PurePosixPath(key)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise ValueError(f"Invalid object key: {key!r}")
    return path


class ObjectStore(Protocol):
    """Write-only view of a durable object store."""

    name: str

    def put(self, key: str, body: bytes) -> None:
        """Store body under key, overwriting any existing object.

        Raises:
            DestinationWriteError: If the object could not be stored
        """
        ...


class FilesystemObjectStore:
    """Object store rooted at a local directory.

    Writes go to a temporary file in the target directory and are renamed
    into place, so readers never observe a partially written object.
    """

    def __init__(self, root: Path, *, name: str = "filesystem") -> None:
        self.name = name
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def put(self, key: str, body: bytes) -> None:
        target = self._root.joinpath(*_validate_key(key).parts)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(body)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise DestinationWriteError(self.name, key, e) from e


class InMemoryObjectStore:
    """Thread-safe dict-backed object store for tests and local runs."""

    def __init__(self, *, name: str = "memory") -> None:
        self.name = name
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, body: bytes) -> None:
        _validate_key(key)
        with self._lock:
            self._objects[key] = body

    def get(self, key: str) -> bytes:
        with self._lock:
            return self._objects[key]

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._objects if k.startswith(prefix))


def create_object_store(settings: DestinationSettings, *, name: str) -> ObjectStore:
    """Build a destination from configuration."""
    if settings.kind == "filesystem":
        assert settings.path is not None, "validated by DestinationSettings"
        return FilesystemObjectStore(settings.path, name=name)
    return InMemoryObjectStore(name=name)
