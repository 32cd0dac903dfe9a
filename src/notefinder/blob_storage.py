"""Opaque blob persistence for the chunk snapshot, hash map and usage stats."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from notefinder.errors import StorageError

LOGGER = logging.getLogger(__name__)


class BlobStorage(Protocol):
    def exists(self, name: str) -> bool: ...

    def read_bytes(self, name: str) -> bytes: ...

    def write_bytes(self, name: str, data: bytes) -> None: ...

    def read_text(self, name: str) -> str: ...

    def write_text(self, name: str, text: str) -> None: ...


class FileBlobStorage:
    """Blobs stored as files under ``root``; names are relative paths."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return self._resolve(name).is_file()

    def read_bytes(self, name: str) -> bytes:
        try:
            return self._resolve(name).read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {name}: {exc}") from exc

    def write_bytes(self, name: str, data: bytes) -> None:
        target = self._resolve(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file first so readers never see a partial blob.
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to write {name}: {exc}") from exc
        LOGGER.debug("Wrote %d bytes to %s", len(data), target)

    def read_text(self, name: str) -> str:
        return self.read_bytes(name).decode("utf-8")

    def write_text(self, name: str, text: str) -> None:
        self.write_bytes(name, text.encode("utf-8"))


class MemoryBlobStorage:
    """In-memory blobs, used when nothing should touch the disk."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    def exists(self, name: str) -> bool:
        return name in self.blobs

    def read_bytes(self, name: str) -> bytes:
        try:
            return self.blobs[name]
        except KeyError as exc:
            raise StorageError(f"Blob not found: {name}") from exc

    def write_bytes(self, name: str, data: bytes) -> None:
        self.blobs[name] = bytes(data)

    def read_text(self, name: str) -> str:
        return self.read_bytes(name).decode("utf-8")

    def write_text(self, name: str, text: str) -> None:
        self.write_bytes(name, text.encode("utf-8"))
