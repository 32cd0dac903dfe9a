"""Persisted path -> content hash map of the last indexed state."""

from __future__ import annotations

import json
import logging
from typing import Dict

from notefinder.blob_storage import BlobStorage
from notefinder.errors import StorageError

LOGGER = logging.getLogger(__name__)


class JsonFileHashStore:
    def __init__(self, storage: BlobStorage, name: str) -> None:
        self.storage = storage
        self.name = name

    def load(self) -> Dict[str, str]:
        """Return the stored map; missing or unreadable data yields ``{}``."""
        if not self.storage.exists(self.name):
            return {}
        try:
            data = json.loads(self.storage.read_text(self.name))
        except (StorageError, ValueError) as exc:
            LOGGER.warning("Failed to read hash map %s, treating all notes as new: %s", self.name, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Hash map %s is not an object, ignoring it", self.name)
            return {}
        return {str(path): str(digest) for path, digest in data.items()}

    def save(self, hashes: Dict[str, str]) -> None:
        self.storage.write_text(self.name, json.dumps(hashes, sort_keys=True))
