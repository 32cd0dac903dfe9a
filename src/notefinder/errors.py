"""Error taxonomy shared by providers, stores and the indexing loop."""

from __future__ import annotations


class NoteFinderError(Exception):
    """Base class for NoteFinder errors."""


class ConfigurationError(NoteFinderError):
    """Invalid or missing model/provider settings. Not retried."""


class ConnectivityError(NoteFinderError):
    """A remote embedding backend could not be reached."""


class ApiStatusError(NoteFinderError):
    """A remote embedding backend answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        text = f"{self.args[0]} (HTTP {self.status_code})"
        if self.body:
            text += f" - {self.body[:200]}"
        return text


class ModelLoadError(NoteFinderError):
    """The embedding model could not be loaded, fallback included."""


class ModelNotLoadedError(NoteFinderError):
    """An operation needs a loaded model but none is ready."""


class RuntimeEmbedError(NoteFinderError):
    """A single embedding call failed after the model was loaded."""


class StorageError(NoteFinderError):
    """Reading or writing a persisted artifact failed."""


class DocumentNotFoundError(NoteFinderError):
    """The requested note does not exist or is excluded."""
