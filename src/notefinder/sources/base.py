"""Interfaces between the indexing engine and the host that owns the notes."""

from __future__ import annotations

from typing import List, Optional, Protocol

from notefinder.models import Document


class DocumentObserver(Protocol):
    def on_create(self, path: str) -> None: ...

    def on_modify(self, path: str) -> None: ...

    def on_delete(self, path: str) -> None: ...

    def on_rename(self, old_path: str, new_path: str) -> None: ...


class DocumentSource(Protocol):
    def list_paths(self) -> List[str]: ...

    def read(self, path: str) -> Optional[Document]: ...

    def subscribe(self, observer: DocumentObserver) -> None: ...

    def unsubscribe(self, observer: DocumentObserver) -> None: ...
