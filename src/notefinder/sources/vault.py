"""Document source backed by a folder of markdown notes."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from notefinder.models import Document
from notefinder.sources.base import DocumentObserver
from notefinder.utils.files import is_excluded, iter_markdown_paths
from notefinder.utils.text import extract_title, extract_wikilinks, strip_frontmatter

LOGGER = logging.getLogger(__name__)


class VaultDocumentSource:
    """Markdown files under ``root``; paths are POSIX paths relative to it.

    The folder is not watched. ``refresh()`` rescans it and emits
    create/modify/delete events for whatever changed since the previous scan.
    """

    def __init__(
        self,
        root: Path,
        *,
        exclude_patterns: Sequence[str] = (),
        include_frontmatter: bool = False,
    ) -> None:
        self.root = Path(root)
        self.exclude_patterns = tuple(exclude_patterns)
        self.include_frontmatter = include_frontmatter
        self._observers: List[DocumentObserver] = []
        self._known: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()

    def _scan(self) -> Dict[str, Tuple[int, int]]:
        if not self.root.is_dir():
            LOGGER.warning("Vault folder %s does not exist", self.root)
            return {}
        found = {}
        for file_path in iter_markdown_paths(self.root, self.exclude_patterns):
            stat = file_path.stat()
            found[file_path.relative_to(self.root).as_posix()] = (stat.st_mtime_ns, stat.st_size)
        return found

    def list_paths(self) -> List[str]:
        scanned = self._scan()
        with self._lock:
            self._known = scanned
        return sorted(scanned)

    def _note_file(self, path: str) -> Optional[Path]:
        """Map a relative note path to its file, or None if it points outside the vault."""
        relative = Path(path)
        if relative.is_absolute() or relative.suffix != ".md":
            return None
        file_path = (self.root / relative).resolve()
        if not file_path.is_relative_to(self.root.resolve()):
            LOGGER.warning("Refusing to read %s: outside the vault", path)
            return None
        return file_path

    def read(self, path: str) -> Optional[Document]:
        if is_excluded(path, self.exclude_patterns):
            return None
        file_path = self._note_file(path)
        if file_path is None:
            return None
        try:
            raw = file_path.read_text(encoding="utf-8")
        except (FileNotFoundError, IsADirectoryError):
            return None
        except UnicodeDecodeError:
            LOGGER.warning("Skipping %s: not valid UTF-8", path)
            return None

        content = raw if self.include_frontmatter else strip_frontmatter(raw)
        return Document(
            path=path,
            title=extract_title(raw, Path(path).stem),
            content=content,
            links=tuple(extract_wikilinks(raw)),
        )

    def subscribe(self, observer: DocumentObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unsubscribe(self, observer: DocumentObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def refresh(self) -> int:
        """Rescan the folder and notify observers. Returns the number of events."""
        scanned = self._scan()
        with self._lock:
            previous = self._known
            self._known = scanned
            observers = list(self._observers)

        events = 0
        for path in sorted(scanned):
            if path not in previous:
                events += 1
                for observer in observers:
                    observer.on_create(path)
            elif previous[path] != scanned[path]:
                events += 1
                for observer in observers:
                    observer.on_modify(path)
        for path in sorted(set(previous) - set(scanned)):
            events += 1
            for observer in observers:
                observer.on_delete(path)

        if events:
            LOGGER.info("Vault refresh found %d changed notes", events)
        return events
