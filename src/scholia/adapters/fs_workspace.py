"""Watching workspace over a directory of Markdown files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Sequence

from ..config import WorkspaceConfig
from ..core.document import InMemoryDocument
from ..core.events import Emitter
from ..core.glob import matches_any
from ..core.ports import ContainingDocumentContext, FileStat, TextDocument
from ..core.uri import URI
from ..workspace import looks_like_markdown_path

logger = logging.getLogger(__name__)


class FileSystemWorkspace:
    """
    Watching workspace over a directory on disk.

    Markdown documents are read on first use and kept in memory. Nothing
    here watches the disk; callers report changes through ``notify_created``,
    ``notify_changed`` and ``notify_deleted``, which re-read documents and
    raise the workspace events.
    """

    def __init__(self, root: Path, config: WorkspaceConfig | None = None):
        self.root = root.resolve()
        self.config = config or WorkspaceConfig()
        self._root_uri = URI.file(str(self.root))
        self._documents: dict[URI, InMemoryDocument] = {}

        self._on_did_change_markdown_document: Emitter[TextDocument] = Emitter()
        self._on_did_create_markdown_document: Emitter[TextDocument] = Emitter()
        self._on_did_delete_markdown_document: Emitter[URI] = Emitter()
        self._on_did_create_file: Emitter[URI] = Emitter()
        self._on_did_change_file: Emitter[URI] = Emitter()
        self._on_did_delete_file: Emitter[URI] = Emitter()

        self.on_did_change_markdown_document = self._on_did_change_markdown_document.event
        self.on_did_create_markdown_document = self._on_did_create_markdown_document.event
        self.on_did_delete_markdown_document = self._on_did_delete_markdown_document.event
        self.on_did_create_file = self._on_did_create_file.event
        self.on_did_change_file = self._on_did_change_file.event
        self.on_did_delete_file = self._on_did_delete_file.event

    @property
    def workspace_folders(self) -> Sequence[URI]:
        return (self._root_uri,)

    def uri_for(self, path: Path) -> URI:
        return URI.file(str(path.resolve()))

    def _is_excluded(self, path: Path) -> bool:
        try:
            rel = path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return True
        return matches_any(rel, self.config.exclude_paths)

    def is_markdown_file(self, path: Path) -> bool:
        return looks_like_markdown_path(self.config, self.uri_for(path)) and not self._is_excluded(path)

    def iter_markdown_paths(self) -> Iterator[Path]:
        if not self.root.exists():
            return
        for ext in self.config.markdown_file_extensions:
            for p in sorted(self.root.rglob(f"*.{ext}")):
                if p.is_file() and not self._is_excluded(p):
                    yield p

    async def get_all_markdown_documents(self) -> list[TextDocument]:
        docs = []
        for p in self.iter_markdown_paths():
            doc = await self.open_markdown_document(self.uri_for(p))
            if doc is not None:
                docs.append(doc)
        return docs

    def has_markdown_document(self, resource: URI) -> bool:
        if resource.scheme != "file":
            return False
        path = Path(resource.fs_path)
        return path.is_file() and self.is_markdown_file(path)

    async def open_markdown_document(self, resource: URI) -> InMemoryDocument | None:
        existing = self._documents.get(resource)
        if existing is not None:
            return existing
        if not self.has_markdown_document(resource):
            return None
        doc = self._read(resource)
        if doc is not None:
            self._documents[resource] = doc
        return doc

    def _read(self, resource: URI) -> InMemoryDocument | None:
        try:
            text = Path(resource.fs_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("could not read %s: %s", resource.fs_path, e)
            return None
        return InMemoryDocument(resource, text)

    async def stat(self, resource: URI) -> FileStat | None:
        if resource.scheme != "file":
            return None
        path = Path(resource.fs_path)
        if not path.exists():
            return None
        return FileStat(is_directory=path.is_dir())

    def get_containing_document(self, resource: URI) -> ContainingDocumentContext | None:
        return None

    def notify_created(self, path: Path) -> None:
        uri = self.uri_for(path)
        if self.is_markdown_file(path):
            if uri in self._documents:
                # Replaced by a rename over an open document (atomic save)
                self._reload(uri)
            else:
                doc = self._read(uri)
                if doc is not None:
                    self._documents[uri] = doc
                    self._on_did_create_markdown_document.fire(doc)
        self._on_did_create_file.fire(uri)

    def notify_changed(self, path: Path) -> None:
        uri = self.uri_for(path)
        if self.is_markdown_file(path):
            self._reload(uri)
        self._on_did_change_file.fire(uri)

    def _reload(self, uri: URI) -> None:
        existing = self._documents.get(uri)
        fresh = self._read(uri)
        if fresh is None:
            return
        if existing is not None:
            existing.update_content(fresh.get_text())
            fresh = existing
        else:
            self._documents[uri] = fresh
        self._on_did_change_markdown_document.fire(fresh)

    def notify_deleted(self, path: Path) -> None:
        uri = self.uri_for(path)
        if self._documents.pop(uri, None) is not None or looks_like_markdown_path(self.config, uri):
            self._on_did_delete_markdown_document.fire(uri)
        self._on_did_delete_file.fire(uri)
