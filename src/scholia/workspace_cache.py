"""
Lazily computed, explicitly invalidated caches of per-document information.

Values are held as asyncio tasks, so a second request for an entry whose
computation is still running awaits the same task instead of starting
another one. A failed computation raises for every awaiter of that entry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

from .core.events import Disposable
from .core.ports import TextDocument, Workspace
from .core.uri import URI
from .errors import DisposedError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Lazy(Generic[T]):
    """Value produced by factory on first access, then memoized."""

    def __init__(self, factory: Callable[[], T]):
        self._factory: Callable[[], T] | None = factory
        self._value: T | None = None

    @property
    def has_value(self) -> bool:
        return self._factory is None

    @property
    def value(self) -> T:
        if self._factory is not None:
            factory, self._factory = self._factory, None
            self._value = factory()
        return self._value  # type: ignore[return-value]


def lazy_task(compute: Callable[[], Awaitable[T]]) -> Lazy[asyncio.Future[T]]:
    return Lazy(lambda: asyncio.ensure_future(compute()))


class LazyResourceMap(Generic[T]):
    """URI -> lazily started computation."""

    def __init__(self) -> None:
        self._map: dict[URI, Lazy[asyncio.Future[T]]] = {}

    def has(self, resource: URI) -> bool:
        return resource in self._map

    def get(self, resource: URI) -> asyncio.Future[T] | None:
        entry = self._map.get(resource)
        return entry.value if entry is not None else None

    def set(self, resource: URI, value: Lazy[asyncio.Future[T]]) -> None:
        self._map[resource] = value

    def delete(self, resource: URI) -> None:
        self._map.pop(resource, None)

    async def entries(self) -> list[tuple[URI, T]]:
        items = list(self._map.items())
        values = await asyncio.gather(*(entry.value for _, entry in items))
        return [(uri, value) for (uri, _), value in zip(items, values)]


class _VersionedEntry(Generic[T]):
    def __init__(self, version: int, value: Lazy[asyncio.Future[T]]):
        self.version = version
        self.value = value


class DocumentInfoCache(Disposable, Generic[T]):
    """
    Cache of information per document in the workspace.

    Entries are computed on first request and recomputed after the
    workspace reports the document changed. Deleted documents are evicted.
    """

    def __init__(
        self,
        workspace: Workspace,
        get_value: Callable[[TextDocument], Awaitable[T]],
    ):
        super().__init__()
        self._workspace = workspace
        self._get_value = get_value
        self._cache: dict[URI, _VersionedEntry[T]] = {}
        self._loading_documents: dict[URI, asyncio.Future[TextDocument | None]] = {}

        self._register(workspace.on_did_change_markdown_document(self._invalidate))
        self._register(workspace.on_did_create_markdown_document(self._invalidate))
        self._register(workspace.on_did_delete_markdown_document(self._on_did_delete_document))

    def _check_disposed(self) -> None:
        if self.is_disposed:
            raise DisposedError("DocumentInfoCache has been disposed")

    async def get(self, resource: URI) -> T | None:
        """Value for resource, loading the document if needed; None if it cannot be opened."""
        self._check_disposed()
        entry = self._cache.get(resource)
        if entry is None:
            doc = await self._load_document(resource)
            if doc is None:
                return None
            # Another caller may have filled the entry while we were loading
            entry = self._cache.get(resource) or self._reset_entry(doc)

        while True:
            value = await entry.value.value
            current = self._cache.get(resource)
            if current is None or current is entry:
                return value
            # Superseded by a newer document version while computing
            entry = current

    async def get_for_document(self, document: TextDocument) -> T:
        self._check_disposed()
        entry = self._cache.get(document.uri)
        if entry is None or entry.version != document.version:
            entry = self._reset_entry(document)
        return await entry.value.value

    def _load_document(self, resource: URI) -> asyncio.Future[TextDocument | None]:
        existing = self._loading_documents.get(resource)
        if existing is not None:
            return existing

        task = asyncio.ensure_future(self._workspace.open_markdown_document(resource))
        self._loading_documents[resource] = task
        task.add_done_callback(lambda _: self._loading_documents.pop(resource, None))
        return task

    def _reset_entry(self, document: TextDocument) -> _VersionedEntry[T]:
        entry = _VersionedEntry(document.version, lazy_task(lambda: self._get_value(document)))
        self._cache[document.uri] = entry
        return entry

    def _invalidate(self, document: TextDocument) -> None:
        if document.uri in self._cache:
            logger.debug("invalidate - %s", document.uri)
            self._reset_entry(document)

    def _on_did_delete_document(self, resource: URI) -> None:
        self._cache.pop(resource, None)


class WorkspaceInfoCache(Disposable, Generic[T]):
    """
    Cache of information across all Markdown files in the workspace.

    Unlike DocumentInfoCache, an entry exists for every document as soon as
    the cache is first used. The values themselves are still computed lazily.
    """

    def __init__(
        self,
        workspace: Workspace,
        get_value: Callable[[TextDocument], Awaitable[T]],
    ):
        super().__init__()
        self._workspace = workspace
        self._get_value = get_value
        self._cache: LazyResourceMap[T] = LazyResourceMap()
        self._init: asyncio.Future[None] | None = None

        self._register(workspace.on_did_change_markdown_document(self._update))
        self._register(workspace.on_did_create_markdown_document(self._update))
        self._register(workspace.on_did_delete_markdown_document(self._on_did_delete_document))

    async def entries(self) -> list[tuple[URI, T]]:
        await self._ensure_init()
        return await self._cache.entries()

    async def values(self) -> list[T]:
        return [value for _, value in await self.entries()]

    async def get_for_docs(self, docs: Iterable[TextDocument]) -> list[T]:
        if self.is_disposed:
            raise DisposedError("WorkspaceInfoCache has been disposed")
        docs = list(docs)
        for doc in docs:
            if not self._cache.has(doc.uri):
                self._update(doc)
        return list(await asyncio.gather(*(self._cache.get(doc.uri) for doc in docs)))

    async def _ensure_init(self) -> None:
        if self.is_disposed:
            raise DisposedError("WorkspaceInfoCache has been disposed")
        if self._init is None:
            self._init = asyncio.ensure_future(self._populate_cache())
        await self._init

    async def _populate_cache(self) -> None:
        for document in await self._workspace.get_all_markdown_documents():
            if not self._cache.has(document.uri):
                self._update(document)

    def _update(self, document: TextDocument) -> None:
        self._cache.set(document.uri, lazy_task(lambda: self._get_value(document)))

    def _on_did_delete_document(self, resource: URI) -> None:
        self._cache.delete(resource)
