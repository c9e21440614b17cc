"""Tests for the per-document and per-workspace caches."""

import asyncio

import pytest

from scholia.adapters.memory_workspace import InMemoryWorkspace
from scholia.core.document import InMemoryDocument
from scholia.core.uri import URI
from scholia.errors import DisposedError
from scholia.workspace_cache import DocumentInfoCache, Lazy, WorkspaceInfoCache


def make_doc(name, text="# Doc"):
    return InMemoryDocument(URI.file(f"/workspace/{name}"), text)


class CountingCompute:
    """Records which documents were computed, optionally pausing each computation."""

    def __init__(self, delay=0.0):
        self.calls = []
        self.delay = delay

    async def __call__(self, doc):
        self.calls.append((doc.uri, doc.version))
        if self.delay:
            await asyncio.sleep(self.delay)
        return doc.get_text()


def test_lazy_computes_once():
    """Test the factory runs on first access only."""
    calls = []
    lazy = Lazy(lambda: calls.append(1) or len(calls))

    assert not lazy.has_value
    assert lazy.value == 1
    assert lazy.value == 1
    assert lazy.has_value
    assert calls == [1]


def test_concurrent_requests_share_one_computation():
    """Test a second request awaits the in-flight computation."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    compute = CountingCompute(delay=0.01)
    cache = DocumentInfoCache(workspace, compute)

    async def run():
        return await asyncio.gather(cache.get(doc.uri), cache.get(doc.uri), cache.get_for_document(doc))

    results = asyncio.run(run())

    assert results == ["# Doc", "# Doc", "# Doc"]
    assert compute.calls == [(doc.uri, 0)]


def test_concurrent_gets_load_document_once():
    """Test overlapping gets for an uncached document open it only once."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    cache = DocumentInfoCache(workspace, CountingCompute())

    async def run():
        return await asyncio.gather(cache.get(doc.uri), cache.get(doc.uri))

    assert asyncio.run(run()) == ["# Doc", "# Doc"]
    assert workspace.open_calls == [doc.uri]


def test_get_returns_none_for_unknown_document():
    """Test get() on a resource the workspace cannot open."""
    workspace = InMemoryWorkspace()
    compute = CountingCompute()
    cache = DocumentInfoCache(workspace, compute)

    assert asyncio.run(cache.get(URI.file("/workspace/nope.md"))) is None
    assert compute.calls == []


def test_change_notification_invalidates():
    """Test a changed document is recomputed on the next request."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    compute = CountingCompute()
    cache = DocumentInfoCache(workspace, compute)

    async def run():
        assert await cache.get(doc.uri) == "# Doc"
        doc.update_content("# Changed")
        workspace.update_document(doc)
        return await cache.get(doc.uri)

    assert asyncio.run(run()) == "# Changed"
    assert compute.calls == [(doc.uri, 0), (doc.uri, 1)]


def test_create_notification_replaces_entry():
    """Test a document re-created at the same version is recomputed."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    compute = CountingCompute()
    cache = DocumentInfoCache(workspace, compute)
    replacement = make_doc("a.md", "# Replaced")

    async def run():
        assert await cache.get(doc.uri) == "# Doc"
        workspace.create_document(replacement)
        return await cache.get(doc.uri), await cache.get_for_document(replacement)

    assert asyncio.run(run()) == ("# Replaced", "# Replaced")
    assert compute.calls == [(doc.uri, 0), (doc.uri, 0)]


def test_get_for_document_with_new_version_recomputes():
    """Test passing a newer document version recomputes without a notification."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    compute = CountingCompute()
    cache = DocumentInfoCache(workspace, compute)

    async def run():
        await cache.get_for_document(doc)
        await cache.get_for_document(doc)
        doc.update_content("# Edited")
        return await cache.get_for_document(doc)

    assert asyncio.run(run()) == "# Edited"
    assert compute.calls == [(doc.uri, 0), (doc.uri, 1)]


def test_unrequested_documents_are_not_computed_on_change():
    """Test notifications for documents never requested do no work."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    compute = CountingCompute()
    DocumentInfoCache(workspace, compute)

    workspace.update_document(doc)

    assert compute.calls == []


def test_delete_evicts_entry():
    """Test a deleted document is no longer served from the cache."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    compute = CountingCompute()
    cache = DocumentInfoCache(workspace, compute)

    async def run():
        await cache.get(doc.uri)
        workspace.delete_document(doc.uri)
        return await cache.get(doc.uri)

    assert asyncio.run(run()) is None


def test_failed_computation_raises_for_entry_only():
    """Test a failing computation propagates and leaves other entries alone."""
    good = make_doc("good.md")
    bad = make_doc("bad.md", "boom")
    workspace = InMemoryWorkspace([good, bad])

    async def compute(doc):
        if doc.get_text() == "boom":
            raise ValueError("cannot compute")
        return doc.get_text()

    cache = DocumentInfoCache(workspace, compute)

    async def run():
        with pytest.raises(ValueError):
            await cache.get(bad.uri)
        return await cache.get(good.uri)

    assert asyncio.run(run()) == "# Doc"


def test_disposed_cache_raises():
    """Test requests after dispose() fail."""
    doc = make_doc("a.md")
    workspace = InMemoryWorkspace([doc])
    cache = DocumentInfoCache(workspace, CountingCompute())
    cache.dispose()
    cache.dispose()

    with pytest.raises(DisposedError):
        asyncio.run(cache.get(doc.uri))


def test_workspace_cache_covers_every_document():
    """Test the workspace cache holds one value per document."""
    a, b = make_doc("a.md", "A"), make_doc("b.md", "B")
    workspace = InMemoryWorkspace([a, b])
    compute = CountingCompute()
    cache = WorkspaceInfoCache(workspace, compute)

    assert sorted(asyncio.run(cache.values())) == ["A", "B"]
    assert len(compute.calls) == 2


def test_workspace_cache_tracks_create_change_delete():
    """Test notifications add, refresh and remove workspace cache entries."""
    a = make_doc("a.md", "A")
    workspace = InMemoryWorkspace([a])
    compute = CountingCompute()
    cache = WorkspaceInfoCache(workspace, compute)

    async def run():
        assert await cache.values() == ["A"]

        workspace.create_document(make_doc("b.md", "B"))
        assert sorted(await cache.values()) == ["A", "B"]

        a.update_content("A2")
        workspace.update_document(a)
        assert sorted(await cache.values()) == ["A2", "B"]

        workspace.delete_document(a.uri)
        return await cache.entries()

    entries = asyncio.run(run())
    assert [(uri.path, value) for uri, value in entries] == [("/workspace/b.md", "B")]


def test_workspace_cache_get_for_docs():
    """Test get_for_docs computes only documents not already cached."""
    a, b = make_doc("a.md", "A"), make_doc("b.md", "B")
    workspace = InMemoryWorkspace([a, b])
    compute = CountingCompute()
    cache = WorkspaceInfoCache(workspace, compute)

    async def run():
        first = await cache.get_for_docs([a])
        both = await cache.get_for_docs([a, b])
        return first, both

    first, both = asyncio.run(run())
    assert first == ["A"]
    assert both == ["A", "B"]
    assert [uri.path for uri, _ in compute.calls] == ["/workspace/a.md", "/workspace/b.md"]
