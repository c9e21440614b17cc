"""Tests for watch mode functionality."""

import asyncio
import json
import os
import tempfile
from pathlib import Path

import pytest
from lsprotocol.types import Diagnostic, DiagnosticSeverity
from watchdog.events import (
    DirDeletedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from scholia.adapters.fs_workspace import FileSystemWorkspace
from scholia.core.document import make_range
from scholia.diagnostics import DiagnosticOptions
from scholia.service import create_language_service
from scholia.watch import (
    DebounceHandler,
    WatchSession,
    apply_batch,
    diagnostic_to_json,
    format_diagnostic,
)


@pytest.fixture
def temp_root():
    """Create a temporary workspace directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def collecting_handler(root, debounce_ms=50):
    batches = []

    def on_batch(created, changed, deleted):
        batches.append((created, changed, deleted))

    return DebounceHandler(root, on_batch, debounce_ms=debounce_ms), batches


def test_watch_skip_temp_files(temp_root):
    """Test that watch mode skips temp and swap files."""
    handler, batches = collecting_handler(temp_root)

    for name in ["test.swp", "test~", ".#test.md", ".hidden.md"]:
        path = temp_root / name
        path.write_text("temp content")
        assert handler._should_skip(path)
        handler.on_created(FileCreatedEvent(str(path)))

    assert not handler.has_pending()
    handler.flush()
    assert batches == []


def test_watch_debounce_coalesces_events(temp_root):
    """Test that debouncing coalesces multiple events per path."""
    note1 = temp_root / "note1.md"
    note2 = temp_root / "note2.md"
    note1.write_text("# One")
    note2.write_text("# Two")
    handler, batches = collecting_handler(temp_root)

    handler.on_created(FileCreatedEvent(str(note1)))
    handler.on_modified(FileModifiedEvent(str(note1)))
    handler.on_modified(FileModifiedEvent(str(note2)))
    handler.flush()

    assert batches == [({note1}, {note2}, set())]
    assert not handler.has_pending()


def test_watch_classifies_by_disk_state(temp_root):
    """Test a path created then deleted within one window is a deletion."""
    gone = temp_root / "gone.md"
    handler, batches = collecting_handler(temp_root)

    handler.on_created(FileCreatedEvent(str(gone)))
    handler.on_deleted(FileDeletedEvent(str(gone)))
    handler.flush()

    assert batches == [(set(), set(), {gone})]


def test_watch_move_is_delete_and_create(temp_root):
    """Test a rename reports the old path deleted and the new one created."""
    old = temp_root / "old.md"
    new = temp_root / "new.md"
    new.write_text("# New")
    handler, batches = collecting_handler(temp_root)

    handler.on_moved(FileMovedEvent(str(old), str(new)))
    handler.flush()

    assert batches == [({new}, set(), {old})]


def test_watch_folder_delete(temp_root):
    """Test deleted folders are reported, created folders are not."""
    handler, batches = collecting_handler(temp_root)

    handler.on_deleted(DirDeletedEvent(str(temp_root / "img")))
    handler.flush()

    assert batches == [(set(), set(), {temp_root / "img"})]


def test_check_and_flush_waits_for_quiet_period(temp_root):
    """Test nothing is flushed until the debounce window has passed."""
    note = temp_root / "note.md"
    note.write_text("# Note")
    handler, batches = collecting_handler(temp_root, debounce_ms=60_000)

    handler.on_modified(FileModifiedEvent(str(note)))
    handler.check_and_flush()
    assert batches == []
    assert handler.has_pending()

    handler.debounce_ms = 0
    handler.check_and_flush()
    assert batches == [(set(), {note}, set())]


def test_apply_batch_revalidates_linking_documents(temp_root):
    """Test a deleted image is reported for the document linking to it."""
    (temp_root / "img").mkdir()
    image = temp_root / "img" / "a.png"
    image.write_bytes(b"png")
    doc_path = temp_root / "doc.md"
    doc_path.write_text("![i](./img/a.png)\n")

    workspace = FileSystemWorkspace(temp_root)
    service = create_language_service(workspace)
    manager = service.create_pull_diagnostics_manager()
    changes = []
    manager.on_linked_to_file_changed(changes.append)

    async def run():
        doc = await workspace.open_markdown_document(workspace.uri_for(doc_path))
        assert await manager.compute_diagnostics(doc, DiagnosticOptions()) == []

        image.unlink()
        apply_batch(workspace, set(), set(), {image})
        return await manager.compute_diagnostics(doc, DiagnosticOptions())

    diagnostics = asyncio.run(run())

    assert len(diagnostics) == 1
    assert diagnostics[0].range == make_range(0, 5, 0, 16)
    assert [change.changed_resource for change in changes] == [workspace.uri_for(image)]
    service.dispose()


def test_apply_batch_updates_changed_document(temp_root):
    """Test changed Markdown files are re-read before revalidation."""
    doc_path = temp_root / "doc.md"
    doc_path.write_text("[a](./missing.md)\n")
    workspace = FileSystemWorkspace(temp_root)
    service = create_language_service(workspace)
    manager = service.create_pull_diagnostics_manager()

    async def run():
        doc = await workspace.open_markdown_document(workspace.uri_for(doc_path))
        assert len(await manager.compute_diagnostics(doc, DiagnosticOptions())) == 1

        doc_path.write_text("# Fixed\n")
        apply_batch(workspace, set(), {doc_path}, set())
        return doc, await manager.compute_diagnostics(doc, DiagnosticOptions())

    doc, diagnostics = asyncio.run(run())

    assert doc.version == 1
    assert diagnostics == []


def test_format_diagnostic():
    """Test the one-line and JSON renderings of a diagnostic."""
    diagnostic = Diagnostic(
        range=make_range(2, 4, 2, 10),
        message="File does not exist at path: /w/x.md",
        severity=DiagnosticSeverity.Error,
        code="link.no-such-file",
    )

    assert format_diagnostic("doc.md", diagnostic) == (
        "doc.md:3:5: [error] File does not exist at path: /w/x.md"
    )
    data = diagnostic_to_json("doc.md", diagnostic)
    assert data["severity"] == "error"
    assert data["code"] == "link.no-such-file"
    assert data["range"]["start"] == {"line": 2, "character": 4}


def test_atomic_save_refreshes_open_document(temp_root):
    """Test a file renamed over an open document replaces its links and diagnostics."""
    doc_path = temp_root / "a.md"
    doc_path.write_text("[x](missing.md)\n")
    workspace = FileSystemWorkspace(temp_root)
    service = create_language_service(workspace)
    manager = service.create_pull_diagnostics_manager()
    handler, batches = collecting_handler(temp_root)

    async def run():
        doc = await workspace.open_markdown_document(workspace.uri_for(doc_path))
        assert len(await service.get_document_links(doc)) == 1
        assert len(await manager.compute_diagnostics(doc, DiagnosticOptions())) == 1

        tmp = temp_root / "a.md.new"
        tmp.write_text("# fine\n")
        os.replace(tmp, doc_path)
        handler.on_moved(FileMovedEvent(str(tmp), str(doc_path)))
        handler.flush()
        apply_batch(workspace, *batches[-1])

        current = await workspace.open_markdown_document(workspace.uri_for(doc_path))
        return (
            current,
            await service.get_document_links(current),
            await manager.compute_diagnostics(current, DiagnosticOptions()),
        )

    current, links, diagnostics = asyncio.run(run())

    assert batches == [({doc_path}, set(), {temp_root / "a.md.new"})]
    assert current.get_text() == "# fine\n"
    assert current.version == 1
    assert links == []
    assert diagnostics == []
    service.dispose()


class FailingWorkspace(FileSystemWorkspace):
    def notify_changed(self, path):
        raise OSError(f"cannot read {path.name}")


def test_failing_batch_keeps_session_running(temp_root, capsys):
    """Test an error in one batch is reported and later batches still run."""
    broken = temp_root / "broken.md"
    broken.write_text("# Broken\n")
    doc_path = temp_root / "doc.md"
    doc_path.write_text("[a](./gone.md)\n")
    workspace = FailingWorkspace(temp_root)
    service = create_language_service(workspace)
    session = WatchSession(workspace, service.create_pull_diagnostics_manager(), DiagnosticOptions())

    async def run():
        await session.handle_batch(set(), {broken}, set())
        await session.handle_batch({doc_path}, set(), set())

    asyncio.run(run())

    captured = capsys.readouterr()
    assert "Error: cannot read broken.md" in captured.err
    assert "doc.md:1:5: [warning] File does not exist at path:" in captured.out
    assert "Revalidated 1 document(s): +1 ~0 -0" in captured.out
    service.dispose()


def test_failing_batch_json_error_event(temp_root, capsys):
    """Test batch errors become JSON error events in JSON mode."""
    broken = temp_root / "broken.md"
    broken.write_text("# Broken\n")
    workspace = FailingWorkspace(temp_root)
    service = create_language_service(workspace)
    session = WatchSession(
        workspace, service.create_pull_diagnostics_manager(), DiagnosticOptions(), json_output=True
    )

    asyncio.run(session.handle_batch(set(), {broken}, set()))

    events = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert events == [{"type": "error", "message": "cannot read broken.md"}]
    service.dispose()
