"""Watch mode for scholia - file watcher with incremental revalidation."""

import asyncio
import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable

from lsprotocol.types import Diagnostic, DiagnosticSeverity
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .core.uri import URI
from .diagnostics import DiagnosticOptions, DiagnosticsManager, LinkedToFileChange

# (created, changed, deleted)
BatchCallback = Callable[[set[Path], set[Path], set[Path]], None]


class DebounceHandler(FileSystemEventHandler):
    """File system event handler with debouncing."""

    def __init__(self, root: Path, on_batch: BatchCallback, debounce_ms: int = 150):
        super().__init__()
        self.root = root
        self.on_batch = on_batch
        self.debounce_ms = debounce_ms

        # Events arrive on the observer thread, flushes happen on the caller's
        self._lock = threading.Lock()
        self.created: set[Path] = set()
        self.modified: set[Path] = set()
        self.deleted: set[Path] = set()
        self.last_event_time = 0.0

    def _should_skip(self, path: Path) -> bool:
        """Check if file should be skipped."""
        name = path.name

        # Skip hidden files
        if name.startswith("."):
            return True

        # Skip temp/swap files
        if name.endswith("~") or name.endswith(".swp") or name.startswith(".#"):
            return True

        return False

    def _record(self, bucket: set[Path], src_path: Any) -> None:
        path = Path(str(src_path))
        if self._should_skip(path):
            return
        with self._lock:
            bucket.add(path)
            self.last_event_time = time.time()

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation."""
        if not event.is_directory:
            self._record(self.created, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification."""
        if not event.is_directory:
            self._record(self.modified, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle file or folder deletion."""
        self._record(self.deleted, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """A move is a delete of the source and a create of the destination."""
        self._record(self.deleted, event.src_path)
        if not event.is_directory:
            self._record(self.created, event.dest_path)

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self.created or self.modified or self.deleted)

    def check_and_flush(self) -> None:
        """Check if debounce period has elapsed and flush if so."""
        if not self.has_pending():
            return

        elapsed = (time.time() - self.last_event_time) * 1000
        if elapsed >= self.debounce_ms:
            self.flush()

    def flush(self) -> None:
        """Process accumulated events."""
        with self._lock:
            if not (self.created or self.modified or self.deleted):
                return
            # Event order within a window is lost; what is on disk now decides
            created: set[Path] = set()
            changed: set[Path] = set()
            deleted: set[Path] = set()
            for path in self.created | self.modified | self.deleted:
                if not path.exists():
                    deleted.add(path)
                elif path in self.created and path not in self.deleted:
                    created.add(path)
                else:
                    changed.add(path)
            self.created.clear()
            self.modified.clear()
            self.deleted.clear()

        if self.on_batch:
            self.on_batch(created, changed, deleted)


def format_diagnostic(path: str, diagnostic: Diagnostic) -> str:
    start = diagnostic.range.start
    severity = "error" if diagnostic.severity == DiagnosticSeverity.Error else "warning"
    return f"{path}:{start.line + 1}:{start.character + 1}: [{severity}] {diagnostic.message}"


def diagnostic_to_json(path: str, diagnostic: Diagnostic) -> dict[str, Any]:
    r = diagnostic.range
    return {
        "path": path,
        "severity": "error" if diagnostic.severity == DiagnosticSeverity.Error else "warning",
        "code": diagnostic.code,
        "message": diagnostic.message,
        "range": {
            "start": {"line": r.start.line, "character": r.start.character},
            "end": {"line": r.end.line, "character": r.end.character},
        },
    }


def apply_batch(
    workspace: Any,
    created: set[Path],
    changed: set[Path],
    deleted: set[Path],
) -> None:
    """Report one batch of file system changes to the workspace."""
    for path in sorted(deleted):
        workspace.notify_deleted(path)
    for path in sorted(created):
        workspace.notify_created(path)
    for path in sorted(changed):
        workspace.notify_changed(path)


class WatchSession:
    """
    Revalidation state for one watch run.

    Tracks which documents need a fresh report after each batch and prints
    their diagnostics. A failing batch is reported and does not end the session.
    """

    def __init__(
        self,
        workspace: Any,
        manager: DiagnosticsManager,
        options: DiagnosticOptions,
        quiet: bool = False,
        json_output: bool = False,
    ):
        self.workspace = workspace
        self.manager = manager
        self.options = options
        self.quiet = quiet
        self.json_output = json_output

        # Documents whose diagnostics may have changed since the last report
        self.dirty: set[URI] = set()
        manager.on_linked_to_file_changed(self._on_linked)

    def _on_linked(self, change: LinkedToFileChange) -> None:
        self.dirty.update(change.linking_resources)

    async def report(self, uris: list[URI]) -> None:
        for uri in uris:
            doc = await self.workspace.open_markdown_document(uri)
            if doc is None:
                self.manager.disconnect_document(uri)
                if self.json_output:
                    print(json.dumps({"type": "removed", "path": uri.fs_path}), flush=True)
                continue

            diagnostics = await self.manager.compute_diagnostics(doc, self.options)
            rel = _relative(self.workspace.root, uri)
            if self.json_output:
                print(json.dumps({
                    "type": "diagnostics",
                    "path": rel,
                    "diagnostics": [diagnostic_to_json(rel, d) for d in diagnostics],
                }), flush=True)
            elif not self.quiet:
                for d in diagnostics:
                    print(format_diagnostic(rel, d), flush=True)

    async def report_all(self) -> None:
        docs = await self.workspace.get_all_markdown_documents()
        await self.report([doc.uri for doc in docs])

    async def handle_batch(self, created: set[Path], changed: set[Path], deleted: set[Path]) -> None:
        """Apply one batch and report the documents it affects."""
        start_time = time.time()

        try:
            self.dirty.clear()
            apply_batch(self.workspace, created, changed, deleted)
            for path in (*created, *changed, *deleted):
                uri = self.workspace.uri_for(path)
                if uri in self.manager.tracked_documents or self.workspace.has_markdown_document(uri):
                    self.dirty.add(uri)

            await self.report(sorted(self.dirty, key=str))
            duration_ms = int((time.time() - start_time) * 1000)
            if self.json_output:
                print(json.dumps({
                    "type": "batch",
                    "created": sorted(str(p) for p in created),
                    "changed": sorted(str(p) for p in changed),
                    "deleted": sorted(str(p) for p in deleted),
                    "revalidated": len(self.dirty),
                    "duration_ms": duration_ms,
                }), flush=True)
            elif not self.quiet:
                print(
                    f"Revalidated {len(self.dirty)} document(s): +{len(created)} ~{len(changed)} "
                    f"-{len(deleted)} ({duration_ms}ms)",
                    flush=True,
                )
        except Exception as e:
            if self.json_output:
                print(json.dumps({"type": "error", "message": str(e)}), flush=True)
            else:
                print(f"Error: {e}", file=sys.stderr, flush=True)


async def _watch(
    rt: Any,
    handler: DebounceHandler,
    pending: list[tuple[set[Path], set[Path], set[Path]]],
    should_run: Callable[[], bool],
    quiet: bool,
    json_output: bool,
) -> None:
    session = WatchSession(
        rt.workspace,
        rt.service.create_pull_diagnostics_manager(),
        rt.options,
        quiet=quiet,
        json_output=json_output,
    )
    await session.report_all()

    while should_run():
        await asyncio.sleep(0.1)
        handler.check_and_flush()
        while pending:
            await session.handle_batch(*pending.pop(0))



def _relative(root: Path, uri: URI) -> str:
    try:
        return Path(uri.fs_path).relative_to(root).as_posix()
    except ValueError:
        return uri.fs_path


def watch_workspace(
    rt: Any,
    debounce_ms: int = 150,
    quiet: bool = False,
    json_output: bool = False,
) -> int:
    """
    Watch the workspace directory and revalidate affected documents.

    Args:
        rt: Runtime with a filesystem workspace and language service
        debounce_ms: Debounce window in milliseconds
        quiet: Suppress human-readable output
        json_output: Output JSON events instead of human-readable

    Returns:
        Exit code
    """
    root: Path = rt.workspace.root
    if not root.exists():
        print(f"Error: Workspace not found: {root}", file=sys.stderr)
        return 1

    running = True

    def signal_handler(signum: int, frame: Any) -> None:
        nonlocal running
        running = False
        if not quiet and not json_output:
            print("\nShutting down...", flush=True)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    pending: list[tuple[set[Path], set[Path], set[Path]]] = []

    def handle_batch(created: set[Path], changed: set[Path], deleted: set[Path]) -> None:
        pending.append((created, changed, deleted))

    handler = DebounceHandler(root, handle_batch, debounce_ms)
    observer = Observer()
    observer.schedule(handler, str(root), recursive=True)

    if not quiet and not json_output:
        print(f"Watching {root} (debounce: {debounce_ms}ms)", flush=True)
        print("Press Ctrl+C to stop", flush=True)

    observer.start()
    try:
        asyncio.run(_watch(rt, handler, pending, lambda: running, quiet, json_output))
    finally:
        observer.stop()
        observer.join()
        rt.service.dispose()

    if not quiet and not json_output:
        print("Watch stopped", flush=True)

    return 0
