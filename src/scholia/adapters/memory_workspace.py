"""In-memory watching workspace for tests and embedding."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..core.document import InMemoryDocument
from ..core.events import Emitter
from ..core.ports import ContainingDocumentContext, FileStat, TextDocument
from ..core.uri import URI

DEFAULT_ROOT = URI.file("/workspace")


class InMemoryWorkspace:
    """
    Watching workspace whose documents and files live in memory.

    Plain URIs passed in are treated as existing non-Markdown files (images,
    attachments). Every ``stat`` call is recorded in ``stat_calls`` and every
    document load in ``open_calls``.
    """

    def __init__(
        self,
        documents: Iterable[InMemoryDocument | URI] = (),
        folders: Sequence[URI] = (DEFAULT_ROOT,),
    ):
        self._folders = tuple(folders)
        self._documents: dict[URI, InMemoryDocument] = {}
        self._files: set[URI] = set()
        self._containing: dict[URI, ContainingDocumentContext] = {}
        self.stat_calls: list[URI] = []
        self.open_calls: list[URI] = []

        for entry in documents:
            if isinstance(entry, URI):
                self._files.add(entry)
            else:
                self._documents[entry.uri] = entry

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
        return self._folders

    async def get_all_markdown_documents(self) -> list[InMemoryDocument]:
        return list(self._documents.values())

    def has_markdown_document(self, resource: URI) -> bool:
        return resource in self._documents

    async def open_markdown_document(self, resource: URI) -> InMemoryDocument | None:
        self.open_calls.append(resource)
        return self._documents.get(resource)

    async def stat(self, resource: URI) -> FileStat | None:
        self.stat_calls.append(resource)
        if resource in self._documents or resource in self._files:
            return FileStat()
        if any(resource.is_parent_of(uri) for uri in (*self._documents, *self._files)):
            return FileStat(is_directory=True)
        return None

    def get_containing_document(self, resource: URI) -> ContainingDocumentContext | None:
        return self._containing.get(resource)

    def add_containing_document(self, context: ContainingDocumentContext) -> None:
        """Register a composite document; each child resolves to context."""
        for child in context.children:
            self._containing[child.uri] = context

    def update_document(self, document: InMemoryDocument) -> None:
        self._documents[document.uri] = document
        self._on_did_change_markdown_document.fire(document)
        self._on_did_change_file.fire(document.uri)

    def create_document(self, document: InMemoryDocument) -> None:
        self._documents[document.uri] = document
        self._on_did_create_markdown_document.fire(document)
        self._on_did_create_file.fire(document.uri)

    def delete_document(self, resource: URI) -> None:
        self._documents.pop(resource, None)
        self._on_did_delete_markdown_document.fire(resource)
        self._on_did_delete_file.fire(resource)

    def trigger_file_create(self, resource: URI) -> None:
        self._files.add(resource)
        self._on_did_create_file.fire(resource)

    def trigger_file_change(self, resource: URI) -> None:
        self._on_did_change_file.fire(resource)

    def trigger_file_delete(self, resource: URI) -> None:
        self._files.discard(resource)
        self._on_did_delete_file.fire(resource)

    def dispose(self) -> None:
        for emitter in (
            self._on_did_change_markdown_document,
            self._on_did_create_markdown_document,
            self._on_did_delete_markdown_document,
            self._on_did_create_file,
            self._on_did_change_file,
            self._on_did_delete_file,
        ):
            emitter.dispose()
