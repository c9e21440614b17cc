from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Sequence

from lsprotocol.types import Position, Range

from .events import Event
from .slugify import Slug
from .uri import URI


class TextDocument(Protocol):
    """
    Read-only view of a document's text at one version.
    """

    uri: URI
    version: int

    @property
    def line_count(self) -> int:
        pass

    def get_text(self, range: Range | None = None) -> str:
        pass

    def get_line(self, line: int) -> str:
        pass

    def position_at(self, offset: int) -> Position:
        pass

    def offset_at(self, position: Position) -> int:
        pass


class Token(Protocol):
    """
    Block/inline token as produced by markdown-it.

    ``map`` is ``[start_line, end_line_exclusive]`` for block tokens.
    """

    type: str
    markup: str
    content: str
    map: Sequence[int] | None
    children: Sequence[Any] | None


class Slugifier(Protocol):
    def from_heading(self, heading: str) -> Slug:
        pass


class Tokenizer(Protocol):
    """
    Turn a document into its markdown-it token stream.
    """

    slugifier: Slugifier

    async def tokenize(self, document: TextDocument) -> list[Token]:
        pass


@dataclass(frozen=True)
class FileStat:
    is_directory: bool = False


@dataclass(frozen=True)
class ContainingDocumentChild:
    uri: URI


@dataclass(frozen=True)
class ContainingDocumentContext:
    """A composite document (e.g. a notebook) whose children are Markdown documents."""

    uri: URI
    children: tuple[ContainingDocumentChild, ...]


class Workspace(Protocol):
    """
    Access to the Markdown documents and files of a workspace.

    Implementations raise the change notifications; the caches only react
    to them.
    """

    @property
    def workspace_folders(self) -> Sequence[URI]:
        pass

    async def get_all_markdown_documents(self) -> Iterable[TextDocument]:
        pass

    def has_markdown_document(self, resource: URI) -> bool:
        pass

    async def open_markdown_document(self, resource: URI) -> TextDocument | None:
        pass

    async def stat(self, resource: URI) -> FileStat | None:
        pass

    def get_containing_document(self, resource: URI) -> ContainingDocumentContext | None:
        pass

    on_did_change_markdown_document: Event[TextDocument]
    on_did_create_markdown_document: Event[TextDocument]
    on_did_delete_markdown_document: Event[URI]


class WatchingWorkspace(Workspace, Protocol):
    """
    Workspace that also reports create/change/delete of any file.
    """

    on_did_create_file: Event[URI]
    on_did_change_file: Event[URI]
    on_did_delete_file: Event[URI]
