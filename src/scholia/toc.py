"""Document outlines with section ranges and unique heading slugs."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Sequence

from lsprotocol.types import Location, Position, Range

from .core.document import make_range
from .core.events import Disposable
from .core.ports import Slugifier, TextDocument, Token, Tokenizer, Workspace
from .core.slugify import Slug, default_slugifier
from .core.uri import URI
from .workspace_cache import DocumentInfoCache

logger = logging.getLogger(__name__)

_HEADER_PREFIX_RE = re.compile(r"^#+\s*")
_HEADER_SUFFIX_RE = re.compile(r"\s*#*$")
_HEADER_TEXT_RE = re.compile(r"^\s*#+\s*(.*?)(\s+#+)?$")


@dataclass(frozen=True)
class TocEntry:
    slug: Slug
    text: str
    level: int
    line: int  # 0-based

    # From this heading up to the line before the next heading of the same
    # or a higher level, or to the end of the document
    section_location: Location

    # The whole heading line, e.g. `# Head #`
    header_location: Location

    # Only the heading text, e.g. `Head`
    header_text_location: Location


def _header_level(markup: str) -> int:
    if markup == "=":
        return 1
    if markup == "-":
        return 2
    return len(markup)  # '#', '##', ...


def _token_to_plain_text(token: Token) -> str:
    if token.children is not None:
        return "".join(_token_to_plain_text(child) for child in token.children)
    if token.type in ("text", "emoji", "code_inline"):
        return token.content
    return ""


def _header_title_as_plain_text(parts: Sequence[Token]) -> str:
    return "".join(_token_to_plain_text(t) for t in parts).strip()


class _SlugAllocator:
    """Hands out slugs, appending -1, -2, ... to repeats in document order."""

    def __init__(self, slugifier: Slugifier):
        self._slugifier = slugifier
        self._counts: dict[str, int] = {}
        self._used: set[str] = set()

    def allocate(self, text: str) -> Slug:
        slug = self._slugifier.from_heading(text)
        base = slug.value
        if base in self._counts or base in self._used:
            count = self._counts.get(base, 0)
            while True:
                count += 1
                slug = self._slugifier.from_heading(f"{base}-{count}")
                if slug.value not in self._used:
                    break
            self._counts[base] = count
        else:
            self._counts[base] = 0
        self._used.add(slug.value)
        return slug


class TableOfContents:
    EMPTY: TableOfContents

    def __init__(self, entries: Sequence[TocEntry], slugifier: Slugifier):
        self.entries: tuple[TocEntry, ...] = tuple(entries)
        self._slugifier = slugifier

    def __repr__(self) -> str:
        return f"TableOfContents({[e.slug.value for e in self.entries]})"

    def __len__(self) -> int:
        return len(self.entries)

    def lookup(self, fragment: str) -> TocEntry | None:
        slug = self._slugifier.from_heading(fragment)
        for entry in self.entries:
            if entry.slug.equals(slug):
                return entry
        return None

    @classmethod
    async def create(cls, parser: Tokenizer, document: TextDocument) -> TableOfContents:
        entries = await cls._build_toc(parser, document, _SlugAllocator(parser.slugifier))
        return cls(entries, parser.slugifier)

    @classmethod
    async def create_for_containing_doc(
        cls, parser: Tokenizer, workspace: Workspace, document: TextDocument
    ) -> TableOfContents:
        """
        Outline for the composite document that contains document.

        The headings of every child, in child order, make up the outline.
        Documents without a containing context get their own outline.
        """
        context = workspace.get_containing_document(document.uri)
        if context is None:
            return await cls.create(parser, document)

        slugs = _SlugAllocator(parser.slugifier)
        entries: list[TocEntry] = []
        for child in context.children:
            doc = await workspace.open_markdown_document(child.uri)
            if doc is not None:
                entries.extend(await cls._build_toc(parser, doc, slugs))
        return cls(entries, parser.slugifier)

    @staticmethod
    async def _build_toc(
        parser: Tokenizer, document: TextDocument, slugs: _SlugAllocator
    ) -> list[TocEntry]:
        doc_uri = str(document.uri)
        tokens = await parser.tokenize(document)

        headers: list[tuple[Token, list[Token]]] = []
        current: list[Token] | None = None
        for token in tokens:
            if token.type == "heading_open":
                current = []
                headers.append((token, current))
            elif token.type == "heading_close":
                current = None
            elif current is not None:
                current.append(token)

        toc: list[TocEntry] = []
        for open_token, body in headers:
            if not open_token.map:
                continue

            line_number = open_token.map[0]
            line = document.get_line(line_number)
            slug = slugs.allocate(_header_title_as_plain_text(body))

            header_location = Location(
                uri=doc_uri, range=make_range(line_number, 0, line_number, len(line))
            )
            prefix = _HEADER_PREFIX_RE.match(line)
            suffix = _HEADER_SUFFIX_RE.search(line)
            header_text_location = Location(
                uri=doc_uri,
                range=make_range(
                    line_number,
                    prefix.end() if prefix else 0,
                    line_number,
                    len(line) - (len(suffix.group(0)) if suffix else 0),
                ),
            )

            toc.append(
                TocEntry(
                    slug=slug,
                    text=_HEADER_TEXT_RE.sub(lambda m: m.group(1).strip(), line),
                    level=_header_level(open_token.markup),
                    line=line_number,
                    section_location=header_location,  # filled in below
                    header_location=header_location,
                    header_text_location=header_text_location,
                )
            )

        result = []
        for index, entry in enumerate(toc):
            end_line = document.line_count - 1
            for following in toc[index + 1 :]:
                if following.level <= entry.level:
                    end_line = following.line - 1
                    break
            section = Location(
                uri=doc_uri,
                range=Range(
                    start=entry.header_location.range.start,
                    end=Position(line=end_line, character=len(document.get_line(end_line))),
                ),
            )
            result.append(replace(entry, section_location=section))
        return result


TableOfContents.EMPTY = TableOfContents((), default_slugifier)


class TableOfContentsProvider(Disposable):
    """Cached outlines for the documents of a workspace."""

    def __init__(self, parser: Tokenizer, workspace: Workspace):
        super().__init__()
        self._parser = parser
        self._workspace = workspace

        async def compute(doc: TextDocument) -> TableOfContents:
            logger.debug("create - %s", doc.uri)
            return await TableOfContents.create(parser, doc)

        self._cache: DocumentInfoCache[TableOfContents] = self._register(
            DocumentInfoCache(workspace, compute)
        )

    async def get(self, resource: URI) -> TableOfContents:
        toc = await self._cache.get(resource)
        return toc if toc is not None else TableOfContents.EMPTY

    async def get_for_document(self, doc: TextDocument) -> TableOfContents:
        return await self._cache.get_for_document(doc)

    async def get_for_containing_doc(self, doc: TextDocument) -> TableOfContents:
        if self._workspace.get_containing_document(doc.uri) is None:
            return await self.get_for_document(doc)
        return await TableOfContents.create_for_containing_doc(self._parser, self._workspace, doc)
