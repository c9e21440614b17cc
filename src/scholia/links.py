"""
Link extraction and resolution.

LinkComputer is stateless: it scans a document's text for inline links,
reference links, autolinks and link definitions, skipping code. LinkProvider
caches those results per document and resolves link targets on request.
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from typing import Any, Iterable, Iterator
from urllib.parse import quote, unquote

from lsprotocol.types import DocumentLink, Position, Range

from .config import WorkspaceConfig
from .core.cancellation import NOOP_TOKEN, CancellationToken
from .core.document import range_contains
from .core.events import Disposable
from .core.model import (
    DocumentLinksInfo,
    ExternalHref,
    HrefKind,
    InlineLink,
    InternalHref,
    LinkDefinition,
    LinkDefinitionSet,
    LinkReference,
    LinkSource,
    MdLink,
    ReferenceHref,
    ResolvedLinkTarget,
)
from .core.ports import TextDocument, Tokenizer, Workspace
from .core.uri import URI
from .errors import MalformedHrefError
from .toc import TableOfContentsProvider
from .workspace import get_workspace_folder, try_append_markdown_file_extension
from .workspace_cache import DocumentInfoCache, WorkspaceInfoCache

logger = logging.getLogger(__name__)

OPEN_COMMAND = "scholia.open"
REVEAL_FOLDER_COMMAND = "revealInExplorer"

_SCHEME_RE = re.compile(r"^[a-z\-][a-z\-]+:", re.IGNORECASE)
_LINK_PARTS_RE = re.compile(r"^([^?#]*)(?:\?([^#]*))?(?:#(.*))?$", re.DOTALL)
_ANGLE_BRACKET_LINK_RE = re.compile(r"^<(.*)>$", re.DOTALL)

# [text](link) or [text](<link>), with an optional title
_LINK_RE = re.compile(
    r"(\["                                # text -->
    r"(?:"
    r"[^\[\]\\]|"                         # non-bracket chars, or...
    r"\\.|"                               # escaped char, or...
    r"\[[^\[\]]*\]"                       # matched bracket pair
    r")*"
    r"\])"                                # <-- text
    r"(\(\s*)"                            # pre href
    r"("
    r"[^\s\(\)\<](?:[^\s\(\)]|\([^\s\(\)]*?\))*|"  # link without whitespace, or...
    r"<[^<>]+>"                           # link in angle brackets
    r")"
    r"\s*(?:\"[^\"]*\"|'[^']*'|\([^\(\)]*\))?\s*"  # title
    r"\)"
)

# [text][ref], [ref][] or [ref]
_REFERENCE_LINK_RE = re.compile(
    r"(^|[^\]\\])"                        # must not follow a bracket or backslash
    r"(?:"
    r"(?:"
    r"(!?\[((?:\\\]|[^\]])*)\]\[\s*?)"    # link prefix: optional image marker, text
    r"([^\]]*?)\]"                        # reference
    r"|"
    r"\[\s*?([^\s\\\]]*?)\])"             # shorthand
    r"(?![:\(])"
    r")",
    re.MULTILINE,
)

# <scheme:...>
_AUTO_LINK_RE = re.compile(r"<(\w+:[^>\s]+)>")

# [ref]: link
_DEFINITION_RE = re.compile(
    r"^([\t ]*\[(?!\^)((?:\\\]|[^\]])+)\]:\s*)([^<]\S*|<[^>]+>)",
    re.MULTILINE,
)

_INLINE_CODE_RE = re.compile(
    r"(?:^|[^`])(`+)(?:.+?|.*?(?:(?:\r?\n).+?)*?)(?:\r?\n)?\1(?:$|[^`])",
    re.MULTILINE,
)

# `- [x]`, `* [ ]`, `1. [X]` are task list checkboxes, not references
_CHECKBOX_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s*\[[xX ]\]")

_LOCATION_FRAGMENT_RE = re.compile(r"^L(\d+)(?:,(\d+))?$", re.IGNORECASE)

_NO_LINK_BLOCK_TYPES = ("code_block", "fence", "html_block", "front_matter")


def _split_link_text(link_text: str) -> tuple[str, str]:
    """(decoded path, decoded fragment) of a relative or absolute link."""
    m = _LINK_PARTS_RE.match(link_text)
    if not m:
        return unquote(link_text), ""
    return unquote(m.group(1)), unquote(m.group(3) or "")


def resolve_internal_document_link(
    source_doc_uri: URI, link_text: str, workspace: Workspace
) -> tuple[URI, str] | None:
    """
    Resolve a path link relative to the document that contains it.

    Returns (resource, fragment), or None when an absolute link has no
    workspace folder to resolve against.
    """
    path, fragment = _split_link_text(link_text)

    context = workspace.get_containing_document(source_doc_uri)
    doc_uri = context.uri if context is not None else source_doc_uri

    if not path:
        # Fragment only
        return source_doc_uri, fragment

    if path.startswith("/"):
        root = get_workspace_folder(workspace, doc_uri)
        if root is None:
            return None
        return root.join_path(path), fragment

    if doc_uri.scheme == "untitled":
        root = get_workspace_folder(workspace, doc_uri)
        if root is None:
            return None
        return root.join_path(path), fragment

    return doc_uri.dirname().join_path(path), fragment


def create_href(
    source_doc_uri: URI, link: str, workspace: Workspace
) -> ExternalHref | InternalHref | None:
    """
    Classify link text as an external URI or an internal path.

    Raises MalformedHrefError for text that looks like a URI but cannot be
    parsed.
    """
    if _SCHEME_RE.match(link):
        return ExternalHref(URI.parse(unquote(link)))

    resolved = resolve_internal_document_link(source_doc_uri, link, workspace)
    if resolved is None:
        return None
    resource, fragment = resolved
    return InternalHref(path=resource, fragment=fragment)


def _try_create_href(
    source_doc_uri: URI, link: str, workspace: Workspace
) -> ExternalHref | InternalHref | None:
    try:
        return create_href(source_doc_uri, link, workspace)
    except MalformedHrefError as e:
        logger.debug("dropping link %r in %s: %s", link, source_doc_uri, e)
        return None


def _strip_angle_brackets(link: str) -> str:
    """`<http://example.com>` -> `http://example.com`"""
    return _ANGLE_BRACKET_LINK_RE.sub(r"\1", link)


def _make_source(
    document: TextDocument,
    href_text: str,
    start: int,
    end: int,
    target_start: int,
    href_start: int,
) -> LinkSource:
    href_end = href_start + len(href_text)
    hash_index = href_text.find("#")
    if hash_index >= 0:
        path_text = href_text[:hash_index]
        fragment_range = Range(
            start=document.position_at(href_start + hash_index + 1),
            end=document.position_at(href_end),
        )
    else:
        path_text = href_text
        fragment_range = None

    return LinkSource(
        range=Range(start=document.position_at(start), end=document.position_at(end)),
        resource=document.uri,
        target_range=Range(
            start=document.position_at(target_start), end=document.position_at(end)
        ),
        href_text=href_text,
        path_text=path_text,
        href_range=Range(
            start=document.position_at(href_start), end=document.position_at(href_end)
        ),
        fragment_range=fragment_range,
    )


def _create_md_link(
    document: TextDocument,
    match: re.Match,
    base_offset: int,
    workspace: Workspace,
) -> InlineLink | None:
    target_text, pre_href_text, raw_link = match.group(1), match.group(2), match.group(3)
    is_angle_bracket_link = raw_link.startswith("<")
    link = _strip_angle_brackets(raw_link)

    href = _try_create_href(document.uri, link, workspace)
    if href is None:
        return None

    start = base_offset + match.start()
    href_start = start + len(target_text) + len(pre_href_text) + (1 if is_angle_bracket_link else 0)
    return InlineLink(
        source=_make_source(
            document,
            link,
            start=start,
            end=start + len(match.group(0)),
            target_start=start + len(target_text),
            href_start=href_start,
        ),
        href=href,
    )


class NoLinkRanges:
    """Code blocks, fences, HTML blocks and inline code where links are not recognized."""

    def __init__(
        self,
        multiline: Iterable[tuple[int, int]],
        inline: dict[int, list[Range]],
    ):
        # [start_line, end_line) of each block
        self.multiline: tuple[tuple[int, int], ...] = tuple(multiline)
        # line -> inline spans touching that line
        self.inline = inline

    @classmethod
    async def compute(cls, tokenizer: Tokenizer, document: TextDocument) -> NoLinkRanges:
        tokens = await tokenizer.tokenize(document)
        multiline = [
            (t.map[0], t.map[1])
            for t in tokens
            if t.type in _NO_LINK_BLOCK_TYPES and t.map
        ]

        text = document.get_text()
        ranges = (
            Range(
                start=document.position_at(m.start()),
                end=document.position_at(m.end()),
            )
            for m in _INLINE_CODE_RE.finditer(text)
        )
        return cls(multiline, cls._by_line({}, ranges))

    @staticmethod
    def _by_line(
        base: dict[int, list[Range]], ranges: Iterable[Range]
    ) -> dict[int, list[Range]]:
        out: dict[int, list[Range]] = defaultdict(list)
        for line, entries in base.items():
            out[line].extend(entries)
        for r in ranges:
            for line in range(r.start.line, r.end.line + 1):
                out[line].append(r)
        return out

    def contains(self, position: Position) -> bool:
        if any(start <= position.line < end for start, end in self.multiline):
            return True
        return any(range_contains(r, position) for r in self.inline.get(position.line, ()))

    def concat_inline(self, ranges: Iterable[Range]) -> NoLinkRanges:
        return NoLinkRanges(self.multiline, self._by_line(self.inline, ranges))


class LinkComputer:
    """
    Stateless extraction of every link in a document.

    Links come out grouped by kind, each group in source order: inline
    links (including links nested in another link's text), reference links,
    autolinks, then link definitions.
    """

    def __init__(self, tokenizer: Tokenizer, workspace: Workspace):
        self._tokenizer = tokenizer
        self._workspace = workspace

    async def get_all_links(
        self, document: TextDocument, token: CancellationToken = NOOP_TOKEN
    ) -> list[MdLink]:
        no_link_ranges = await NoLinkRanges.compute(self._tokenizer, document)
        if token.is_cancellation_requested:
            return []

        inline_links = list(self._get_inline_links(document, no_link_ranges))
        return [
            *inline_links,
            *self._get_reference_links(
                document,
                no_link_ranges.concat_inline(link.source.range for link in inline_links),
            ),
            *self._get_auto_links(document, no_link_ranges),
            *self._get_link_definitions(document, no_link_ranges),
        ]

    def _get_inline_links(
        self, document: TextDocument, no_link_ranges: NoLinkRanges
    ) -> Iterator[InlineLink]:
        text = document.get_text()
        for match in _LINK_RE.finditer(text):
            link = _create_md_link(document, match, 0, self._workspace)
            if link is None or no_link_ranges.contains(link.source.href_range.start):
                continue
            yield link

            # Links inside the link text, e.g. an image inside a link
            for inner in _LINK_RE.finditer(match.group(1)):
                inner_link = _create_md_link(document, inner, match.start(), self._workspace)
                if inner_link is not None:
                    yield inner_link

    def _get_auto_links(
        self, document: TextDocument, no_link_ranges: NoLinkRanges
    ) -> Iterator[InlineLink]:
        text = document.get_text()
        for match in _AUTO_LINK_RE.finditer(text):
            start = match.start()
            if no_link_ranges.contains(document.position_at(start)):
                continue

            link = match.group(1)
            href = _try_create_href(document.uri, link, self._workspace)
            if href is None:
                continue

            source = _make_source(
                document,
                link,
                start=start,
                end=match.end(),
                target_start=start + 1,
                href_start=start + 1,
            )
            # The target of an autolink is the href itself, without the brackets
            yield InlineLink(
                source=LinkSource(
                    range=source.range,
                    resource=source.resource,
                    target_range=source.href_range,
                    href_text=source.href_text,
                    path_text=source.path_text,
                    href_range=source.href_range,
                    fragment_range=source.fragment_range,
                ),
                href=href,
            )

    def _get_reference_links(
        self, document: TextDocument, no_link_ranges: NoLinkRanges
    ) -> Iterator[InlineLink]:
        text = document.get_text()
        for match in _REFERENCE_LINK_RE.finditer(text):
            link_start = match.start() + len(match.group(1))
            if no_link_ranges.contains(document.position_at(link_start)):
                continue

            reference = match.group(4)
            if reference == "":  # [ref][]
                reference = match.group(3)
                if not reference:
                    continue
                href_start = link_start + 1
            elif reference:  # [text][ref]
                # `[][ref]` is only meaningful as an image: `![][ref]`
                if not match.group(3) and not match.group(2).startswith("!"):
                    continue
                href_start = link_start + len(match.group(2))
            elif match.group(5):  # [ref]
                reference = match.group(5)
                href_start = link_start + 1
                position = document.position_at(href_start)
                checkbox = _CHECKBOX_RE.match(document.get_line(position.line))
                if checkbox and position.character <= checkbox.end():
                    continue
            else:
                continue

            href_range = Range(
                start=document.position_at(href_start),
                end=document.position_at(href_start + len(reference)),
            )
            yield InlineLink(
                source=LinkSource(
                    range=Range(
                        start=document.position_at(link_start),
                        end=document.position_at(match.end()),
                    ),
                    resource=document.uri,
                    target_range=href_range,
                    href_text=reference,
                    path_text=reference,
                    href_range=href_range,
                    fragment_range=None,
                ),
                href=ReferenceHref(reference),
            )

    def _get_link_definitions(
        self, document: TextDocument, no_link_ranges: NoLinkRanges
    ) -> Iterator[LinkDefinition]:
        text = document.get_text()
        for match in _DEFINITION_RE.finditer(text):
            start = match.start()
            if no_link_ranges.contains(document.position_at(start)):
                continue

            pre, reference = match.group(1), match.group(2)
            raw_link_text = match.group(3).strip()
            is_angle_bracket_link = bool(_ANGLE_BRACKET_LINK_RE.match(raw_link_text))
            link_text = _strip_angle_brackets(raw_link_text)

            href = _try_create_href(document.uri, link_text, self._workspace)
            if href is None:
                continue

            href_start = start + len(pre) + (1 if is_angle_bracket_link else 0)
            ref_start = start + pre.index("[") + 1
            source = _make_source(
                document,
                link_text,
                start=start,
                end=match.end(),
                target_start=href_start,
                href_start=href_start,
            )
            yield LinkDefinition(
                source=LinkSource(
                    range=source.range,
                    resource=source.resource,
                    target_range=source.href_range,
                    href_text=source.href_text,
                    path_text=source.path_text,
                    href_range=source.href_range,
                    fragment_range=source.fragment_range,
                ),
                ref=LinkReference(
                    text=reference,
                    range=Range(
                        start=document.position_at(ref_start),
                        end=document.position_at(ref_start + len(reference)),
                    ),
                ),
                href=href,
            )


def parse_location_info_from_fragment(fragment: str) -> Position | None:
    """Position for fragments like `L5` or `L5,3` (1-based line and column)."""
    m = _LOCATION_FRAGMENT_RE.match(fragment)
    if not m:
        return None
    line = int(m.group(1)) - 1
    column = int(m.group(2)) - 1 if m.group(2) else 0
    return Position(line=max(line, 0), character=max(column, 0))


def _position_json(position: Position) -> dict[str, int]:
    return {"line": position.line, "character": position.character}


def _create_command_uri(command: str, *args: Any) -> str:
    return f"command:{command}?{quote(json.dumps(list(args)))}"


class LinkProvider(Disposable):
    """
    Links for the Markdown documents in a workspace.

    Link extraction is cached per document. Internal targets are resolved
    lazily through resolve_document_link.
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        workspace: Workspace,
        toc_provider: TableOfContentsProvider,
        config: WorkspaceConfig | None = None,
    ):
        super().__init__()
        self._workspace = workspace
        self._toc_provider = toc_provider
        self._config = config or WorkspaceConfig()
        self._link_computer = LinkComputer(tokenizer, workspace)

        async def compute(doc: TextDocument) -> DocumentLinksInfo:
            logger.debug("compute - %s", doc.uri)
            links = await self._link_computer.get_all_links(doc)
            return DocumentLinksInfo(links=tuple(links), definitions=LinkDefinitionSet(links))

        self._link_cache: DocumentInfoCache[DocumentLinksInfo] = self._register(
            DocumentInfoCache(workspace, compute)
        )

    async def get_links(self, document: TextDocument) -> DocumentLinksInfo:
        return await self._link_cache.get_for_document(document)

    async def provide_document_links(
        self, document: TextDocument, token: CancellationToken = NOOP_TOKEN
    ) -> list[DocumentLink]:
        info = await self.get_links(document)
        if token.is_cancellation_requested:
            return []

        out = []
        for link in info.links:
            doc_link = self._to_valid_document_link(link, info.definitions)
            if doc_link is not None:
                out.append(doc_link)
        return out

    async def resolve_document_link(
        self, link: DocumentLink, token: CancellationToken = NOOP_TOKEN
    ) -> DocumentLink | None:
        href = self._revive_link_href_data(link)
        if href is None:
            return None

        target = await self._resolve_internal_link_target(href.path, href.fragment, token)
        if target.kind == "folder":
            link.target = _create_command_uri(REVEAL_FOLDER_COMMAND, str(href.path))
        elif target.kind == "external":
            link.target = target.uri.to_string(skip_encoding=True)
        elif target.position is not None:
            link.target = self._create_open_at_pos_command(target.uri, target.position)
        else:
            link.target = target.uri.to_string(skip_encoding=True)
        return link

    async def resolve_link_target(
        self, link_text: str, source_doc: URI, token: CancellationToken = NOOP_TOKEN
    ) -> ResolvedLinkTarget | None:
        """
        Resolve arbitrary link text as if it were written in source_doc.

        Returns None for text that cannot be resolved to a file or URI.
        """
        href = _try_create_href(source_doc, link_text, self._workspace)
        if href is None:
            return None
        if href.kind is HrefKind.EXTERNAL:
            return ResolvedLinkTarget(kind="external", uri=href.uri)
        return await self._resolve_internal_link_target(href.path, href.fragment, token)

    async def _resolve_internal_link_target(
        self, link_path: URI, link_fragment: str, token: CancellationToken
    ) -> ResolvedLinkTarget:
        target = link_path

        # Cells of a composite document are not workspace files; skip the stat
        if self._workspace.get_containing_document(target) is None:
            stat = await self._workspace.stat(target)
            if stat is not None and stat.is_directory:
                return ResolvedLinkTarget(kind="folder", uri=target)

            if token.is_cancellation_requested:
                return ResolvedLinkTarget(kind="file", uri=target)

            if stat is None:
                dot_md = try_append_markdown_file_extension(self._config, target)
                if dot_md is None or await self._workspace.stat(dot_md) is None:
                    return ResolvedLinkTarget(kind="file", uri=target)
                target = dot_md

        if not link_fragment:
            return ResolvedLinkTarget(kind="file", uri=target)

        position = parse_location_info_from_fragment(link_fragment)
        if position is not None:
            return ResolvedLinkTarget(kind="file", uri=target, position=position)

        doc = await self._workspace.open_markdown_document(target)
        if doc is not None:
            toc = await self._toc_provider.get_for_containing_doc(doc)
            entry = toc.lookup(link_fragment)
            if entry is not None:
                return ResolvedLinkTarget(
                    kind="file",
                    uri=URI.parse(entry.header_location.uri),
                    position=entry.header_location.range.start,
                    fragment=link_fragment,
                )

        return ResolvedLinkTarget(kind="file", uri=target)

    def _revive_link_href_data(self, link: DocumentLink) -> InternalHref | None:
        data = link.data
        if not isinstance(data, (InlineLink, LinkDefinition)):
            return None
        if data.href.kind is not HrefKind.INTERNAL:
            return None
        return data.href

    def _to_valid_document_link(
        self, link: MdLink, definitions: LinkDefinitionSet
    ) -> DocumentLink | None:
        href = link.href
        if href.kind is HrefKind.EXTERNAL:
            return DocumentLink(
                range=link.source.href_range,
                target=href.uri.to_string(skip_encoding=True),
            )

        if href.kind is HrefKind.INTERNAL:
            # Target is filled in by resolve_document_link
            return DocumentLink(
                range=link.source.href_range,
                tooltip="Follow link",
                data=link,
            )

        # Reference links are only links if they have a definition
        definition = definitions.lookup(href.ref)
        if definition is None:
            return None
        return DocumentLink(
            range=link.source.href_range,
            target=self._create_open_at_pos_command(
                link.source.resource, definition.source.href_range.start
            ),
            tooltip="Go to link definition",
            data=link,
        )

    def _create_open_at_pos_command(self, resource: URI, position: Position) -> str:
        # A resource that already has a fragment cannot take an `#L1,1` fragment
        if resource.fragment:
            return _create_command_uri(
                OPEN_COMMAND,
                str(resource),
                {"selection": {"start": _position_json(position), "end": _position_json(position)}},
            )
        return resource.with_(fragment=f"L{position.line + 1},{position.character + 1}").to_string(
            skip_encoding=True
        )


def create_workspace_link_cache(
    tokenizer: Tokenizer, workspace: Workspace
) -> WorkspaceInfoCache[list[MdLink]]:
    """Links of every Markdown document in the workspace, kept current by notifications."""
    link_computer = LinkComputer(tokenizer, workspace)
    return WorkspaceInfoCache(workspace, link_computer.get_all_links)
