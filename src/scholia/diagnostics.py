"""
Link validation.

DiagnosticComputer checks one document's links against the workspace.
DiagnosticsManager wraps it with a stat cache that persists across edits
and is invalidated by file notifications from a watching workspace.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from lsprotocol.types import Diagnostic, DiagnosticSeverity, Position, Range

from .config import WorkspaceConfig
from .core.cancellation import NOOP_TOKEN, CancellationToken
from .core.events import Disposable, Emitter
from .core.glob import matches_any
from .core.model import DocumentLinksInfo, HrefKind, MdLink
from .core.ports import TextDocument, Workspace
from .core.uri import URI
from .errors import ConfigError, DisposedError, WatchingUnsupportedError
from .links import LinkProvider, parse_location_info_from_fragment
from .toc import TableOfContentsProvider
from .workspace import (
    StatCache,
    is_watching_workspace,
    looks_like_markdown_path,
    stat_link_to_markdown_file,
    try_append_markdown_file_extension,
)

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "scholia"

# Concurrent stat/load operations per document
MAX_CONCURRENT_FILE_CHECKS = 10


class DiagnosticLevel(enum.Enum):
    IGNORE = "ignore"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def parse(cls, value: str) -> DiagnosticLevel:
        """Level from a config value; ``off`` is accepted for ``ignore``."""
        normalized = value.strip().lower()
        if normalized == "off":
            return cls.IGNORE
        try:
            return cls(normalized)
        except ValueError:
            choices = ", ".join(["off", *(level.value for level in cls)])
            raise ConfigError(f"Unknown diagnostic level {value!r} (expected one of: {choices})")

    def to_severity(self) -> DiagnosticSeverity | None:
        if self is DiagnosticLevel.ERROR:
            return DiagnosticSeverity.Error
        if self is DiagnosticLevel.WARNING:
            return DiagnosticSeverity.Warning
        return None


class DiagnosticCode(str, enum.Enum):
    LINK_NO_SUCH_REFERENCE = "link.no-such-reference"
    LINK_NO_SUCH_HEADER_IN_OWN_FILE = "link.no-such-header-in-own-file"
    LINK_NO_SUCH_FILE = "link.no-such-file"
    LINK_NO_SUCH_HEADER_IN_FILE = "link.no-such-header-in-file"


@dataclass(frozen=True)
class DiagnosticOptions:
    validate_file_links: DiagnosticLevel = DiagnosticLevel.WARNING
    validate_references: DiagnosticLevel = DiagnosticLevel.WARNING
    validate_fragment_links: DiagnosticLevel = DiagnosticLevel.WARNING
    # None means: same as validate_fragment_links
    validate_markdown_file_link_fragments: DiagnosticLevel | None = None
    ignore_links: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "ignore_links", tuple(self.ignore_links))

    @property
    def markdown_file_link_fragments_level(self) -> DiagnosticLevel:
        if self.validate_markdown_file_link_fragments is not None:
            return self.validate_markdown_file_link_fragments
        return self.validate_fragment_links


@dataclass
class DiagnosticsResult:
    diagnostics: list[Diagnostic]
    links: tuple[MdLink, ...]
    stat_cache: StatCache
    # Paths whose existence the diagnostics depend on
    touched_paths: frozenset[URI] = frozenset()


def _make_diagnostic(
    message: str,
    range: Range,
    level: DiagnosticLevel,
    code: DiagnosticCode,
    **data: str,
) -> Diagnostic:
    return Diagnostic(
        range=range,
        message=message,
        severity=level.to_severity(),
        code=code.value,
        source=DIAGNOSTIC_SOURCE,
        data=data,
    )


class DiagnosticComputer:
    """Stateless validation of the links of a single document."""

    def __init__(
        self,
        config: WorkspaceConfig,
        workspace: Workspace,
        link_provider: LinkProvider,
        toc_provider: TableOfContentsProvider,
    ):
        self._config = config
        self._workspace = workspace
        self._link_provider = link_provider
        self._toc_provider = toc_provider

    async def compute(
        self,
        document: TextDocument,
        options: DiagnosticOptions,
        token: CancellationToken = NOOP_TOKEN,
        stat_cache: StatCache | None = None,
    ) -> DiagnosticsResult:
        """
        Validate every link in document.

        Args:
            document: Document to validate
            options: Severity levels and ignore globs
            token: Checked after each awaited step
            stat_cache: Known existence of paths; filled with new probes

        Returns:
            Diagnostics ordered file links first, then references, then
            same-document fragments.
        """
        if stat_cache is None:
            stat_cache = {}

        info = await self._link_provider.get_links(document)
        if token.is_cancellation_requested:
            return DiagnosticsResult([], (), stat_cache)

        file_diagnostics, touched = await self._validate_file_links(
            options, info.links, stat_cache, token
        )
        own_fragment_diagnostics = await self._validate_own_fragment_links(
            document, options, info.links
        )
        if token.is_cancellation_requested:
            return DiagnosticsResult([], (), stat_cache)

        diagnostics = [
            *file_diagnostics,
            *self._validate_references(options, info),
            *own_fragment_diagnostics,
        ]
        return DiagnosticsResult(diagnostics, info.links, stat_cache, touched)

    async def _validate_own_fragment_links(
        self, document: TextDocument, options: DiagnosticOptions, links: Iterable[MdLink]
    ) -> list[Diagnostic]:
        level = options.validate_fragment_links
        if level is DiagnosticLevel.IGNORE:
            return []

        toc = None
        diagnostics = []
        for link in links:
            href = link.href
            if href.kind is not HrefKind.INTERNAL or not link.source.href_text.startswith("#"):
                continue
            if href.path != document.uri or not href.fragment:
                continue
            if parse_location_info_from_fragment(href.fragment) is not None:
                continue

            if toc is None:
                toc = await self._toc_provider.get_for_containing_doc(document)
            if toc.lookup(href.fragment) is not None:
                continue
            if matches_any(link.source.href_text, options.ignore_links):
                continue

            diagnostics.append(_make_diagnostic(
                f"No header found: '{href.fragment}'",
                link.source.href_range,
                level,
                DiagnosticCode.LINK_NO_SUCH_HEADER_IN_OWN_FILE,
                hrefText=link.source.href_text,
            ))
        return diagnostics

    def _validate_references(
        self, options: DiagnosticOptions, info: DocumentLinksInfo
    ) -> list[Diagnostic]:
        level = options.validate_references
        if level is DiagnosticLevel.IGNORE:
            return []

        diagnostics = []
        for link in info.links:
            if link.href.kind is HrefKind.REFERENCE and info.definitions.lookup(link.href.ref) is None:
                diagnostics.append(_make_diagnostic(
                    f"No link definition found: '{link.href.ref}'",
                    link.source.href_range,
                    level,
                    DiagnosticCode.LINK_NO_SUCH_REFERENCE,
                    hrefText=link.source.href_text,
                ))
        return diagnostics

    async def _validate_file_links(
        self,
        options: DiagnosticOptions,
        links: Iterable[MdLink],
        stat_cache: StatCache,
        token: CancellationToken,
    ) -> tuple[list[Diagnostic], frozenset[URI]]:
        file_level = options.validate_file_links
        fragment_level = options.markdown_file_link_fragments_level
        if file_level is DiagnosticLevel.IGNORE and fragment_level is DiagnosticLevel.IGNORE:
            return [], frozenset()

        links_by_path: dict[URI, list[MdLink]] = {}
        for link in links:
            if link.href.kind is HrefKind.INTERNAL and not link.source.href_text.startswith("#"):
                links_by_path.setdefault(link.href.path, []).append(link)

        touched: set[URI] = set()
        for path in links_by_path:
            touched.add(path)
            dot_md = try_append_markdown_file_extension(self._config, path)
            if dot_md is not None:
                touched.add(dot_md)

        limiter = asyncio.Semaphore(MAX_CONCURRENT_FILE_CHECKS)

        async def check(path: URI, path_links: list[MdLink]) -> list[Diagnostic]:
            async with limiter:
                if token.is_cancellation_requested:
                    return []
                return await self._validate_links_to_path(
                    path, path_links, options, stat_cache
                )

        results = await asyncio.gather(
            *(check(path, path_links) for path, path_links in links_by_path.items())
        )
        return [d for group in results for d in group], frozenset(touched)

    async def _validate_links_to_path(
        self,
        path: URI,
        links: list[MdLink],
        options: DiagnosticOptions,
        stat_cache: StatCache,
    ) -> list[Diagnostic]:
        resolved = await stat_link_to_markdown_file(
            self._config, self._workspace, path, stat_cache
        )

        diagnostics = []
        if resolved is None:
            level = options.validate_file_links
            if level is DiagnosticLevel.IGNORE:
                return []
            for link in links:
                if matches_any(link.source.path_text, options.ignore_links):
                    continue
                diagnostics.append(_make_diagnostic(
                    f"File does not exist at path: {path.fs_path}",
                    link.source.href_range,
                    level,
                    DiagnosticCode.LINK_NO_SUCH_FILE,
                    hrefText=link.source.href_text,
                    fsPath=path.fs_path,
                ))
            return diagnostics

        level = options.markdown_file_link_fragments_level
        if level is DiagnosticLevel.IGNORE or not looks_like_markdown_path(self._config, resolved):
            return []

        fragment_links = [
            link for link in links
            if link.href.fragment
            and link.source.fragment_range is not None
            and parse_location_info_from_fragment(link.href.fragment) is None
        ]
        if not fragment_links:
            return []

        toc = await self._toc_provider.get(resolved)
        for link in fragment_links:
            if toc.lookup(link.href.fragment) is not None:
                continue
            if matches_any(link.source.path_text, options.ignore_links) or matches_any(
                link.source.href_text, options.ignore_links
            ):
                continue

            # Include the '#' in the reported range
            fragment_start = link.source.fragment_range.start
            start = Position(
                line=fragment_start.line, character=max(fragment_start.character - 1, 0)
            )
            diagnostics.append(_make_diagnostic(
                f"Header does not exist in file: {link.href.fragment}",
                Range(start=start, end=link.source.href_range.end),
                level,
                DiagnosticCode.LINK_NO_SUCH_HEADER_IN_FILE,
                hrefText=link.source.href_text,
            ))
        return diagnostics


@dataclass(frozen=True)
class LinkedToFileChange:
    """A file that tracked documents link to was created, changed or deleted."""
    changed_resource: URI
    linking_resources: tuple[URI, ...]


@dataclass
class _ValidatedDocument:
    version: int
    options: DiagnosticOptions
    diagnostics: list[Diagnostic]
    touched_paths: frozenset[URI] = field(default_factory=frozenset)
    stale: bool = False


class DiagnosticsManager(Disposable):
    """
    Diagnostics for documents that are validated repeatedly.

    Existence checks are cached across computations. A tracked document is
    only recomputed when its version or options change, or when a file one
    of its links touched is created, changed or deleted.
    """

    def __init__(self, workspace: Workspace, computer: DiagnosticComputer):
        super().__init__()
        if not is_watching_workspace(workspace):
            raise WatchingUnsupportedError(
                "DiagnosticsManager requires a workspace with file change events"
            )
        self._workspace = workspace
        self._computer = computer

        self._stat_cache: dict[URI, bool] = {}
        # touched path -> documents whose diagnostics depend on it
        self._linked_to: dict[URI, set[URI]] = defaultdict(set)
        self._validated: dict[URI, _ValidatedDocument] = {}
        self._generation = 0

        self._on_linked_to_file_changed: Emitter[LinkedToFileChange] = self._register(Emitter())
        self.on_linked_to_file_changed = self._on_linked_to_file_changed.event

        self._register(workspace.on_did_create_file(self._on_file_changed))
        self._register(workspace.on_did_change_file(self._on_file_changed))
        self._register(workspace.on_did_delete_file(self._on_file_changed))
        self._register(workspace.on_did_create_markdown_document(self._on_markdown_document_changed))
        self._register(workspace.on_did_change_markdown_document(self._on_markdown_document_changed))
        self._register(workspace.on_did_delete_markdown_document(self._on_file_changed))

    async def compute_diagnostics(
        self,
        document: TextDocument,
        options: DiagnosticOptions,
        token: CancellationToken = NOOP_TOKEN,
    ) -> list[Diagnostic]:
        if self.is_disposed:
            raise DisposedError("DiagnosticsManager has been disposed")

        previous = self._validated.get(document.uri)
        if (
            previous is not None
            and not previous.stale
            and previous.version == document.version
            and previous.options == options
        ):
            return previous.diagnostics

        generation = self._generation
        result = await self._computer.compute(document, options, token, self._stat_cache)
        if token.is_cancellation_requested or self.is_disposed:
            return []

        self._update_linked_paths(document.uri, result.touched_paths)
        self._validated[document.uri] = _ValidatedDocument(
            version=document.version,
            options=options,
            diagnostics=result.diagnostics,
            touched_paths=result.touched_paths,
            # A file event arrived while computing; the result may be outdated
            stale=generation != self._generation,
        )
        return result.diagnostics

    def disconnect_document(self, resource: URI) -> None:
        """Stop tracking resource; its paths no longer trigger change events."""
        self._update_linked_paths(resource, frozenset())
        self._validated.pop(resource, None)

    @property
    def tracked_documents(self) -> list[URI]:
        return list(self._validated)

    def _update_linked_paths(self, resource: URI, touched: frozenset[URI]) -> None:
        previous = self._validated.get(resource)
        old = previous.touched_paths if previous is not None else frozenset()
        for path in old - touched:
            linking = self._linked_to.get(path)
            if linking is not None:
                linking.discard(resource)
                if not linking:
                    del self._linked_to[path]
        for path in touched:
            self._linked_to[path].add(resource)

    def _on_markdown_document_changed(self, document: TextDocument) -> None:
        # The text may differ even when the version does not (a re-created file)
        state = self._validated.get(document.uri)
        if state is not None:
            state.stale = True
        self._on_file_changed(document.uri)

    def _on_file_changed(self, resource: URI) -> None:
        self._generation += 1

        # A deleted folder takes every cached path under it along
        for path in [p for p in self._stat_cache if p == resource or resource.is_parent_of(p)]:
            del self._stat_cache[path]

        linking: set[URI] = set()
        for path, docs in self._linked_to.items():
            if path == resource or resource.is_parent_of(path):
                linking.update(docs)
        if not linking:
            return

        for doc_uri in linking:
            state = self._validated.get(doc_uri)
            if state is not None:
                state.stale = True

        logger.debug("linked file changed - %s (%d documents)", resource, len(linking))
        self._on_linked_to_file_changed.fire(
            LinkedToFileChange(resource, tuple(sorted(linking, key=str)))
        )
