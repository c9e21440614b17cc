"""
LanguageService: one object owning the providers for a workspace.

Providers are created in dependency order and disposed in reverse.
"""

from __future__ import annotations

from lsprotocol.types import Diagnostic, DocumentLink

from .adapters.markdown_parser import MarkdownItTokenizer
from .config import WorkspaceConfig
from .core.cancellation import NOOP_TOKEN, CancellationToken
from .core.events import Disposable
from .core.model import HrefKind, MdLink, ResolvedLinkTarget
from .core.ports import TextDocument, Tokenizer, Workspace
from .core.uri import URI
from .diagnostics import DiagnosticComputer, DiagnosticOptions, DiagnosticsManager
from .errors import DisposedError, WatchingUnsupportedError
from .links import LinkProvider, create_workspace_link_cache
from .toc import TableOfContents, TableOfContentsProvider
from .workspace import is_watching_workspace, try_append_markdown_file_extension
from .workspace_cache import WorkspaceInfoCache


class LanguageService(Disposable):
    def __init__(self, workspace: Workspace, tokenizer: Tokenizer, config: WorkspaceConfig):
        super().__init__()
        self.workspace = workspace
        self.config = config
        self._tokenizer = tokenizer

        self._toc_provider = self._register(TableOfContentsProvider(tokenizer, workspace))
        self._link_provider = self._register(
            LinkProvider(tokenizer, workspace, self._toc_provider, config)
        )
        self._diagnostic_computer = DiagnosticComputer(
            config, workspace, self._link_provider, self._toc_provider
        )
        self._workspace_links: WorkspaceInfoCache[list[MdLink]] | None = None

    def _check_disposed(self) -> None:
        if self.is_disposed:
            raise DisposedError("LanguageService has been disposed")

    async def get_document_links(
        self, document: TextDocument, token: CancellationToken = NOOP_TOKEN
    ) -> list[DocumentLink]:
        self._check_disposed()
        return await self._link_provider.provide_document_links(document, token)

    async def resolve_document_link(
        self, link: DocumentLink, token: CancellationToken = NOOP_TOKEN
    ) -> DocumentLink | None:
        self._check_disposed()
        return await self._link_provider.resolve_document_link(link, token)

    async def resolve_link_target(
        self, link_text: str, source_doc: URI, token: CancellationToken = NOOP_TOKEN
    ) -> ResolvedLinkTarget | None:
        self._check_disposed()
        return await self._link_provider.resolve_link_target(link_text, source_doc, token)

    async def get_table_of_contents(self, document: TextDocument) -> TableOfContents:
        self._check_disposed()
        return await self._toc_provider.get_for_containing_doc(document)

    async def get_file_references(
        self, resource: URI, token: CancellationToken = NOOP_TOKEN
    ) -> list[MdLink]:
        """Links anywhere in the workspace whose target is resource, fragment ignored."""
        self._check_disposed()
        if self._workspace_links is None:
            self._workspace_links = self._register(
                create_workspace_link_cache(self._tokenizer, self.workspace)
            )

        out = []
        for links in await self._workspace_links.values():
            if token.is_cancellation_requested:
                return []
            for link in links:
                if link.href.kind is HrefKind.INTERNAL and self._targets(link.href.path, resource):
                    out.append(link)
        return out

    def _targets(self, path: URI, resource: URI) -> bool:
        if path == resource:
            return True
        # `[a](./doc)` refers to doc.md
        return try_append_markdown_file_extension(self.config, path) == resource

    async def compute_diagnostics(
        self,
        document: TextDocument,
        options: DiagnosticOptions,
        token: CancellationToken = NOOP_TOKEN,
    ) -> list[Diagnostic]:
        self._check_disposed()
        result = await self._diagnostic_computer.compute(document, options, token)
        return result.diagnostics

    def create_pull_diagnostics_manager(self) -> DiagnosticsManager:
        """
        Diagnostics manager that caches file checks between requests.

        Raises WatchingUnsupportedError if the workspace does not report file
        changes.
        """
        self._check_disposed()
        if not is_watching_workspace(self.workspace):
            raise WatchingUnsupportedError(
                "Workspace does not report file changes; use compute_diagnostics instead"
            )
        return self._register(DiagnosticsManager(self.workspace, self._diagnostic_computer))


def create_language_service(
    workspace: Workspace,
    tokenizer: Tokenizer | None = None,
    config: WorkspaceConfig | None = None,
) -> LanguageService:
    return LanguageService(
        workspace,
        tokenizer if tokenizer is not None else MarkdownItTokenizer(),
        config if config is not None else WorkspaceConfig(),
    )
