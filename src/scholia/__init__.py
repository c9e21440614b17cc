"""Link resolution, outlines and link diagnostics for Markdown workspaces."""

__version__ = "0.1.0"

from .config import ScholiaConfig, WorkspaceConfig, load_config
from .diagnostics import (
    DiagnosticCode,
    DiagnosticComputer,
    DiagnosticLevel,
    DiagnosticOptions,
    DiagnosticsManager,
    LinkedToFileChange,
)
from .errors import (
    ConfigError,
    DisposedError,
    MalformedHrefError,
    ScholiaError,
    WatchingUnsupportedError,
)
from .links import LinkComputer, LinkProvider, create_workspace_link_cache
from .service import LanguageService, create_language_service
from .toc import TableOfContents, TableOfContentsProvider, TocEntry

__all__ = [
    "__version__",
    "ConfigError",
    "DiagnosticCode",
    "DiagnosticComputer",
    "DiagnosticLevel",
    "DiagnosticOptions",
    "DiagnosticsManager",
    "DisposedError",
    "LanguageService",
    "LinkComputer",
    "LinkProvider",
    "LinkedToFileChange",
    "MalformedHrefError",
    "ScholiaConfig",
    "ScholiaError",
    "TableOfContents",
    "TableOfContentsProvider",
    "TocEntry",
    "WatchingUnsupportedError",
    "WorkspaceConfig",
    "create_language_service",
    "create_workspace_link_cache",
    "load_config",
]
