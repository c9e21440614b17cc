"""Runtime wiring helper for CLI applications."""

from dataclasses import dataclass
from pathlib import Path

from .adapters.fs_workspace import FileSystemWorkspace
from .adapters.markdown_parser import MarkdownItTokenizer
from .config import ScholiaConfig, load_config
from .diagnostics import DiagnosticOptions
from .service import LanguageService, create_language_service


@dataclass
class Runtime:
    """Container for all wired components."""
    workspace: FileSystemWorkspace
    service: LanguageService
    options: DiagnosticOptions
    config: ScholiaConfig


def build_runtime(
    root: Path | None = None,
    config_path: Path | None = None,
) -> Runtime:
    """Build and wire all components for a workspace directory."""
    config = load_config(config_path=config_path, root=root)

    # CLI argument wins over [workspace] root
    if root is None:
        root = config.root

    workspace = FileSystemWorkspace(root, config.workspace)
    service = create_language_service(workspace, MarkdownItTokenizer(), config.workspace)

    return Runtime(
        workspace=workspace,
        service=service,
        options=config.diagnostics.to_options(),
        config=config,
    )
