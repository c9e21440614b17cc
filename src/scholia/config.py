"""Configuration loader for scholia.toml."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from .errors import ConfigError

DEFAULT_MARKDOWN_EXTENSIONS = ("md",)

# Extensions that are never treated as extension-less Markdown links
KNOWN_LINK_FILE_EXTENSIONS = (
    "jpg", "jpeg", "png", "gif", "webp", "bmp", "tiff", "svg", "ico",
    "mp4", "webm", "mov", "mp3", "wav", "ogg",
    "pdf", "zip", "tar", "gz", "txt", "json", "yaml", "yml", "toml", "csv", "html", "htm",
)

CONFIG_FILE_NAME = "scholia.toml"


@dataclass(frozen=True)
class WorkspaceConfig:
    """Workspace-wide settings shared by every provider."""
    markdown_file_extensions: tuple[str, ...] = DEFAULT_MARKDOWN_EXTENSIONS
    known_link_file_extensions: tuple[str, ...] = KNOWN_LINK_FILE_EXTENSIONS
    exclude_paths: tuple[str, ...] = ("**/node_modules/**",)


@dataclass
class DiagnosticsConfig:
    """Raw [diagnostics] section; levels are validated by to_options()."""
    validate_file_links: str = "warning"
    validate_fragment_links: str = "warning"
    validate_references: str = "warning"
    validate_markdown_file_link_fragments: str | None = None
    ignore_links: list[str] = field(default_factory=list)

    def to_options(self) -> Any:
        from .diagnostics import DiagnosticLevel, DiagnosticOptions

        fragments = self.validate_markdown_file_link_fragments
        return DiagnosticOptions(
            validate_file_links=DiagnosticLevel.parse(self.validate_file_links),
            validate_fragment_links=DiagnosticLevel.parse(self.validate_fragment_links),
            validate_references=DiagnosticLevel.parse(self.validate_references),
            validate_markdown_file_link_fragments=(
                DiagnosticLevel.parse(fragments) if fragments is not None else None
            ),
            ignore_links=tuple(self.ignore_links),
        )


@dataclass
class ScholiaConfig:
    """Complete scholia configuration."""
    root: Path
    workspace: WorkspaceConfig
    diagnostics: DiagnosticsConfig


def _str_list(data: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = data.get(key, default)
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings")
    return tuple(value)


def load_config(config_path: Path | None = None, root: Path | None = None) -> ScholiaConfig:
    """
    Load configuration from scholia.toml.

    Search order:
    1. config_path (if provided)
    2. cwd/scholia.toml
    3. root/scholia.toml

    Args:
        config_path: Explicit path to config file
        root: Workspace root used for the fallback search

    Returns:
        ScholiaConfig with resolved settings
    """
    toml_data: dict[str, Any] = {}

    search_paths = []
    if config_path:
        search_paths.append(config_path)
    search_paths.append(Path.cwd() / CONFIG_FILE_NAME)
    if root:
        search_paths.append(root / CONFIG_FILE_NAME)

    for path in search_paths:
        if path.exists():
            with open(path, "rb") as f:
                try:
                    toml_data = tomllib.load(f)
                except tomllib.TOMLDecodeError as e:
                    raise ConfigError(f"{path}: {e}") from e
            break

    ws_data = toml_data.get("workspace", {})
    workspace_root = Path(ws_data.get("root", root or Path(".")))

    extensions = _str_list(ws_data, "markdown_extensions", DEFAULT_MARKDOWN_EXTENSIONS)
    workspace_config = WorkspaceConfig(
        markdown_file_extensions=tuple(ext.lstrip(".").lower() for ext in extensions) or DEFAULT_MARKDOWN_EXTENSIONS,
        exclude_paths=_str_list(ws_data, "exclude", WorkspaceConfig.exclude_paths),
    )

    diag_data = toml_data.get("diagnostics", {})
    diagnostics_config = DiagnosticsConfig(
        validate_file_links=diag_data.get("validate_file_links", "warning"),
        validate_fragment_links=diag_data.get("validate_fragment_links", "warning"),
        validate_references=diag_data.get("validate_references", "warning"),
        validate_markdown_file_link_fragments=diag_data.get("validate_markdown_file_link_fragments"),
        ignore_links=list(_str_list(diag_data, "ignore_links", ())),
    )
    # Fail early on bad levels rather than on first use
    diagnostics_config.to_options()

    return ScholiaConfig(
        root=workspace_root,
        workspace=workspace_config,
        diagnostics=diagnostics_config,
    )
