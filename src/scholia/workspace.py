"""Helpers shared by everything that talks to a Workspace."""

from __future__ import annotations

from typing import Any, MutableMapping

from .config import WorkspaceConfig
from .core.ports import Workspace
from .core.uri import URI

# path -> exists
StatCache = MutableMapping[URI, bool]


def is_watching_workspace(workspace: Any) -> bool:
    return all(
        hasattr(workspace, name)
        for name in ("on_did_create_file", "on_did_change_file", "on_did_delete_file")
    )


def get_workspace_folder(workspace: Workspace, doc_uri: URI) -> URI | None:
    """Longest workspace folder containing doc_uri, else the first folder."""
    folders = list(workspace.workspace_folders)
    if not folders:
        return None
    candidates = [f for f in folders if f == doc_uri or f.is_parent_of(doc_uri)]
    if candidates:
        return max(candidates, key=lambda f: len(f.path))
    return folders[0]


def _extension(uri: URI) -> str:
    return uri.extname.lower().lstrip(".")


def looks_like_markdown_path(config: WorkspaceConfig, resource: URI) -> bool:
    return _extension(resource) in config.markdown_file_extensions


def try_append_markdown_file_extension(config: WorkspaceConfig, link: URI) -> URI | None:
    """
    Guess the Markdown file an extension-less link points at.

    Returns None if the link already has a Markdown extension or an
    extension of a known non-Markdown file type.
    """
    ext = _extension(link)
    if ext in config.markdown_file_extensions:
        return None
    if ext == "" or ext not in config.known_link_file_extensions:
        return link.with_(path=f"{link.path}.{config.markdown_file_extensions[0]}")
    return None


async def stat_link_to_markdown_file(
    config: WorkspaceConfig,
    workspace: Workspace,
    link: URI,
    stat_cache: StatCache | None = None,
) -> URI | None:
    """
    Resolve a link path to an existing resource, trying `<path>.md` too.

    Results of every probe are recorded in stat_cache and reused from it.
    """

    async def exists(uri: URI) -> bool:
        if stat_cache is not None and uri in stat_cache:
            return stat_cache[uri]
        result = await workspace.stat(uri) is not None
        if stat_cache is not None:
            stat_cache[uri] = result
        return result

    if await exists(link):
        return link

    dot_md = try_append_markdown_file_extension(config, link)
    if dot_md is not None and await exists(dot_md):
        return dot_md
    return None
