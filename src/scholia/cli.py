"""CLI for scholia - Markdown link checking and navigation."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from lsprotocol.types import Diagnostic, DiagnosticSeverity, DocumentLink, Range

from . import __version__
from .errors import ScholiaError
from .runtime import build_runtime
from .watch import diagnostic_to_json, format_diagnostic, watch_workspace


def _open_document(rt: Any, path: Path) -> Any:
    doc = asyncio.run(rt.workspace.open_markdown_document(rt.workspace.uri_for(path)))
    if doc is None:
        print(f"Error: Not a Markdown document in the workspace: {path}", file=sys.stderr)
    return doc


def _relative(rt: Any, fs_path: str) -> str:
    try:
        return Path(fs_path).relative_to(rt.workspace.root).as_posix()
    except ValueError:
        return fs_path


def _range_json(r: Range) -> dict[str, Any]:
    return {
        "start": {"line": r.start.line, "character": r.start.character},
        "end": {"line": r.end.line, "character": r.end.character},
    }


def cmd_check(args: argparse.Namespace, rt: Any) -> int:
    """Validate links in the given files, or in every document."""

    async def run() -> list[tuple[str, Diagnostic]]:
        if args.files:
            docs = []
            for path in args.files:
                doc = await rt.workspace.open_markdown_document(rt.workspace.uri_for(path))
                if doc is None:
                    raise ScholiaError(f"Not a Markdown document in the workspace: {path}")
                docs.append(doc)
        else:
            docs = await rt.workspace.get_all_markdown_documents()

        findings = []
        for doc in docs:
            rel = _relative(rt, doc.uri.fs_path)
            for d in await rt.service.compute_diagnostics(doc, rt.options):
                findings.append((rel, d))
        return findings

    findings = asyncio.run(run())

    if args.json:
        print(json.dumps([diagnostic_to_json(path, d) for path, d in findings], indent=2))
    elif not args.quiet:
        for path, d in findings:
            print(format_diagnostic(path, d))
        if not findings:
            print("No problems found")

    return 1 if any(d.severity == DiagnosticSeverity.Error for _, d in findings) else 0


def cmd_links(args: argparse.Namespace, rt: Any) -> int:
    """List the links of a document with their resolved targets."""
    doc = _open_document(rt, args.file)
    if doc is None:
        return 1

    async def run() -> list[DocumentLink]:
        out = []
        for link in await rt.service.get_document_links(doc):
            if link.target is None:
                link = await rt.service.resolve_document_link(link) or link
            out.append(link)
        return out

    links = asyncio.run(run())

    if args.json:
        output = [
            {"range": _range_json(link.range), "target": link.target, "tooltip": link.tooltip}
            for link in links
        ]
        print(json.dumps(output, indent=2))
    else:
        for link in links:
            start = link.range.start
            text = doc.get_text(link.range)
            print(f"{start.line + 1}:{start.character + 1}  {text}  ->  {link.target or '(unresolved)'}")

    return 0


def cmd_toc(args: argparse.Namespace, rt: Any) -> int:
    """Print the outline of a document."""
    doc = _open_document(rt, args.file)
    if doc is None:
        return 1

    toc = asyncio.run(rt.service.get_table_of_contents(doc))

    if args.json:
        output = [
            {
                "slug": entry.slug.value,
                "text": entry.text,
                "level": entry.level,
                "line": entry.line,
                "section": _range_json(entry.section_location.range),
            }
            for entry in toc.entries
        ]
        print(json.dumps(output, indent=2))
    else:
        for entry in toc.entries:
            indent = "  " * (entry.level - 1)
            print(f"{indent}- {entry.text} (#{entry.slug.value}) line {entry.line + 1}")

    return 0


def cmd_resolve(args: argparse.Namespace, rt: Any) -> int:
    """Resolve link text as if it were written in a document."""
    source = rt.workspace.uri_for(args.source)
    target = asyncio.run(rt.service.resolve_link_target(args.link, source))
    if target is None:
        print(f"Could not resolve link: {args.link}", file=sys.stderr)
        return 1

    location = target.uri.fs_path if target.uri.scheme == "file" else str(target.uri)
    if args.json:
        output: dict[str, Any] = {"kind": target.kind, "uri": str(target.uri)}
        if target.position is not None:
            output["position"] = {
                "line": target.position.line,
                "character": target.position.character,
            }
        if target.fragment:
            output["fragment"] = target.fragment
        print(json.dumps(output, indent=2))
    elif target.position is not None:
        print(f"{target.kind}: {location}:{target.position.line + 1}:{target.position.character + 1}")
    else:
        print(f"{target.kind}: {location}")

    if target.kind == "file" and target.uri.scheme == "file" and not Path(target.uri.fs_path).exists():
        return 1
    return 0


def cmd_refs(args: argparse.Namespace, rt: Any) -> int:
    """Show every link in the workspace that points at a file."""
    resource = rt.workspace.uri_for(args.file)
    links = asyncio.run(rt.service.get_file_references(resource))
    links = sorted(
        links,
        key=lambda link: (str(link.source.resource), link.source.range.start.line, link.source.range.start.character),
    )

    if args.json:
        output = [
            {
                "source": _relative(rt, link.source.resource.fs_path),
                "href": link.source.href_text,
                "range": _range_json(link.source.href_range),
            }
            for link in links
        ]
        print(json.dumps(output, indent=2))
    else:
        for link in links:
            start = link.source.range.start
            source = _relative(rt, link.source.resource.fs_path)
            print(f"{source}:{start.line + 1}:{start.character + 1}  {link.source.href_text}")
        if not links and not args.quiet:
            print("No references found")

    return 0


def cmd_watch(args: argparse.Namespace, rt: Any) -> int:
    """Watch the workspace and revalidate changed documents."""
    return watch_workspace(
        rt,
        debounce_ms=args.debounce_ms,
        quiet=args.quiet,
        json_output=args.json,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scholia", description="Check and navigate links in Markdown workspaces"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: search cwd/scholia.toml, root/scholia.toml)",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Workspace root directory (overrides config)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Minimize output"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log debug output to stderr"
    )
    parser.add_argument(
        "--json", action="store_true", help="Machine-readable output"
    )

    subparsers = parser.add_subparsers(dest="cmd", required=True)

    parser_check = subparsers.add_parser("check", help="Validate links")
    parser_check.add_argument("files", nargs="*", type=Path, help="Files to check (default: all)")

    parser_links = subparsers.add_parser("links", help="List links of a document")
    parser_links.add_argument("file", type=Path)

    parser_toc = subparsers.add_parser("toc", help="Print the outline of a document")
    parser_toc.add_argument("file", type=Path)

    parser_resolve = subparsers.add_parser("resolve", help="Resolve link text to a target")
    parser_resolve.add_argument("link", help="Link text, e.g. ./other.md#section")
    parser_resolve.add_argument(
        "--from", dest="source", type=Path, required=True, help="Document the link is written in"
    )

    parser_refs = subparsers.add_parser("refs", help="Find links pointing at a file")
    parser_refs.add_argument("file", type=Path)

    parser_watch = subparsers.add_parser("watch", help="Watch workspace for changes")
    parser_watch.add_argument(
        "--debounce-ms", type=int, default=150, help="Debounce window (default: 150)"
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    handlers = {
        "check": cmd_check,
        "links": cmd_links,
        "toc": cmd_toc,
        "resolve": cmd_resolve,
        "refs": cmd_refs,
        "watch": cmd_watch,
    }

    handler = handlers.get(args.cmd)
    if handler is None:
        print(f"Unknown command: {args.cmd}", file=sys.stderr)
        sys.exit(1)

    try:
        rt = build_runtime(root=args.root, config_path=args.config)
        exit_code = handler(args, rt)
    except (ScholiaError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
