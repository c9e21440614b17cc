"""Tests for link extraction."""

import asyncio

from lsprotocol.types import Position

from scholia.adapters.markdown_parser import MarkdownItTokenizer
from scholia.adapters.memory_workspace import InMemoryWorkspace
from scholia.core.cancellation import CancellationTokenSource
from scholia.core.document import InMemoryDocument, make_range
from scholia.core.model import HrefKind, LinkDefinitionSet, LinkKind
from scholia.core.uri import URI
from scholia.links import LinkComputer, parse_location_info_from_fragment


def get_links(text, path="/workspace/doc.md"):
    doc = InMemoryDocument(URI.file(path), text)
    workspace = InMemoryWorkspace([doc])
    computer = LinkComputer(MarkdownItTokenizer(), workspace)
    return asyncio.run(computer.get_all_links(doc))


def test_external_link():
    """Test an inline link to a web page."""
    links = get_links("[b](https://example.com)")

    assert len(links) == 1
    link = links[0]
    assert link.kind is LinkKind.LINK
    assert link.href.kind is HrefKind.EXTERNAL
    assert link.href.uri.scheme == "https"
    assert link.href.uri.authority == "example.com"
    assert link.source.href_range == make_range(0, 4, 0, 23)
    assert link.source.range == make_range(0, 0, 0, 24)


def test_relative_link_with_fragment():
    """Test relative links resolve against the containing folder."""
    links = get_links("[b](./doc.md#head)", path="/workspace/sub/a.md")

    assert len(links) == 1
    href = links[0].href
    assert href.kind is HrefKind.INTERNAL
    assert href.path == URI.file("/workspace/sub/doc.md")
    assert href.fragment == "head"

    source = links[0].source
    assert source.href_text == "./doc.md#head"
    assert source.path_text == "./doc.md"
    assert source.href_range == make_range(0, 4, 0, 17)
    assert source.fragment_range == make_range(0, 13, 0, 17)


def test_absolute_link_uses_workspace_root():
    """Test links starting with / resolve against the workspace folder."""
    links = get_links("[b](/doc.md)", path="/workspace/sub/a.md")

    assert links[0].href.path == URI.file("/workspace/doc.md")
    assert links[0].href.fragment == ""
    assert links[0].source.fragment_range is None


def test_fragment_only_link_targets_own_document():
    """Test `#header` links point at the document itself."""
    links = get_links("[b](#my-header)")

    assert links[0].href.path == URI.file("/workspace/doc.md")
    assert links[0].href.fragment == "my-header"


def test_angle_bracket_link():
    """Test links in angle brackets may contain spaces."""
    links = get_links("[a](<path with spaces.md>)")

    assert len(links) == 1
    assert links[0].href.path == URI.file("/workspace/path with spaces.md")
    assert links[0].source.href_text == "path with spaces.md"
    assert links[0].source.href_range == make_range(0, 5, 0, 24)


def test_link_with_title():
    """Test the title is part of the link but not of the href."""
    links = get_links('[a](http://example.com "title")')

    assert len(links) == 1
    assert links[0].source.href_text == "http://example.com"
    assert links[0].source.range == make_range(0, 0, 0, 31)


def test_percent_encoded_path_is_decoded():
    """Test encoded characters in the path are decoded."""
    links = get_links("[a](my%20file.md)")

    assert links[0].href.path == URI.file("/workspace/my file.md")


def test_nested_image_link():
    """Test an image inside a link yields both links, outer first."""
    links = get_links("[![alt](image.png)](https://example.com)")

    assert len(links) == 2
    outer, inner = links
    assert outer.href.kind is HrefKind.EXTERNAL
    assert outer.source.href_range == make_range(0, 20, 0, 39)
    assert inner.href.path == URI.file("/workspace/image.png")
    assert inner.source.href_range == make_range(0, 8, 0, 17)


def test_links_in_code_are_ignored():
    """Test inline code, fenced code and indented code contain no links."""
    text = "\n".join([
        "`[a](http://example.com)`",
        "",
        "```",
        "[b](http://example.com)",
        "```",
        "",
        "    [c](http://example.com)",
        "",
        "[d](http://example.com)",
    ])
    links = get_links(text)

    assert len(links) == 1
    assert links[0].source.href_range.start.line == 8


def test_link_after_inline_code_on_same_line():
    """Test a link following inline code on the same line is found."""
    links = get_links("`code` [a](http://example.com)")

    assert len(links) == 1
    assert links[0].source.href_range == make_range(0, 11, 0, 29)


def test_links_in_front_matter_are_ignored():
    """Test YAML front matter contains no links."""
    text = "\n".join([
        "---",
        "see: '[a](http://example.com)'",
        "---",
        "",
        "# Title",
    ])
    assert get_links(text) == []


def test_reference_links():
    """Test full, collapsed and shortcut reference links."""
    text = "\n".join([
        "[text][ref]",
        "[ref][]",
        "[ref]",
        "",
        "[ref]: http://example.com",
    ])
    links = get_links(text)

    references = [link for link in links if link.href.kind is HrefKind.REFERENCE]
    assert [link.href.ref for link in references] == ["ref", "ref", "ref"]
    assert references[0].source.href_range == make_range(0, 7, 0, 10)
    assert references[1].source.href_range == make_range(1, 1, 1, 4)
    assert references[2].source.href_range == make_range(2, 1, 2, 4)


def test_link_definition():
    """Test definitions record the reference name and the href."""
    text = "\n".join([
        "[text][ref]",
        "",
        "[ref]: http://example.com",
    ])
    links = get_links(text)

    assert len(links) == 2
    definition = links[1]
    assert definition.kind is LinkKind.DEFINITION
    assert definition.ref.text == "ref"
    assert definition.ref.range == make_range(2, 1, 2, 4)
    assert definition.href.kind is HrefKind.EXTERNAL
    assert definition.source.href_range == make_range(2, 7, 2, 25)


def test_indented_link_definition():
    """Test the reference range of an indented definition skips the indent."""
    links = get_links("  [ref]: ./other.md")

    assert len(links) == 1
    assert links[0].ref.range == make_range(0, 3, 0, 6)
    assert links[0].href.path == URI.file("/workspace/other.md")
    assert links[0].source.href_range == make_range(0, 9, 0, 19)


def test_angle_bracket_link_definition():
    """Test definitions may wrap their href in angle brackets."""
    links = get_links("[ref]: <./my file.md>")

    assert len(links) == 1
    assert links[0].href.path == URI.file("/workspace/my file.md")
    assert links[0].source.href_range == make_range(0, 8, 0, 20)


def test_footnote_is_not_a_definition():
    """Test `[^1]: text` is a footnote, not a link definition."""
    links = get_links("[^1]: http://example.com")

    assert all(link.kind is not LinkKind.DEFINITION for link in links)


def test_last_definition_wins():
    """Test a later definition replaces an earlier one of the same name."""
    text = "\n".join([
        "[ref]: http://example.com/first",
        "[ref]: http://example.com/second",
    ])
    definitions = LinkDefinitionSet(get_links(text))

    assert len(definitions) == 1
    assert definitions.lookup("ref").href.uri.path == "/second"
    assert definitions.lookup("REF") is None


def test_checkboxes_are_not_references():
    """Test task list markers are not shortcut reference links."""
    text = "\n".join([
        "- [x] done",
        "- [ ] todo",
        "* [X] done",
        "1. [x] done",
    ])
    assert get_links(text) == []


def test_autolinks():
    """Test `<scheme:...>` autolinks; email and html tags are not links."""
    text = "\n".join([
        "<http://example.com>",
        "<user@example.com>",
        "<tag>",
        "<mailto:user@example.com>",
    ])
    links = get_links(text)

    assert len(links) == 2
    assert links[0].source.range == make_range(0, 0, 0, 20)
    assert links[0].source.href_range == make_range(0, 1, 0, 19)
    assert links[1].href.uri.scheme == "mailto"


def test_scan_order():
    """Test inline links come first, then references, autolinks and definitions."""
    text = "\n".join([
        "[ref]: http://example.com/def",
        "<http://example.com/auto>",
        "[text][ref]",
        "[a](http://example.com/inline)",
    ])
    links = get_links(text)

    kinds = []
    for link in links:
        if link.kind is LinkKind.DEFINITION:
            kinds.append("definition")
        elif link.href.kind is HrefKind.REFERENCE:
            kinds.append("reference")
        elif link.source.href_text.endswith("auto"):
            kinds.append("autolink")
        else:
            kinds.append("inline")
    assert kinds == ["inline", "reference", "autolink", "definition"]


def test_cancelled_scan_returns_nothing():
    """Test a cancelled token stops the scan."""
    doc = InMemoryDocument(URI.file("/workspace/doc.md"), "[a](http://example.com)")
    workspace = InMemoryWorkspace([doc])
    computer = LinkComputer(MarkdownItTokenizer(), workspace)
    source = CancellationTokenSource()
    source.cancel()

    assert asyncio.run(computer.get_all_links(doc, source.token)) == []


def test_parse_location_info_from_fragment():
    """Test `L<line>[,<col>]` fragments become 0-based positions."""
    assert parse_location_info_from_fragment("L5") == Position(line=4, character=0)
    assert parse_location_info_from_fragment("l5,3") == Position(line=4, character=2)
    assert parse_location_info_from_fragment("L0") == Position(line=0, character=0)
    assert parse_location_info_from_fragment("head") is None
    assert parse_location_info_from_fragment("L5x") is None
