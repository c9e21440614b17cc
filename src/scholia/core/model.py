"""Link, definition and resolution values found in Markdown documents."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Union

from lsprotocol.types import Position, Range

from .uri import URI


class HrefKind(enum.Enum):
    EXTERNAL = "external"
    INTERNAL = "internal"
    REFERENCE = "reference"


@dataclass(frozen=True)
class ExternalHref:
    uri: URI
    kind: HrefKind = field(default=HrefKind.EXTERNAL, init=False)


@dataclass(frozen=True)
class InternalHref:
    path: URI  # file or directory the link points at
    fragment: str  # "" when the link has no '#'
    kind: HrefKind = field(default=HrefKind.INTERNAL, init=False)


@dataclass(frozen=True)
class ReferenceHref:
    ref: str  # name of a `[ref]: target` definition
    kind: HrefKind = field(default=HrefKind.REFERENCE, init=False)


LinkHref = Union[ExternalHref, InternalHref, ReferenceHref]


@dataclass(frozen=True)
class LinkSource:
    """
    Where a link lives in its document.

    For ``[boris](/cat.md#siberian "title")``:
    - range: the whole link
    - target_range: ``(/cat.md#siberian "title")``
    - href_text: ``/cat.md#siberian``
    - path_text: ``/cat.md``
    - href_range: the range of ``/cat.md#siberian``
    - fragment_range: the range of ``siberian``
    """

    range: Range
    resource: URI
    target_range: Range
    href_text: str
    path_text: str
    href_range: Range
    fragment_range: Range | None = None


class LinkKind(enum.Enum):
    LINK = 1
    DEFINITION = 2


@dataclass(frozen=True)
class InlineLink:
    source: LinkSource
    href: LinkHref
    kind: LinkKind = field(default=LinkKind.LINK, init=False)


@dataclass(frozen=True)
class LinkReference:
    text: str
    range: Range


@dataclass(frozen=True)
class LinkDefinition:
    source: LinkSource
    ref: LinkReference
    href: Union[ExternalHref, InternalHref]
    kind: LinkKind = field(default=LinkKind.DEFINITION, init=False)


MdLink = Union[InlineLink, LinkDefinition]


class LinkDefinitionSet(Mapping[str, LinkDefinition]):
    """
    Reference name -> definition for one document.

    Names are case-sensitive as written; a later definition replaces an
    earlier one with the same name.
    """

    def __init__(self, links: Iterable[MdLink] = ()):
        self._d: dict[str, LinkDefinition] = {}
        for link in links:
            if link.kind is LinkKind.DEFINITION:
                self._d[link.ref.text] = link

    def __getitem__(self, ref: str) -> LinkDefinition:
        return self._d[ref]

    def __iter__(self) -> Iterator[str]:
        return iter(self._d)

    def __len__(self) -> int:
        return len(self._d)

    def lookup(self, ref: str) -> LinkDefinition | None:
        return self._d.get(ref)


@dataclass(frozen=True)
class DocumentLinksInfo:
    links: tuple[MdLink, ...]
    definitions: LinkDefinitionSet


@dataclass(frozen=True)
class ResolvedLinkTarget:
    kind: str  # "file" | "folder" | "external"
    uri: URI
    position: Position | None = None
    fragment: str | None = None
