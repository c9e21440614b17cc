"""In-memory text documents and position helpers."""

from __future__ import annotations

from bisect import bisect_right

from lsprotocol.types import Position, Range

from .uri import URI


def make_range(start_line: int, start_char: int, end_line: int, end_char: int) -> Range:
    return Range(
        start=Position(line=start_line, character=start_char),
        end=Position(line=end_line, character=end_char),
    )


def range_contains(range: Range, position: Position) -> bool:
    """True if position lies within range, both ends inclusive."""
    start, end = range.start, range.end
    return (
        (start.line, start.character)
        <= (position.line, position.character)
        <= (end.line, end.character)
    )


def _line_offsets(text: str) -> list[int]:
    offsets = [0]
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\r":
            if i + 1 < n and text[i + 1] == "\n":
                i += 1
            offsets.append(i + 1)
        elif ch == "\n":
            offsets.append(i + 1)
        i += 1
    return offsets


class InMemoryDocument:
    """
    A Markdown document held in memory.

    Offsets and characters are Python string indices. Every call to
    ``update_content`` bumps ``version`` so caches keyed on the version
    recompute.
    """

    def __init__(self, uri: URI, text: str, version: int = 0):
        self.uri = uri
        self.version = version
        self._text = text
        self._offsets = _line_offsets(text)

    def __repr__(self) -> str:
        return f"InMemoryDocument({self.uri}, version={self.version})"

    @property
    def line_count(self) -> int:
        return len(self._offsets)

    def get_text(self, range: Range | None = None) -> str:
        if range is None:
            return self._text
        return self._text[self.offset_at(range.start) : self.offset_at(range.end)]

    def get_line(self, line: int) -> str:
        """Text of a 0-based line without its line break."""
        if line < 0 or line >= len(self._offsets):
            return ""
        start = self._offsets[line]
        end = self._offsets[line + 1] if line + 1 < len(self._offsets) else len(self._text)
        return self._text[start:end].rstrip("\r\n")

    def position_at(self, offset: int) -> Position:
        offset = max(0, min(offset, len(self._text)))
        line = bisect_right(self._offsets, offset) - 1
        return Position(line=line, character=offset - self._offsets[line])

    def offset_at(self, position: Position) -> int:
        if position.line >= len(self._offsets):
            return len(self._text)
        if position.line < 0:
            return 0
        start = self._offsets[position.line]
        end = self._offsets[position.line + 1] if position.line + 1 < len(self._offsets) else len(self._text)
        return max(start, min(start + position.character, end))

    def update_content(self, text: str) -> None:
        self._text = text
        self._offsets = _line_offsets(text)
        self.version += 1
