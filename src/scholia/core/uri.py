"""Immutable URI value used as the key for every document and file."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, replace
from urllib.parse import quote, unquote, urlsplit

from ..errors import MalformedHrefError

_PATH_SAFE = "/:@!$&'()*+,;=~-._"
_FRAGMENT_SAFE = _PATH_SAFE + "?#"


@dataclass(frozen=True)
class URI:
    scheme: str
    authority: str = ""
    path: str = ""  # percent-decoded
    query: str = ""
    fragment: str = ""  # percent-decoded

    @classmethod
    def parse(cls, text: str) -> URI:
        """
        Parse an absolute URI such as ``https://example.com/a#b``.

        Raises MalformedHrefError when the text has no scheme or cannot be
        split into components.
        """
        try:
            parts = urlsplit(text)
        except ValueError as e:
            raise MalformedHrefError(f"Invalid URI {text!r}: {e}") from e
        if not parts.scheme:
            raise MalformedHrefError(f"URI has no scheme: {text!r}")
        path = unquote(parts.path)
        if parts.netloc and path and not path.startswith("/"):
            path = "/" + path
        return cls(
            scheme=parts.scheme,
            authority=parts.netloc,
            path=path,
            query=parts.query,
            fragment=unquote(parts.fragment),
        )

    @classmethod
    def file(cls, path: str) -> URI:
        path = path.replace("\\", "/")
        if not path.startswith("/"):
            path = "/" + path
        return cls(scheme="file", path=path)

    @property
    def fs_path(self) -> str:
        return self.path

    def with_(self, **changes: str) -> URI:
        return replace(self, **changes)

    def join_path(self, *segments: str) -> URI:
        """Append path segments; absolute segments are appended, not rooted."""
        joined = "/".join([self.path, *segments])
        normalized = posixpath.normpath(joined) if joined else "/"
        if normalized.startswith("//"):
            normalized = "/" + normalized.lstrip("/")
        if normalized == ".":
            normalized = "/"
        return replace(self, path=normalized, query="", fragment="")

    def dirname(self) -> URI:
        parent = posixpath.dirname(self.path.rstrip("/")) or "/"
        return replace(self, path=parent, query="", fragment="")

    @property
    def basename(self) -> str:
        return posixpath.basename(self.path.rstrip("/"))

    @property
    def extname(self) -> str:
        """Extension including the dot, or '' when there is none."""
        return posixpath.splitext(self.basename)[1]

    def is_parent_of(self, other: URI) -> bool:
        if (self.scheme, self.authority) != (other.scheme, other.authority):
            return False
        base = self.path.rstrip("/")
        return other.path.startswith(base + "/")

    def to_string(self, skip_encoding: bool = False) -> str:
        out = f"{self.scheme}:"
        if self.authority or self.scheme == "file":
            out += f"//{self.authority}"
        out += self.path if skip_encoding else quote(self.path, safe=_PATH_SAFE)
        if self.query:
            out += f"?{self.query}"
        if self.fragment:
            fragment = self.fragment if skip_encoding else quote(self.fragment, safe=_FRAGMENT_SAFE)
            out += f"#{fragment}"
        return out

    def __str__(self) -> str:
        return self.to_string()
