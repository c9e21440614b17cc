"""Exceptions raised by scholia."""


class ScholiaError(Exception):
    """Base class for all scholia errors."""


class MalformedHrefError(ScholiaError, ValueError):
    """A link target could not be parsed into a URI."""


class DisposedError(ScholiaError, RuntimeError):
    """An operation was requested on a disposed cache, provider or manager."""


class ConfigError(ScholiaError, ValueError):
    """Invalid value in a scholia.toml file."""


class WatchingUnsupportedError(ScholiaError, TypeError):
    """The workspace does not raise file-level change notifications."""
