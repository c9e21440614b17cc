"""Cooperative cancellation."""

from typing import Protocol


class CancellationToken(Protocol):
    @property
    def is_cancellation_requested(self) -> bool:
        pass


class _NoopToken:
    @property
    def is_cancellation_requested(self) -> bool:
        return False


NOOP_TOKEN: CancellationToken = _NoopToken()


class CancellationTokenSource:
    """Owner side of a token: ``source.cancel()`` flips ``source.token``."""

    def __init__(self) -> None:
        self._cancelled = False
        self.token = _SourceToken(self)

    def cancel(self) -> None:
        self._cancelled = True


class _SourceToken:
    def __init__(self, source: CancellationTokenSource):
        self._source = source

    @property
    def is_cancellation_requested(self) -> bool:
        return self._source._cancelled
