"""Event emitters and disposable subscriptions."""

from __future__ import annotations

from typing import Callable, Generic, Protocol, TypeVar

T = TypeVar("T")


class IDisposable(Protocol):
    def dispose(self) -> None:
        pass


class Disposable:
    """
    Base class for objects that own subscriptions or nested components.

    Resources registered with ``_register`` are released by ``dispose`` in
    reverse registration order. ``dispose`` is idempotent and instances can
    be used as context managers.
    """

    def __init__(self) -> None:
        self._disposables: list[IDisposable] = []
        self._is_disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._is_disposed

    def _register(self, value: IDisposable) -> IDisposable:
        if self._is_disposed:
            value.dispose()
        else:
            self._disposables.append(value)
        return value

    def dispose(self) -> None:
        if self._is_disposed:
            return
        self._is_disposed = True
        while self._disposables:
            self._disposables.pop().dispose()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class DisposableStore(Disposable):
    """A bag of disposables released together."""

    def add(self, value: IDisposable) -> IDisposable:
        return self._register(value)


class Subscription:
    def __init__(self, on_dispose: Callable[[], None]):
        self._on_dispose: Callable[[], None] | None = on_dispose

    def dispose(self) -> None:
        if self._on_dispose is not None:
            self._on_dispose()
            self._on_dispose = None


class Emitter(Generic[T]):
    """
    Fan-out of a single event type to any number of listeners.

    ``emitter.event(listener)`` subscribes and returns a Subscription whose
    ``dispose`` unsubscribes.
    """

    def __init__(self) -> None:
        self._listeners: list[Callable[[T], None]] = []

    def event(self, listener: Callable[[T], None]) -> Subscription:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(remove)

    __call__ = event

    def fire(self, value: T) -> None:
        for listener in list(self._listeners):
            listener(value)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispose(self) -> None:
        self._listeners.clear()


# Subscribing callable exposed by workspaces: ``workspace.on_did_x(listener)``.
Event = Callable[[Callable[[T], None]], Subscription]
