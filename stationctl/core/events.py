"""Scoped listener registration.

Every listener handed to an event source comes back as a `Subscription`.
Releasing it is idempotent, and using it as a context manager ties the
listener lifetime to the enclosing block so it is dropped on every exit path.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any


class Subscription:
    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Callable[[], None] | None = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def release(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class EventSource:
    """Listener registry for one event kind."""

    def __init__(self) -> None:
        self._listeners: dict[int, Callable[..., Any]] = {}
        self._counter = 0

    def subscribe(self, listener: Callable[..., Any]) -> Subscription:
        token = self._counter
        self._counter += 1
        self._listeners[token] = listener
        return Subscription(lambda: self._listeners.pop(token, None))

    def emit(self, *args: Any) -> None:
        for token, listener in list(self._listeners.items()):
            # a listener released by an earlier one in this pass is skipped
            if token in self._listeners:
                listener(*args)

    def __len__(self) -> int:
        return len(self._listeners)
