"""
State Publisher
===============
Holds one immutable snapshot and tells subscribers when it is replaced.

Snapshots are always replaced as a whole object, never patched field by
field. publish() must be called from the event loop thread (the
"publish" context); every component in this package only publishes from
coroutines running on that loop, so mutations are serialized.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StatePublisher(Generic[T]):
    """Observable holder for the latest snapshot of type ``T``."""

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def publish(self, value: T) -> None:
        self._value = value
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                logger.exception("State subscriber %r raised", callback)

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe
