"""Ordered observer lists."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., object])


class CallbackList(Generic[F]):
    """
    Callbacks invoked synchronously in registration order.

    A callback that raises is logged and skipped; the remaining callbacks
    still run and the caller never sees the exception.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._callbacks: list[F] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: F) -> Callable[[], None]:
        """Register a callback and return a function that removes it."""
        self._callbacks.append(callback)

        def dispose() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return dispose

    def emit(self, *args: object) -> None:
        for callback in list(self._callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("%s callback %r failed", self._name, callback)

    def clear(self) -> None:
        self._callbacks.clear()
