# =============================================================================
# fleetsync -- Observer Primitives
# =============================================================================
#
# Typed signal with removable subscription handles. Used for connection
# state, store changes, notification feed changes and frame subscribers.
# =============================================================================

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from ._logging import logger

T = TypeVar("T")

Listener = Callable[[T], object]


class Subscription:
    """Handle returned by :meth:`Signal.connect`.

    Call :meth:`cancel` (or use as a context manager) to stop receiving
    values. Cancelling twice is harmless.
    """

    __slots__ = ("_cancel", "_active")

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._cancel()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.cancel()


class Signal(Generic[T]):
    """Synchronous multi-listener signal.

    Listeners run in registration order. A listener that raises is logged
    and skipped; the remaining listeners still run.
    """

    def __init__(self, name: str = "signal") -> None:
        self._name = name
        self._listeners: list[Listener[T]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def connect(self, listener: Listener[T]) -> Subscription:
        self._listeners.append(listener)

        def _remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Subscription(_remove)

    def emit(self, value: T) -> int:
        """Deliver *value* to every listener. Returns the number of failures."""
        failures = 0
        # Copy so listeners may cancel themselves while being called
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                failures += 1
                logger.exception("Listener error on %s", self._name)
        return failures

    def clear(self) -> None:
        self._listeners.clear()
