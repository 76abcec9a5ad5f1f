"""
Ordered callback lists with disposable subscriptions.

Each adapter keeps one CallbackRegistry per event kind (ticks, order updates,
account updates, position updates). Registering returns a Subscription;
disposing it removes exactly that registration, so long-running consumers
can detach without tearing down the whole adapter.

Duplicates are allowed: registering the same function twice makes it fire
twice, and each registration has its own Subscription.
"""

import logging
from typing import Any, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """
    Handle for one callback registration.

    Usable as a context manager:
        with adapter.on_market_data(print):
            ...  # callback active here
        # callback removed
    """

    def __init__(self, registry: "CallbackRegistry", entry: "_Entry"):
        self._registry: Optional[CallbackRegistry] = registry
        self._entry = entry

    @property
    def active(self) -> bool:
        return self._registry is not None and self._registry._contains(self._entry)

    def dispose(self) -> None:
        """Remove the callback. Safe to call more than once."""
        if self._registry is not None:
            self._registry._remove(self._entry)
            self._registry = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
        return False


class _Entry:
    __slots__ = ("callback",)

    def __init__(self, callback: Callable[[Any], None]):
        self.callback = callback


class CallbackRegistry(Generic[T]):
    """
    Callbacks for one event kind, invoked in registration order.

    Args:
        kind: Event kind label used in log messages ("tick", "order", ...).
    """

    def __init__(self, kind: str):
        self.kind = kind
        self._entries: List[_Entry] = []

    def add(self, callback: Callable[[T], None]) -> Subscription:
        if not callable(callback):
            raise TypeError(f"{self.kind} callback must be callable, got {type(callback).__name__}")
        entry = _Entry(callback)
        self._entries.append(entry)
        return Subscription(self, entry)

    def dispatch(self, event: T) -> int:
        """
        Invoke every callback with `event`. Returns the number invoked.

        Iterates over a snapshot, so callbacks may subscribe or dispose during
        dispatch without affecting the current round. A callback that raises
        is logged and the remaining callbacks still run.
        """
        entries = list(self._entries)
        for entry in entries:
            try:
                entry.callback(event)
            except Exception:
                logger.exception("%s callback %r raised", self.kind, entry.callback)
        return len(entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def _contains(self, entry: _Entry) -> bool:
        return any(e is entry for e in self._entries)

    def _remove(self, entry: _Entry) -> None:
        self._entries = [e for e in self._entries if e is not entry]
