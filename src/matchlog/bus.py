"""Synchronous listener bus for store mutations.

Subscribers are called in subscription order after each mutation has been
persisted. A failing subscriber is logged and skipped; it never stops the
others and never reaches the code that triggered the mutation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict[str, Any]], None]


class ListenerBus:
    """Fan-out of (kind, payload) notifications to registered callbacks."""

    def __init__(self) -> None:
        self._listeners: list[tuple[object, Listener]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it.

        The same callable may be subscribed more than once; each
        subscription is removed independently.
        """
        token = object()
        self._listeners.append((token, callback))

        def unsubscribe() -> None:
            self._listeners = [(t, cb) for t, cb in self._listeners if t is not token]

        return unsubscribe

    def notify(self, kind: str, payload: dict[str, Any]) -> int:
        """Call every subscriber. Returns the number that raised."""
        failures = 0
        # Snapshot so callbacks can (un)subscribe while being notified
        for _, callback in list(self._listeners):
            try:
                callback(kind, payload)
            except Exception:
                failures += 1
                logger.exception(f"Event listener {callback!r} failed handling {kind}")
        return failures

    def clear(self) -> None:
        self._listeners = []
