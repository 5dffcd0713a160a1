"""
Minimal observable helper for service state snapshots.

Listeners receive the service's snapshot after every state change; a
failing listener is logged and never breaks the service.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class Observable:
    """Mixin providing ``subscribe`` and ``_emit`` over ``snapshot()``."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def snapshot(self) -> Any:  # pragma: no cover - overridden
        raise NotImplementedError

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("State listener %r failed", listener)
