"""Minimal observer interface for state notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class EventEmitter:
    """Named-event publish/subscribe.

    Listeners are called synchronously in subscription order. A listener that
    raises is logged and skipped so one bad subscriber cannot break the
    publisher's state machine.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to ``event``. Returns a function that unsubscribes."""
        self._listeners[event].append(listener)
        return lambda: self.unsubscribe(event, listener)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Listener for '{event}' failed")

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))
