"""Read-only view of the session for deciding when to fall back to relays."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ..core.defaults import RELAY_FALLBACK_RETRY_THRESHOLD
from .models import ServerState
from .session import RETRY_EVENT, STATE_CHANGE_EVENT, AggregationClientSession

logger = logging.getLogger(__name__)


class ServerStatus:
    """
    Mirrors session state and retry count through the session's events.

    Relay fallback kicks in once the server has failed more than
    ``RELAY_FALLBACK_RETRY_THRESHOLD`` retries, or has given up entirely.
    """

    def __init__(
        self,
        session: AggregationClientSession,
        fallback_threshold: int = RELAY_FALLBACK_RETRY_THRESHOLD,
    ) -> None:
        self.session = session
        self.fallback_threshold = fallback_threshold
        self._state = session.state
        self._retry_count = session.retry_count
        self._unsubscribers: Optional[List[Callable[[], None]]] = [
            session.subscribe(STATE_CHANGE_EVENT, self._on_state_change),
            session.subscribe(RETRY_EVENT, self._on_retry),
        ]

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def is_server_active(self) -> bool:
        return self._state is ServerState.ACTIVE

    @property
    def is_relay_fallback_active(self) -> bool:
        if self._state is ServerState.RETRYING:
            return self._retry_count > self.fallback_threshold
        return self._state in (ServerState.INACTIVE, ServerState.DISABLED)

    def close(self) -> None:
        """Stop tracking the session."""
        if self._unsubscribers is None:
            return
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = None

    def _on_state_change(self, state: str) -> None:
        self._state = ServerState(state)

    def _on_retry(self, count: int) -> None:
        self._retry_count = count
