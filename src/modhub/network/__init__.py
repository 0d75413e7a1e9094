"""Aggregation server client.

Queries go to the aggregation server while it is healthy; callers check
``ServerStatus.is_relay_fallback_active`` and query relays directly otherwise.
"""

from .models import (
    SHOW_ALL_SOURCES,
    GamesSort,
    ModeratedFilter,
    PaginatedRequest,
    Pagination,
    PaginationResult,
    ServerState,
    WotFilter,
)
from .session import (
    AggregationClientSession,
    get_server_session,
    next_backoff_delay,
    reset_server_session,
)
from .status import ServerStatus
from .urls import is_reachable, is_valid_url, normalize_server_url

__all__ = [
    # Session
    "AggregationClientSession",
    "get_server_session",
    "reset_server_session",
    "next_backoff_delay",
    "ServerStatus",
    # Models
    "ServerState",
    "ModeratedFilter",
    "WotFilter",
    "GamesSort",
    "SHOW_ALL_SOURCES",
    "PaginatedRequest",
    "Pagination",
    "PaginationResult",
    # URLs
    "is_valid_url",
    "normalize_server_url",
    "is_reachable",
]
