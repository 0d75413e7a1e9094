"""Data models for the aggregation server protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ServerState(str, Enum):
    """Session states. RETRY is a transition request, never a resting state."""

    DISABLED = "disabled"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    INACTIVE = "inactive"
    RETRY = "retry"
    RETRYING = "retrying"


class ModeratedFilter(str, Enum):
    MODERATED = "Moderated"
    UNMODERATED = "Unmoderated"
    UNMODERATED_FULLY = "Unmoderated Fully"
    ONLY_BLOCKED = "Only Moderated"


class WotFilter(str, Enum):
    SITE_AND_MINE = "Site & Mine"
    SITE_ONLY = "Site Only"
    MINE_ONLY = "Mine Only"
    NONE = "None"
    EXCLUDE = "Exclude"


class GamesSort(str, Enum):
    MOST_POPULAR = "Most Popular"
    LATEST = "Latest"


SHOW_ALL_SOURCES = "Show All"


@dataclass
class PaginatedRequest:
    """
    Request body for ``POST /paginated-events``.

    ``filter`` holds plain relay filter fields (kinds, authors, "#t", ...).
    ``tag_operators`` holds the server's extended tag filters, keyed as
    ``"-#t"`` (exclude events with any of the values) or ``"!#t"``.
    """

    filter: Dict[str, Any] = field(default_factory=dict)
    tag_operators: Dict[str, List[str]] = field(default_factory=dict)
    offset: Optional[int] = None
    sort: Optional[str] = None  # "asc" | "desc"
    sort_by: Optional[str] = None
    pubkey: Optional[str] = None
    moderation: Optional[ModeratedFilter] = None
    wot: Optional[WotFilter] = None
    mute_authors: Optional[List[str]] = None
    mute_events: Optional[List[str]] = None
    include_tags: Optional[List[str]] = None
    exclude_tags: Optional[List[str]] = None

    def __post_init__(self) -> None:
        for key in self.tag_operators:
            if not (key.startswith("-#") or key.startswith("!#")) or len(key) < 3:
                raise ValueError(f"Invalid tag operator key: {key!r}")
        if self.sort is not None and self.sort not in ("asc", "desc"):
            raise ValueError(f"sort must be 'asc' or 'desc', got {self.sort!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the server's JSON body."""
        body: Dict[str, Any] = dict(self.filter)
        body.update(self.tag_operators)
        if self.offset is not None:
            body["offset"] = self.offset
        if self.sort is not None:
            body["sort"] = self.sort
        if self.sort_by is not None:
            body["sortBy"] = self.sort_by
        if self.pubkey is not None:
            body["pubkey"] = self.pubkey
        if self.moderation is not None:
            body["moderation"] = self.moderation.value
        if self.wot is not None:
            body["wot"] = self.wot.value
        if self.mute_authors is not None or self.mute_events is not None:
            body["userMuteList"] = {
                "authors": list(self.mute_authors or []),
                "events": list(self.mute_events or []),
            }
        if self.include_tags is not None:
            body["includeTags"] = list(self.include_tags)
        if self.exclude_tags is not None:
            body["excludeTags"] = list(self.exclude_tags)
        return body


@dataclass
class Pagination:
    total: int = 0
    offset: int = 0
    limit: int = 0
    has_more: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pagination":
        return cls(
            total=int(data.get("total", 0)),
            offset=int(data.get("offset", 0)),
            limit=int(data.get("limit", 0)),
            has_more=bool(data.get("hasMore", False)),
        )


@dataclass
class PaginationResult:
    """Response of ``POST /paginated-events``."""

    events: List[Dict[str, Any]] = field(default_factory=list)
    pagination: Pagination = field(default_factory=Pagination)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PaginationResult":
        if not isinstance(data, dict):
            raise ValueError("Paginated response must be a JSON object")
        events = data.get("events", [])
        if not isinstance(events, list):
            raise ValueError("Paginated response 'events' must be a list")
        return cls(
            events=events,
            pagination=Pagination.from_dict(data.get("pagination") or {}),
        )
