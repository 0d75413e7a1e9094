"""Follow-graph collaborators for trust scoring.

The scorer only needs ``get_follow_list(pubkey)``. Two implementations:

- StaticFollowGraph: in-memory adjacency, for tests, fixtures and the CLI
- EventGraphQuery: derives follow and mute lists from relay events
  (kind 3 contact lists, kind 10000 mute lists) through an injected
  async ``fetch_events(filter)`` callable

A missing list is an empty set, not an error. Only transport failures raise.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol, runtime_checkable

from ..core.defaults import KIND_CONTACTS, KIND_MUTE_LIST
from ..core.exceptions import ValidationException
from .keys import filter_valid_p_tags, is_valid_pubkey

logger = logging.getLogger(__name__)

EventFetcher = Callable[[dict[str, Any]], Awaitable[Iterable[Mapping[str, Any]]]]


@runtime_checkable
class GraphQuery(Protocol):
    """Source of follow lists."""

    async def get_follow_list(self, pubkey: str) -> set[str]: ...


@runtime_checkable
class MuteListSource(Protocol):
    """Source of mute lists."""

    async def get_mute_list(self, pubkey: str) -> set[str]: ...


@dataclass
class UserRelations:
    """Follow and mute sets published by one identity."""

    follows: set[str] = field(default_factory=set)
    muted: set[str] = field(default_factory=set)


# =============================================================================
# IN-MEMORY GRAPH
# =============================================================================


class StaticFollowGraph:
    """Follow graph held in memory.

    Example:
        graph = StaticFollowGraph({"root": ["a", "b"], "a": ["c"]})
        await graph.get_follow_list("root")  # {"a", "b"}
    """

    def __init__(
        self,
        follows: Mapping[str, Iterable[str]] | None = None,
        mutes: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        self._follows = {k: set(v) for k, v in (follows or {}).items()}
        self._mutes = {k: set(v) for k, v in (mutes or {}).items()}
        self.queries: list[str] = []

    async def get_follow_list(self, pubkey: str) -> set[str]:
        self.queries.append(pubkey)
        return set(self._follows.get(pubkey, ()))

    async def get_mute_list(self, pubkey: str) -> set[str]:
        return set(self._mutes.get(pubkey, ()))

    def add_follow(self, source: str, target: str) -> None:
        self._follows.setdefault(source, set()).add(target)

    def add_mute(self, source: str, target: str) -> None:
        self._mutes.setdefault(source, set()).add(target)

    def invalid_keys(self) -> list[str]:
        """Keys in the graph that are not well-formed pubkeys."""
        bad: list[str] = []
        for source, targets in (*self._follows.items(), *self._mutes.items()):
            for key in (source, *sorted(targets)):
                if not is_valid_pubkey(key) and key not in bad:
                    bad.append(key)
        return bad

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StaticFollowGraph:
        """Build from ``{"follows": {...}, "mutes": {...}}`` or a bare follow map."""
        if "follows" in data and isinstance(data["follows"], Mapping):
            return cls(data["follows"], data.get("mutes") or {})
        return cls(data)

    @classmethod
    def from_json_file(cls, path: Path | str) -> StaticFollowGraph:
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise ValidationException(f"Could not read follow graph: {e}", field="graph", value=path) from e
        if not isinstance(data, dict):
            raise ValidationException("Follow graph must be a JSON object", field="graph", value=path)
        return cls.from_dict(data)


# =============================================================================
# RELAY-BACKED GRAPH
# =============================================================================


class EventGraphQuery:
    """Follow and mute lists read from contact-list and mute-list events.

    Both kinds are requested in one query per identity and the result is
    cached, so asking for a follow list and then a mute list of the same
    key costs one relay round-trip. For each kind only the newest event is
    used, since both are replaceable events.

    The cache lives as long as the instance. The scorer calls ``fresh()``
    at the start of every computation, so a recomputation re-reads the
    relays instead of reusing the previous graph.
    """

    def __init__(self, fetch_events: EventFetcher) -> None:
        self._fetch_events = fetch_events
        self._cache: dict[str, UserRelations] = {}

    async def get_relations(self, pubkey: str) -> UserRelations:
        cached = self._cache.get(pubkey)
        if cached is not None:
            return cached

        events = await self._fetch_events({
            "kinds": [KIND_CONTACTS, KIND_MUTE_LIST],
            "authors": [pubkey],
        })

        latest: dict[int, Mapping[str, Any]] = {}
        for event in events:
            kind = event.get("kind")
            if kind not in (KIND_CONTACTS, KIND_MUTE_LIST):
                continue
            if event.get("pubkey") not in (None, pubkey):
                logger.debug(f"Skipping event from unexpected author for {pubkey[:16]}...")
                continue
            current = latest.get(kind)
            if current is None or event.get("created_at", 0) > current.get("created_at", 0):
                latest[kind] = event

        relations = UserRelations(
            follows=set(filter_valid_p_tags(latest.get(KIND_CONTACTS, {}).get("tags", []))),
            muted=set(filter_valid_p_tags(latest.get(KIND_MUTE_LIST, {}).get("tags", []))),
        )
        relations.follows.discard(pubkey)
        self._cache[pubkey] = relations
        return relations

    async def get_follow_list(self, pubkey: str) -> set[str]:
        return set((await self.get_relations(pubkey)).follows)

    async def get_mute_list(self, pubkey: str) -> set[str]:
        return set((await self.get_relations(pubkey)).muted)

    def fresh(self) -> EventGraphQuery:
        """A query over the same relays with an empty cache."""
        return EventGraphQuery(self._fetch_events)

    def clear_cache(self) -> None:
        self._cache.clear()
