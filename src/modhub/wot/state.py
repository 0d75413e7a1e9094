"""Cached trust tables for the site identity and the logged-in user.

Trust tables are replaced wholesale on recomputation, never edited in
place. Each slot tracks a load status and the minimum score (level) an
author needs to count as trusted.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from .graph import GraphQuery, MuteListSource
from .scorer import TrustGraphScorer, TrustScoreTable, is_in_wot

logger = logging.getLogger(__name__)

_EMPTY_TABLE: Mapping[str, int] = MappingProxyType({})


class WotStatus(str, Enum):
    """Load status of a cached trust table."""

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass
class TrustSlot:
    """One cached trust table with its status and threshold."""

    table: Mapping[str, int] = field(default_factory=lambda: _EMPTY_TABLE)
    status: WotStatus = WotStatus.IDLE
    level: int = 0
    # Bumped on every load/reset so late results of an older load are dropped
    generation: int = 0

    def contains(self, pubkey: str) -> bool:
        return is_in_wot(self.table, self.level, pubkey)


@dataclass
class TrustState:
    """
    Site-wide and per-user web-of-trust state.

    Example:
        state = TrustState()
        await state.load_site(site_pubkey, graph)
        state.set_site_level(25)
        visible = [m for m in mods if state.site.contains(m["author"])]
    """

    scorer: TrustGraphScorer = field(default_factory=TrustGraphScorer)
    site: TrustSlot = field(default_factory=TrustSlot)
    user: TrustSlot = field(default_factory=TrustSlot)

    async def load_site(
        self,
        pubkey: str,
        graph: GraphQuery,
        mute_source: MuteListSource | None = None,
    ) -> TrustScoreTable:
        return await self._load(self.site, "site", pubkey, graph, mute_source)

    async def load_user(
        self,
        pubkey: str,
        graph: GraphQuery,
        mute_source: MuteListSource | None = None,
    ) -> TrustScoreTable:
        return await self._load(self.user, "user", pubkey, graph, mute_source)

    def reset_user(self) -> None:
        """Forget the user's table, e.g. on logout."""
        self.user.generation += 1
        self.user.table = _EMPTY_TABLE
        self.user.status = WotStatus.IDLE
        self.user.level = 0

    def set_site_level(self, level: int) -> None:
        self.site.level = level

    def set_user_level(self, level: int) -> None:
        self.user.level = level

    async def _load(
        self,
        slot: TrustSlot,
        name: str,
        pubkey: str,
        graph: GraphQuery,
        mute_source: MuteListSource | None,
    ) -> TrustScoreTable:
        slot.generation += 1
        generation = slot.generation
        slot.status = WotStatus.LOADING

        try:
            table = await self.scorer.compute(pubkey, graph, mute_source=mute_source)
        except Exception:
            logger.error(f"An error occurred in calculating {name} web-of-trust")
            if slot.generation == generation:
                slot.status = WotStatus.FAILED
            raise

        if slot.generation == generation:
            slot.table = table
            slot.status = WotStatus.LOADED
        else:
            logger.debug(f"Discarding stale {name} web-of-trust for {pubkey[:16]}...")
        return table


def parse_wot_level(tags: Iterable[Sequence[str]]) -> int | None:
    """Read the trust threshold from an app-data event's ``["wot", "<n>"]`` tag."""
    for tag in tags:
        if len(tag) >= 2 and tag[0] == "wot":
            try:
                return int(tag[1])
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed wot level tag: {tag[1]!r}")
                return None
    return None
