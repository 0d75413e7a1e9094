"""Web-of-trust scoring over the follow graph.

Assigns an integer trust score to every identity reachable from a root
identity by following "follows" edges, up to a fixed depth:

- The root scores ``max_score``
- An identity first reached at hop ``d`` scores ``round(max_score * decay ** d)``
- An identity reachable by several paths keeps the best (highest) score
- Identities the root has muted score ``-max_score`` and are not expanded

Traversal is breadth-first and level-synchronized: all follow lists of one
level are fetched concurrently, and the next level starts only once every
fetch of the current level has settled. Each identity is expanded at most
once, so cycles (mutual follows) terminate and the number of graph queries
is bounded by breadth x depth.

A failed fetch for a non-root identity drops that branch and is logged.
Only a failure to fetch the root's own follow list fails the computation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..core.defaults import WOT_DECAY_FACTOR, WOT_MAX_DEPTH, WOT_MAX_SCORE
from ..core.exceptions import TrustComputationError
from .graph import EventGraphQuery, GraphQuery, MuteListSource

logger = logging.getLogger(__name__)


def score_for_depth(depth: int, max_score: int = WOT_MAX_SCORE, decay: float = WOT_DECAY_FACTOR) -> int:
    """Trust score of an identity first reached ``depth`` hops from the root."""
    return int(round(max_score * decay**depth))


class TrustScoreTable(Mapping[str, int]):
    """Read-only mapping of pubkey to trust score.

    Created once per computation and never mutated afterwards; a new
    computation produces a new table.
    """

    def __init__(self, root: str, scores: Mapping[str, int], max_score: int, max_depth: int) -> None:
        self._root = root
        self._scores = MappingProxyType(dict(scores))
        self._max_score = max_score
        self._max_depth = max_depth

    @property
    def root(self) -> str:
        return self._root

    @property
    def max_score(self) -> int:
        return self._max_score

    @property
    def max_depth(self) -> int:
        return self._max_depth

    def __getitem__(self, pubkey: str) -> int:
        return self._scores[pubkey]

    def __iter__(self) -> Iterator[str]:
        return iter(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def score(self, pubkey: str) -> int:
        """Score of ``pubkey``, 0 if it was not reached."""
        return self._scores.get(pubkey, 0)

    def is_trusted(self, pubkey: str, level: int) -> bool:
        return is_in_wot(self, level, pubkey)

    def ranked(self) -> list[tuple[str, int]]:
        """Entries by descending score, ties broken by pubkey."""
        return sorted(self._scores.items(), key=lambda item: (-item[1], item[0]))

    def to_dict(self) -> dict[str, int]:
        return dict(self._scores)

    def __repr__(self) -> str:
        return f"TrustScoreTable(root={self._root[:16]!r}, entries={len(self)})"


def is_in_wot(table: Mapping[str, int], level: int, pubkey: str) -> bool:
    """True if ``pubkey`` scores at least ``level`` (absent keys score 0)."""
    return table.get(pubkey, 0) >= level


@dataclass
class TrustGraphScorer:
    """
    Breadth-first trust scorer with per-hop decay.

    Example:
        scorer = TrustGraphScorer(max_depth=2, decay=0.5, max_score=100)
        table = await scorer.compute(root_pubkey, graph)
        table[root_pubkey]  # 100

    Attributes:
        max_depth: Number of hops explored from the root
        decay: Multiplier applied to the score per hop (0 < decay <= 1)
        max_score: Score given to the root
    """

    max_depth: int = WOT_MAX_DEPTH
    decay: float = WOT_DECAY_FACTOR
    max_score: int = WOT_MAX_SCORE

    _stats: dict[str, int] = field(default_factory=lambda: {
        "computations": 0,
        "queries": 0,
        "failed_queries": 0,
    }, repr=False)

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {self.max_depth}")
        if not 0.0 < self.decay <= 1.0:
            raise ValueError(f"decay must be in (0, 1], got {self.decay}")
        if self.max_score <= 0:
            raise ValueError(f"max_score must be positive, got {self.max_score}")

    @property
    def muted_score(self) -> int:
        return -self.max_score

    async def compute(
        self,
        root_pubkey: str,
        graph_query: GraphQuery,
        mute_source: MuteListSource | None = None,
    ) -> TrustScoreTable:
        """Compute the trust table for ``root_pubkey``.

        Raises:
            TrustComputationError: If the root's follow list cannot be fetched
        """
        self._stats["computations"] += 1
        graph_query, mute_source = _fresh_sources(graph_query, mute_source)
        scores: dict[str, int] = {root_pubkey: self.max_score}

        muted = await self._root_mutes(root_pubkey, mute_source)
        for pubkey in muted:
            scores[pubkey] = self.muted_score

        # Muted identities are never expanded
        visited: set[str] = {root_pubkey} | muted
        frontier: list[str] = [root_pubkey]

        for depth in range(1, self.max_depth + 1):
            if not frontier:
                break

            hop_score = score_for_depth(depth, self.max_score, self.decay)
            results = await asyncio.gather(
                *(graph_query.get_follow_list(pubkey) for pubkey in frontier),
                return_exceptions=True,
            )
            self._stats["queries"] += len(frontier)

            next_frontier: list[str] = []
            for source, result in zip(frontier, results):
                if isinstance(result, BaseException):
                    self._stats["failed_queries"] += 1
                    if source == root_pubkey:
                        raise TrustComputationError(
                            f"Could not fetch follow list of root {root_pubkey[:16]}...: {result}",
                            pubkey=root_pubkey,
                        ) from result
                    logger.warning(
                        f"Follow list of {source[:16]}... unavailable, skipping branch: {result}"
                    )
                    continue

                for target in sorted(result):
                    if target in muted:
                        continue
                    if hop_score > scores.get(target, self.muted_score):
                        scores[target] = hop_score
                    if target not in visited:
                        visited.add(target)
                        next_frontier.append(target)

            frontier = next_frontier

        logger.debug(
            f"Computed trust for {root_pubkey[:16]}...: {len(scores)} identities, depth {self.max_depth}"
        )
        return TrustScoreTable(root_pubkey, scores, self.max_score, self.max_depth)

    async def _root_mutes(self, root_pubkey: str, mute_source: MuteListSource | None) -> set[str]:
        if mute_source is None:
            return set()
        try:
            muted = set(await mute_source.get_mute_list(root_pubkey))
        except Exception as e:
            logger.warning(f"Mute list of root {root_pubkey[:16]}... unavailable: {e}")
            return set()
        muted.discard(root_pubkey)
        return muted

    def get_stats(self) -> dict[str, Any]:
        return dict(self._stats)


def _fresh_sources(
    graph_query: GraphQuery,
    mute_source: MuteListSource | None,
) -> tuple[GraphQuery, MuteListSource | None]:
    """Start relay-backed collaborators with an empty cache for this computation."""
    fresh_graph = graph_query.fresh() if isinstance(graph_query, EventGraphQuery) else graph_query
    if mute_source is graph_query:
        return fresh_graph, fresh_graph
    if isinstance(mute_source, EventGraphQuery):
        mute_source = mute_source.fresh()
    return fresh_graph, mute_source


async def compute_trust(
    root_pubkey: str,
    graph_query: GraphQuery,
    *,
    max_depth: int = WOT_MAX_DEPTH,
    decay: float = WOT_DECAY_FACTOR,
    max_score: int = WOT_MAX_SCORE,
    mute_source: MuteListSource | None = None,
) -> TrustScoreTable:
    """Convenience wrapper: compute a trust table with a throwaway scorer."""
    scorer = TrustGraphScorer(max_depth=max_depth, decay=decay, max_score=max_score)
    return await scorer.compute(root_pubkey, graph_query, mute_source=mute_source)
