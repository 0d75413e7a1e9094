"""Web of trust: trust scores derived from the follow graph.

Identities followed by a root identity (the site, or the logged-in user)
are trusted; trust decays per hop and the best path wins. Content can then
be ranked or filtered by its author's score.
"""

from __future__ import annotations

from .graph import EventGraphQuery, GraphQuery, MuteListSource, StaticFollowGraph, UserRelations
from .keys import filter_valid_p_tags, is_valid_pubkey, normalize_pubkey
from .scorer import TrustGraphScorer, TrustScoreTable, compute_trust, is_in_wot, score_for_depth
from .state import TrustSlot, TrustState, WotStatus, parse_wot_level

__all__ = [
    # Graph collaborators
    "GraphQuery",
    "MuteListSource",
    "StaticFollowGraph",
    "EventGraphQuery",
    "UserRelations",
    # Keys
    "is_valid_pubkey",
    "normalize_pubkey",
    "filter_valid_p_tags",
    # Scoring
    "TrustGraphScorer",
    "TrustScoreTable",
    "compute_trust",
    "is_in_wot",
    "score_for_depth",
    # State
    "WotStatus",
    "TrustSlot",
    "TrustState",
    "parse_wot_level",
]
