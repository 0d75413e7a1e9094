"""
Tests for follow-graph collaborators.

Tests cover:
- Pubkey helpers
- StaticFollowGraph (dict and file loading, invalid keys)
- EventGraphQuery (latest event per kind, caching, author filtering)
- Recomputation re-reads relays instead of reusing cached lists
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from modhub.core.exceptions import ValidationException
from modhub.wot.graph import EventGraphQuery, GraphQuery, MuteListSource, StaticFollowGraph
from modhub.wot.keys import filter_valid_p_tags, is_valid_pubkey, normalize_pubkey
from modhub.wot.scorer import TrustGraphScorer
from modhub.wot.state import TrustState

ROOT = "0" * 64
A = "a" * 64
B = "b" * 64
C = "c" * 64


# =============================================================================
# KEYS
# =============================================================================


class TestKeys:
    def test_valid_pubkey(self):
        assert is_valid_pubkey(A)
        assert not is_valid_pubkey("A" * 64)
        assert not is_valid_pubkey("a" * 63)
        assert not is_valid_pubkey("g" * 64)
        assert not is_valid_pubkey(A + "\n")
        assert not is_valid_pubkey(None)

    def test_normalize(self):
        assert normalize_pubkey(f"  {'A' * 64} ") == A

    def test_filter_valid_p_tags(self):
        tags = [
            ["p", A],
            ["e", B],
            ["p", "not-a-key"],
            ["p", B, "wss://relay.example.com", "alice"],
            ["p", A],
            ["p"],
        ]
        assert filter_valid_p_tags(tags) == [A, B]


# =============================================================================
# STATIC GRAPH
# =============================================================================


class TestStaticFollowGraph:
    @pytest.mark.asyncio
    async def test_follow_and_mute_lists(self):
        graph = StaticFollowGraph({ROOT: [A, B]}, mutes={ROOT: [C]})
        assert await graph.get_follow_list(ROOT) == {A, B}
        assert await graph.get_follow_list(A) == set()
        assert await graph.get_mute_list(ROOT) == {C}
        assert graph.queries == [ROOT, A]

    @pytest.mark.asyncio
    async def test_returned_sets_are_copies(self):
        graph = StaticFollowGraph({ROOT: [A]})
        follows = await graph.get_follow_list(ROOT)
        follows.add(B)
        assert await graph.get_follow_list(ROOT) == {A}

    @pytest.mark.asyncio
    async def test_add_follow_and_mute(self):
        graph = StaticFollowGraph()
        graph.add_follow(ROOT, A)
        graph.add_mute(ROOT, B)
        assert await graph.get_follow_list(ROOT) == {A}
        assert await graph.get_mute_list(ROOT) == {B}

    def test_protocols(self):
        graph = StaticFollowGraph()
        assert isinstance(graph, GraphQuery)
        assert isinstance(graph, MuteListSource)

    def test_invalid_keys(self):
        graph = StaticFollowGraph({ROOT: [A, "alice"], "bob": [B]})
        assert graph.invalid_keys() == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_from_dict_bare_map(self):
        graph = StaticFollowGraph.from_dict({ROOT: [A]})
        assert await graph.get_follow_list(ROOT) == {A}

    @pytest.mark.asyncio
    async def test_from_dict_with_mutes(self):
        graph = StaticFollowGraph.from_dict({"follows": {ROOT: [A]}, "mutes": {ROOT: [B]}})
        assert await graph.get_follow_list(ROOT) == {A}
        assert await graph.get_mute_list(ROOT) == {B}

    @pytest.mark.asyncio
    async def test_from_json_file(self, tmp_path):
        path = tmp_path / "graph.json"
        path.write_text(json.dumps({ROOT: [A, B]}))
        graph = StaticFollowGraph.from_json_file(path)
        assert await graph.get_follow_list(ROOT) == {A, B}

    def test_from_json_file_missing(self, tmp_path):
        with pytest.raises(ValidationException) as exc_info:
            StaticFollowGraph.from_json_file(tmp_path / "nope.json")
        assert exc_info.value.field == "graph"

    def test_from_json_file_not_object(self, tmp_path):
        path = tmp_path / "graph.json"
        path.write_text("[]")
        with pytest.raises(ValidationException):
            StaticFollowGraph.from_json_file(path)


# =============================================================================
# EVENT-BACKED GRAPH
# =============================================================================


def contact_event(author, follows, created_at, kind=3):
    return {
        "kind": kind,
        "pubkey": author,
        "created_at": created_at,
        "tags": [["p", key] for key in follows],
    }


class TestEventGraphQuery:
    @pytest.mark.asyncio
    async def test_single_query_for_both_kinds(self):
        fetch = AsyncMock(return_value=[
            contact_event(ROOT, [A, B], 10),
            contact_event(ROOT, [C], 10, kind=10000),
        ])
        query = EventGraphQuery(fetch)

        assert await query.get_follow_list(ROOT) == {A, B}
        assert await query.get_mute_list(ROOT) == {C}

        fetch.assert_awaited_once_with({"kinds": [3, 10000], "authors": [ROOT]})

    @pytest.mark.asyncio
    async def test_latest_event_wins(self):
        fetch = AsyncMock(return_value=[
            contact_event(ROOT, [A], 10),
            contact_event(ROOT, [B], 20),
            contact_event(ROOT, [C], 15),
        ])
        assert await EventGraphQuery(fetch).get_follow_list(ROOT) == {B}

    @pytest.mark.asyncio
    async def test_missing_lists_are_empty(self):
        query = EventGraphQuery(AsyncMock(return_value=[]))
        relations = await query.get_relations(ROOT)
        assert relations.follows == set()
        assert relations.muted == set()

    @pytest.mark.asyncio
    async def test_foreign_author_and_self_follow_ignored(self):
        fetch = AsyncMock(return_value=[
            contact_event(ROOT, [A, ROOT], 10),
            contact_event(B, [C], 99),
        ])
        assert await EventGraphQuery(fetch).get_follow_list(ROOT) == {A}

    @pytest.mark.asyncio
    async def test_cache_and_clear(self):
        fetch = AsyncMock(return_value=[contact_event(ROOT, [A], 10)])
        query = EventGraphQuery(fetch)
        await query.get_follow_list(ROOT)
        await query.get_follow_list(ROOT)
        assert fetch.await_count == 1

        query.clear_cache()
        await query.get_follow_list(ROOT)
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_fetch_errors_propagate(self):
        query = EventGraphQuery(AsyncMock(side_effect=ConnectionError("relay down")))
        with pytest.raises(ConnectionError):
            await query.get_follow_list(ROOT)

    @pytest.mark.asyncio
    async def test_fresh_has_empty_cache(self):
        fetch = AsyncMock(return_value=[contact_event(ROOT, [A], 10)])
        query = EventGraphQuery(fetch)
        await query.get_follow_list(ROOT)

        await query.fresh().get_follow_list(ROOT)
        assert fetch.await_count == 2


class TestRecomputation:
    @pytest.mark.asyncio
    async def test_recompute_sees_new_follows(self):
        events = {"current": [contact_event(ROOT, [A], 10)]}

        async def fetch(event_filter):
            return events["current"] if event_filter["authors"] == [ROOT] else []

        query = EventGraphQuery(fetch)
        state = TrustState()
        first = await state.load_site(ROOT, query, mute_source=query)
        assert A in first

        events["current"] = [contact_event(ROOT, [B], 20)]
        second = await state.load_site(ROOT, query, mute_source=query)
        assert B in second
        assert A not in second

    @pytest.mark.asyncio
    async def test_one_relay_query_per_identity_per_computation(self):
        fetch = AsyncMock(return_value=[
            contact_event(ROOT, [A], 10),
            contact_event(ROOT, [B], 10, kind=10000),
        ])
        query = EventGraphQuery(fetch)
        table = await TrustGraphScorer(max_depth=1).compute(ROOT, query, mute_source=query)

        assert table[B] == -100
        # root follow list and mute list share one fetch
        assert fetch.await_count == 1
