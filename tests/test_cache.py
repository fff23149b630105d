# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the compiled-index cache.

Covers: signatures, list-scope and owner-scope reuse, invalidation when list
contents or the channel map change, LRU eviction, stats.
"""

from __future__ import annotations

import pytest

import tubesieve.cache as cache_module
from tests._payloads import UC_ALPHA, UC_BETA
from tubesieve.cache import CacheContext, CacheStats, channel_signature, keyword_signature
from tubesieve.settings import ChannelFilter

# ---------------------------------------------------------------------------
# Helpers / Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def compile_calls(monkeypatch):
    """Count calls to the channel index compiler."""
    calls: list[int] = []
    real = cache_module.compile_channel_index

    def _counting(entries, channel_map=None, *, signature=""):
        calls.append(1)
        return real(entries, channel_map, signature=signature)

    monkeypatch.setattr(cache_module, "compile_channel_index", _counting)
    return calls


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


class TestSignatures:
    def test_channel_order_independent(self):
        assert channel_signature(["@a", "@b"]) == channel_signature(["@B", "@a"])

    def test_channel_fields(self):
        one = channel_signature([ChannelFilter(id=UC_ALPHA)])
        other = channel_signature([{"id": UC_ALPHA}])
        assert one == other
        assert one != channel_signature([ChannelFilter(id=UC_BETA)])

    def test_channel_ignores_blank(self):
        assert channel_signature(["", None, "  "]) == ""

    def test_keyword_order_sensitive(self):
        assert keyword_signature(["a", "b"]) != keyword_signature(["b", "a"])

    def test_keyword_comments_flag(self):
        assert keyword_signature([{"word": "a"}]) != keyword_signature([{"word": "a", "comments": False}])

    def test_keyword_skips_unusable(self):
        assert keyword_signature(["", 3, {"pattern": ""}]) == ""


# ---------------------------------------------------------------------------
# Channel index reuse
# ---------------------------------------------------------------------------


class TestChannelIndexCache:
    def test_same_list_reused(self, cache, compile_calls):
        entries = ["@Alpha", UC_BETA]
        first = cache.channel_index(entries)
        second = cache.channel_index(entries)
        assert second is first
        assert len(compile_calls) == 1
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1

    def test_new_list_same_owner_reused(self, cache, compile_calls):
        owner = object()
        first = cache.channel_index(["@Alpha"], owner=owner)
        second = cache.channel_index(["@Alpha"], owner=owner)
        assert second is first
        assert len(compile_calls) == 1

    def test_new_list_without_owner_recompiles(self, cache, compile_calls):
        cache.channel_index(["@Alpha"])
        cache.channel_index(["@Alpha"])
        assert len(compile_calls) == 2

    def test_mutated_list_recompiles(self, cache, compile_calls):
        entries = ["@Alpha"]
        first = cache.channel_index(entries)
        entries.append("@Beta")
        second = cache.channel_index(entries)
        assert second is not first
        assert "@beta" in second.handles
        assert len(compile_calls) == 2

    def test_owner_with_changed_contents_recompiles(self, cache, compile_calls):
        owner = object()
        cache.channel_index(["@Alpha"], owner=owner)
        index = cache.channel_index(["@Beta"], owner=owner)
        assert "@beta" in index.handles
        assert len(compile_calls) == 2

    def test_channel_map_change_recompiles(self, cache, compile_calls):
        entries = [ChannelFilter(id=UC_ALPHA)]
        channel_map = {}
        cache.channel_index(entries, channel_map)
        channel_map[UC_ALPHA.lower()] = "@AlphaTV"
        index = cache.channel_index(entries, channel_map)
        assert "@alphatv" in index.handles
        assert len(compile_calls) == 2

    def test_new_channel_map_object_recompiles(self, cache, compile_calls):
        entries = ["@Alpha"]
        cache.channel_index(entries, {"@alpha": UC_ALPHA})
        cache.channel_index(entries, {"@alpha": UC_ALPHA})
        assert len(compile_calls) == 2

    def test_signature_recorded(self, cache):
        entries = ["@Alpha"]
        assert cache.channel_index(entries).source_signature == channel_signature(entries)


# ---------------------------------------------------------------------------
# Keyword reuse
# ---------------------------------------------------------------------------


class TestKeywordCache:
    def test_same_list_reused(self, cache):
        entries = ["cat", {"pattern": "dog", "flags": "i"}]
        first = cache.keyword_matchers(entries)
        assert cache.keyword_matchers(entries) is first
        assert [k.source for k in first] == ["cat", "dog"]
        assert cache.stats.compiles == 1

    def test_changed_entries_recompile(self, cache):
        entries = ["cat"]
        cache.keyword_matchers(entries)
        entries[0] = "dog"
        assert [k.source for k in cache.keyword_matchers(entries)] == ["dog"]
        assert cache.stats.compiles == 2

    def test_kinds_do_not_collide(self, cache):
        owner = object()
        keywords = cache.keyword_matchers(["cat"], owner=owner)
        index = cache.channel_index(["@cat"], owner=owner)
        assert keywords != index
        assert cache.stats.compiles == 2


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_lru_eviction(self):
        cache = CacheContext(max_entries=2)
        lists = [["@a"], ["@b"], ["@c"]]
        for entries in lists:
            cache.channel_index(entries)
        assert cache.size == 2
        assert cache.stats.evictions == 1
        # Oldest slot evicted, newest still cached
        cache.channel_index(lists[2])
        assert cache.stats.hits == 1
        cache.channel_index(lists[0])
        assert cache.stats.compiles == 4

    def test_invalidate_all(self, cache, compile_calls):
        entries = ["@Alpha"]
        cache.channel_index(entries, owner=entries)
        assert cache.size == 2
        cache.invalidate_all()
        assert cache.size == 0
        assert cache.stats.invalidations == 2
        cache.channel_index(entries)
        assert len(compile_calls) == 2

    def test_stats_hit_rate(self):
        assert CacheStats().hit_rate == 0.0
        assert CacheStats(hits=3, misses=1).hit_rate == 0.75

    def test_contexts_are_independent(self, compile_calls):
        entries = ["@Alpha"]
        CacheContext().channel_index(entries)
        CacheContext().channel_index(entries)
        assert len(compile_calls) == 2
