# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the settings normalizer.

Covers: raw settings -> FilterState, invalid entries dropped (never raised),
legacy string channels, filter-all keyword sync, comment flags, channel map
normalization, list mode, cache-backed keyword compilation.
"""

from __future__ import annotations

import json
import logging
from types import MappingProxyType

import pytest
from pydantic import ValidationError

from tests._payloads import UC_ALPHA, UC_BETA
from tubesieve.keywords import text_matches_any
from tubesieve.settings import (
    ChannelFilter,
    FilterState,
    KeywordFilter,
    KeywordSource,
    ListMode,
    compile_keyword_entry,
    keyword_source,
    normalize_settings,
    sanitize_channel_entry,
    sanitize_keyword_entry,
    sync_filter_all_keywords,
)

# ---------------------------------------------------------------------------
# Entry models
# ---------------------------------------------------------------------------


class TestKeywordFilter:
    def test_aliases_and_defaults(self):
        keyword = KeywordFilter.model_validate({"word": " cat ", "channelRef": "uc1", "addedAt": 1700000000})
        assert keyword.word == "cat"
        assert keyword.channel_ref == "uc1"
        assert keyword.comments is True
        assert keyword.exact is False
        assert keyword.source is KeywordSource.USER

    def test_blank_word_rejected(self):
        with pytest.raises(ValidationError):
            KeywordFilter(word="   ")

    def test_unknown_source_coerced(self):
        assert KeywordFilter.model_validate({"word": "x", "source": "robot"}).source is KeywordSource.USER
        assert KeywordFilter.model_validate({"word": "x", "source": ["bad"]}).source is KeywordSource.USER

    def test_null_flags(self):
        keyword = KeywordFilter.model_validate({"word": "x", "exact": None, "comments": None})
        assert keyword.exact is False
        assert keyword.comments is True

    def test_pattern(self):
        assert KeywordFilter(word="cat", exact=True).pattern == r"\bcat\b"
        assert KeywordFilter(word="Cat", exact=True).unique_key == ("cat", True)


class TestChannelFilter:
    def test_aliases(self):
        channel = ChannelFilter.model_validate(
            {"id": UC_ALPHA, "customUrl": "c/x", "filterAll": True, "filterAllComments": None, "name": None}
        )
        assert channel.custom_url == "c/x"
        assert channel.filter_all is True
        assert channel.filter_all_comments is True
        assert channel.name == ""

    def test_has_identity(self):
        assert ChannelFilter(name="x").has_identity
        assert not ChannelFilter(source="import").has_identity

    def test_collaborators_filtered(self):
        channel = ChannelFilter.model_validate({"name": "x", "allCollaborators": [{"id": UC_BETA}, {}, "bad"]})
        assert channel.all_collaborators == ({"id": UC_BETA},)

    def test_keyword_word_prefers_name(self):
        assert ChannelFilter(id=UC_ALPHA, name="Alpha TV").keyword_word == "Alpha TV"
        assert ChannelFilter(id=UC_ALPHA, name=UC_ALPHA, handle="@alpha").keyword_word == "@alpha"
        assert ChannelFilter(id=UC_ALPHA, name="Alpha").derived_key == UC_ALPHA.lower()


class TestSanitize:
    def test_keyword_string(self):
        assert sanitize_keyword_entry("cat") == KeywordFilter(word="cat")

    def test_keyword_invalid(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tubesieve.settings"):
            assert sanitize_keyword_entry({"word": ""}) is None
            assert sanitize_keyword_entry(42) is None
        assert "Dropping" in caplog.text

    def test_channel_handle_string(self):
        channel = sanitize_channel_entry("@BadChannel")
        assert channel.handle == "@BadChannel"
        assert channel.canonical_handle == "@badchannel"
        assert channel.original_input == "@BadChannel"

    @pytest.mark.parametrize("value", ["@rock'n", "@rock\N{RIGHT SINGLE QUOTATION MARK}n"])
    def test_channel_handle_with_apostrophe(self, value):
        channel = sanitize_channel_entry(value)
        assert channel.handle == "@rock'n"
        assert channel.canonical_handle == "@rock'n"

    def test_channel_url_string(self):
        channel = sanitize_channel_entry(f"https://www.youtube.com/channel/{UC_ALPHA}")
        assert channel.id == UC_ALPHA

    def test_channel_name_string(self):
        assert sanitize_channel_entry("Alpha TV").name == "Alpha TV"

    def test_channel_recovered_from_original_input(self):
        channel = sanitize_channel_entry({"originalInput": "youtube.com/c/AlphaClassic"})
        assert channel.custom_url == "c/alphaclassic"

    def test_channel_without_identity_dropped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tubesieve.settings"):
            assert sanitize_channel_entry({"filterAll": True}) is None
        assert "without identifying fields" in caplog.text

    @pytest.mark.parametrize("entry", ["", "   ", None, 7, ["@x"]])
    def test_channel_junk(self, entry):
        assert sanitize_channel_entry(entry) is None


# ---------------------------------------------------------------------------
# Filter-all sync
# ---------------------------------------------------------------------------


class TestSyncFilterAll:
    def test_derived_keyword_added(self):
        channel = ChannelFilter(id=UC_ALPHA, name="Alpha TV", filter_all=True, filter_all_comments=False)
        (keyword,) = sync_filter_all_keywords([], [channel])
        assert keyword.word == "Alpha TV"
        assert keyword.source is KeywordSource.CHANNEL
        assert keyword.channel_ref == UC_ALPHA.lower()
        assert keyword.comments is False

    def test_stale_derived_keyword_removed(self):
        stale = KeywordFilter(word="Old", source=KeywordSource.CHANNEL, channel_ref=UC_BETA.lower())
        user = KeywordFilter(word="cat")
        channel = ChannelFilter(id=UC_BETA, name="Beta")
        assert sync_filter_all_keywords([stale, user], [channel]) == (user,)

    def test_existing_derived_keyword_kept(self):
        existing = KeywordFilter(word="Beta!", source=KeywordSource.CHANNEL, channel_ref=UC_BETA.lower())
        channel = ChannelFilter(id=UC_BETA, name="Beta", filter_all=True)
        assert sync_filter_all_keywords([existing], [channel]) == (existing,)


# ---------------------------------------------------------------------------
# Keyword sources
# ---------------------------------------------------------------------------


class TestKeywordSource:
    def test_forms(self):
        assert keyword_source({"pattern": "a+", "flags": "g"}) == ("a+", "g")
        assert keyword_source({"pattern": "a+"}) == ("a+", "i")
        assert keyword_source("cat") == ("cat", "i")
        assert keyword_source({"word": "cat", "exact": True}) == (r"\bcat\b", "i")
        assert keyword_source(KeywordFilter(word="dog")) == ("dog", "i")
        assert keyword_source({"pattern": ""}) is None
        assert keyword_source(3) is None

    def test_compile_pattern_entry_respects_comments(self):
        keyword = compile_keyword_entry({"pattern": "x", "flags": "i", "comments": False})
        assert keyword.comments is False

    def test_compile_invalid_pattern_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tubesieve.settings"):
            assert compile_keyword_entry({"pattern": "(diy", "flags": "i"}) is None
        assert "(diy" in caplog.text


# ---------------------------------------------------------------------------
# normalize_settings
# ---------------------------------------------------------------------------


class TestNormalizeSettings:
    def test_empty(self):
        state = normalize_settings({})
        assert state == FilterState()
        assert state.enabled is True
        assert not state.has_rules

    def test_invalid_pattern_dropped_valid_kept(self):
        state = normalize_settings({"filterKeywords": [{"pattern": "(diy", "flags": "i"}, {"pattern": "craft"}]})
        assert [k.source for k in state.keywords] == ["craft"]
        assert text_matches_any(state.keywords, "Weekend CRAFT ideas") is not None

    def test_word_entries(self):
        state = normalize_settings({"filterKeywords": ["cat", {"word": "dog", "exact": True}, {"word": ""}]})
        assert [k.source for k in state.keywords] == ["cat", r"\bdog\b"]
        assert [k.word for k in state.keyword_entries] == ["cat", "dog"]

    def test_comment_keywords_follow_comments_flag(self):
        state = normalize_settings({"filterKeywords": ["cat", {"word": "dog", "comments": False}]})
        assert [k.source for k in state.comment_keywords] == ["cat"]

    def test_explicit_comment_keywords(self):
        state = normalize_settings({"filterKeywords": ["cat"], "filterKeywordsComments": ["spoiler"]})
        assert [k.source for k in state.comment_keywords] == ["spoiler"]

    def test_filter_all_channel_adds_keyword(self):
        state = normalize_settings({"filterChannels": [{"id": UC_ALPHA, "name": "Alpha TV", "filterAll": True}]})
        assert text_matches_any(state.keywords, "Reacting to alpha tv") is not None
        assert state.keyword_entries[0].source is KeywordSource.CHANNEL

    def test_channels(self):
        state = normalize_settings({"filterChannels": ["@BadChannel", UC_ALPHA, "", 42, {"name": "X"}]})
        assert [c.original_input or c.name for c in state.channels] == ["@BadChannel", UC_ALPHA, "X"]

    def test_hide_all_comments_forces_filter_comments_off(self):
        state = normalize_settings({"hideAllComments": True, "filterComments": True})
        assert state.hide_all_comments
        assert not state.filter_comments

    def test_flags(self):
        state = normalize_settings({"hideAllShorts": 1, "filterComments": True, "useSemantic": True})
        assert state.hide_all_shorts is True
        assert state.filter_comments is True
        assert state.use_semantic is True
        assert state.has_rules

    @pytest.mark.parametrize(("raw", "expected"), [(None, True), (True, True), (False, False), (0, True)])
    def test_enabled(self, raw, expected):
        settings = {} if raw is None else {"enabled": raw}
        assert normalize_settings(settings).enabled is expected

    def test_list_mode(self):
        assert normalize_settings({"listMode": "WHITELIST"}).is_whitelist
        assert normalize_settings({"listMode": "sideways"}).list_mode is ListMode.BLOCKLIST

    def test_whitelist_lists(self):
        state = normalize_settings(
            {"listMode": "whitelist", "whitelistKeywords": ["tutorial"], "whitelistChannels": ["@Good"]}
        )
        assert [k.source for k in state.whitelist_keywords] == ["tutorial"]
        assert state.whitelist_channels[0].canonical_handle == "@good"

    def test_channel_map_normalized(self):
        state = normalize_settings({"channelMap": {" @Alpha ": f" {UC_ALPHA} ", "": "x", "k": 5, UC_ALPHA: "@Alpha"}})
        assert dict(state.channel_map) == {"@alpha": UC_ALPHA, UC_ALPHA.lower(): "@Alpha"}
        assert isinstance(state.channel_map, MappingProxyType)

    def test_json_string(self):
        state = normalize_settings(json.dumps({"filterKeywords": ["cat"], "hideAllShorts": True}))
        assert state.hide_all_shorts
        assert len(state.keywords) == 1

    @pytest.mark.parametrize("raw", ["{not json", b"\xff", 12, ["list"]])
    def test_undecodable(self, raw):
        assert normalize_settings(raw) == FilterState()

    def test_none(self):
        assert normalize_settings(None) == FilterState()

    def test_state_passthrough(self):
        state = normalize_settings({"filterKeywords": ["cat"]})
        assert normalize_settings(state) is state

    def test_never_raises_on_odd_types(self):
        state = normalize_settings({"filterKeywords": "cat", "filterChannels": {"a": 1}, "channelMap": []})
        assert state.keywords == ()
        assert state.channels == ()

    def test_cache_reuses_compiled_keywords(self, cache):
        raw = {"filterKeywords": ["cat", "dog"]}
        first = normalize_settings(raw, cache=cache)
        second = normalize_settings(raw, cache=cache)
        assert second.keywords is first.keywords
        assert cache.stats.compiles == 1
