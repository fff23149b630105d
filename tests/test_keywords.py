# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the keyword match engine.

Covers: JS flag translation, pattern compile errors, word -> pattern,
three-stage matching (raw regex, normalized regex, plain substring with
hand-checked boundaries), first-match selection.
"""

from __future__ import annotations

import re

import pytest

from tubesieve.errors import PatternCompileError, TubeSieveError
from tubesieve.keywords import (
    CompiledKeyword,
    compile_pattern,
    compile_word,
    extract_plain_keyword,
    keyword_to_pattern,
    matches_keyword,
    text_matches_any,
)

CAFE = "caf\N{LATIN SMALL LETTER E WITH ACUTE}"
CAFE_DECOMPOSED = "cafe\N{COMBINING ACUTE ACCENT}"

# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


class TestCompilePattern:
    def test_default_flag_is_case_insensitive(self):
        keyword = compile_pattern("spoiler")
        assert keyword.flags == "i"
        assert keyword.search("SPOILER alert")

    def test_multiline_flag(self):
        assert compile_pattern("^foo", "m").search("bar\nfoo")
        assert not compile_pattern("^foo", "").search("bar\nfoo")

    def test_dotall_flag(self):
        assert compile_pattern("a.b", "s").search("a\nb")

    def test_iteration_flags_ignored(self):
        keyword = compile_pattern("x", "giuyd")
        assert keyword.regex.flags & re.IGNORECASE
        assert keyword.search("X")

    def test_unknown_flag(self):
        with pytest.raises(PatternCompileError, match="unknown regex flag") as excinfo:
            compile_pattern("x", "ix")
        assert excinfo.value.flags == "ix"

    def test_invalid_pattern(self):
        with pytest.raises(PatternCompileError) as excinfo:
            compile_pattern("(diy", "i")
        assert excinfo.value.pattern == "(diy"
        assert isinstance(excinfo.value, TubeSieveError)

    def test_empty_pattern(self):
        with pytest.raises(PatternCompileError):
            compile_pattern("")

    def test_non_string_flags_use_default(self):
        assert compile_pattern("abc", None).flags == "i"

    def test_metadata_carried(self):
        keyword = compile_pattern("abc", comments=False, channel_ref="uc123")
        assert keyword.comments is False
        assert keyword.channel_ref == "uc123"


class TestKeywordToPattern:
    def test_escapes_metacharacters(self):
        assert compile_word("c++").search("I like C++ a lot")
        assert not compile_word("a.b").search("axb")

    def test_exact_adds_boundaries(self):
        assert keyword_to_pattern("cat", exact=True) == r"\bcat\b"
        assert compile_word("cat", exact=True).bounded
        assert not compile_word("cat").bounded

    def test_strips_word(self):
        assert keyword_to_pattern("  cat ") == "cat"

    def test_extract_plain_keyword(self):
        assert extract_plain_keyword(compile_word("cat", exact=True)) == "cat"
        assert extract_plain_keyword(compile_word("c++")) == "c++"
        assert extract_plain_keyword(re.compile(r"\bdog\b")) == "dog"
        assert extract_plain_keyword("raw") == "raw"


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class TestMatchesKeyword:
    def test_exact_word_boundaries(self):
        cat = compile_word("cat", exact=True)
        assert matches_keyword(cat, "Cat!")
        assert matches_keyword(cat, "my cat sleeps")
        assert not matches_keyword(cat, "category")
        assert not matches_keyword(cat, "concatenate")

    def test_substring_without_exact(self):
        assert matches_keyword(compile_word("cat"), "category")

    def test_precomposed_keyword_matches_decomposed_text(self):
        assert matches_keyword(compile_word(CAFE), f"Best {CAFE_DECOMPOSED} in town")

    def test_keyword_matches_text_with_zero_width_joiner(self):
        text = "ca\N{ZERO WIDTH JOINER}f\N{LATIN SMALL LETTER E WITH ACUTE} reviews"
        assert matches_keyword(compile_word(CAFE), text)

    def test_exact_keyword_matches_decomposed_text_at_boundaries(self):
        keyword = compile_word(CAFE, exact=True)
        assert matches_keyword(keyword, f"Visit {CAFE_DECOMPOSED} today")
        assert not matches_keyword(keyword, f"{CAFE_DECOMPOSED}teria")

    def test_substring_inside_decomposed_word(self):
        keyword = compile_word(CAFE)
        assert matches_keyword(keyword, f"super{CAFE}s")
        assert matches_keyword(keyword, f"super{CAFE_DECOMPOSED}s")
        assert not matches_keyword(compile_word(CAFE, exact=True), f"super{CAFE_DECOMPOSED}s")

    def test_plain_stage_checks_every_occurrence(self):
        keyword = compile_word(CAFE, exact=True)
        assert matches_keyword(keyword, f"{CAFE_DECOMPOSED}teria and {CAFE_DECOMPOSED}")

    def test_ascii_keyword_against_accented_text(self):
        assert matches_keyword(compile_word("cafe"), f"{CAFE} latte")

    def test_raw_pattern(self):
        assert matches_keyword(re.compile("news", re.IGNORECASE), "Breaking NEWS")

    def test_empty_text(self):
        assert not matches_keyword(compile_word("cat"), "")
        assert not matches_keyword(compile_word("cat"), None)

    def test_source_override(self):
        keyword = compile_pattern(r"zzz\d")
        assert matches_keyword(keyword, "tea time", source="tea")

    def test_regex_pattern_not_degraded(self):
        keyword = compile_pattern(r"live\s+stream")
        assert matches_keyword(keyword, "LIVE   STREAM tonight")
        assert not matches_keyword(keyword, "lives treaming")


class TestTextMatchesAny:
    def test_returns_first_match(self):
        keywords = [compile_word("dog"), compile_word("cat"), compile_word("ca")]
        match = text_matches_any(keywords, "a cat video")
        assert isinstance(match, CompiledKeyword)
        assert match.source == "cat"

    def test_none_when_no_match(self):
        assert text_matches_any([compile_word("dog")], "a cat video") is None

    def test_empty_inputs(self):
        assert text_matches_any([], "anything") is None
        assert text_matches_any([compile_word("x")], "") is None
