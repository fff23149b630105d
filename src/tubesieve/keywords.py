# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Keyword match engine.

Patterns arrive either as user words (``word`` + ``exact``) or as persisted
``{pattern, flags}`` pairs using JavaScript flag letters. Both end up as a
:class:`CompiledKeyword`.

Matching runs three stages, first hit wins:
1. compiled regex against the raw text
2. compiled regex against Unicode-normalized text (NFKD, no combining
   marks, no zero-width / variation-selector code points)
3. plain substring search of the de-regexed keyword in normalized,
   lowercased text, with word boundaries checked by hand
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from tubesieve.errors import PatternCompileError
from tubesieve.normalize import is_word_char, normalize_text_for_matching

logger = logging.getLogger(__name__)

# JavaScript RegExp flag letters. Letters mapped to 0 only affect iteration
# state or code-unit semantics, which Python's re does not have.
_JS_FLAGS: dict[str, int] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "g": 0,
    "u": 0,
    "y": 0,
    "d": 0,
}

DEFAULT_FLAGS = "i"
_BOUNDARY = r"\b"


@dataclass(frozen=True, slots=True)
class CompiledKeyword:
    """A compiled keyword matcher plus the source it came from."""

    regex: re.Pattern[str]
    source: str
    flags: str = DEFAULT_FLAGS
    comments: bool = True
    channel_ref: str | None = None

    @property
    def bounded(self) -> bool:
        """True when the pattern is anchored on word boundaries (exact mode)."""
        return self.source.startswith(_BOUNDARY) and self.source.endswith(_BOUNDARY)

    def search(self, text: str) -> bool:
        return self.regex.search(text) is not None


def _translate_flags(pattern: str, flags: str) -> int:
    value = 0
    for letter in flags:
        if letter not in _JS_FLAGS:
            raise PatternCompileError(f"unknown regex flag {letter!r}", pattern=pattern, flags=flags)
        value |= _JS_FLAGS[letter]
    return value


def compile_pattern(
    pattern: str,
    flags: str = DEFAULT_FLAGS,
    *,
    comments: bool = True,
    channel_ref: str | None = None,
) -> CompiledKeyword:
    """Compile a persisted ``{pattern, flags}`` pair.

    Raises:
        PatternCompileError: empty or invalid pattern, or unknown flag letter.
    """
    if not isinstance(pattern, str) or not pattern:
        raise PatternCompileError("empty pattern", pattern=str(pattern or ""), flags=str(flags or ""))
    flags = flags if isinstance(flags, str) else DEFAULT_FLAGS
    try:
        regex = re.compile(pattern, _translate_flags(pattern, flags))
    except (re.error, OverflowError) as e:
        raise PatternCompileError(f"invalid pattern: {e}", pattern=pattern, flags=flags) from e
    return CompiledKeyword(regex=regex, source=pattern, flags=flags, comments=comments, channel_ref=channel_ref)


def keyword_to_pattern(word: str, exact: bool = False) -> str:
    """Escaped regex source for a user word; boundary-anchored when ``exact``."""
    escaped = re.escape(word.strip())
    return f"{_BOUNDARY}{escaped}{_BOUNDARY}" if exact else escaped


def compile_word(
    word: str,
    exact: bool = False,
    *,
    comments: bool = True,
    channel_ref: str | None = None,
) -> CompiledKeyword:
    """Compile a user keyword as a case-insensitive matcher."""
    return compile_pattern(keyword_to_pattern(word, exact), DEFAULT_FLAGS, comments=comments, channel_ref=channel_ref)


def extract_plain_keyword(keyword: CompiledKeyword | re.Pattern[str] | str) -> str:
    """Best-effort literal text of a keyword: ``\\b`` anchors and backslashes removed."""
    if isinstance(keyword, CompiledKeyword):
        return _strip_regex_syntax(keyword.source)
    if isinstance(keyword, re.Pattern):
        return _strip_regex_syntax(keyword.pattern)
    if isinstance(keyword, str):
        return keyword
    return ""


def _strip_regex_syntax(source: str) -> str:
    return source.replace(_BOUNDARY, "").replace("\\", "")


def _has_boundaries(text: str, start: int, end: int) -> tuple[bool, bool]:
    left = start == 0 or not is_word_char(text[start - 1])
    right = end >= len(text) or not is_word_char(text[end])
    return left, right


def _plain_match(plain: str, text: str, bounded: bool) -> bool:
    needle = normalize_text_for_matching(plain).lower()
    if not needle:
        return False
    start = text.find(needle)
    if not bounded:
        return start != -1
    while start != -1:
        left, right = _has_boundaries(text, start, start + len(needle))
        if left and right:
            return True
        start = text.find(needle, start + 1)
    return False


def matches_keyword(
    keyword: CompiledKeyword | re.Pattern[str],
    text: str,
    source: str | None = None,
) -> bool:
    """Test one keyword against ``text`` with normalization fallbacks.

    ``source`` overrides the pattern text used for the plain-substring stage.
    An exact (boundary-anchored) keyword needs a boundary on both sides in
    that stage; any other keyword is a plain substring there too.
    """
    if not text or not isinstance(text, str):
        return False
    regex = keyword.regex if isinstance(keyword, CompiledKeyword) else keyword
    if regex.search(text):
        return True

    normalized = normalize_text_for_matching(text)
    if normalized and normalized != text and regex.search(normalized):
        return True

    if source is None:
        source = keyword.source if isinstance(keyword, CompiledKeyword) else regex.pattern
    plain = _strip_regex_syntax(source)
    if not plain:
        return False
    bounded = source.startswith(_BOUNDARY) and source.endswith(_BOUNDARY)
    return _plain_match(plain, normalized.lower(), bounded)


def text_matches_any(keywords: Iterable[CompiledKeyword], text: str) -> CompiledKeyword | None:
    """First keyword matching ``text``, or None."""
    if not text:
        return None
    for keyword in keywords:
        if matches_keyword(keyword, text):
            return keyword
    return None
