# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared text normalization for identity comparison and keyword matching.

Used by identity.py (handles, names, custom URLs), keywords.py (fallback
matching) and dom_fallback.py. Every function is total: non-string input
yields an empty string.
"""

from __future__ import annotations

import re
import unicodedata

# Zero-width chars, bidi controls, isolates, BOM and variation selectors.
_ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200F\u202A-\u202E\u2060-\u2069\uFEFF\uFE00-\uFE0F]")

# Combining diacritical marks left behind by NFKD decomposition
_COMBINING_MARKS_RE = re.compile(r"[\u0300-\u036F]")

_GLYPH_NORMALIZERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[\u2018\u2019\u201A\u201B\u2032\uFF07]"), "'"),
    (re.compile(r"[\u201C\u201D\u2033\uFF02]"), '"'),
    (re.compile(r"[\u2013\u2014]"), "-"),
    (re.compile(r"\uFF0E"), "."),
    (re.compile(r"\uFF3F"), "_"),
)

_WHITESPACE_RE = re.compile(r"\s+")


def strip_zero_width(value: str) -> str:
    """Remove zero-width, bidi-control and variation-selector code points."""
    if not isinstance(value, str):
        return ""
    return _ZERO_WIDTH_RE.sub("", value)


def normalize_glyphs(value: str) -> str:
    """Map curly quotes, long dashes and fullwidth punctuation to ASCII."""
    if not isinstance(value, str):
        return ""
    for pattern, replacement in _GLYPH_NORMALIZERS:
        value = pattern.sub(replacement, value)
    return value


def strip_accents(value: str) -> str:
    """NFKD-decompose and drop combining marks (``café`` -> ``cafe``)."""
    if not isinstance(value, str):
        return ""
    return _COMBINING_MARKS_RE.sub("", unicodedata.normalize("NFKD", value))


def normalize_text_for_matching(value: str) -> str:
    """Decompose, strip combining marks and invisible code points.

    Case is preserved; callers lowercase when they need to.
    """
    if not value or not isinstance(value, str):
        return ""
    return strip_zero_width(strip_accents(value))


def collapse_whitespace(value: str) -> str:
    """Strip and collapse internal whitespace runs to one space."""
    if not isinstance(value, str):
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()


def comparison_key(value: str) -> str:
    """Case-folded, accent- and zero-width-free form for equality checks."""
    if not value or not isinstance(value, str):
        return ""
    return collapse_whitespace(normalize_text_for_matching(normalize_glyphs(value))).casefold()


def is_word_char(char: str) -> bool:
    """True for a single alphanumeric character in any script.

    Cased letters are detected by case mapping so scripts where ``str.isalnum``
    and regex ``\\b`` disagree still count as word characters.
    """
    if not char or len(char) != 1:
        return False
    if char.isalnum():
        return True
    return char.upper() != char.lower()
