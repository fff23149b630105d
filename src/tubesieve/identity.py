# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Channel identity canonicalization.

A channel can be referenced four incompatible ways: an opaque UC-id, an
``@handle``, a legacy custom URL (``c/Name`` / ``user/Name``) or a display
name. These pure functions turn arbitrary input (raw strings, URLs, HTML
fragments, percent-encoded paths) into comparable keys.

The UC-id is the canonical identity; a handle is an alias. Nothing here
raises: malformed input yields ``""`` / ``None`` / ``False``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import unquote, urlsplit

from tubesieve.normalize import (
    comparison_key,
    normalize_glyphs,
    strip_accents,
    strip_zero_width,
)

UC_ID_RE = re.compile(r"UC[0-9A-Za-z_-]{22}", re.IGNORECASE)
_UC_PATH_RE = re.compile(r"(?:^|/)(?:channel/)?(UC[0-9A-Za-z_-]{22})", re.IGNORECASE)
_PERCENT_ESCAPE_RE = re.compile(r"%[0-9A-Fa-f]{2}")

# Characters that end a handle embedded in a URL, text or markup. Apostrophes
# belong to the handle (``@rock'n``); a trailing one is a closing quote.
_HANDLE_TERMINATORS = frozenset("/?#\"<>&•·")

_HOSTLIKE_RE = re.compile(r"^(?:www\.|m\.)|(?:youtube\.com|youtu\.be)/", re.IGNORECASE)


class ChannelRefType(StrEnum):
    """Kind of channel reference recovered from free-form input."""

    UCID = "ucid"
    HANDLE = "handle"
    CUSTOM_URL = "custom_url"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class CanonicalChannel:
    """Typed result of :func:`canonicalize_channel_input`."""

    type: ChannelRefType
    value: str


def _decode_percent(value: str) -> str:
    if "%" not in value:
        return value
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def _scan_handle(value: str, terminators: frozenset[str]) -> str:
    """Copy the characters after the first ``@`` until a terminator."""
    at = value.find("@")
    if at == -1:
        return ""
    working = value[at + 1 :]
    buffer: list[str] = []
    i = 0
    while i < len(working):
        char = working[i]
        # Keep percent escapes intact so encoded terminators survive the scan
        if char == "%" and _PERCENT_ESCAPE_RE.match(working, i):
            buffer.append(working[i : i + 3])
            i += 3
            continue
        if char in terminators or char.isspace():
            break
        buffer.append(char)
        i += 1
    return "".join(buffer)


def extract_raw_handle(value: str) -> str | None:
    """Extract a display handle (original casing) from any string containing ``@``.

    Returns e.g. ``"@SomeHandle"`` or None when no handle is present.
    """
    if not value or not isinstance(value, str):
        return None
    working = value.strip()
    if not working:
        return None

    buffer = _scan_handle(working, _HANDLE_TERMINATORS)
    if not buffer:
        return None

    buffer = _decode_percent(buffer)
    buffer = strip_zero_width(buffer)
    buffer = normalize_glyphs(buffer).strip().rstrip("'")
    if not buffer:
        return None
    return f"@{buffer}"


def is_uc_id(value: str) -> bool:
    """True if ``value`` contains a syntactically valid UC channel id."""
    if not value or not isinstance(value, str):
        return False
    return UC_ID_RE.search(value.strip()) is not None


def normalize_uc_id(value: str) -> str:
    """Return the lowercase UC-id found anywhere in ``value``, or ``""``."""
    if not value or not isinstance(value, str):
        return ""
    match = UC_ID_RE.search(value.strip())
    return match.group(0).lower() if match else ""


def normalize_handle_value(value: str) -> str:
    """Canonical storage form of a handle: lowercase ``@handle``.

    Accepts bare handles, ``@`` prefixed strings and URLs containing ``/@x``.
    A UC-id is never accepted as a handle.
    """
    if not value or not isinstance(value, str):
        return ""
    normalized = value.strip()
    if not normalized:
        return ""

    raw = extract_raw_handle(normalized)
    if raw:
        normalized = raw

    normalized = normalized.lstrip("@").split("/")[0]
    normalized = re.sub(r"\s+", "", normalized)
    if not normalized:
        return ""
    if UC_ID_RE.fullmatch(normalized):
        return ""
    return f"@{normalized.lower()}"


def normalize_handle_for_comparison(value: str) -> str:
    """Comparison key for handles: ``""`` or ``"@lowercasehandle"``.

    Case-folded, accent- and zero-width-free, with curly quotes and long
    dashes mapped to ASCII so visually identical handles compare equal.
    """
    if not value or not isinstance(value, str):
        return ""
    working = normalize_glyphs(strip_zero_width(value.strip()))
    if not working:
        return ""

    if "@" in working:
        body = _decode_percent(_scan_handle(working, _HANDLE_TERMINATORS)).split("/")[0]
    else:
        body = _decode_percent(working).split("/")[0]

    body = normalize_glyphs(strip_zero_width(body))
    body = re.sub(r"\s+", "", body).lstrip("@").rstrip("'")
    if not body:
        return ""
    if UC_ID_RE.fullmatch(body):
        return ""
    return f"@{strip_accents(body).casefold()}"


def normalize_custom_url(value: str) -> str:
    """Return ``"c/name"`` / ``"user/name"`` (lowercase) or ``""``.

    Strips protocol, host, query and fragment, and percent-decodes.
    """
    if not value or not isinstance(value, str):
        return ""
    cleaned = value.strip()
    if not cleaned:
        return ""
    cleaned = _decode_percent(cleaned)
    cleaned = re.split(r"[?#]", cleaned, maxsplit=1)[0]
    cleaned = re.sub(r"^[a-z][a-z0-9+.-]*://[^/]*", "", cleaned, flags=re.IGNORECASE)
    cleaned = cleaned.strip("/")
    cleaned = strip_accents(strip_zero_width(cleaned)).lower()
    if not cleaned:
        return ""

    for prefix in ("c/", "user/"):
        if cleaned.startswith(prefix):
            slug = cleaned[len(prefix) :].split("/")[0]
            return f"{prefix}{slug}" if slug else ""
    for prefix in ("c/", "user/"):
        marker = f"/{prefix}"
        if marker in cleaned:
            slug = cleaned.split(marker, 1)[1].split("/")[0]
            if slug:
                return f"{prefix}{slug}"
    return ""


def normalize_channel_name(value: str) -> str:
    """Comparison key for display names."""
    return comparison_key(value)


def split_canonical_base_url(value: str) -> tuple[str, str]:
    """Split a ``canonicalBaseUrl`` like ``/@x`` or ``/c/x`` into (handle, custom_url)."""
    if not value or not isinstance(value, str):
        return "", ""
    path = value.strip()
    if path.startswith(("http://", "https://")):
        try:
            path = urlsplit(path).path
        except ValueError:
            return "", ""
    if path.startswith("/@"):
        return extract_raw_handle(path) or "", ""
    return "", _custom_url_with_case(path)


def _custom_url_with_case(path: str) -> str:
    parts = [p for p in re.split(r"[?#]", path, maxsplit=1)[0].split("/") if p]
    if len(parts) >= 2 and parts[0].lower() in ("c", "user"):
        return f"{parts[0].lower()}/{_decode_percent(parts[1])}"
    return ""


def canonicalize_channel_input(raw: str) -> CanonicalChannel:
    """Convert user input (URL, @handle, UC-id, channel/UC..., c/Name) to a typed form.

    Order: URL path extraction, UC-id, handle, custom URL. Anything else is
    returned as ``unknown`` with the cleaned input so callers can treat it as
    a display name.
    """
    if not isinstance(raw, str):
        return CanonicalChannel(ChannelRefType.UNKNOWN, "")
    cleaned = raw.strip()
    if not cleaned:
        return CanonicalChannel(ChannelRefType.UNKNOWN, "")
    cleaned = _decode_percent(cleaned)

    path_candidate = cleaned
    if cleaned.lower().startswith(("http://", "https://")):
        try:
            path_candidate = urlsplit(cleaned).path or cleaned
        except ValueError:
            path_candidate = cleaned
    elif _HOSTLIKE_RE.search(cleaned):
        try:
            path_candidate = urlsplit(f"https://{cleaned}").path or cleaned
        except ValueError:
            path_candidate = cleaned

    uc_match = _UC_PATH_RE.search(path_candidate) or _UC_PATH_RE.search(cleaned)
    if uc_match:
        return CanonicalChannel(ChannelRefType.UCID, uc_match.group(1))

    raw_handle = extract_raw_handle(path_candidate) or extract_raw_handle(cleaned)
    if raw_handle:
        handle = normalize_handle_value(raw_handle)
        if handle:
            return CanonicalChannel(ChannelRefType.HANDLE, handle)

    custom = normalize_custom_url(path_candidate)
    if custom:
        return CanonicalChannel(ChannelRefType.CUSTOM_URL, custom)

    return CanonicalChannel(ChannelRefType.UNKNOWN, cleaned)
