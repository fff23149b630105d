# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Settings normalizer.

Turns a raw settings object (as stored by the browser extension, possibly
JSON-serialized) into a typed, immutable :class:`FilterState`.

Raw shape (camelCase, every key optional)::

    {
      "filterKeywords": ["word", {"pattern": "\\\\bcat\\\\b", "flags": "i"},
                         {"word": "cat", "exact": true, "comments": false}],
      "filterChannels": ["@handle", "UC...", {"id": "UC...", "name": "..."}],
      "whitelistKeywords": [...], "whitelistChannels": [...], "listMode": "blocklist",
      "hideAllShorts": false, "hideAllComments": false, "filterComments": false,
      "enabled": true, "useSemantic": false,
      "channelMap": {"uc...": "@handle", "@handle": "UC..."}
    }

Invalid entries are dropped with a warning; :func:`normalize_settings`
never raises.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from tubesieve.errors import PatternCompileError
from tubesieve.identity import ChannelRefType, canonicalize_channel_input, extract_raw_handle
from tubesieve.keywords import DEFAULT_FLAGS, CompiledKeyword, compile_pattern, keyword_to_pattern

if TYPE_CHECKING:
    from tubesieve.cache import CacheContext

logger = logging.getLogger(__name__)


class KeywordSource(StrEnum):
    USER = "user"
    CHANNEL = "channel"
    IMPORT = "import"


class ListMode(StrEnum):
    BLOCKLIST = "blocklist"
    WHITELIST = "whitelist"


# ---------------------------------------------------------------------------
# Entry models
# ---------------------------------------------------------------------------


class KeywordFilter(BaseModel):
    """A user keyword rule."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    word: str
    exact: bool = False
    semantic: bool = Field(False, description="Reserved; semantic matching is not implemented")
    source: KeywordSource = KeywordSource.USER
    channel_ref: str | None = Field(None, alias="channelRef")
    comments: bool = Field(True, description="Also applies to comment text")
    added_at: float | None = Field(None, alias="addedAt")

    @field_validator("word")
    @classmethod
    def _word_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("keyword word is empty")
        return value

    @field_validator("source", mode="before")
    @classmethod
    def _coerce_source(cls, value: Any) -> Any:
        if isinstance(value, str) and value in KeywordSource.__members__.values():
            return value
        return KeywordSource.USER

    @field_validator("exact", "semantic", "comments", mode="before")
    @classmethod
    def _none_is_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return info.field_name == "comments"
        return value

    @property
    def unique_key(self) -> tuple[str, bool]:
        """Per-list uniqueness key: lowercase word + exact flag."""
        return self.word.lower(), self.exact

    @property
    def pattern(self) -> str:
        return keyword_to_pattern(self.word, self.exact)


class ChannelFilter(BaseModel):
    """A channel rule. Any identifying field may be empty until enriched."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = ""
    handle: str = ""
    canonical_handle: str = Field("", alias="canonicalHandle")
    handle_display: str = Field("", alias="handleDisplay")
    custom_url: str = Field("", alias="customUrl")
    name: str = ""
    filter_all: bool = Field(False, alias="filterAll")
    filter_all_comments: bool = Field(True, alias="filterAllComments")
    source: str = ""
    original_input: str = Field("", alias="originalInput")
    collaboration_group_id: str | None = Field(None, alias="collaborationGroupId")
    all_collaborators: tuple[dict[str, Any], ...] = Field((), alias="allCollaborators")
    added_at: float | None = Field(None, alias="addedAt")

    @field_validator(
        "id", "handle", "canonical_handle", "handle_display", "custom_url", "name", "source", "original_input",
        mode="before",
    )
    @classmethod
    def _clean_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("filter_all", "filter_all_comments", mode="before")
    @classmethod
    def _none_flag(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return info.field_name == "filter_all_comments"
        return value

    @field_validator("all_collaborators", mode="before")
    @classmethod
    def _only_mappings(cls, value: Any) -> Any:
        if not isinstance(value, list | tuple):
            return ()
        return tuple(v for v in value if isinstance(v, dict) and (v.get("id") or v.get("handle") or v.get("name")))

    @property
    def has_identity(self) -> bool:
        return bool(
            self.id or self.handle or self.canonical_handle or self.handle_display or self.custom_url or self.name
        )

    @property
    def derived_key(self) -> str:
        """Key used as ``channel_ref`` of keywords derived from this channel."""
        return (self.id or self.handle or self.original_input or self.name).lower()

    @property
    def keyword_word(self) -> str:
        """Word used for the ``filter_all`` derived keyword."""
        if self.name and self.name != self.id:
            return self.name
        return self.handle or self.id or self.original_input


# ---------------------------------------------------------------------------
# Filter state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FilterState:
    """Normalized, immutable filter state for one settings snapshot."""

    keywords: tuple[CompiledKeyword, ...] = ()
    comment_keywords: tuple[CompiledKeyword, ...] = ()
    channels: tuple[ChannelFilter, ...] = ()
    whitelist_keywords: tuple[CompiledKeyword, ...] = ()
    whitelist_channels: tuple[ChannelFilter, ...] = ()
    list_mode: ListMode = ListMode.BLOCKLIST
    hide_all_shorts: bool = False
    hide_all_comments: bool = False
    filter_comments: bool = False
    use_semantic: bool = False
    enabled: bool = True
    channel_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    keyword_entries: tuple[KeywordFilter, ...] = ()

    @property
    def is_whitelist(self) -> bool:
        return self.list_mode is ListMode.WHITELIST

    @property
    def has_rules(self) -> bool:
        return bool(self.keywords or self.channels or self.hide_all_shorts or self.hide_all_comments)


# ---------------------------------------------------------------------------
# Entry sanitizers
# ---------------------------------------------------------------------------


def _describe(entry: Any) -> str:
    text = repr(entry)
    return text if len(text) <= 80 else text[:77] + "..."


def sanitize_keyword_entry(entry: Any) -> KeywordFilter | None:
    """Validate one ``{word, exact, ...}`` entry (or a bare word string)."""
    if isinstance(entry, KeywordFilter):
        return entry
    if isinstance(entry, str):
        entry = {"word": entry}
    if not isinstance(entry, Mapping):
        logger.warning("Dropping keyword entry of type %s", type(entry).__name__)
        return None
    try:
        return KeywordFilter.model_validate(dict(entry))
    except ValidationError as e:
        logger.warning("Dropping invalid keyword entry %s: %d error(s)", _describe(entry), e.error_count())
        return None


def _fields_from_reference(value: str) -> dict[str, str]:
    canonical = canonicalize_channel_input(value)
    if canonical.type is ChannelRefType.UCID:
        return {"id": canonical.value}
    if canonical.type is ChannelRefType.HANDLE:
        display = extract_raw_handle(value) or canonical.value
        return {"handle": display, "canonicalHandle": canonical.value, "handleDisplay": display}
    if canonical.type is ChannelRefType.CUSTOM_URL:
        return {"customUrl": canonical.value}
    return {"name": canonical.value}


def sanitize_channel_entry(entry: Any) -> ChannelFilter | None:
    """Validate one channel entry; strings are parsed as channel references."""
    if isinstance(entry, ChannelFilter):
        return entry if entry.has_identity else None
    if isinstance(entry, str):
        value = entry.strip()
        if not value:
            return None
        data: dict[str, Any] = {"originalInput": value, **_fields_from_reference(value)}
    elif isinstance(entry, Mapping):
        data = dict(entry)
    else:
        logger.warning("Dropping channel entry of type %s", type(entry).__name__)
        return None

    try:
        channel = ChannelFilter.model_validate(data)
    except ValidationError as e:
        logger.warning("Dropping invalid channel entry %s: %d error(s)", _describe(entry), e.error_count())
        return None

    if not channel.has_identity and channel.original_input:
        recovered = _fields_from_reference(channel.original_input)
        channel = channel.model_copy(update={_SNAKE[k]: v for k, v in recovered.items()})
    if not channel.has_identity:
        logger.warning("Dropping channel entry without identifying fields: %s", _describe(entry))
        return None
    return channel


_SNAKE = {
    "id": "id",
    "handle": "handle",
    "canonicalHandle": "canonical_handle",
    "handleDisplay": "handle_display",
    "customUrl": "custom_url",
    "name": "name",
}


def sanitize_channels(entries: Any) -> tuple[ChannelFilter, ...]:
    if not isinstance(entries, list | tuple):
        return ()
    channels = (sanitize_channel_entry(entry) for entry in entries)
    return tuple(c for c in channels if c is not None)


def sync_filter_all_keywords(
    keywords: Iterable[KeywordFilter],
    channels: Iterable[ChannelFilter],
) -> tuple[KeywordFilter, ...]:
    """Reconcile channel-derived keywords with the channels' ``filter_all`` flags.

    User keywords are kept as-is. A derived keyword survives only while its
    owning channel still has ``filter_all``; channels without one get a new
    derived keyword appended.
    """
    derived: dict[str, KeywordFilter] = {}
    for channel in channels:
        if not channel.filter_all:
            continue
        key = channel.derived_key
        word = channel.keyword_word
        if not key or not word or key in derived:
            continue
        derived[key] = KeywordFilter(
            word=word,
            source=KeywordSource.CHANNEL,
            channel_ref=key,
            comments=channel.filter_all_comments,
            added_at=channel.added_at,
        )

    result: list[KeywordFilter] = []
    for keyword in keywords:
        if keyword.source is not KeywordSource.CHANNEL:
            result.append(keyword)
        elif keyword.channel_ref and keyword.channel_ref in derived:
            result.append(keyword)
            del derived[keyword.channel_ref]
    result.extend(derived.values())
    return tuple(result)


# ---------------------------------------------------------------------------
# Keyword compilation
# ---------------------------------------------------------------------------


def _is_pattern_entry(entry: Any) -> bool:
    return isinstance(entry, Mapping) and "pattern" in entry and "word" not in entry


def keyword_source(entry: Any) -> tuple[str, str] | None:
    """Regex ``(source, flags)`` an entry compiles to, or None if unusable."""
    if _is_pattern_entry(entry):
        pattern, flags = entry.get("pattern"), entry.get("flags")
        if not isinstance(pattern, str) or not pattern:
            return None
        return pattern, flags if isinstance(flags, str) else DEFAULT_FLAGS
    if isinstance(entry, CompiledKeyword):
        return entry.source, entry.flags
    if isinstance(entry, KeywordFilter):
        return entry.pattern, DEFAULT_FLAGS
    if isinstance(entry, str):
        return (keyword_to_pattern(entry), DEFAULT_FLAGS) if entry.strip() else None
    if isinstance(entry, Mapping) and isinstance(entry.get("word"), str) and entry["word"].strip():
        return keyword_to_pattern(entry["word"], bool(entry.get("exact"))), DEFAULT_FLAGS
    return None


def compile_keyword_entry(entry: Any) -> CompiledKeyword | None:
    """Compile one keyword entry in any accepted form; None (logged) if invalid."""
    if isinstance(entry, CompiledKeyword):
        return entry
    if _is_pattern_entry(entry):
        comments = entry.get("comments", True) is not False
        try:
            return compile_pattern(entry.get("pattern"), entry.get("flags", DEFAULT_FLAGS), comments=comments)
        except PatternCompileError as e:
            logger.warning("Dropping keyword pattern %r (flags %r): %s", e.pattern, e.flags, e)
            return None

    keyword = sanitize_keyword_entry(entry)
    if keyword is None:
        return None
    try:
        return compile_pattern(
            keyword.pattern, DEFAULT_FLAGS, comments=keyword.comments, channel_ref=keyword.channel_ref
        )
    except PatternCompileError as e:
        logger.warning("Dropping keyword %r: %s", keyword.word, e)
        return None


def compile_keyword_list(entries: Iterable[Any]) -> tuple[CompiledKeyword, ...]:
    """Compile a keyword list, dropping invalid entries."""
    compiled = (compile_keyword_entry(entry) for entry in entries)
    return tuple(k for k in compiled if k is not None)


# ---------------------------------------------------------------------------
# Top-level normalization
# ---------------------------------------------------------------------------


def _decode(raw: Any) -> Mapping[str, Any] | None:
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Settings are not valid JSON: %s", e)
            return None
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("Settings must be an object, got %s", type(raw).__name__)
        return None
    return raw


def _normalize_channel_map(raw: Any) -> Mapping[str, str]:
    if not isinstance(raw, Mapping):
        return MappingProxyType({})
    cleaned = {
        key.strip().lower(): value.strip()
        for key, value in raw.items()
        if isinstance(key, str) and key.strip() and isinstance(value, str) and value.strip()
    }
    return MappingProxyType(cleaned)


def _list(raw: Mapping[str, Any], key: str) -> list[Any]:
    value = raw.get(key)
    return list(value) if isinstance(value, list | tuple) else []


def _split_keyword_inputs(entries: list[Any]) -> tuple[list[Any], list[KeywordFilter]]:
    """Separate persisted patterns from word entries (validated for filter-all sync)."""
    patterns: list[Any] = []
    words: list[KeywordFilter] = []
    for entry in entries:
        if _is_pattern_entry(entry) or isinstance(entry, CompiledKeyword):
            patterns.append(entry)
            continue
        keyword = sanitize_keyword_entry(entry)
        if keyword is not None:
            words.append(keyword)
    return patterns, words


def _compile(entries: list[Any], cache: CacheContext | None, owner: Any) -> tuple[CompiledKeyword, ...]:
    if cache is not None:
        return cache.keyword_matchers(entries, owner=owner)
    return compile_keyword_list(entries)


def normalize_settings(raw: Any, *, cache: CacheContext | None = None) -> FilterState:
    """Build a :class:`FilterState` from raw settings. Never raises.

    ``raw`` may be a mapping, a JSON string, or an existing FilterState
    (returned unchanged). With a ``cache``, keyword lists are compiled once
    per distinct content.
    """
    if isinstance(raw, FilterState):
        return raw
    settings = _decode(raw)
    if settings is None:
        return FilterState()

    channels = sanitize_channels(settings.get("filterChannels"))
    patterns, words = _split_keyword_inputs(_list(settings, "filterKeywords"))
    keyword_entries = sync_filter_all_keywords(words, channels)
    keywords = _compile([*patterns, *keyword_entries], cache, owner=settings)

    if "filterKeywordsComments" in settings:
        comment_keywords = _compile(_list(settings, "filterKeywordsComments"), cache, owner=None)
    else:
        comment_keywords = tuple(k for k in keywords if k.comments)

    hide_all_comments = bool(settings.get("hideAllComments"))
    try:
        list_mode = ListMode(str(settings.get("listMode") or ListMode.BLOCKLIST).lower())
    except ValueError:
        logger.warning("Unknown listMode %r, using blocklist", settings.get("listMode"))
        list_mode = ListMode.BLOCKLIST

    state = FilterState(
        keywords=keywords,
        comment_keywords=comment_keywords,
        channels=channels,
        whitelist_keywords=compile_keyword_list(_list(settings, "whitelistKeywords")),
        whitelist_channels=sanitize_channels(settings.get("whitelistChannels")),
        list_mode=list_mode,
        hide_all_shorts=bool(settings.get("hideAllShorts")),
        hide_all_comments=hide_all_comments,
        filter_comments=False if hide_all_comments else bool(settings.get("filterComments")),
        use_semantic=bool(settings.get("useSemantic")),
        enabled=settings.get("enabled") is not False,
        channel_map=_normalize_channel_map(settings.get("channelMap")),
        keyword_entries=keyword_entries,
    )
    logger.debug(
        "Normalized settings: %d keywords, %d comment keywords, %d channels, mode=%s",
        len(state.keywords),
        len(state.comment_keywords),
        len(state.channels),
        state.list_mode,
    )
    return state
