# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Compiled-index cache.

Avoids recompiling keyword regexes and channel indexes unless the
underlying list actually changed. A cached value is reused only when the
stored signature equals a freshly computed one.

Two scopes:
- by list object: fast path while the caller keeps passing the same list
- by owner object (the settings object holding the list): covers a new list
  object with identical contents

The context is caller-owned; nothing here is global. Not thread-safe.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from tubesieve.channel_match import CompiledChannelIndex, compile_channel_index
from tubesieve.keywords import CompiledKeyword
from tubesieve.settings import compile_keyword_list, keyword_source

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 64

_CHANNEL_FIELDS = ("id", "handle", "canonical_handle", "handle_display", "custom_url", "name", "original_input")
_CAMEL = {
    "canonical_handle": "canonicalHandle",
    "handle_display": "handleDisplay",
    "custom_url": "customUrl",
    "original_input": "originalInput",
}


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


def _field(entry: Any, name: str) -> str:
    if isinstance(entry, Mapping):
        value = entry.get(name) or entry.get(_CAMEL.get(name, name))
    else:
        value = getattr(entry, name, None)
    return value.strip().lower() if isinstance(value, str) else ""


def channel_signature(entries: Sequence[Any]) -> str:
    """Order-independent signature of a channel filter list."""
    parts: list[str] = []
    for entry in entries:
        if isinstance(entry, str):
            if entry.strip():
                parts.append("s:" + entry.strip().lower())
        elif entry is not None:
            parts.append("|".join(_field(entry, name) for name in _CHANNEL_FIELDS))
    return "\n".join(sorted(parts))


def keyword_signature(entries: Sequence[Any]) -> str:
    """Signature of a keyword list; order is kept since it fixes match order."""
    parts: list[str] = []
    for entry in entries:
        source = keyword_source(entry)
        if source is None:
            continue
        comments = getattr(entry, "comments", None)
        if comments is None and isinstance(entry, Mapping):
            comments = entry.get("comments")
        parts.append(f"{source[0]}/{source[1]}/{int(comments is not False)}")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Stats and slots
# ---------------------------------------------------------------------------


@dataclass
class CacheStats:
    """Counters for cache observability."""

    hits: int = 0
    misses: int = 0
    compiles: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


def _map_size(channel_map: Mapping[str, str] | None) -> int:
    return len(channel_map) if channel_map is not None else 0


@dataclass(slots=True)
class _Slot:
    # Holding the keyed objects keeps their id() from being reused while cached
    anchor: Any
    signature: str
    value: Any
    channel_map: Mapping[str, str] | None = None
    map_size: int = 0

    def valid_for(self, anchor: Any, signature: str, channel_map: Mapping[str, str] | None) -> bool:
        return (
            self.anchor is anchor
            and self.signature == signature
            and self.channel_map is channel_map
            and self.map_size == _map_size(channel_map)
        )


def _slot(anchor: Any, signature: str, value: Any, channel_map: Mapping[str, str] | None) -> _Slot:
    return _Slot(anchor, signature, value, channel_map, _map_size(channel_map))


# ---------------------------------------------------------------------------
# CacheContext
# ---------------------------------------------------------------------------


class CacheContext:
    """Signature-validated LRU of compiled keyword lists and channel indexes."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self._max_entries = max_entries
        self._by_list: OrderedDict[tuple[str, int], _Slot] = OrderedDict()
        self._by_owner: OrderedDict[tuple[str, int], _Slot] = OrderedDict()
        self._stats = CacheStats()

    # -- Public API --

    def channel_index(
        self,
        entries: Sequence[Any],
        channel_map: Mapping[str, str] | None = None,
        owner: Any = None,
    ) -> CompiledChannelIndex:
        """Compiled index for ``entries``, reused while list and map are unchanged."""
        signature = channel_signature(entries)

        cached = self._lookup("channel", entries, owner, signature, channel_map)
        if cached is not None:
            return cached

        index = compile_channel_index(entries, channel_map, signature=signature)
        self._store("channel", entries, owner, signature, index, channel_map)
        return index

    def keyword_matchers(self, entries: Sequence[Any], owner: Any = None) -> tuple[CompiledKeyword, ...]:
        """Compiled keywords for ``entries``, reused while the list is unchanged."""
        signature = keyword_signature(entries)

        cached = self._lookup("keyword", entries, owner, signature, None)
        if cached is not None:
            return cached

        compiled = compile_keyword_list(entries)
        self._store("keyword", entries, owner, signature, compiled, None)
        return compiled

    def invalidate_all(self) -> None:
        """Drop every cached value."""
        count = len(self._by_list) + len(self._by_owner)
        self._by_list.clear()
        self._by_owner.clear()
        self._stats.invalidations += count
        logger.debug("Cache cleared: %d slots", count)

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def size(self) -> int:
        return len(self._by_list) + len(self._by_owner)

    # -- Internals --

    def _lookup(
        self,
        kind: str,
        entries: Any,
        owner: Any,
        signature: str,
        channel_map: Mapping[str, str] | None,
    ) -> Any | None:
        list_key = (kind, id(entries))
        slot = self._by_list.get(list_key)
        if slot is not None and slot.valid_for(entries, signature, channel_map):
            self._by_list.move_to_end(list_key)
            self._stats.hits += 1
            return slot.value

        if owner is not None:
            owner_key = (kind, id(owner))
            slot = self._by_owner.get(owner_key)
            if slot is not None and slot.valid_for(owner, signature, channel_map):
                self._by_owner.move_to_end(owner_key)
                self._put(self._by_list, list_key, _slot(entries, signature, slot.value, channel_map))
                self._stats.hits += 1
                return slot.value

        self._stats.misses += 1
        return None

    def _store(
        self,
        kind: str,
        entries: Any,
        owner: Any,
        signature: str,
        value: Any,
        channel_map: Mapping[str, str] | None,
    ) -> None:
        self._stats.compiles += 1
        self._put(self._by_list, (kind, id(entries)), _slot(entries, signature, value, channel_map))
        if owner is not None:
            self._put(self._by_owner, (kind, id(owner)), _slot(owner, signature, value, channel_map))
        logger.debug("Compiled %s cache entry (size=%d)", kind, self.size)

    def _put(self, scope: OrderedDict[tuple[str, int], _Slot], key: tuple[str, int], slot: _Slot) -> None:
        scope[key] = slot
        scope.move_to_end(key)
        while len(scope) > self._max_entries:
            evicted_key, _ = scope.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Cache slot evicted: %s", evicted_key)
