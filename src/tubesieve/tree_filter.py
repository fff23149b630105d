# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Recursive tree filter.

Walks an arbitrary JSON value depth-first and returns a new tree with every
blocked renderer object removed. The input is never mutated.

Per node:
- scalar: returned as-is
- list: elements filtered, pruned elements dropped
- dict: each key naming a registered shape is judged first. A block removes
  the whole dict (the wrapper holding the shape key), not just that key.
  Otherwise every value is filtered and pruned properties are dropped.

Block precedence (first hit wins):
1. shorts shape while shorts are hidden
2. channel rules against the byline channel (any collaborator)
3. keyword rules against ``title + " " + description``
4. comment shapes: hide-all, else comment keyword rules
"""

from __future__ import annotations

import copy
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from tubesieve import ExtractedFields
from tubesieve.channel_match import is_channel_blocked
from tubesieve.extract import extract_fields
from tubesieve.keywords import text_matches_any
from tubesieve.registry import RuleEntry, RuleRegistry, ShapeKind, is_shape_key, load_registry
from tubesieve.settings import FilterState, normalize_settings

if TYPE_CHECKING:
    from tubesieve.cache import CacheContext

logger = logging.getLogger(__name__)


class _Pruned:
    """Marker for a removed value. JSON ``null`` is a legitimate value, so None can't be used."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<pruned>"


_PRUNED = _Pruned()


class BlockReason(StrEnum):
    """Why a renderer object was removed."""

    SHORTS = "shorts"
    CHANNEL = "channel"
    KEYWORD = "keyword"
    COMMENTS_HIDDEN = "comments_hidden"
    COMMENT_KEYWORD = "comment_keyword"
    COMMENT_CHANNEL = "comment_channel"


@dataclass
class FilterStats:
    """Counters for one filter pass."""

    visited_nodes: int = 0
    removed_nodes: int = 0
    removal_reasons: Counter[str] = field(default_factory=Counter)
    unknown_shapes: Counter[str] = field(default_factory=Counter)

    def record(self, reason: BlockReason) -> None:
        self.removed_nodes += 1
        self.removal_reasons[reason] += 1


@dataclass(frozen=True)
class FilterResult:
    """Output of a filter pass.

    ``data`` is None only when the root object itself was removed.
    """

    data: Any
    removed: int
    stats: FilterStats = field(default_factory=FilterStats)


class TreeFilter:
    """Applies one :class:`FilterState` to payload trees.

    Stateless between passes; one instance can filter any number of
    snapshots.
    """

    def __init__(self, state: FilterState, registry: RuleRegistry | None = None) -> None:
        self._state = state
        self._registry = registry or load_registry()

    @property
    def state(self) -> FilterState:
        return self._state

    # -- Judgement --

    def should_block(self, item: Any, tag: str) -> BlockReason | None:
        """Decide whether the renderer object ``item`` under ``tag`` is blocked."""
        if not isinstance(item, dict):
            return None
        entry = self._registry.lookup(tag)
        if entry is None:
            return None
        return self._judge(entry, extract_fields(item, entry, self._registry.fallbacks))

    def _judge(self, entry: RuleEntry, fields: ExtractedFields) -> BlockReason | None:
        state = self._state

        if state.hide_all_shorts and entry.kind is ShapeKind.SHORTS:
            return BlockReason.SHORTS

        if state.channels:
            for channel in fields.channels:
                if channel.is_empty:
                    continue
                if is_channel_blocked(state.channels, channel, state.channel_map) is not None:
                    return BlockReason.COMMENT_CHANNEL if entry.kind.is_comment else BlockReason.CHANNEL

        if not entry.skip_keywords and state.keywords and (fields.title or fields.description):
            text = f"{fields.title} {fields.description}".strip()
            if text_matches_any(state.keywords, text) is not None:
                return BlockReason.KEYWORD

        if entry.kind.is_comment:
            if state.hide_all_comments:
                return BlockReason.COMMENTS_HIDDEN
            if state.filter_comments and fields.comment_text:
                if text_matches_any(state.comment_keywords, fields.comment_text) is not None:
                    return BlockReason.COMMENT_KEYWORD
        return None

    # -- Walk --

    def filter(self, snapshot: Any) -> FilterResult:
        """Return a filtered copy of ``snapshot``."""
        stats = FilterStats()
        if not self._state.enabled:
            return FilterResult(data=copy.deepcopy(snapshot), removed=0, stats=stats)

        filtered = self._walk(snapshot, stats)
        data = None if filtered is _PRUNED else filtered
        if stats.removed_nodes:
            logger.debug(
                "Filter pass removed %d of %d nodes: %s",
                stats.removed_nodes,
                stats.visited_nodes,
                dict(stats.removal_reasons),
            )
        return FilterResult(data=data, removed=stats.removed_nodes, stats=stats)

    def _walk(self, node: Any, stats: FilterStats) -> Any:
        if isinstance(node, list):
            stats.visited_nodes += 1
            kept = []
            for element in node:
                value = self._walk(element, stats)
                if value is not _PRUNED:
                    kept.append(value)
            return kept

        if not isinstance(node, dict):
            return node

        stats.visited_nodes += 1
        for key, value in node.items():
            if not is_shape_key(key):
                continue
            entry = self._registry.lookup(key)
            if entry is None:
                stats.unknown_shapes[key] += 1
                continue
            if not isinstance(value, dict):
                continue
            reason = self._judge(entry, extract_fields(value, entry, self._registry.fallbacks))
            if reason is not None:
                stats.record(reason)
                logger.debug("Removed %s (%s)", key, reason)
                return _PRUNED

        rebuilt = {}
        for key, value in node.items():
            filtered = self._walk(value, stats)
            if filtered is not _PRUNED:
                rebuilt[key] = filtered
        return rebuilt


def filter_snapshot(
    snapshot: Any,
    settings: Any,
    cache: CacheContext | None = None,
) -> FilterResult:
    """Normalize ``settings`` (raw or a FilterState) and filter ``snapshot``."""
    state = normalize_settings(settings, cache=cache)
    return TreeFilter(state).filter(snapshot)
