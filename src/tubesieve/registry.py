# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Renderer rule registry.

Maps a shape tag (``videoRenderer``, ``shortsLockupViewModel``, ...) to the
field paths used to read title / channel / description / comment text from
that node. The table lives in ``data/renderer_rules.yaml`` and is loaded once.

Shape detection is closed: a key is a shape only if it follows the
``...Renderer`` / ``...ViewModel`` naming convention *and* is in the table.
Anything else classifies as ``ShapeKind.UNKNOWN`` and is always pass-through.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from importlib import resources
from typing import Any

import yaml

from tubesieve.errors import RuleRegistryError

logger = logging.getLogger(__name__)

_RULES_RESOURCE = "renderer_rules.yaml"
SHAPE_SUFFIXES = ("Renderer", "ViewModel", "ViewModelV2")

_PATH_FIELDS = (
    "video_id",
    "title",
    "channel_name",
    "channel_id",
    "channel_handle",
    "description",
    "metadata_rows",
    "comment_text",
)
_FALLBACK_FIELDS = ("title", "description", "channel_name", "channel_id", "channel_url")


class ShapeKind(StrEnum):
    """Closed set of node shapes the filter knows how to judge."""

    VIDEO = "video"
    CHANNEL = "channel"
    SHORTS = "shorts"
    COMMENT = "comment"
    COMMENT_THREAD = "comment_thread"
    POST = "post"
    PLAYLIST = "playlist"
    SHELF = "shelf"
    CONTAINER = "container"
    UNKNOWN = "unknown"

    @property
    def is_comment(self) -> bool:
        return self in (ShapeKind.COMMENT, ShapeKind.COMMENT_THREAD)


Paths = tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RuleEntry:
    """Field-extraction paths for one shape tag. Immutable."""

    shape_tag: str
    kind: ShapeKind
    video_id: Paths = ()
    title: Paths = ()
    channel_name: Paths = ()
    channel_id: Paths = ()
    channel_handle: Paths = ()
    description: Paths = ()
    metadata_rows: Paths = ()
    comment_text: Paths = ()
    skip_keywords: bool = False

    @property
    def has_paths(self) -> bool:
        return any(getattr(self, name) for name in _PATH_FIELDS)


@dataclass(frozen=True, slots=True)
class FallbackPaths:
    """Universal paths tried after the shape-specific ones fail."""

    title: Paths = ()
    description: Paths = ()
    channel_name: Paths = ()
    channel_id: Paths = ()
    channel_url: Paths = ()


@dataclass(frozen=True)
class RuleRegistry:
    """Loaded rule table. Lookups never raise."""

    entries: dict[str, RuleEntry]
    fallbacks: FallbackPaths = field(default_factory=FallbackPaths)

    def lookup(self, tag: str) -> RuleEntry | None:
        return self.entries.get(tag)

    def classify(self, tag: str) -> ShapeKind:
        entry = self.entries.get(tag)
        return entry.kind if entry is not None else ShapeKind.UNKNOWN

    def __contains__(self, tag: object) -> bool:
        return tag in self.entries

    def __len__(self) -> int:
        return len(self.entries)


def is_shape_key(key: str) -> bool:
    """True when ``key`` follows the renderer / view-model naming convention."""
    return isinstance(key, str) and key.endswith(SHAPE_SUFFIXES)


def _as_paths(tag: str, name: str, value: Any) -> Paths:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(p, str) and p for p in value):
        raise RuleRegistryError(f"{tag}.{name}: expected a list of non-empty path strings")
    return tuple(value)


def _parse_entry(tag: str, raw: Any) -> RuleEntry:
    if not isinstance(raw, dict):
        raise RuleRegistryError(f"{tag}: rule must be a mapping")
    unknown = set(raw) - {*_PATH_FIELDS, "kind", "skip_keywords"}
    if unknown:
        raise RuleRegistryError(f"{tag}: unknown rule fields {sorted(unknown)}")
    try:
        kind = ShapeKind(raw.get("kind", ShapeKind.CONTAINER))
    except ValueError as e:
        raise RuleRegistryError(f"{tag}: invalid kind {raw.get('kind')!r}") from e
    if kind is ShapeKind.UNKNOWN:
        raise RuleRegistryError(f"{tag}: 'unknown' is reserved for unmapped tags")
    paths = {name: _as_paths(tag, name, raw.get(name)) for name in _PATH_FIELDS}
    return RuleEntry(shape_tag=tag, kind=kind, skip_keywords=bool(raw.get("skip_keywords", False)), **paths)


def parse_registry(document: Any) -> RuleRegistry:
    """Build a registry from a decoded YAML document."""
    if not isinstance(document, dict) or not isinstance(document.get("renderers"), dict):
        raise RuleRegistryError("rule table must contain a 'renderers' mapping")

    entries: dict[str, RuleEntry] = {}
    for tag, raw in document["renderers"].items():
        if not is_shape_key(tag):
            raise RuleRegistryError(f"{tag}: shape tags must end with one of {SHAPE_SUFFIXES}")
        entries[tag] = _parse_entry(tag, raw)

    raw_fallbacks = document.get("fallbacks") or {}
    if not isinstance(raw_fallbacks, dict):
        raise RuleRegistryError("'fallbacks' must be a mapping")
    fallbacks = FallbackPaths(
        **{name: _as_paths("fallbacks", name, raw_fallbacks.get(name)) for name in _FALLBACK_FIELDS}
    )
    return RuleRegistry(entries=entries, fallbacks=fallbacks)


@lru_cache(maxsize=1)
def load_registry() -> RuleRegistry:
    """Load the packaged rule table (cached for the process lifetime)."""
    text = resources.files("tubesieve").joinpath("data", _RULES_RESOURCE).read_text(encoding="utf-8")
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RuleRegistryError(f"{_RULES_RESOURCE}: {e}") from e
    registry = parse_registry(document)
    logger.debug("Loaded %d renderer rules", len(registry))
    return registry
