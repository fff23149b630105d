# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Channel match engine.

Decides whether an observed channel identity matches a channel filter entry.
Identifiers are compared in normalized form (see identity.py). The learned
``channel_map`` (lowercase key -> counterpart identifier) bridges the UC-id
space and the handle / custom URL space in both directions.

Two evaluation strategies share the same normalization:
- :func:`channel_matches_filter` walks a fixed ladder per entry
- :func:`compile_channel_index` + :func:`index_matches` fold a whole list
  into set lookups for hot paths (DOM fallback)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tubesieve import ChannelIdentity
from tubesieve.identity import (
    ChannelRefType,
    canonicalize_channel_input,
    extract_raw_handle,
    normalize_channel_name,
    normalize_custom_url,
    normalize_handle_for_comparison,
    normalize_uc_id,
)

logger = logging.getLogger(__name__)

ChannelMap = Mapping[str, str]


def lookup_channel_map(channel_map: ChannelMap | None, key: str) -> str:
    """Look up ``key`` (lowercased, then without ``@``) in the learned map."""
    if not channel_map or not key or not isinstance(key, str):
        return ""
    normalized = key.lower()
    value = channel_map.get(normalized) or channel_map.get(normalized.lstrip("@"))
    return value if isinstance(value, str) else ""


@dataclass(frozen=True, slots=True)
class _Keys:
    """Normalized comparison keys for one side of a match."""

    id: str = ""
    handles: tuple[str, ...] = ()
    custom_url: str = ""
    name: str = ""

    @property
    def empty(self) -> bool:
        return not (self.id or self.handles or self.custom_url or self.name)


def _handle_variants(*candidates: Any) -> tuple[str, ...]:
    seen: list[str] = []
    for candidate in candidates:
        if not isinstance(candidate, str) or not candidate:
            continue
        key = normalize_handle_for_comparison(candidate)
        if key and key not in seen:
            seen.append(key)
    return tuple(seen)


def _observed_keys(observed: ChannelIdentity | Mapping[str, Any]) -> _Keys:
    if isinstance(observed, Mapping):
        observed = identity_from_mapping(observed)
    return _Keys(
        id=normalize_uc_id(observed.id),
        handles=_handle_variants(observed.handle, observed.canonical_handle, observed.handle_display),
        custom_url=normalize_custom_url(observed.custom_url),
        name=normalize_channel_name(observed.name),
    )


def _attr(entry: Any, *names: str) -> Any:
    for name in names:
        value = entry.get(name) if isinstance(entry, Mapping) else getattr(entry, name, None)
        if value:
            return value
    return None


def _filter_keys(entry: Any) -> _Keys:
    """Keys for a filter entry: model, mapping or legacy string."""
    if isinstance(entry, str):
        return _legacy_keys(entry)
    if entry is None:
        return _Keys()
    return _Keys(
        id=normalize_uc_id(_attr(entry, "id") or ""),
        handles=_handle_variants(
            _attr(entry, "handle"),
            _attr(entry, "canonical_handle", "canonicalHandle"),
            _attr(entry, "handle_display", "handleDisplay"),
        ),
        custom_url=normalize_custom_url(_attr(entry, "custom_url", "customUrl") or ""),
        name=normalize_channel_name(_attr(entry, "name") or ""),
    )


def _legacy_keys(value: str) -> _Keys:
    canonical = canonicalize_channel_input(value)
    if canonical.type is ChannelRefType.UCID:
        return _Keys(id=normalize_uc_id(canonical.value))
    if canonical.type is ChannelRefType.HANDLE:
        return _Keys(handles=_handle_variants(extract_raw_handle(value) or canonical.value))
    if canonical.type is ChannelRefType.CUSTOM_URL:
        return _Keys(custom_url=canonical.value)
    return _Keys(name=normalize_channel_name(canonical.value))


def identity_from_mapping(data: Mapping[str, Any]) -> ChannelIdentity:
    """Build a :class:`ChannelIdentity` from camelCase or snake_case keys."""

    def text(*names: str) -> str:
        value = _attr(data, *names)
        return value.strip() if isinstance(value, str) else ""

    return ChannelIdentity(
        id=text("id"),
        handle=text("handle"),
        canonical_handle=text("canonical_handle", "canonicalHandle"),
        handle_display=text("handle_display", "handleDisplay"),
        custom_url=text("custom_url", "customUrl"),
        name=text("name"),
    )


def _without_at(handle: str) -> str:
    return handle[1:] if handle.startswith("@") else handle


def _match_keys(meta: _Keys, flt: _Keys, channel_map: ChannelMap | None) -> bool:
    if flt.empty:
        return False

    # Direct equality
    if flt.id and flt.id == meta.id:
        return True
    if set(flt.handles) & set(meta.handles):
        return True
    if flt.name and flt.name == meta.name:
        return True
    if flt.name and any(_without_at(h) == flt.name for h in meta.handles):
        return True
    if meta.name and any(_without_at(h) == meta.name for h in flt.handles):
        return True
    if flt.custom_url and flt.custom_url == meta.custom_url:
        return True

    if not channel_map:
        return False

    # Bridges through the learned map, both directions
    if flt.id and meta.handles:
        mapped = normalize_handle_for_comparison(lookup_channel_map(channel_map, flt.id))
        if mapped and mapped in meta.handles:
            return True
    if meta.id and flt.handles:
        mapped = normalize_handle_for_comparison(lookup_channel_map(channel_map, meta.id))
        if mapped and mapped in flt.handles:
            return True
    if meta.id:
        for handle in flt.handles:
            if normalize_uc_id(lookup_channel_map(channel_map, handle)) == meta.id:
                return True
        if flt.custom_url and normalize_uc_id(lookup_channel_map(channel_map, flt.custom_url)) == meta.id:
            return True
    if flt.id:
        for handle in meta.handles:
            if normalize_uc_id(lookup_channel_map(channel_map, handle)) == flt.id:
                return True
        if meta.custom_url and normalize_uc_id(lookup_channel_map(channel_map, meta.custom_url)) == flt.id:
            return True
    return False


def channel_matches_filter(
    observed: ChannelIdentity | Mapping[str, Any],
    entry: Any,
    channel_map: ChannelMap | None = None,
) -> bool:
    """True when ``observed`` is the channel named by ``entry``.

    ``entry`` may be a ``ChannelFilter`` model, a mapping with the same
    fields, or a legacy string (``@handle``, ``UC...``, ``c/Name``, plain
    name). An entry with no identifying field never matches.
    """
    return _match_keys(_observed_keys(observed), _filter_keys(entry), channel_map)


def is_channel_blocked(
    entries: Iterable[Any],
    observed: ChannelIdentity | Mapping[str, Any],
    channel_map: ChannelMap | None = None,
) -> Any | None:
    """First entry matching ``observed``, or None."""
    meta = _observed_keys(observed)
    if meta.empty:
        return None
    for entry in entries:
        if _match_keys(meta, _filter_keys(entry), channel_map):
            return entry
    return None


# ---------------------------------------------------------------------------
# Compiled index
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompiledChannelIndex:
    """Set representation of a channel filter list.

    ``unresolved_handle_keys`` lists handles (without ``@``) the learned map
    has no id for yet; an enrichment collaborator can resolve them.
    """

    ids: frozenset[str] = frozenset()
    handles: frozenset[str] = frozenset()
    custom_urls: frozenset[str] = frozenset()
    names: frozenset[str] = frozenset()
    unresolved_handle_keys: tuple[str, ...] = ()
    source_signature: str = ""

    def __len__(self) -> int:
        return len(self.ids) + len(self.handles) + len(self.custom_urls) + len(self.names)


@dataclass
class _IndexBuilder:
    channel_map: ChannelMap | None
    ids: set[str] = field(default_factory=set)
    handles: set[str] = field(default_factory=set)
    custom_urls: set[str] = field(default_factory=set)
    names: set[str] = field(default_factory=set)
    unresolved: list[str] = field(default_factory=list)

    def add_id(self, value: Any) -> None:
        key = normalize_uc_id(value) if isinstance(value, str) else ""
        if key:
            self.ids.add(key)

    def add_handle(self, value: Any) -> None:
        key = normalize_handle_for_comparison(value) if isinstance(value, str) else ""
        if not key:
            return
        self.handles.add(key)
        body = _without_at(key)
        name_key = normalize_channel_name(body)
        if name_key:
            self.names.add(name_key)
        mapped = lookup_channel_map(self.channel_map, key)
        mapped_id = normalize_uc_id(mapped)
        if mapped_id:
            self.ids.add(mapped_id)
        if body and not mapped and body not in self.unresolved:
            self.unresolved.append(body)

    def add_custom_url(self, value: Any) -> None:
        key = normalize_custom_url(value) if isinstance(value, str) else ""
        if not key:
            return
        self.custom_urls.add(key)
        mapped_id = normalize_uc_id(lookup_channel_map(self.channel_map, key))
        if mapped_id:
            self.ids.add(mapped_id)

    def add_name(self, value: Any) -> None:
        key = normalize_channel_name(value) if isinstance(value, str) else ""
        if key:
            self.names.add(key)


def compile_channel_index(
    entries: Iterable[Any],
    channel_map: ChannelMap | None = None,
    *,
    signature: str = "",
) -> CompiledChannelIndex:
    """Fold a channel filter list into normalized lookup sets.

    Mapped ids of listed handles / custom URLs and mapped handles of listed
    ids are folded in, so index lookups see the learned aliases.
    """
    builder = _IndexBuilder(channel_map)
    for entry in entries:
        if isinstance(entry, str):
            keys = _legacy_keys(entry)
            builder.add_id(keys.id)
            for handle in keys.handles:
                builder.add_handle(handle)
            builder.add_custom_url(keys.custom_url)
            builder.add_name(keys.name)
            continue
        if entry is None:
            continue

        original = _attr(entry, "original_input", "originalInput")
        builder.add_id(_attr(entry, "id"))
        builder.add_id(original)
        for name in ("handle", "canonical_handle", "canonicalHandle", "handle_display", "handleDisplay"):
            builder.add_handle(_attr(entry, name))
        if isinstance(original, str) and "@" in original:
            builder.add_handle(original)
        builder.add_custom_url(_attr(entry, "custom_url", "customUrl"))
        builder.add_custom_url(original)
        builder.add_name(_attr(entry, "name"))

        id_key = normalize_uc_id(_attr(entry, "id") or "")
        if id_key:
            mapped_handle = normalize_handle_for_comparison(lookup_channel_map(channel_map, id_key))
            if mapped_handle:
                builder.handles.add(mapped_handle)

    index = CompiledChannelIndex(
        ids=frozenset(builder.ids),
        handles=frozenset(builder.handles),
        custom_urls=frozenset(builder.custom_urls),
        names=frozenset(builder.names),
        unresolved_handle_keys=tuple(builder.unresolved),
        source_signature=signature,
    )
    logger.debug(
        "Compiled channel index: %d ids, %d handles, %d custom urls, %d names",
        len(index.ids),
        len(index.handles),
        len(index.custom_urls),
        len(index.names),
    )
    return index


def index_matches(
    observed: ChannelIdentity | Mapping[str, Any],
    index: CompiledChannelIndex | None,
    channel_map: ChannelMap | None = None,
) -> bool:
    """O(1) membership test of an observed identity against a compiled index."""
    if index is None:
        return False
    meta = _observed_keys(observed)
    if meta.id and meta.id in index.ids:
        return True
    if any(h in index.handles for h in meta.handles):
        return True
    if meta.custom_url and meta.custom_url in index.custom_urls:
        return True
    if meta.name and meta.name in index.names:
        return True
    if any(_without_at(h) in index.names for h in meta.handles):
        return True

    if not channel_map:
        return False
    if meta.id:
        mapped = normalize_handle_for_comparison(lookup_channel_map(channel_map, meta.id))
        if mapped and mapped in index.handles:
            return True
    for handle in meta.handles:
        mapped_id = normalize_uc_id(lookup_channel_map(channel_map, handle))
        if mapped_id and mapped_id in index.ids:
            return True
    if meta.custom_url:
        mapped_id = normalize_uc_id(lookup_channel_map(channel_map, meta.custom_url))
        if mapped_id and mapped_id in index.ids:
            return True
    return False
