# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Path extraction over heterogeneous payload trees.

Payload text comes in a handful of encodings:
- plain string
- ``{"simpleText": "..."}``
- ``{"runs": [{"text": "..."}, ...]}`` (joined without separator)
- ``{"content": "..."}`` (view-model text)

Every reader here is total: a missing key, wrong type or out-of-range
index yields the default, never an exception.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from tubesieve import ChannelIdentity, ExtractedFields
from tubesieve.identity import extract_raw_handle, normalize_handle_value, split_canonical_base_url
from tubesieve.registry import FallbackPaths, RuleEntry, load_registry

logger = logging.getLogger(__name__)

_MISSING = object()

_BYLINE_KEYS = ("shortBylineText", "longBylineText", "ownerText")
_COLLABORATOR_ITEMS_PATH = (
    "navigationEndpoint.showDialogCommand.panelLoadingStrategy.inlineContent"
    ".dialogViewModel.customContent.listViewModel.listItems"
)
_LIST_ITEM_BROWSE_PATH = "rendererContext.commandContext.onTap.innertubeCommand.browseEndpoint"

# Nested locations searched for a handle inside a text object or endpoint
_HANDLE_CANDIDATE_PATHS = (
    "canonicalBaseUrl",
    "browseEndpoint.canonicalBaseUrl",
    "commandMetadata.webCommandMetadata.url",
    "url",
    "navigationEndpoint.browseEndpoint.canonicalBaseUrl",
    "navigationEndpoint.commandMetadata.webCommandMetadata.url",
    "text",
)
_ROW_EXTRA_KEYS = ("text", "title", "subtitle", "badgeText")


def get_by_path(obj: Any, path: str, default: Any = None) -> Any:
    """Read a dotted path; integer segments index lists."""
    current = obj
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment, _MISSING)
        elif isinstance(current, list) and segment.isdecimal():
            index = int(segment)
            current = current[index] if index < len(current) else _MISSING
        else:
            return default
        if current is _MISSING:
            return default
    return current


def _join_runs(runs: list[Any]) -> str:
    return "".join(run["text"] for run in runs if isinstance(run, dict) and isinstance(run.get("text"), str))


def flatten_text(value: Any) -> str:
    """Collapse any supported text encoding into one string (``""`` otherwise)."""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return _join_runs(value)
    if not isinstance(value, dict):
        return ""
    simple = value.get("simpleText")
    if isinstance(simple, str):
        return simple
    runs = value.get("runs")
    if isinstance(runs, list):
        return _join_runs(runs)
    content = value.get("content")
    if isinstance(content, str):
        return content
    return ""


def text_from_paths(obj: Any, paths: Iterable[str]) -> str:
    """First non-empty flattened value among ``paths``."""
    for path in paths:
        text = flatten_text(get_by_path(obj, path)).strip()
        if text:
            return text
    return ""


def find_handle_in_value(value: Any) -> str:
    """Find an ``@handle`` in a string, text object or endpoint. ``""`` if none."""
    if not value:
        return ""
    if isinstance(value, str):
        return extract_raw_handle(value) or ""
    if isinstance(value, dict):
        if "simpleText" in value or "runs" in value:
            handle = extract_raw_handle(flatten_text(value))
            if handle:
                return handle
        for path in _HANDLE_CANDIDATE_PATHS:
            nested = get_by_path(value, path)
            if nested is not None and nested is not value:
                handle = find_handle_in_value(nested)
                if handle:
                    return handle
    return ""


def _flatten_metadata_row(row: Any) -> str:
    if not isinstance(row, dict):
        return ""
    parts: list[str] = []
    metadata_parts = row.get("metadataParts")
    if isinstance(metadata_parts, list):
        for part in metadata_parts:
            if not isinstance(part, dict):
                continue
            text = flatten_text(part.get("text")) if "text" in part else flatten_text(part)
            if text:
                parts.append(text)
    for key in _ROW_EXTRA_KEYS:
        if key in row:
            text = flatten_text(row[key])
            if text:
                parts.append(text)
    return " ".join(parts)


def metadata_rows_text(obj: Any, paths: Iterable[str]) -> str:
    """Flatten view-model metadata rows; rows are joined by ``" | "``."""
    for path in paths:
        rows = get_by_path(obj, path)
        if isinstance(rows, dict):
            rows = rows.get("metadataRows") or rows.get("rows")
        if not isinstance(rows, list):
            continue
        text = " | ".join(t for t in (_flatten_metadata_row(row) for row in rows) if t)
        if text:
            return text
    return ""


def _string_at(obj: Any, paths: Iterable[str]) -> str:
    for path in paths:
        value = get_by_path(obj, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _identity_from_browse(name: str, browse_id: Any, base_url: Any) -> ChannelIdentity:
    handle, custom_url = split_canonical_base_url(base_url) if isinstance(base_url, str) else ("", "")
    channel_id = browse_id if isinstance(browse_id, str) and browse_id.startswith("UC") else ""
    return ChannelIdentity(
        id=channel_id,
        handle=handle,
        canonical_handle=normalize_handle_value(handle),
        custom_url=custom_url,
        name=name,
    )


def extract_collaborators(item: Any) -> tuple[ChannelIdentity, ...]:
    """Channels listed in a byline collaboration dialog.

    Returns an empty tuple unless at least two identifiable channels are found;
    a single entry is an ordinary byline.
    """
    if not isinstance(item, dict):
        return ()
    byline = next((item[key] for key in _BYLINE_KEYS[:2] if isinstance(item.get(key), dict)), None)
    runs = byline.get("runs") if byline else None
    if not isinstance(runs, list):
        return ()

    for run in runs:
        list_items = get_by_path(run, _COLLABORATOR_ITEMS_PATH)
        if not isinstance(list_items, list):
            continue
        collaborators: list[ChannelIdentity] = []
        for list_item in list_items:
            view_model = get_by_path(list_item, "listItemViewModel")
            browse = get_by_path(view_model, _LIST_ITEM_BROWSE_PATH)
            if not isinstance(browse, dict):
                continue
            identity = _identity_from_browse(
                flatten_text(get_by_path(view_model, "title")),
                browse.get("browseId"),
                browse.get("canonicalBaseUrl"),
            )
            if identity.has_identity:
                collaborators.append(identity)
        if len(collaborators) > 1:
            logger.debug("Collaboration byline with %d channels", len(collaborators))
            return tuple(collaborators)
        if collaborators:
            return ()
    return ()


def _extract_channel(item: Any, entry: RuleEntry, fallbacks: FallbackPaths) -> ChannelIdentity:
    use_fallbacks = entry.has_paths

    name = text_from_paths(item, entry.channel_name)
    channel_id = _string_at(item, entry.channel_id)
    if use_fallbacks:
        name = name or text_from_paths(item, fallbacks.channel_name)
        channel_id = channel_id or _string_at(item, fallbacks.channel_id)

    handle = custom_url = ""
    for path in entry.channel_handle:
        value = get_by_path(item, path)
        if isinstance(value, str):
            found_handle, found_custom = split_canonical_base_url(value)
            handle = handle or found_handle or (extract_raw_handle(value) or "")
            custom_url = custom_url or found_custom
        else:
            handle = handle or find_handle_in_value(value)
        if handle and custom_url:
            break

    if use_fallbacks and not (handle and custom_url):
        for path in fallbacks.channel_url:
            value = get_by_path(item, path)
            if not isinstance(value, str):
                continue
            found_handle, found_custom = split_canonical_base_url(value)
            handle = handle or found_handle
            custom_url = custom_url or found_custom
            if handle and custom_url:
                break

    return ChannelIdentity(
        id=channel_id,
        handle=handle,
        canonical_handle=normalize_handle_value(handle),
        handle_display=handle,
        custom_url=custom_url,
        name=name,
    )


def extract_fields(item: Any, entry: RuleEntry, fallbacks: FallbackPaths | None = None) -> ExtractedFields:
    """Read title, description, ids and channel identity from one renderer node.

    ``fallbacks`` defaults to the packaged registry's universal paths.
    """
    if not isinstance(item, dict):
        return ExtractedFields()
    if fallbacks is None:
        fallbacks = load_registry().fallbacks

    title = text_from_paths(item, entry.title)
    if not title and entry.title:
        title = text_from_paths(item, fallbacks.title)

    description = text_from_paths(item, entry.description) or metadata_rows_text(item, entry.metadata_rows)
    if not description and (entry.description or entry.metadata_rows):
        description = text_from_paths(item, fallbacks.description)

    return ExtractedFields(
        title=title,
        description=description,
        video_id=_string_at(item, entry.video_id),
        comment_text=text_from_paths(item, entry.comment_text),
        channel=_extract_channel(item, entry, fallbacks),
        collaborators=extract_collaborators(item),
    )
