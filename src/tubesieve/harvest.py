# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Learn UC-id <-> handle / custom URL pairs from payloads.

Read-only scan of a snapshot. Returns the pairs it observed in the same
shape as the persisted channel map (lowercase keys, values in original
case); merging them into storage is the caller's job.

Sources, in scan order:
- player responses: ``videoDetails`` / ``playerMicroformatRenderer`` owner
- watch playlist panels
- channel pages: ``channelMetadataRenderer``, ``microformatDataRenderer``
- ``responseContext`` ytConfigData
- any renderer byline run carrying a ``browseEndpoint``
- collaboration dialogs in bylines
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from tubesieve.extract import extract_collaborators, get_by_path
from tubesieve.identity import UC_ID_RE, extract_raw_handle, normalize_custom_url

logger = logging.getLogger(__name__)

_CANONICAL_CHANNEL_RE = re.compile(r"channel/(UC[\w-]{22})")
_BYLINE_KEYS = ("shortBylineText", "longBylineText", "ownerText")
_PLAYLIST_PATHS = (
    "playlist.contents",
    "playlistPanel.contents",
    "contents.twoColumnWatchNextResults.playlist.playlist.contents",
    "contents.playlistPanelRenderer.contents",
)
_OWNER_ID_KEYS = ("videoOwnerChannelId", "channelId", "externalChannelId", "authorExternalChannelId")
_MICROFORMAT_ID_KEYS = ("externalChannelId", "channelId", "ownerChannelId")


class _Collector:
    """Accumulates bidirectional pairs not already present in ``known``."""

    def __init__(self, known: Mapping[str, str] | None) -> None:
        self._known = known or {}
        self.pairs: dict[str, str] = {}

    def _put(self, key: str, value: str) -> None:
        if self._known.get(key) != value:
            self.pairs[key] = value

    def register(self, channel_id: Any, handle: Any) -> None:
        if not isinstance(channel_id, str) or not UC_ID_RE.fullmatch(channel_id.strip()):
            return
        if not isinstance(handle, str) or not handle:
            return
        channel_id = channel_id.strip()
        self._put(channel_id.lower(), handle)
        self._put(handle.lower(), channel_id)

    def register_custom_url(self, channel_id: Any, custom_url: Any) -> None:
        if not isinstance(channel_id, str) or not UC_ID_RE.fullmatch(channel_id.strip()):
            return
        key = normalize_custom_url(custom_url) if isinstance(custom_url, str) else ""
        if key:
            self._put(key, channel_id.strip())


def _handle(value: Any) -> str:
    return (extract_raw_handle(value) or "") if isinstance(value, str) else ""


def _first_string(mapping: Any, keys: tuple[str, ...]) -> str:
    if not isinstance(mapping, dict):
        return ""
    for key in keys:
        value = mapping.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _harvest_player_owner(data: dict[str, Any], out: _Collector) -> None:
    details = data.get("videoDetails")
    microformat = get_by_path(data, "microformat.playerMicroformatRenderer")

    owner_id = _first_string(details, _OWNER_ID_KEYS) or _first_string(microformat, _MICROFORMAT_ID_KEYS)
    owner_handle = ""
    if isinstance(microformat, dict):
        owner_handle = (
            _handle(microformat.get("ownerProfileUrl"))
            or _handle(microformat.get("canonicalBaseUrl"))
            or _handle(get_by_path(microformat, "navigationEndpoint.browseEndpoint.canonicalBaseUrl"))
        )
    if not owner_handle and isinstance(details, dict):
        owner_handle = _handle(details.get("author"))
    out.register(owner_id, owner_handle)

    for path in _PLAYLIST_PATHS:
        contents = get_by_path(data, path)
        if isinstance(contents, list) and contents:
            break
    else:
        return
    for item in contents:
        renderer = get_by_path(item, "playlistPanelVideoRenderer") or get_by_path(
            item, "playlistPanelVideoWrapperRenderer.primaryRenderer"
        )
        run = get_by_path(renderer, "shortBylineText.runs.0")
        browse = get_by_path(run, "navigationEndpoint.browseEndpoint")
        if not isinstance(browse, dict):
            continue
        handle = _handle(browse.get("canonicalBaseUrl")) or _handle(get_by_path(run, "text"))
        out.register(browse.get("browseId"), handle)


def _harvest_page_metadata(data: dict[str, Any], out: _Collector) -> None:
    meta = get_by_path(data, "metadata.channelMetadataRenderer")
    if isinstance(meta, dict) and meta.get("externalId"):
        handle = _handle(meta.get("vanityChannelUrl"))
        if not handle and isinstance(meta.get("ownerUrls"), list):
            handle = next((h for h in map(_handle, meta["ownerUrls"]) if h), "")
        out.register(meta["externalId"], handle)

    micro = get_by_path(data, "microformat.microformatDataRenderer")
    if isinstance(micro, dict) and isinstance(micro.get("urlCanonical"), str):
        match = _CANONICAL_CHANNEL_RE.search(micro["urlCanonical"])
        handle = _handle(micro.get("vanityChannelUrl") or micro.get("ownerProfileUrl"))
        if match:
            out.register(match.group(1), handle)

    config = get_by_path(data, "responseContext.webResponseContextExtensionData.ytConfigData")
    if isinstance(config, dict) and config.get("channelId") and config.get("channelName"):
        out.register(config["channelId"], _handle(config.get("canonicalBaseUrl")))


def _harvest_byline(renderer: dict[str, Any], out: _Collector) -> None:
    byline = next((renderer[k] for k in _BYLINE_KEYS if isinstance(renderer.get(k), dict)), None)
    runs = byline.get("runs") if byline else None
    if isinstance(runs, list):
        for run in runs:
            browse = get_by_path(run, "navigationEndpoint.browseEndpoint")
            if not isinstance(browse, dict):
                continue
            browse_id = browse.get("browseId")
            if not isinstance(browse_id, str) or not browse_id.startswith("UC"):
                continue
            canonical = browse.get("canonicalBaseUrl") or browse.get("canonicalUrl") or browse.get("url")
            out.register(browse_id, _handle(canonical) or _handle(get_by_path(run, "text")))
            if isinstance(canonical, str):
                out.register_custom_url(browse_id, canonical)

    for collaborator in extract_collaborators(renderer):
        out.register(collaborator.id, collaborator.handle)
        out.register_custom_url(collaborator.id, collaborator.custom_url)


def harvest_channel_mappings(snapshot: Any, known: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect channel map pairs observed in ``snapshot``.

    Returns ``{lower(id): handle, lower(handle): id, lower(custom_url): id}``
    for every pair not already present with the same value in ``known``.
    The snapshot is not modified.
    """
    out = _Collector(known)
    if isinstance(snapshot, dict):
        _harvest_player_owner(snapshot, out)
        _harvest_page_metadata(snapshot, out)

    stack: list[Any] = [snapshot]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            _harvest_byline(node, out)
            stack.extend(v for v in node.values() if isinstance(v, dict | list))
        elif isinstance(node, list):
            stack.extend(v for v in node if isinstance(v, dict | list))

    if out.pairs:
        logger.debug("Harvested %d channel map entries", len(out.pairs))
    return out.pairs
