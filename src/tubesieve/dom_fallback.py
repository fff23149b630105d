# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Rendered-HTML enforcement.

Second enforcement point for content that reached the page without passing
through the JSON filter. Decisions use the same match engines and the same
compiled channel index as the tree filter, so both points agree.

:func:`should_hide_content` judges one card from its visible text;
:func:`filter_html` parses markup with lxml, finds card elements, and returns
new markup without the hidden cards.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import lxml.html

from tubesieve import ChannelIdentity
from tubesieve.channel_match import CompiledChannelIndex, compile_channel_index, index_matches
from tubesieve.identity import (
    extract_raw_handle,
    normalize_channel_name,
    normalize_custom_url,
    split_canonical_base_url,
)
from tubesieve.keywords import CompiledKeyword, matches_keyword
from tubesieve.normalize import collapse_whitespace

if TYPE_CHECKING:
    from tubesieve.cache import CacheContext
    from tubesieve.settings import ChannelFilter, FilterState

logger = logging.getLogger(__name__)

_UC_IN_PATH_RE = re.compile(r"/channel/(UC[\w-]{22})")
_DOCUMENT_RE = re.compile(r"^\s*(?:<!doctype|<html)", re.IGNORECASE)

VIDEO_CARD_TAGS = frozenset(
    {
        "ytd-rich-item-renderer",
        "ytd-rich-grid-media",
        "ytd-video-renderer",
        "ytd-grid-video-renderer",
        "ytd-compact-video-renderer",
        "ytd-watch-card-compact-video-renderer",
        "ytd-playlist-panel-video-renderer",
        "ytd-playlist-panel-video-wrapper-renderer",
        "ytd-playlist-renderer",
        "ytd-grid-playlist-renderer",
        "ytd-compact-playlist-renderer",
        "ytd-playlist-video-renderer",
        "ytd-radio-renderer",
        "ytd-compact-radio-renderer",
        "ytd-channel-video-player-renderer",
        "yt-lockup-view-model",
    }
)
CHANNEL_CARD_TAGS = frozenset({"ytd-channel-renderer", "ytd-grid-channel-renderer", "ytd-universal-watch-card-renderer"})
SHORTS_CARD_TAGS = frozenset({"ytd-reel-item-renderer", "ytm-shorts-lockup-view-model", "ytm-shorts-lockup-view-model-v2"})
COMMENT_CARD_TAGS = frozenset({"ytd-comment-thread-renderer", "ytm-comment-thread-renderer", "ytd-comment-view-model"})
PLAYLIST_PANEL_TAGS = frozenset({"ytd-playlist-panel-video-renderer", "ytd-playlist-panel-video-wrapper-renderer"})

CARD_TAGS = VIDEO_CARD_TAGS | CHANNEL_CARD_TAGS | SHORTS_CARD_TAGS | COMMENT_CARD_TAGS

_TITLE_XPATH = (
    ".//*[@id='video-title' or @id='video-title-link' or @id='title' or @id='channel-title']"
    " | .//h3 | .//*[contains(@class, 'lockup-metadata-view-model') and contains(@class, 'title')]"
)
_CHANNEL_LINK_XPATH = (
    ".//ytd-channel-name//a | .//*[@id='channel-name']//a"
    " | .//a[contains(@href, '/@') or contains(@href, '/channel/UC')"
    " or contains(@href, '/c/') or contains(@href, '/user/')]"
)
_CHANNEL_TEXT_XPATH = ".//ytd-channel-name | .//*[@id='channel-name'] | .//*[@id='byline']"


# ---------------------------------------------------------------------------
# Channel metadata
# ---------------------------------------------------------------------------


def _href_path(href: str) -> str:
    if not href:
        return ""
    try:
        return urlsplit(href).path if "://" in href else href.split("?", 1)[0].split("#", 1)[0]
    except ValueError:
        return ""


def build_channel_metadata(channel_text: str = "", channel_href: str = "") -> ChannelIdentity:
    """Identity recoverable from a card's visible channel text and link."""
    channel_text = channel_text if isinstance(channel_text, str) else ""
    path = _href_path(channel_href if isinstance(channel_href, str) else "")

    handle = extract_raw_handle(channel_text) or extract_raw_handle(path) or ""
    id_match = _UC_IN_PATH_RE.search(path) or _UC_IN_PATH_RE.search(channel_text)
    custom_url = ""
    if path and not path.startswith("/@"):
        _, custom_url = split_canonical_base_url(path)
        custom_url = custom_url or normalize_custom_url(path)

    return ChannelIdentity(
        id=id_match.group(1) if id_match else "",
        handle=handle,
        handle_display=handle,
        custom_url=custom_url,
        name=collapse_whitespace(channel_text),
    )


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


def _channel_index(
    entries: Sequence[ChannelFilter],
    state: FilterState,
    cache: CacheContext | None,
    owner: Any,
) -> CompiledChannelIndex:
    if cache is not None:
        return cache.channel_index(entries, state.channel_map, owner=owner)
    return compile_channel_index(entries, state.channel_map)


def _any_keyword(keywords: Iterable[CompiledKeyword], *texts: str) -> bool:
    return any(matches_keyword(keyword, text) for keyword in keywords for text in texts if text)


def _identity_matches(
    channel: ChannelIdentity,
    collaborators: Sequence[ChannelIdentity],
    index: CompiledChannelIndex,
    state: FilterState,
) -> bool:
    if channel.has_identity and index_matches(channel, index, state.channel_map):
        return True
    return any(index_matches(c, index, state.channel_map) for c in collaborators)


def should_hide_content(
    title: str,
    channel_text: str,
    state: FilterState,
    *,
    channel: ChannelIdentity | None = None,
    channel_href: str = "",
    collaborators: Sequence[ChannelIdentity] = (),
    content_tag: str = "",
    skip_keywords: bool = False,
    cache: CacheContext | None = None,
) -> bool:
    """Decide whether a rendered card should be hidden.

    Blocklist mode hides on a keyword match in title or channel text, or a
    channel match. Whitelist mode hides everything that matches no
    whitelist rule (comments are exempt).
    """
    if not state.enabled:
        return False
    meta = channel or build_channel_metadata(channel_text, channel_href)
    if not title and not channel_text and not meta.has_identity and not collaborators:
        return False

    tag = content_tag.lower()
    if state.is_whitelist and "comment" not in tag:
        has_keyword_rules = not skip_keywords and bool(state.whitelist_keywords)
        if not state.whitelist_channels and not has_keyword_rules:
            return True
        if has_keyword_rules and _any_keyword(state.whitelist_keywords, title, channel_text):
            return False
        if state.whitelist_channels:
            index = _channel_index(state.whitelist_channels, state, cache, owner=None)
            if _identity_matches(meta, collaborators, index, state):
                return False
        return True

    if not skip_keywords and state.keywords and _any_keyword(state.keywords, title, channel_text):
        return True

    if not state.channels:
        return False
    index = _channel_index(state.channels, state, cache, owner=state)

    if not meta.has_identity and not collaborators:
        # Playlist panel rows only expose the channel display name
        if tag in PLAYLIST_PANEL_TAGS:
            name = normalize_channel_name(channel_text)
            return bool(name) and name in index.names
        return False
    return _identity_matches(meta, collaborators, index, state)


# ---------------------------------------------------------------------------
# HTML filtering
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DomFilterResult:
    html: str
    removed: int
    removal_tags: Counter[str] = field(default_factory=Counter)


def _first_text(el: lxml.html.HtmlElement, xpath: str) -> str:
    for node in el.xpath(xpath):
        text = collapse_whitespace(node.text_content() or "") or collapse_whitespace(node.get("title") or "")
        if text:
            return text
    return ""


def _card_channel(el: lxml.html.HtmlElement) -> tuple[str, str]:
    for link in el.xpath(_CHANNEL_LINK_XPATH):
        text = collapse_whitespace(link.text_content() or "")
        href = link.get("href") or ""
        if text or href:
            return text, href
    return _first_text(el, _CHANNEL_TEXT_XPATH), ""


def _hide_comment(el: lxml.html.HtmlElement, state: FilterState, cache: CacheContext | None) -> bool:
    if state.hide_all_comments:
        return True
    if not state.filter_comments:
        return False
    content = _first_text(el, ".//*[@id='content-text']")
    if content and _any_keyword(state.comment_keywords, content):
        return True
    if not state.channels:
        return False
    author_links = el.xpath(".//*[@id='author-text']")
    author = author_links[0] if author_links else None
    text = collapse_whitespace(author.text_content() or "") if author is not None else ""
    href = (author.get("href") or "") if author is not None else ""
    meta = build_channel_metadata(text, href)
    if not meta.has_identity:
        return False
    return index_matches(meta, _channel_index(state.channels, state, cache, owner=state), state.channel_map)


def _hide_card(el: lxml.html.HtmlElement, state: FilterState, cache: CacheContext | None) -> bool:
    tag = el.tag
    if tag in COMMENT_CARD_TAGS:
        return _hide_comment(el, state, cache)
    if tag in SHORTS_CARD_TAGS and state.hide_all_shorts:
        return True
    channel_text, channel_href = _card_channel(el)
    return should_hide_content(
        _first_text(el, _TITLE_XPATH),
        channel_text,
        state,
        channel_href=channel_href,
        content_tag=tag,
        skip_keywords=tag in CHANNEL_CARD_TAGS,
        cache=cache,
    )


def _serialize(root: lxml.html.HtmlElement, is_document: bool) -> str:
    if is_document:
        return lxml.html.tostring(root, encoding="unicode")
    parts = [root.text or ""]
    parts.extend(lxml.html.tostring(child, encoding="unicode") for child in root)
    return "".join(parts)


def filter_html(html: str, state: FilterState, *, cache: CacheContext | None = None) -> DomFilterResult:
    """Return ``html`` without the cards ``state`` hides. The input is not modified."""
    if not html or not html.strip():
        return DomFilterResult(html=html, removed=0)

    is_document = bool(_DOCUMENT_RE.match(html))
    if is_document:
        root = lxml.html.document_fromstring(html)
    else:
        root = lxml.html.fragment_fromstring(html, create_parent="div")

    to_remove: list[lxml.html.HtmlElement] = []
    removed_set: set[lxml.html.HtmlElement] = set()
    for el in root.iter():
        if not isinstance(el.tag, str) or el.tag not in CARD_TAGS:
            continue
        if any(ancestor in removed_set for ancestor in el.iterancestors()):
            continue
        if _hide_card(el, state, cache):
            to_remove.append(el)
            removed_set.add(el)

    tags: Counter[str] = Counter()
    for el in to_remove:
        parent = el.getparent()
        if parent is None:
            continue
        # Keep the text that followed the removed element
        if el.tail:
            previous = el.getprevious()
            if previous is not None:
                previous.tail = (previous.tail or "") + el.tail
            else:
                parent.text = (parent.text or "") + el.tail
        parent.remove(el)
        tags[el.tag] += 1

    removed = sum(tags.values())
    if removed:
        logger.debug("DOM filter removed %d cards: %s", removed, dict(tags))
    return DomFilterResult(html=_serialize(root, is_document), removed=removed, removal_tags=tags)
