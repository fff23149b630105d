# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""tubesieve: content filtering and channel identity resolution for video feeds.

Prunes a video platform's internal JSON payloads (and rendered HTML) using
user-defined rules:
- keyword rules: regex/substring matching with Unicode-normalization fallback
- channel rules: UC-id / @handle / custom URL / display name, bridged by a
  learned alias map
- feature flags: hide shorts, hide or filter comments
"""

from __future__ import annotations

from dataclasses import dataclass, field

__version__ = "0.4.0"


@dataclass(frozen=True, slots=True)
class ChannelIdentity:
    """Channel identity observed on a content item (or in a DOM card).

    Any field may be empty; enrichment fills them in over time.
    """

    id: str = ""  # UC... channel id
    handle: str = ""  # @handle as shown
    canonical_handle: str = ""
    handle_display: str = ""
    custom_url: str = ""  # c/Name or user/Name
    name: str = ""  # display name

    @property
    def has_identity(self) -> bool:
        """True when an id, handle or custom URL is known (names alone are weak)."""
        return bool(self.id or self.handle or self.canonical_handle or self.handle_display or self.custom_url)

    @property
    def is_empty(self) -> bool:
        return not (self.has_identity or self.name)

    @property
    def label(self) -> str:
        """Best human-readable label for logs."""
        return self.name or self.handle or self.custom_url or self.id


@dataclass(frozen=True, slots=True)
class ExtractedFields:
    """Fields read from one renderer node via its rule entry."""

    title: str = ""
    description: str = ""
    video_id: str = ""
    comment_text: str = ""
    channel: ChannelIdentity = field(default_factory=ChannelIdentity)
    collaborators: tuple[ChannelIdentity, ...] = ()

    @property
    def channels(self) -> tuple[ChannelIdentity, ...]:
        """Collaborators when present, else the single byline channel."""
        return self.collaborators or (self.channel,)
