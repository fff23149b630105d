# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""tubesieve exception hierarchy.

All tubesieve-specific errors inherit from TubeSieveError. None of them
escape a filter pass or a match call: pattern errors are caught by the
settings normalizer, registry errors can only happen at load time.
"""

from __future__ import annotations


class TubeSieveError(Exception):
    """Base exception for all tubesieve errors."""


class PatternCompileError(TubeSieveError):
    """A persisted keyword pattern could not be compiled."""

    def __init__(self, message: str, *, pattern: str = "", flags: str = "") -> None:
        super().__init__(message)
        self.pattern = pattern
        self.flags = flags


class RuleRegistryError(TubeSieveError):
    """The packaged renderer rule table is malformed."""


class SnapshotDecodeError(TubeSieveError):
    """An input snapshot or settings file is not valid JSON/YAML."""
