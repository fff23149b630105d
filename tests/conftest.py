# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import tubesieve  # noqa: F401
except ImportError:
    raise ImportError("tubesieve is not installed. Run: pip install -e '.[dev]'") from None

import logging

import pytest
import structlog

from tubesieve.cache import CacheContext
from tubesieve.settings import normalize_settings


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo any configure() call made by the test (CLI tests call it via main())."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def make_state():
    """Factory: raw camelCase settings kwargs -> FilterState."""

    def _make(**settings):
        return normalize_settings(settings)

    return _make


@pytest.fixture
def cache():
    return CacheContext(max_entries=8)
