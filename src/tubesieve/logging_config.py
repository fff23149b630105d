# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge for the CLI and embedding hosts.

Library modules only call ``logging.getLogger(__name__)``; nothing here is
imported by the filtering core. Hosts call :func:`configure` once and may wrap
each filter pass in :func:`pass_context` so every record emitted during the
pass carries the snapshot name.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

_LIBRARY_LOGGER = "tubesieve"

# Applied to structlog events and to foreign stdlib records alike
_PRE_CHAIN = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.format_exc_info,
)


def _renderer(json_output: bool, colors: bool | None) -> Any:
    if json_output:
        return structlog.processors.JSONRenderer()
    if colors is None:
        return structlog.dev.ConsoleRenderer()
    return structlog.dev.ConsoleRenderer(colors=colors)


def configure(*, json_output: bool = False, level: str | int = "INFO", colors: bool | None = None) -> None:
    """Route stdlib and structlog records through one stderr handler.

    Args:
        json_output: True for JSON lines, False for the console renderer.
        level: Root logger level, name or number (default INFO).
        colors: Force console colors on/off; None lets structlog detect a TTY.
    """
    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(json_output, colors)],
        foreign_pre_chain=_PRE_CHAIN,
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(_LIBRARY_LOGGER).setLevel(logging.NOTSET)


@contextmanager
def pass_context(snapshot: str, **extra: object) -> Iterator[None]:
    """Bind ``snapshot`` (and any extra keys) to every log record inside the block."""
    with structlog.contextvars.bound_contextvars(snapshot=snapshot, **extra):
        yield
