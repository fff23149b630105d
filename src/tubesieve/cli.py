# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""tubesieve CLI: filter, match-channel, match-text, canonicalize commands.

Usage:
    python -m tubesieve.cli filter SNAPSHOT --settings FILE [-o OUT] [--harvest FILE]
    python -m tubesieve.cli match-channel --settings FILE [--id ID] [--handle H] [--custom-url C] [--name N]
    python -m tubesieve.cli match-text TEXT --settings FILE
    python -m tubesieve.cli canonicalize VALUE

Settings and snapshots may be JSON or YAML (by file suffix). A snapshot with
an ``.html`` / ``.htm`` suffix is filtered as rendered markup.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml
from tabulate import tabulate

from tubesieve import ChannelIdentity
from tubesieve.cache import CacheContext
from tubesieve.channel_match import is_channel_blocked
from tubesieve.dom_fallback import filter_html
from tubesieve.errors import SnapshotDecodeError, TubeSieveError
from tubesieve.harvest import harvest_channel_mappings
from tubesieve.identity import canonicalize_channel_input
from tubesieve.keywords import text_matches_any
from tubesieve.logging_config import configure, pass_context
from tubesieve.settings import FilterState, normalize_settings
from tubesieve.tree_filter import TreeFilter

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = (".yaml", ".yml")
_HTML_SUFFIXES = (".html", ".htm")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise SnapshotDecodeError(f"{path}: not valid UTF-8 ({e.reason} at byte {e.start})") from e


def _load_document(path: Path) -> Any:
    """Parse a JSON or YAML file.

    Raises:
        SnapshotDecodeError: file is not UTF-8 or not valid for its format.
    """
    text = _read_text(path)
    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            return yaml.safe_load(text)
        return json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise SnapshotDecodeError(f"{path}: {e}") from e


def _load_state(path_str: str) -> FilterState:
    return normalize_settings(_load_document(Path(path_str)))


def _write_json(data: Any, output: str | None) -> None:
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if output:
        out = Path(output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n", encoding="utf-8")
        print(f"Filtered output saved to {out}", file=sys.stderr)
    else:
        print(text)


def _print_summary(removed: int, reasons: dict[str, int]) -> None:
    print(f"Removed: {removed}", file=sys.stderr)
    if reasons:
        rows = sorted(reasons.items(), key=lambda item: (-item[1], item[0]))
        print(tabulate(rows, headers=["reason", "count"], tablefmt="simple"), file=sys.stderr)


def cmd_filter(args: argparse.Namespace) -> None:
    """Filter a snapshot file and print the result."""
    snapshot_path = Path(args.snapshot)
    state = _load_state(args.settings)

    with pass_context(snapshot_path.name):
        if snapshot_path.suffix.lower() in _HTML_SUFFIXES:
            dom_result = filter_html(_read_text(snapshot_path), state, cache=CacheContext())
            if args.output:
                Path(args.output).write_text(dom_result.html, encoding="utf-8")
            else:
                print(dom_result.html)
            _print_summary(dom_result.removed, dict(dom_result.removal_tags))
            return

        snapshot = _load_document(snapshot_path)
        result = TreeFilter(state).filter(snapshot)
        _write_json(result.data, args.output)
        _print_summary(result.removed, {str(k): v for k, v in result.stats.removal_reasons.items()})

        if args.harvest:
            pairs = harvest_channel_mappings(snapshot, known=state.channel_map)
            harvest_path = Path(args.harvest)
            harvest_path.write_text(json.dumps(pairs, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
            print(f"Harvested {len(pairs)} channel map entries to {harvest_path}", file=sys.stderr)


def cmd_match_channel(args: argparse.Namespace) -> None:
    """Report whether a channel identity is blocked by the settings."""
    state = _load_state(args.settings)
    observed = ChannelIdentity(
        id=args.id or "",
        handle=args.handle or "",
        custom_url=args.custom_url or "",
        name=args.name or "",
    )
    if observed.is_empty:
        raise TubeSieveError("match-channel needs at least one of --id, --handle, --custom-url, --name")

    entry = is_channel_blocked(state.channels, observed, state.channel_map)
    if entry is None:
        print("not blocked")
        return
    label = entry.name or entry.handle or entry.custom_url or entry.id
    print(f"blocked by {label}")


def cmd_match_text(args: argparse.Namespace) -> None:
    """Report the first keyword matching TEXT."""
    state = _load_state(args.settings)
    keyword = text_matches_any(state.keywords, args.text)
    print(f"matched {keyword.source!r}" if keyword else "no match")


def cmd_canonicalize(args: argparse.Namespace) -> None:
    """Print the canonical form of a channel reference."""
    canonical = canonicalize_channel_input(args.value)
    print(f"{canonical.type}\t{canonical.value}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="tubesieve CLI",
        prog="python -m tubesieve.cli",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    _filter_epilog = """\
examples:
  %(prog)s home.json --settings settings.yaml              Print filtered JSON
  %(prog)s home.json --settings settings.json -o out.json  Save to file
  %(prog)s page.html --settings settings.json              Filter rendered markup
  %(prog)s home.json --settings s.json --harvest map.json  Also save learned channel pairs
"""
    p_filter = subparsers.add_parser(
        "filter",
        help="Filter a payload snapshot (JSON/YAML) or rendered HTML",
        epilog=_filter_epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_filter.add_argument("snapshot", metavar="SNAPSHOT", help="Snapshot file")
    p_filter.add_argument("--settings", required=True, metavar="FILE", help="Settings file (JSON or YAML)")
    p_filter.add_argument("-o", "--output", metavar="PATH", help="Output file (default: stdout)")
    p_filter.add_argument("--harvest", metavar="FILE", help="Write channel map pairs seen in the snapshot")

    p_channel = subparsers.add_parser("match-channel", help="Check a channel identity against channel rules")
    p_channel.add_argument("--settings", required=True, metavar="FILE")
    p_channel.add_argument("--id", metavar="UCID")
    p_channel.add_argument("--handle", metavar="HANDLE")
    p_channel.add_argument("--custom-url", metavar="PATH")
    p_channel.add_argument("--name", metavar="NAME")

    p_text = subparsers.add_parser("match-text", help="Check text against keyword rules")
    p_text.add_argument("text", metavar="TEXT")
    p_text.add_argument("--settings", required=True, metavar="FILE")

    p_canon = subparsers.add_parser("canonicalize", help="Canonicalize a channel URL, handle or id")
    p_canon.add_argument("value", metavar="VALUE")

    commands = {
        "filter": cmd_filter,
        "match-channel": cmd_match_channel,
        "match-text": cmd_match_text,
        "canonicalize": cmd_canonicalize,
    }

    args = parser.parse_args(argv)
    configure(json_output=args.json_logs, level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (TubeSieveError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            logger.exception("Command %s failed", args.command)
        sys.exit(1)


if __name__ == "__main__":
    main()
