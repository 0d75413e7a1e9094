#!/usr/bin/env python3
"""
modhub CLI - web-of-trust scores and aggregation server settings.

Commands:
  modhub wot [root] --graph FILE     Compute trust scores from a follow graph
  modhub server status               Show the configured aggregation server
  modhub server set <url>            Validate and store a new server URL
  modhub server disable              Turn the aggregation server off
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from ..core.defaults import (
    SERVER_URL_STORAGE_KEY,
    SITE_WOT_PUBKEY,
    STORAGE_PATH,
    WOT_DECAY_FACTOR,
    WOT_MAX_DEPTH,
    WOT_MAX_SCORE,
)
from ..core.exceptions import ConfigException, ModhubException, ValidationException
from ..core.logging import configure_logging
from ..core.storage import JsonFileStore
from ..network.session import AggregationClientSession
from ..wot.graph import StaticFollowGraph
from ..wot.keys import is_valid_pubkey, normalize_pubkey
from ..wot.scorer import TrustGraphScorer, TrustScoreTable

# Try to load .env from common locations
for env_path in [Path.cwd() / '.env', Path.home() / '.modhub' / '.env']:
    if env_path.exists():
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ.setdefault(key.strip(), value.strip())
        break


def short_key(pubkey: str) -> str:
    """Shorten a pubkey for display."""
    if len(pubkey) <= 16:
        return pubkey
    return f"{pubkey[:8]}…{pubkey[-8:]}"


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def print_error(args: argparse.Namespace, error: ModhubException, prefix: str) -> None:
    if getattr(args, 'json', False):
        print_json(error.to_dict())
    else:
        print(f"❌ {prefix}: {error.message}")


def open_store(args: argparse.Namespace) -> JsonFileStore:
    return JsonFileStore(args.storage or STORAGE_PATH)


def stored_server_url(store: JsonFileStore) -> str | None:
    """Decode the persisted server URL; "" means disabled, None means unset."""
    raw = store.get(SERVER_URL_STORAGE_KEY)
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        return None
    return value if isinstance(value, str) else None


# ============================================================================
# WOT Command
# ============================================================================

def resolve_root(args: argparse.Namespace) -> str:
    """Root pubkey from the command line, else the configured site identity."""
    if args.root is None:
        root = normalize_pubkey(SITE_WOT_PUBKEY)
        if not is_valid_pubkey(root):
            raise ConfigException(
                "No root given and MODHUB_SITE_WOT_PUBKEY is not a valid pubkey",
                {"setting": "MODHUB_SITE_WOT_PUBKEY", "value": SITE_WOT_PUBKEY},
            )
        return root

    root = normalize_pubkey(args.root)
    if not is_valid_pubkey(root):
        raise ValidationException("Root must be a 64-character hex pubkey", field="root", value=args.root)
    return root


def build_trust_table(args: argparse.Namespace) -> TrustScoreTable:
    root = resolve_root(args)

    graph = StaticFollowGraph.from_json_file(args.graph)
    invalid = graph.invalid_keys()
    if invalid:
        print(f"⚠️  {len(invalid)} malformed key(s) in graph, e.g. {invalid[0]!r}", file=sys.stderr)

    try:
        scorer = TrustGraphScorer(max_depth=args.depth, decay=args.decay, max_score=args.max_score)
    except ValueError as e:
        raise ValidationException(str(e), field="scorer") from e

    return asyncio.run(scorer.compute(root, graph, mute_source=graph))


def cmd_wot(args: argparse.Namespace) -> int:
    """Compute and print a trust table."""
    try:
        table = build_trust_table(args)
    except ModhubException as e:
        print_error(args, e, "Trust computation failed")
        return 1

    ranked = table.ranked()
    if args.level is not None:
        ranked = [(pubkey, score) for pubkey, score in ranked if score >= args.level]

    if args.json:
        print_json({
            'root': table.root,
            'max_depth': table.max_depth,
            'max_score': table.max_score,
            'level': args.level,
            'scores': dict(ranked),
        })
        return 0

    print(f"🕸️  Web of trust for {short_key(table.root)} (depth {table.max_depth})")
    print("─" * 40)
    if not ranked:
        print("  (no identities at this level)")
    for pubkey, score in ranked:
        print(f"  {score:>5}  {short_key(pubkey)}")
    print(f"\n{len(ranked)} of {len(table)} identities shown")
    return 0


# ============================================================================
# SERVER Commands
# ============================================================================

def cmd_server_status(args: argparse.Namespace) -> int:
    """Show the stored server URL, optionally health-checking it."""
    store = open_store(args)
    url = stored_server_url(store)

    result: dict[str, Any] = {
        'server_url': url or None,
        'enabled': bool(url),
    }

    if args.check and url:
        async def probe() -> str:
            session = AggregationClientSession(store=store)
            await session.start()
            state = session.state.value
            await session.shutdown()
            return state

        result['state'] = asyncio.run(probe())

    if args.json:
        print_json(result)
        return 0

    if url is None:
        print("ℹ️  No server configured (the default will be used)")
    elif not url:
        print("⏸️  Aggregation server disabled")
    else:
        print(f"🌐 Aggregation server: {url}")
    if 'state' in result:
        print(f"   State: {result['state']}")
    return 0


def cmd_server_set(args: argparse.Namespace) -> int:
    """Validate and persist a new server URL."""
    store = open_store(args)

    async def apply() -> AggregationClientSession:
        session = AggregationClientSession(store=store)
        try:
            await session.set_server_url(args.url)
        finally:
            await session.shutdown()
        return session

    try:
        session = asyncio.run(apply())
    except ModhubException as e:
        print_error(args, e, "Could not set server")
        return 1

    if args.json:
        print_json({'server_url': session.server_url, 'state': session.state.value})
    else:
        print(f"✅ Server set to {session.server_url} ({session.state.value})")
    return 0


def cmd_server_disable(args: argparse.Namespace) -> int:
    """Turn the aggregation server off."""
    session = AggregationClientSession(store=open_store(args))
    session.disable()
    if args.json:
        print_json({'server_url': None, 'state': session.state.value})
    else:
        print("⏸️  Aggregation server disabled")
    return 0


# ============================================================================
# Parser
# ============================================================================

def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog='modhub',
        description='Web-of-trust scores and aggregation server settings',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  modhub wot <pubkey> --graph follows.json       Trust table, depth 2
  modhub wot <pubkey> --graph f.json --level 25  Only identities scoring >= 25
  modhub server status --check                   Stored URL and live state
  modhub server set https://agg.example.com      Switch servers
  modhub server disable                          Use relays only
        """
    )
    parser.add_argument('--storage', help=f'Settings file (default: {STORAGE_PATH})')
    parser.add_argument('--log-level', help='Log level (default: MODHUB_LOG_LEVEL or WARNING)')

    subparsers = parser.add_subparsers(dest='command', required=True)

    # wot
    wot_parser = subparsers.add_parser('wot', help='Compute trust scores from a follow graph')
    wot_parser.add_argument('root', nargs='?',
                            help='Root pubkey (64 hex chars, default: MODHUB_SITE_WOT_PUBKEY)')
    wot_parser.add_argument('--graph', '-g', required=True,
                            help='JSON follow graph: {pubkey: [followed, ...]} or {"follows": ..., "mutes": ...}')
    wot_parser.add_argument('--depth', '-d', type=int, default=WOT_MAX_DEPTH, help='Hops from the root')
    wot_parser.add_argument('--decay', type=float, default=WOT_DECAY_FACTOR, help='Score multiplier per hop')
    wot_parser.add_argument('--max-score', type=int, default=WOT_MAX_SCORE, help='Score of the root')
    wot_parser.add_argument('--level', '-l', type=int, help='Only show identities scoring at least this')
    wot_parser.add_argument('--json', action='store_true', help='Output JSON')

    # server
    server_parser = subparsers.add_parser('server', help='Aggregation server settings')
    server_sub = server_parser.add_subparsers(dest='server_command', required=True)

    status_parser = server_sub.add_parser('status', help='Show the configured server')
    status_parser.add_argument('--check', action='store_true', help='Run a health check')
    status_parser.add_argument('--json', action='store_true', help='Output JSON')

    set_parser = server_sub.add_parser('set', help='Validate and store a server URL')
    set_parser.add_argument('url', help='Server base URL (http or https)')
    set_parser.add_argument('--json', action='store_true', help='Output JSON')

    disable_parser = server_sub.add_parser('disable', help='Turn the aggregation server off')
    disable_parser.add_argument('--json', action='store_true', help='Output JSON')

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)

    configure_logging(args.log_level or os.environ.get('MODHUB_LOG_LEVEL', 'WARNING'))

    commands = {
        'wot': cmd_wot,
        ('server', 'status'): cmd_server_status,
        ('server', 'set'): cmd_server_set,
        ('server', 'disable'): cmd_server_disable,
    }

    key = (args.command, args.server_command) if args.command == 'server' else args.command
    handler = commands.get(key)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
