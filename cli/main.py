"""
CLI for checkout state ops.

Commands:
  gc                 Garbage-collect expired order source snapshots.
  recent             Print the recent order token index.
  resolve TOKEN      Look a token up in the durable tier.
  verify TOKEN       Structural + age check of a token (no lookup).
  mint SOURCE        Print a fresh token for buy_now | cart (not stored).

Connections:
- storage/tiers.py picks the durable tier from the same env as the app
- checkout/token_store.py does the work; the CLI has an empty session tier

Usage:
  python -m cli.main gc --state-dir state
"""

from __future__ import annotations
import argparse
import json
import sys

from app.config import load_settings
from checkout import TOKEN_SOURCES
from checkout.order_token import mint, parse_token, verify_integrity
from checkout.timing import SystemClock
from checkout.token_store import TokenStore
from storage.tiers import MemoryStore, open_durable_store


def _token_store(args: argparse.Namespace) -> TokenStore:
    s = load_settings()
    durable = open_durable_store(
        args.backend or s.STORAGE_BACKEND,
        state_dir=args.state_dir or s.STATE_DIR,
        redis_url=s.REDIS_URL,
    )
    return TokenStore(
        session=MemoryStore(),
        durable=durable,
        clock=SystemClock(),
        ttl_ms=s.TOKEN_TTL_SECONDS * 1000,
        recent_max=s.RECENT_TOKENS_MAX,
        recent_max_age_ms=s.RECENT_TOKENS_MAX_AGE_SECONDS * 1000,
    )


def _print(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def cmd_gc(args: argparse.Namespace) -> int:
    removed = _token_store(args).garbage_collect()
    _print({"removed": removed})
    return 0


def cmd_recent(args: argparse.Namespace) -> int:
    _print(_token_store(args).recent_tokens())
    return 0


def cmd_resolve(args: argparse.Namespace) -> int:
    res = _token_store(args).resolve(args.token)
    _print(res.to_dict())
    return 0 if res.data is not None else 3


def cmd_verify(args: argparse.Namespace) -> int:
    ok = verify_integrity(args.token, SystemClock().now_ms())
    parsed = parse_token(args.token)
    _print({
        "valid": ok,
        "source": parsed.source if parsed else None,
        "timestamp": parsed.timestamp_ms if parsed else None,
    })
    return 0 if ok else 2


def cmd_mint(args: argparse.Namespace) -> int:
    print(mint(args.source, SystemClock()))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="checkout-state",
        description="Operational CLI for checkout order-source state"
    )
    p.add_argument("--backend", choices=["file", "redis", "memory"], default=None)
    p.add_argument("--state-dir", default=None)
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("gc", help="Remove expired snapshots and trim the recent index")
    sp.set_defaults(func=cmd_gc)

    sp = sub.add_parser("recent", help="Print recent order tokens")
    sp.set_defaults(func=cmd_recent)

    sp = sub.add_parser("resolve", help="Resolve a token to its order source snapshot")
    sp.add_argument("token")
    sp.set_defaults(func=cmd_resolve)

    sp = sub.add_parser("verify", help="Check token structure and age")
    sp.add_argument("token")
    sp.set_defaults(func=cmd_verify)

    sp = sub.add_parser("mint", help="Print a new token")
    sp.add_argument("source", choices=list(TOKEN_SOURCES))
    sp.set_defaults(func=cmd_mint)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
