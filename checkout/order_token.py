"""
Order source tokens.

Format: "{source}_{unixMillis}_{random}" with source in {buy_now, cart}.
The random part is base36(mint time) followed by 16 hex chars from `secrets`;
it is for correlation inside one browser, not for security.

A token is checkable without any lookup: structure + age (verify_integrity).
"""

from __future__ import annotations
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from checkout import SOURCE_BUY_NOW, SOURCE_CART, TOKEN_SOURCES, TOKEN_TTL_MS, ClockLike

log = logging.getLogger("Checkout.Tokens")

_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


@dataclass(frozen=True)
class ParsedToken:
    source: str
    timestamp_ms: int
    random: str


def mint(source: str, clock: ClockLike) -> str:
    if source not in TOKEN_SOURCES:
        raise ValueError(f"Unknown order source: {source!r}")
    ts = clock.now_ms()
    token = f"{source}_{ts}_{_base36(ts)}{secrets.token_hex(8)}"
    log.info(f"generated token={token} source={source} len={len(token)}")
    return token


def parse_token(token: Optional[str]) -> Optional[ParsedToken]:
    """
    Split on the two trailing underscores; everything before them is the source
    (which itself contains an underscore for buy_now).
    """
    if not token or not isinstance(token, str):
        return None
    head, sep, rnd = token.rpartition("_")
    if not sep:
        return None
    source, sep, ts_part = head.rpartition("_")
    if not sep:
        return None
    try:
        ts = int(ts_part)
    except ValueError:
        return None
    return ParsedToken(source=source, timestamp_ms=ts, random=rnd)


def verify_integrity(token: Optional[str], now_ms: int, ttl_ms: int = TOKEN_TTL_MS) -> bool:
    parsed = parse_token(token)
    if parsed is None:
        log.info(f"integrity: malformed token {token!r}")
        return False
    if parsed.source not in TOKEN_SOURCES:
        log.info(f"integrity: invalid source {parsed.source!r}")
        return False
    age = now_ms - parsed.timestamp_ms
    if parsed.timestamp_ms <= 0 or age > ttl_ms:
        log.info(f"integrity: invalid timestamp ts={parsed.timestamp_ms} age={age}")
        return False
    return True


def source_from_prefix(token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    if token.startswith(SOURCE_CART + "_"):
        return SOURCE_CART
    if token.startswith(SOURCE_BUY_NOW + "_"):
        return SOURCE_BUY_NOW
    return None
