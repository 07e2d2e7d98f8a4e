"""
TokenStore — order source snapshots keyed by token.

Where a snapshot lives (written by store()):
- TokenCache            : process-scoped object, last token only (same-tick reads)
- session tier          : order_source_token / order_source_data (single slot)
- durable tier          : order_source_{timestamp} and token_{token} (either key
                          alone is enough to find the snapshot again)
- durable tier          : recent_order_tokens, capped recency index

resolve() walks those cheapest-first and falls back to scanning every durable
key with one of our prefixes, comparing the embedded token.

garbage_collect() runs opportunistically on store, resolve and startup. It
removes expired snapshots together with their paired sibling key, drops
malformed durable entries and trims the recency index to the last hour.

Every storage access is exception-safe; nothing here raises past the public
methods except store() on an unknown source.
"""

from __future__ import annotations
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from checkout import (
    CURRENT_DATA_KEY,
    CURRENT_TOKEN_KEY,
    ORDER_SOURCE_PREFIX,
    RECENT_TOKENS_KEY,
    RECENT_TOKENS_MAX,
    RECENT_TOKENS_MAX_AGE_MS,
    SOURCE_UNKNOWN,
    TOKEN_PREFIX,
    TOKEN_SOURCES,
    TOKEN_TTL_MS,
    ClockLike,
    EventHookLike,
)
from checkout.events import null_hook
from storage.records import RecordEncodeError, encode_record, parse_record, read_record, write_record
from storage.tiers import KeyValueStore, StorageError

log = logging.getLogger("Checkout.Tokens")

SNAPSHOT_SCHEMA = "order_source"
RECENT_SCHEMA = "recent_tokens"


@dataclass
class TokenCache:
    """In-memory copy of the most recently stored snapshot."""

    token: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def put(self, token: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self.token = token
            self.data = data

    def get(self, token: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            if token and self.token == token:
                return self.data
            return None

    def clear(self) -> None:
        with self._lock:
            self.token = None
            self.data = None


@dataclass
class Resolution:
    source: str
    data: Optional[Dict[str, Any]] = None
    tier: Optional[str] = None

    @property
    def context_items(self) -> Optional[list]:
        return (self.data or {}).get("contextItems")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"source": self.source}
        if self.data is not None:
            out["data"] = self.data
            out["contextItems"] = self.context_items
        return out


def clamp_quantity(q: Any) -> int:
    try:
        n = float(q)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(n):
        return 1
    return max(1, int(math.floor(n)))


def _text(v: Any) -> Optional[str]:
    if v is None or isinstance(v, (dict, list)):
        return None
    return str(v)


def normalize_items(items: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Reduce checkout items to {productId, productName, quantity}. Accepts cart
    entries ({product: {...}, quantity}) or already-flat items. Ids and names
    are kept as strings, quantities as positive ints ("2" from a form -> 2).
    """
    out: List[Dict[str, Any]] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        product = item.get("product") if isinstance(item.get("product"), dict) else {}
        pid = product.get("id")
        name = product.get("name")
        out.append(
            {
                "productId": _text(pid if pid is not None else item.get("productId")),
                "productName": _text(name if name is not None else item.get("productName")),
                "quantity": clamp_quantity(item.get("quantity", 1)),
            }
        )
    return out


def _is_ours(key: str) -> bool:
    return key.startswith(ORDER_SOURCE_PREFIX) or key.startswith(TOKEN_PREFIX)


def _sibling_key(key: str, data: Dict[str, Any]) -> Optional[str]:
    if key.startswith(TOKEN_PREFIX):
        ts = data.get("timestamp")
        return f"{ORDER_SOURCE_PREFIX}{int(ts)}" if isinstance(ts, (int, float)) else None
    tok = data.get("token")
    return f"{TOKEN_PREFIX}{tok}" if tok else None


@dataclass
class TokenStore:
    session: KeyValueStore
    durable: KeyValueStore
    clock: ClockLike
    cache: TokenCache = field(default_factory=TokenCache)
    events: EventHookLike = null_hook
    ttl_ms: int = TOKEN_TTL_MS
    recent_max: int = RECENT_TOKENS_MAX
    recent_max_age_ms: int = RECENT_TOKENS_MAX_AGE_MS

    # ------------- write -------------

    def store(
        self,
        token: str,
        source: str,
        items: list,
        order_id: Optional[str] = None,
        context_items: Optional[list] = None,
    ) -> Dict[str, Any]:
        """Returns the stored snapshot, or {} when token or source is unusable."""
        if not isinstance(token, str) or not token:
            log.error(f"store: invalid token {token!r}")
            self.events("token.rejected", token=token, reason="invalid_token")
            return {}
        if source not in TOKEN_SOURCES and source != SOURCE_UNKNOWN:
            log.error(f"store: unknown order source {source!r} for token={token}")
            self.events("token.rejected", token=token, reason="unknown_source", source=source)
            return {}
        items = list(items) if isinstance(items, (list, tuple)) else []
        now = self.clock.now_ms()
        data: Dict[str, Any] = {
            "token": token,
            "source": source,
            "items": normalize_items(items),
            "contextItems": list(context_items) if isinstance(context_items, (list, tuple)) and context_items
            else list(items),
            "timestamp": now,
            "expiresAt": now + self.ttl_ms,
            "orderId": _text(order_id),
        }
        try:
            encode_record(data)
        except RecordEncodeError as e:
            log.warning(f"contextItems for token={token} are not JSON, keeping normalised items: {e}")
            data["contextItems"] = [dict(i) for i in data["items"]]
        log.info(
            f"storing token={token} source={source} items={len(items)} "
            f"order_id={order_id} context={bool(context_items)}"
        )

        try:
            self.session.set_item(CURRENT_TOKEN_KEY, token)
            write_record(self.session, CURRENT_DATA_KEY, data)
        except StorageError as e:
            log.error(f"session tier write failed: {e}")
            self.events("storage.degraded", tier="session", op="store", token=token)

        try:
            write_record(self.durable, f"{ORDER_SOURCE_PREFIX}{now}", data)
            write_record(self.durable, f"{TOKEN_PREFIX}{token}", data)
            recent = self.recent_tokens()
            recent.append({"token": token, "source": source, "timestamp": now})
            while len(recent) > self.recent_max:
                recent.pop(0)
            write_record(self.durable, RECENT_TOKENS_KEY, recent)
        except StorageError as e:
            log.error(f"durable tier write failed: {e}")
            self.events("storage.degraded", tier="durable", op="store", token=token)

        self.cache.put(token, data)
        self.events("token.stored", token=token, source=source)
        self.garbage_collect()
        return data

    def attach_order_id(self, token: str, order_id: str) -> bool:
        """Stamp the server's order id onto every copy of the snapshot."""
        if not token or order_id is None:
            return False
        order_id = str(order_id)
        updated = False
        cached = self.cache.get(token)
        if cached is not None:
            cached["orderId"] = order_id
            updated = True

        try:
            if self.session.get_item(CURRENT_TOKEN_KEY) == token:
                data = read_record(self.session, CURRENT_DATA_KEY, schema=SNAPSHOT_SCHEMA)
                if data is not None:
                    data["orderId"] = order_id
                    write_record(self.session, CURRENT_DATA_KEY, data)
                    updated = True
        except StorageError as e:
            log.error(f"order id update (session) failed: {e}")

        key = f"{TOKEN_PREFIX}{token}"
        data = read_record(self.durable, key, schema=SNAPSHOT_SCHEMA, delete_invalid=True)
        if data is not None:
            data["orderId"] = order_id
            try:
                write_record(self.durable, key, data)
                sib = _sibling_key(key, data)
                if sib and self._durable_get(sib) is not None:
                    write_record(self.durable, sib, data)
                updated = True
            except StorageError as e:
                log.error(f"order id update (durable) failed: {e}")
        return updated

    # ------------- read -------------

    def resolve(self, token: Optional[str]) -> Resolution:
        if not token:
            log.info("resolve: no token provided")
            return Resolution(source=SOURCE_UNKNOWN)

        now = self.clock.now_ms()
        res = self._lookup(token, now)
        self.garbage_collect()
        if res is None:
            log.info(f"resolve: token not found {token}")
            self.events("token.unresolved", token=token)
            return Resolution(source=SOURCE_UNKNOWN)
        self.events("token.resolved", token=token, tier=res.tier, source=res.source)
        return res

    get_order_source_from_token = resolve

    def _lookup(self, token: str, now: int) -> Optional[Resolution]:
        cached = self.cache.get(token)
        if cached and cached.get("expiresAt", 0) > now:
            return Resolution(source=cached["source"], data=cached, tier="memory")

        try:
            if self.session.get_item(CURRENT_TOKEN_KEY) == token:
                data = read_record(self.session, CURRENT_DATA_KEY, schema=SNAPSHOT_SCHEMA)
                if data and data["expiresAt"] > now:
                    return Resolution(source=data["source"], data=data, tier="session")
        except StorageError as e:
            log.error(f"session tier read failed: {e}")

        data = read_record(self.durable, f"{TOKEN_PREFIX}{token}", schema=SNAPSHOT_SCHEMA, delete_invalid=True)
        if data and data["expiresAt"] > now:
            return Resolution(source=data["source"], data=data, tier="durable")

        for key in self._durable_keys():
            if not _is_ours(key):
                continue
            data = parse_record(self._durable_get(key), SNAPSHOT_SCHEMA)
            if data and data.get("token") == token and data["expiresAt"] > now:
                log.info(f"resolve: found entry under durable key {key}")
                return Resolution(source=data["source"], data=data, tier="scan")
        return None

    def recent_tokens(self) -> List[Dict[str, Any]]:
        data = read_record(self.durable, RECENT_TOKENS_KEY, schema=RECENT_SCHEMA, delete_invalid=True)
        return list(data) if data else []

    # ------------- cleanup -------------

    def garbage_collect(self) -> int:
        now = self.clock.now_ms()
        removed = 0

        try:
            raw = self.session.get_item(CURRENT_DATA_KEY)
            if raw is not None:
                data = parse_record(raw, SNAPSHOT_SCHEMA)
                if data is None or data["expiresAt"] < now:
                    self.session.remove_item(CURRENT_TOKEN_KEY)
                    self.session.remove_item(CURRENT_DATA_KEY)
                    removed += 2
        except StorageError as e:
            log.warning(f"session gc failed: {e}")

        cached = self.cache.data
        if cached and cached.get("expiresAt", 0) < now:
            self.cache.clear()

        for key in self._durable_keys():
            if not _is_ours(key):
                continue
            raw = self._durable_get(key)
            if raw is None:
                # already removed as a sibling earlier in this pass
                continue
            data = parse_record(raw, SNAPSHOT_SCHEMA)
            if data is None:
                removed += self._durable_remove(key)
                continue
            if data["expiresAt"] < now:
                removed += self._durable_remove(key)
                sib = _sibling_key(key, data)
                if sib:
                    removed += self._durable_remove(sib)

        recent = self.recent_tokens()
        fresh = [t for t in recent if now - t["timestamp"] < self.recent_max_age_ms]
        if len(fresh) != len(recent):
            try:
                write_record(self.durable, RECENT_TOKENS_KEY, fresh)
            except StorageError as e:
                log.warning(f"recent index trim failed: {e}")

        if removed:
            self.events("token.gc", removed=removed)
        return removed

    cleanup_old_order_sources = garbage_collect

    def clear_current(self) -> None:
        log.info("clearing current order source (session)")
        for key in (CURRENT_TOKEN_KEY, CURRENT_DATA_KEY):
            try:
                self.session.remove_item(key)
            except StorageError as e:
                log.error(f"session clear failed: {e}")
        self.cache.clear()

    clear_current_order_source = clear_current

    def purge_source(self, source: str) -> int:
        """Remove every durable snapshot and recency entry minted for `source`."""
        removed = 0
        prefix = f"{source}_"
        for key in self._durable_keys():
            if not _is_ours(key):
                continue
            if key.startswith(f"{TOKEN_PREFIX}{prefix}"):
                data = parse_record(self._durable_get(key), SNAPSHOT_SCHEMA)
                removed += self._durable_remove(key)
                if data:
                    sib = _sibling_key(key, data)
                    if sib:
                        removed += self._durable_remove(sib)
            elif key.startswith(ORDER_SOURCE_PREFIX):
                data = parse_record(self._durable_get(key), SNAPSHOT_SCHEMA)
                if data and str(data.get("token", "")).startswith(prefix):
                    removed += self._durable_remove(key)

        recent = self.recent_tokens()
        kept = [t for t in recent if not str(t.get("token", "")).startswith(prefix)]
        if len(kept) != len(recent):
            try:
                write_record(self.durable, RECENT_TOKENS_KEY, kept)
            except StorageError as e:
                log.warning(f"recent index purge failed: {e}")

        if (self.cache.token or "").startswith(prefix):
            self.cache.clear()
        return removed

    # ------------- internal helpers -------------

    def _durable_keys(self) -> List[str]:
        try:
            return self.durable.keys()
        except StorageError as e:
            log.error(f"durable scan failed: {e}")
            return []

    def _durable_get(self, key: str) -> Optional[str]:
        try:
            return self.durable.get_item(key)
        except StorageError:
            return None

    def _durable_remove(self, key: str) -> int:
        try:
            if self.durable.get_item(key) is None:
                return 0
            self.durable.remove_item(key)
            return 1
        except StorageError as e:
            log.warning(f"remove {key} failed: {e}")
            return 0
