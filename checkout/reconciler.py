"""
Reconciler: what the confirmation page does after the payment redirect.

Inputs come from the redirect URL: token, source, orderId.

1. garbage-collect token storage
2. work out which flow produced the order:
   resolved token -> explicit `source` param -> token prefix -> "unknown"
3. clean up that flow's state (both flows for "unknown")
4. record the order (order_analytics, confirmed_orders) and drop the current
   session token
5. after a short delay, re-read storage and publish a VerificationStatus,
   because the cleanup writes are not guaranteed to have landed yet

Nothing here raises; the result object is returned immediately and its
`verification` fills in once the delayed check has run.
"""

from __future__ import annotations
import logging
import random
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from checkout import (
    BUY_NOW_KEY_PREFIX,
    COMMERCE_STATE_KEY,
    CONFIRMED_ORDERS_KEY,
    CURRENT_DATA_KEY,
    CURRENT_TOKEN_KEY,
    ORDER_ANALYTICS_KEY,
    RECENT_TOKENS_KEY,
    RESET_TS_KEY,
    SELECTION_KEY,
    SOURCE_BUY_NOW,
    SOURCE_CART,
    SOURCE_UNKNOWN,
    TOKEN_PREFIX,
    TOKEN_SOURCES,
    VERIFY_DELAY_MS,
    VERIFY_DELAY_UNKNOWN_MS,
    ClockLike,
    EventHookLike,
    SchedulerLike,
)
from checkout.commerce_cart import CommerceCart
from checkout.events import null_hook
from checkout.order_token import source_from_prefix, verify_integrity
from checkout.selection_store import SelectionStore
from checkout.token_store import TokenStore
from storage.records import parse_record, read_record, write_record
from storage.tiers import KeyValueStore, StorageError

log = logging.getLogger("Checkout.Reconciler")

ORDER_ANALYTICS_MAX = 50
CONFIRMED_ORDERS_MAX = 20
RESULTS_MAX = 100


@dataclass
class VerificationStatus:
    buy_now: bool = False
    cart: bool = False
    checked: bool = False
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"buyNow": self.buy_now, "cart": self.cart, "checked": self.checked, "message": self.message}


@dataclass
class ReconcileResult:
    order_id: str
    source: str
    token: Optional[str] = None
    token_valid: bool = False
    resolved_by: str = "none"  # token | query | prefix | none
    snapshot: Optional[Dict[str, Any]] = None
    verification: VerificationStatus = field(default_factory=VerificationStatus)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "source": self.source,
            "token": self.token,
            "tokenValid": self.token_valid,
            "resolvedBy": self.resolved_by,
            "snapshot": self.snapshot,
            "verification": self.verification.to_dict(),
        }


# ---- storage checks (re-read, no in-memory state) ----

def _recent_has_prefix(durable: KeyValueStore, prefix: str) -> bool:
    recent = read_record(durable, RECENT_TOKENS_KEY) or []
    if not isinstance(recent, list):
        return False
    return any(isinstance(t, dict) and str(t.get("token", "")).startswith(prefix) for t in recent)


def verify_buy_now_cleared(session: KeyValueStore, durable: KeyValueStore) -> bool:
    try:
        if session.get_item(SELECTION_KEY):
            return False
        for key in durable.keys():
            if key == RESET_TS_KEY:
                continue
            if key.startswith(f"{TOKEN_PREFIX}{SOURCE_BUY_NOW}") or key.startswith(BUY_NOW_KEY_PREFIX):
                return False
        return not _recent_has_prefix(durable, f"{SOURCE_BUY_NOW}_")
    except StorageError as e:
        log.warning(f"buy-now verification could not read storage: {e}")
        return False


def verify_cart_cleared(session: KeyValueStore, durable: KeyValueStore) -> bool:
    try:
        if session.get_item(CURRENT_TOKEN_KEY) or session.get_item(CURRENT_DATA_KEY):
            return False
        if any(k.startswith(f"{TOKEN_PREFIX}{SOURCE_CART}") for k in durable.keys()):
            return False
        state = parse_record(durable.get_item(COMMERCE_STATE_KEY))
        if isinstance(state, dict) and (state.get("cart") or state.get("directCheckout")):
            return False
        return not _recent_has_prefix(durable, f"{SOURCE_CART}_")
    except StorageError as e:
        log.warning(f"cart verification could not read storage: {e}")
        return False


@dataclass
class Reconciler:
    session: KeyValueStore
    durable: KeyValueStore
    clock: ClockLike
    scheduler: SchedulerLike
    tokens: TokenStore
    selections: SelectionStore
    cart: CommerceCart
    events: EventHookLike = null_hook
    verify_delay_ms: int = VERIFY_DELAY_MS
    verify_delay_unknown_ms: int = VERIFY_DELAY_UNKNOWN_MS
    results: "OrderedDict[str, ReconcileResult]" = field(default_factory=OrderedDict)

    # ------------- entry point -------------

    def reconcile(
        self,
        token: Optional[str] = None,
        source: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> ReconcileResult:
        self.tokens.garbage_collect()

        order_id = order_id or f"ORD-{random.randint(100000, 999999)}"
        result = ReconcileResult(order_id=order_id, source=SOURCE_UNKNOWN, token=token or None)
        self._determine_source(result, token, source)

        self._cleanup(result)
        self._track_completion(result)
        self.tokens.clear_current()
        self._remember(result)

        delay = self.verify_delay_unknown_ms if result.source == SOURCE_UNKNOWN else self.verify_delay_ms
        self.scheduler.call_later(delay, lambda: self._verify(result))

        log.info(f"validation complete source={result.source} order_id={order_id} via={result.resolved_by}")
        self.events("order.reconciled", order_id=order_id, source=result.source, via=result.resolved_by)
        return result

    def status(self, order_id: str) -> Optional[ReconcileResult]:
        return self.results.get(order_id)

    # ------------- steps -------------

    def _determine_source(self, result: ReconcileResult, token: Optional[str], source: Optional[str]) -> None:
        if token:
            result.token_valid = verify_integrity(token, self.clock.now_ms())
            res = self.tokens.resolve(token)
            if res.source in TOKEN_SOURCES:
                result.source = res.source
                result.snapshot = res.data
                result.resolved_by = "token"
                return
        if source in TOKEN_SOURCES:
            result.source = source
            result.resolved_by = "query"
            return
        sniffed = source_from_prefix(token)
        if sniffed:
            result.source = sniffed
            result.resolved_by = "prefix"

    def _cleanup(self, result: ReconcileResult) -> None:
        log.info(f"resetting context for source={result.source}")
        if result.source in (SOURCE_BUY_NOW, SOURCE_UNKNOWN):
            self.selections.force_reset_context()
            self.tokens.purge_source(SOURCE_BUY_NOW)
            self.cart.clear_direct_checkout()
        if result.source in (SOURCE_CART, SOURCE_UNKNOWN):
            self.cart.clear_cart()
            self.cart.clear_direct_checkout()
            self.cart.clear_coupon()
            self.tokens.garbage_collect()
            self.tokens.purge_source(SOURCE_CART)
            self.tokens.clear_current()

    def _verify(self, result: ReconcileResult) -> None:
        status = result.verification
        if result.source in (SOURCE_BUY_NOW, SOURCE_UNKNOWN):
            status.buy_now = verify_buy_now_cleared(self.session, self.durable) and not (
                self.selections.product_selection or self.selections.combo_selection
            )
        if result.source in (SOURCE_CART, SOURCE_UNKNOWN):
            status.cart = verify_cart_cleared(self.session, self.durable)
        if result.source == SOURCE_UNKNOWN:
            status.message = "Both contexts reset as precaution"
        status.checked = True
        self.events(
            "order.verified", order_id=result.order_id, source=result.source,
            buy_now=status.buy_now, cart=status.cart,
        )

    def _track_completion(self, result: ReconcileResult) -> None:
        log.info(f"order {result.order_id} completed from {result.source} flow")
        now = self.clock.now_ms()
        analytics = read_record(self.durable, ORDER_ANALYTICS_KEY, delete_invalid=True)
        analytics = analytics if isinstance(analytics, list) else []
        analytics.append(
            {
                "orderId": result.order_id,
                "source": result.source,
                "timestamp": now,
                "date": datetime.fromtimestamp(now / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            }
        )
        confirmed = read_record(self.durable, CONFIRMED_ORDERS_KEY, delete_invalid=True)
        confirmed = confirmed if isinstance(confirmed, list) else []
        if result.order_id not in confirmed:
            confirmed.append(result.order_id)
        try:
            write_record(self.durable, ORDER_ANALYTICS_KEY, analytics[-ORDER_ANALYTICS_MAX:])
            write_record(self.durable, CONFIRMED_ORDERS_KEY, confirmed[-CONFIRMED_ORDERS_MAX:])
        except StorageError as e:
            log.warning(f"failed to record order completion: {e}")

    def _remember(self, result: ReconcileResult) -> None:
        self.results[result.order_id] = result
        self.results.move_to_end(result.order_id)
        while len(self.results) > RESULTS_MAX:
            self.results.popitem(last=False)
