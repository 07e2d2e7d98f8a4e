"""
SelectionStore — the remembered "buy now" selection of one tab.

Holds at most one selection: a product OR a combo, never both. Every mutation
is written through to the session tier as

    {"epoch": <epoch at write time>, "product"?: {...}, "combo"?: {...}}

and read back on construction (hydrate) only if the epoch still matches and no
reset marker / lock window is active.

Hard reset (force_reset_context) order matters:
  1. in-process reset flag (drops registrations right away)
  2. reset marker + lock window
  3. epoch bump: anything persisted before this point is now unreadable,
     even if a late write lands after the deletes below
  4. both slots cleared in memory, synchronously
  5. purge of every key we own in both tiers + token cleanup
  6. after the grace window the flag and the marker are released

Soft reset (reset_context) only clears memory + the persisted selection.

Registrations dropped during a reset are reported through the event hook
("selection.dropped"), never raised.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from checkout import (
    BUY_NOW_KEY_PREFIX,
    RESET_GRACE_MS,
    RESET_LOCK_MS,
    RESET_TS_KEY,
    SELECTION_KEY,
    SELECTION_MAX_AGE_MS,
    SOURCE_BUY_NOW,
    TOKEN_PREFIX,
    ClockLike,
    EventHookLike,
    SchedulerLike,
)
from checkout.epoch_guard import EpochGuard
from checkout.events import null_hook
from checkout.order_token import mint
from checkout.token_store import TokenStore, clamp_quantity
from storage.records import read_record, write_record
from storage.tiers import KeyValueStore, StorageError

log = logging.getLogger("Checkout.BuyNow")

SELECTION_SCHEMA = "buy_now_selection"


class SelectionKind(str, Enum):
    PRODUCT = "product"
    COMBO = "combo"


@dataclass
class Selection:
    data: Dict[str, Any]
    quantity: int
    captured_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "quantity": self.quantity, "capturedAt": self.captured_at}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Selection":
        return cls(data=raw["data"], quantity=int(raw["quantity"]), captured_at=int(raw["capturedAt"]))


@dataclass
class ContextState:
    product_selection: Optional[Selection]
    combo_selection: Optional[Selection]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productSelection": self.product_selection.to_dict() if self.product_selection else None,
            "comboSelection": self.combo_selection.to_dict() if self.combo_selection else None,
        }


# ---- payload helpers ----

def _finite(v: Any, fallback: float) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
        return fallback
    return v


def is_combo_with_cart_product(data: Any) -> bool:
    return isinstance(data, dict) and "comboOffer" in data and "cartProduct" in data


def is_combo_payload(data: Any) -> bool:
    if not isinstance(data, dict):
        return False
    pricing = data.get("pricing")
    if isinstance(pricing, dict) and "discountedPrice" in pricing:
        return True
    if isinstance(data.get("products"), list):
        return True
    inventory = data.get("inventory")
    if isinstance(inventory, dict) and "totalStock" in inventory:
        return True
    return False


def classify_payload(data: Any) -> SelectionKind:
    """Shape check for payloads that arrive without an explicit kind."""
    if is_combo_with_cart_product(data) or is_combo_payload(data):
        return SelectionKind.COMBO
    return SelectionKind.PRODUCT


def parse_kind(raw: Any) -> Optional[SelectionKind]:
    try:
        return SelectionKind(raw)
    except ValueError:
        return None


def enrich_product(product: Dict[str, Any]) -> Dict[str, Any]:
    price = _finite(product.get("price"), 0)
    out = dict(product)
    out["price"] = price
    out["oldPrice"] = _finite(product.get("oldPrice"), price)
    out["name"] = product["name"] if isinstance(product.get("name"), str) else "Product"
    out["image"] = product["image"] if isinstance(product.get("image"), str) else ""
    out["slug"] = product["slug"] if isinstance(product.get("slug"), str) else product["id"]
    if "deliveryCharge" in product and product["deliveryCharge"] is not None:
        out["deliveryCharge"] = _finite(product["deliveryCharge"], 0)
    return out


def normalize_selection_data(kind: SelectionKind, data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    if kind is SelectionKind.PRODUCT and isinstance(data.get("id"), str):
        return enrich_product(data)
    return dict(data)


class SelectionStore:
    def __init__(
        self,
        session: KeyValueStore,
        durable: KeyValueStore,
        clock: ClockLike,
        scheduler: SchedulerLike,
        tokens: TokenStore,
        *,
        guard: Optional[EpochGuard] = None,
        events: EventHookLike = null_hook,
        max_age_ms: int = SELECTION_MAX_AGE_MS,
        lock_ms: int = RESET_LOCK_MS,
        grace_ms: int = RESET_GRACE_MS,
    ) -> None:
        self.session = session
        self.durable = durable
        self.clock = clock
        self.scheduler = scheduler
        self.tokens = tokens
        self.guard = guard or EpochGuard(session=session, durable=durable, clock=clock)
        self.events = events
        self.max_age_ms = max_age_ms
        self.lock_ms = lock_ms
        self.grace_ms = grace_ms

        self._reset_in_progress = False
        self.product_selection, self.combo_selection = self.hydrate()
        self.tokens.garbage_collect()

    @property
    def reset_in_progress(self) -> bool:
        return self._reset_in_progress

    # -------- hydrate / persist --------

    def hydrate(self) -> Tuple[Optional[Selection], Optional[Selection]]:
        if self.guard.blocked():
            log.info("reset/lock pending, skipping hydration")
            return None, None

        parsed = read_record(self.session, SELECTION_KEY, schema=SELECTION_SCHEMA, delete_invalid=True)
        if parsed is None:
            return None, None

        if parsed["epoch"] != self.guard.current():
            log.info("epoch mismatch, ignoring persisted selection")
            self._remove_session_key(SELECTION_KEY)
            return None, None

        now = self.clock.now_ms()
        product = combo = None
        if parsed.get("product") and now - parsed["product"]["capturedAt"] < self.max_age_ms:
            product = Selection.from_dict(parsed["product"])
        if parsed.get("combo") and now - parsed["combo"]["capturedAt"] < self.max_age_ms:
            combo = Selection.from_dict(parsed["combo"])
        if product or combo:
            log.info("selection hydrated")
        return product, combo

    def persist(self) -> bool:
        """Write-through of both slots. Returns False when suppressed or failed."""
        if self._reset_in_progress or self.guard.blocked():
            self.events("selection.persist_suppressed")
            return False
        try:
            if not self.product_selection and not self.combo_selection:
                self.session.remove_item(SELECTION_KEY)
                return True
            payload: Dict[str, Any] = {"epoch": self.guard.current()}
            if self.product_selection:
                payload["product"] = self.product_selection.to_dict()
            if self.combo_selection:
                payload["combo"] = self.combo_selection.to_dict()
            write_record(self.session, SELECTION_KEY, payload)
            return True
        except StorageError as e:
            log.warning(f"persist failed, keeping selection in memory only: {e}")
            self.events("storage.degraded", tier="session", op="persist")
            return False

    # -------- registration --------

    def register_selection(
        self,
        kind: Optional[SelectionKind | str],
        data: Any,
        quantity: Any = 1,
    ) -> bool:
        if not data:
            return False
        if kind is None:
            kind = classify_payload(data)
        else:
            parsed = parse_kind(kind)
            if parsed is None:
                log.warning(f"dropped selection with unknown kind {kind!r}")
                self.events("selection.dropped", kind=str(kind), reason="unknown_kind")
                return False
            kind = parsed

        if self._reset_in_progress or self.guard.blocked():
            log.info(f"blocked {kind.value} selection (reset/lock active)")
            self.events(
                "selection.dropped",
                kind=kind.value,
                reason="reset_in_progress" if self._reset_in_progress else "locked",
            )
            return False

        selection = Selection(
            data=normalize_selection_data(kind, data),
            quantity=clamp_quantity(quantity),
            captured_at=self.clock.now_ms(),
        )
        if kind is SelectionKind.PRODUCT:
            self.product_selection, self.combo_selection = selection, None
        else:
            self.combo_selection, self.product_selection = selection, None
        self.persist()
        return True

    def register_product_selection(self, data: Any, quantity: Any = 1) -> bool:
        return self.register_selection(SelectionKind.PRODUCT, data, quantity)

    def register_combo_selection(self, data: Any, quantity: Any = 1) -> bool:
        return self.register_selection(SelectionKind.COMBO, data, quantity)

    # -------- clearing --------

    def clear(self, kind: SelectionKind | str) -> bool:
        parsed = parse_kind(kind)
        if parsed is None:
            log.warning(f"ignored clear for unknown kind {kind!r}")
            return False
        if parsed is SelectionKind.PRODUCT:
            self.product_selection = None
        else:
            self.combo_selection = None
        self.persist()
        return True

    def clear_product_selection(self) -> None:
        self.clear(SelectionKind.PRODUCT)

    def clear_combo_selection(self) -> None:
        self.clear(SelectionKind.COMBO)

    def clear_selections(self) -> None:
        self.product_selection = None
        self.combo_selection = None
        self.persist()

    clear_all = clear_selections

    def reset_context(self) -> None:
        """Soft reset: memory + persisted selection only."""
        self.clear_selections()
        self._remove_session_key(SELECTION_KEY)
        self.tokens.garbage_collect()
        self.tokens.clear_current()

    def force_reset_context(self) -> None:
        log.info("force reset started")
        self._reset_in_progress = True
        self.guard.mark_reset_pending()
        self.guard.lock_for(self.lock_ms)
        epoch = self.guard.bump()

        self.product_selection = None
        self.combo_selection = None

        self._purge_owned_keys()
        self.events("selection.hard_reset", epoch=epoch)
        self.scheduler.call_later(self.grace_ms, self._finish_reset)

    def _finish_reset(self) -> None:
        self._reset_in_progress = False
        self.guard.clear_reset_flag()
        log.info("force reset finished")

    def _purge_owned_keys(self) -> None:
        # epoch and lock stay: they are what keeps late writes unreadable
        self._remove_session_key(SELECTION_KEY)

        try:
            keys = self.durable.keys()
        except StorageError as e:
            log.error(f"failed to scan durable tier during reset: {e}")
            keys = []
        for key in keys:
            if key == RESET_TS_KEY:
                continue
            if key.startswith(f"{TOKEN_PREFIX}{SOURCE_BUY_NOW}") or key.startswith(BUY_NOW_KEY_PREFIX):
                try:
                    self.durable.remove_item(key)
                except StorageError as e:
                    log.error(f"failed to remove {key}: {e}")

        self.tokens.purge_source(SOURCE_BUY_NOW)
        self.tokens.clear_current()
        self.tokens.garbage_collect()
        log.info("all buy-now state cleaned")

    def _remove_session_key(self, key: str) -> None:
        try:
            self.session.remove_item(key)
        except StorageError as e:
            log.warning(f"failed to remove {key}: {e}")

    # -------- state / token delegates --------

    def get_context_state(self) -> ContextState:
        return ContextState(product_selection=self.product_selection, combo_selection=self.combo_selection)

    def generate_order_token(self, source: str) -> str:
        return mint(source, self.clock)

    def store_order_source_snapshot(
        self,
        token: str,
        source: str,
        items: list,
        order_id: Optional[str] = None,
        context_items: Optional[list] = None,
    ) -> Dict[str, Any]:
        return self.tokens.store(token, source, items, order_id, context_items)

    def cleanup_order_token_storage(self) -> int:
        return self.tokens.garbage_collect()

    def clear_order_token_session(self) -> None:
        self.tokens.clear_current()
