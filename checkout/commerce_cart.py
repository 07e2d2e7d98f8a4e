"""
CommerceCart — cart, wishlist, direct checkout and applied coupon.

Everything is persisted in one versioned envelope in the durable tier:

    sn-commerce-state-v1 = {
        "version": 1, "updatedAt": ms,
        "cart": [{"product": {...}, "quantity": n}],
        "wishlist": [{...product}],
        "ip": str | null,
        "directCheckout": [{"product": {...}, "quantity": n}],
        "appliedCoupon": {...} | null
    }

The envelope is rewritten on every mutation; last write wins across tabs.
Entries without a string product id are dropped on read; an envelope with
another version is ignored.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from checkout import COMMERCE_STATE_KEY, ClockLike, EventHookLike
from checkout.events import null_hook
from checkout.order_token import mint
from checkout.token_store import TokenStore, clamp_quantity
from storage.records import read_record, write_record
from storage.tiers import KeyValueStore, StorageError

log = logging.getLogger("Checkout.Cart")

STATE_VERSION = 1
COMMERCE_SCHEMA = "commerce_state"


def ensure_product(product: Any) -> bool:
    return isinstance(product, dict) and isinstance(product.get("id"), str)


def sanitize_cart_entries(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    out: List[Dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, dict) or not ensure_product(entry.get("product")):
            continue
        out.append({"product": entry["product"], "quantity": clamp_quantity(entry.get("quantity", 1))})
    return out


def sanitize_wishlist(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [p for p in raw if ensure_product(p)]


@dataclass
class CommerceCart:
    durable: KeyValueStore
    clock: ClockLike
    tokens: TokenStore
    events: EventHookLike = null_hook

    cart: List[Dict[str, Any]] = field(default_factory=list)
    wishlist: List[Dict[str, Any]] = field(default_factory=list)
    direct_checkout: List[Dict[str, Any]] = field(default_factory=list)
    applied_coupon: Optional[Dict[str, Any]] = None
    user_ip: Optional[str] = None

    def __post_init__(self):
        self.load()
        self.tokens.garbage_collect()

    # ------------- persistence -------------

    def load(self) -> None:
        state = read_record(self.durable, COMMERCE_STATE_KEY, schema=COMMERCE_SCHEMA)
        if state is None:
            self.cart, self.wishlist, self.direct_checkout = [], [], []
            self.user_ip = None
            self.applied_coupon = None
            return
        self.cart = sanitize_cart_entries(state.get("cart"))
        self.wishlist = sanitize_wishlist(state.get("wishlist"))
        self.direct_checkout = sanitize_cart_entries(state.get("directCheckout"))
        self.user_ip = state.get("ip") if isinstance(state.get("ip"), str) else None
        coupon = state.get("appliedCoupon")
        self.applied_coupon = coupon if isinstance(coupon, dict) else None

    def to_state(self) -> Dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "updatedAt": self.clock.now_ms(),
            "cart": self.cart,
            "wishlist": self.wishlist,
            "ip": self.user_ip,
            "directCheckout": self.direct_checkout,
            "appliedCoupon": self.applied_coupon,
        }

    def save(self) -> None:
        try:
            write_record(self.durable, COMMERCE_STATE_KEY, self.to_state())
        except StorageError as e:
            log.warning(f"failed to persist commerce state: {e}")
            self.events("storage.degraded", tier="durable", op="commerce_save")

    # ------------- cart -------------

    def add_to_cart(self, product: Dict[str, Any], quantity: Any = 1) -> bool:
        if not ensure_product(product):
            return False
        q = clamp_quantity(quantity)
        for entry in self.cart:
            if entry["product"]["id"] == product["id"]:
                entry["quantity"] += q
                break
        else:
            self.cart.append({"product": product, "quantity": q})
        self.save()
        return True

    def remove_from_cart(self, product_id: str) -> None:
        self.cart = [e for e in self.cart if e["product"]["id"] != product_id]
        self.save()

    def clear_cart(self) -> None:
        self.cart = []
        self.save()

    def is_in_cart(self, product_id: str) -> bool:
        return any(e["product"]["id"] == product_id for e in self.cart)

    # ------------- wishlist -------------

    def add_to_wishlist(self, product: Dict[str, Any]) -> bool:
        if not ensure_product(product):
            return False
        if not self.is_in_wishlist(product["id"]):
            self.wishlist.append(product)
            self.save()
        return True

    def remove_from_wishlist(self, product_id: str) -> None:
        self.wishlist = [p for p in self.wishlist if p["id"] != product_id]
        self.save()

    def toggle_wishlist(self, product: Dict[str, Any]) -> bool:
        """Returns True when the product is in the wishlist afterwards."""
        if not ensure_product(product):
            return False
        if self.is_in_wishlist(product["id"]):
            self.remove_from_wishlist(product["id"])
            return False
        self.wishlist.append(product)
        self.save()
        return True

    def clear_wishlist(self) -> None:
        self.wishlist = []
        self.save()

    def is_in_wishlist(self, product_id: str) -> bool:
        return any(p["id"] == product_id for p in self.wishlist)

    # ------------- direct checkout / coupon -------------

    def start_direct_checkout(self, product: Dict[str, Any], quantity: Any = 1) -> bool:
        if not ensure_product(product):
            return False
        self.direct_checkout = [{"product": product, "quantity": clamp_quantity(quantity)}]
        self.save()
        return True

    def clear_direct_checkout(self) -> None:
        self.direct_checkout = []
        self.save()

    @property
    def using_direct_checkout(self) -> bool:
        return bool(self.direct_checkout)

    @property
    def active_checkout_items(self) -> List[Dict[str, Any]]:
        return self.direct_checkout if self.direct_checkout else self.cart

    def apply_coupon(self, coupon: Dict[str, Any]) -> None:
        self.applied_coupon = dict(coupon)
        self.save()

    def clear_coupon(self) -> None:
        self.applied_coupon = None
        self.save()

    def set_user_ip(self, ip: Optional[str]) -> None:
        self.user_ip = ip
        self.save()

    # ------------- token delegates -------------

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

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cart": self.cart,
            "wishlist": self.wishlist,
            "directCheckout": self.direct_checkout,
            "activeCheckoutItems": self.active_checkout_items,
            "usingDirectCheckout": self.using_direct_checkout,
            "appliedCoupon": self.applied_coupon,
            "ip": self.user_ip,
        }
