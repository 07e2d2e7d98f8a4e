"""
Checkout state package: constants, storage keys & protocol types.

Exposes:
- timing constants (token TTL, reset lock, grace window)
- storage key names shared by the checkout page and the confirmation page
- protocol types for DI hints
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional, Protocol

TOKEN_TTL_MS = 30 * 60 * 1000             # order source snapshots
SELECTION_MAX_AGE_MS = 30 * 60 * 1000     # persisted buy-now selection
RESET_LOCK_MS = 3000
RESET_MARKER_MS = 3000
RESET_GRACE_MS = 500
RECENT_TOKENS_MAX = 10
RECENT_TOKENS_MAX_AGE_MS = 60 * 60 * 1000
VERIFY_DELAY_MS = 250
VERIFY_DELAY_UNKNOWN_MS = 350

SOURCE_BUY_NOW = "buy_now"
SOURCE_CART = "cart"
SOURCE_UNKNOWN = "unknown"
TOKEN_SOURCES = (SOURCE_BUY_NOW, SOURCE_CART)

# ---- Storage keys ----

# session tier (per tab)
SELECTION_KEY = "sn-buy-now-selection"
EPOCH_KEY = "sn-buy-now-epoch"
LOCK_UNTIL_KEY = "sn-buy-now-lock-until"
CURRENT_TOKEN_KEY = "order_source_token"
CURRENT_DATA_KEY = "order_source_data"

# durable tier (shared)
RESET_TS_KEY = "sn-buy-now-reset-ts"
ORDER_SOURCE_PREFIX = "order_source_"
TOKEN_PREFIX = "token_"
RECENT_TOKENS_KEY = "recent_order_tokens"
COMMERCE_STATE_KEY = "sn-commerce-state-v1"
ORDER_ANALYTICS_KEY = "order_analytics"
CONFIRMED_ORDERS_KEY = "confirmed_orders"

BUY_NOW_KEY_PREFIX = "sn-buy-now"


# ---- Protocols (for type-hints / DI) ----


class ClockLike(Protocol):
    def now_ms(self) -> int: ...


class SchedulerLike(Protocol):
    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> Any: ...


class EventHookLike(Protocol):
    def __call__(self, event: str, **fields: Any) -> None: ...


class TokenStoreLike(Protocol):
    def store(
        self,
        token: str,
        source: str,
        items: list,
        order_id: Optional[str] = None,
        context_items: Optional[list] = None,
    ) -> Dict[str, Any]: ...
    def garbage_collect(self) -> int: ...
    def clear_current(self) -> None: ...
    def purge_source(self, source: str) -> int: ...
