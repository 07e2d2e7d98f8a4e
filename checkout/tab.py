"""
TabSession: one browser tab's view of the checkout state.

A tab owns its session tier and shares the durable tier with every other tab.
The in-memory token cache lives as long as the page does: `navigate()` models
a full page load (checkout -> payment gateway -> thank-you) by dropping the
cache and rebuilding the stores from storage, exactly what a fresh page would
see.

TabRegistry hands out TabSessions by id for the HTTP layer.
"""

from __future__ import annotations
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from checkout import ClockLike, EventHookLike, SchedulerLike
from checkout.commerce_cart import CommerceCart
from checkout.events import null_hook
from checkout.reconciler import Reconciler
from checkout.selection_store import SelectionStore
from checkout.token_store import TokenCache, TokenStore
from storage.tiers import KeyValueStore, MemoryStore


@dataclass
class TabTimings:
    token_ttl_ms: int
    selection_max_age_ms: int
    lock_ms: int
    marker_ms: int
    grace_ms: int
    recent_max: int
    recent_max_age_ms: int
    verify_delay_ms: int
    verify_delay_unknown_ms: int


class TabSession:
    def __init__(
        self,
        tab_id: str,
        durable: KeyValueStore,
        clock: ClockLike,
        scheduler: SchedulerLike,
        *,
        session: Optional[KeyValueStore] = None,
        events: EventHookLike = null_hook,
        timings: Optional[TabTimings] = None,
        lock: Optional[threading.RLock] = None,
    ) -> None:
        self.tab_id = tab_id
        self.durable = durable
        self.session = session if session is not None else MemoryStore()
        self.clock = clock
        self.scheduler = scheduler
        self.events = events
        self.timings = timings
        self.lock = lock or threading.RLock()
        self.navigate()

    def navigate(self) -> None:
        """Full page load: fresh in-memory state, same storage."""
        t = self.timings
        kw = {} if t is None else {
            "ttl_ms": t.token_ttl_ms,
            "recent_max": t.recent_max,
            "recent_max_age_ms": t.recent_max_age_ms,
        }
        self.cache = TokenCache()
        self.tokens = TokenStore(
            session=self.session, durable=self.durable, clock=self.clock,
            cache=self.cache, events=self.events, **kw,
        )
        self.selections = SelectionStore(
            self.session, self.durable, self.clock, self.scheduler, self.tokens,
            events=self.events,
            **({} if t is None else {
                "max_age_ms": t.selection_max_age_ms,
                "lock_ms": t.lock_ms,
                "grace_ms": t.grace_ms,
            }),
        )
        if t is not None:
            self.selections.guard.marker_ms = t.marker_ms
        self.cart = CommerceCart(durable=self.durable, clock=self.clock, tokens=self.tokens, events=self.events)
        # reconcile results outlive the page so the status endpoint can poll them
        prev = getattr(self, "reconciler", None)
        self.reconciler = Reconciler(
            session=self.session, durable=self.durable, clock=self.clock, scheduler=self.scheduler,
            tokens=self.tokens, selections=self.selections, cart=self.cart, events=self.events,
            results=prev.results if prev is not None else OrderedDict(),
            **({} if t is None else {
                "verify_delay_ms": t.verify_delay_ms,
                "verify_delay_unknown_ms": t.verify_delay_unknown_ms,
            }),
        )


@dataclass
class TabRegistry:
    factory: Callable[[str], TabSession]
    max_tabs: int = 1000
    _tabs: Dict[str, TabSession] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, tab_id: str) -> TabSession:
        with self._lock:
            tab = self._tabs.get(tab_id)
            if tab is None:
                if len(self._tabs) >= self.max_tabs:
                    # oldest tab first (dict keeps insertion order)
                    self._tabs.pop(next(iter(self._tabs)))
                tab = self.factory(tab_id)
                self._tabs[tab_id] = tab
            return tab

    def close(self, tab_id: str) -> None:
        with self._lock:
            self._tabs.pop(tab_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tabs)
