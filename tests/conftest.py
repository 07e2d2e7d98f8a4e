"""
Global test fixtures for the checkout state repo.

Everything runs on manual time: ManualClock + ManualScheduler, so "after the
500 ms grace window" is `clock.advance(500)`, not a sleep. Storage tiers are
in-memory unless a test asks for the file-backed one.
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List

import pytest

# ---------------------------------------------------------------------------
# Import target app
# ---------------------------------------------------------------------------
import sys
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import create_app  # type: ignore
from checkout.commerce_cart import CommerceCart  # type: ignore
from checkout.events import EventLog  # type: ignore
from checkout.reconciler import Reconciler  # type: ignore
from checkout.selection_store import SelectionStore  # type: ignore
from checkout.timing import ManualClock, ManualScheduler  # type: ignore
from checkout.token_store import TokenCache, TokenStore  # type: ignore
from storage.tiers import MemoryStore  # type: ignore

T0 = 1_700_000_000_000

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(current_ms=T0)


@pytest.fixture()
def scheduler(clock: ManualClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture()
def session() -> MemoryStore:
    """One tab's session tier."""
    return MemoryStore()


@pytest.fixture()
def durable() -> MemoryStore:
    """Origin-wide durable tier."""
    return MemoryStore()


@pytest.fixture()
def events() -> EventLog:
    return EventLog()


@pytest.fixture()
def tokens(session, durable, clock, events) -> TokenStore:
    return TokenStore(session=session, durable=durable, clock=clock, cache=TokenCache(), events=events)


@pytest.fixture()
def make_selections(session, durable, clock, scheduler, tokens, events):
    """Build a SelectionStore; a second call models a reload of the same tab."""
    def _make(**kw) -> SelectionStore:
        return SelectionStore(
            kw.pop("session", session), durable, clock, scheduler, tokens, events=events, **kw
        )
    return _make


@pytest.fixture()
def selections(make_selections) -> SelectionStore:
    return make_selections()


@pytest.fixture()
def cart(durable, clock, tokens, events) -> CommerceCart:
    return CommerceCart(durable=durable, clock=clock, tokens=tokens, events=events)


@pytest.fixture()
def reconciler(session, durable, clock, scheduler, tokens, selections, cart, events) -> Reconciler:
    return Reconciler(
        session=session, durable=durable, clock=clock, scheduler=scheduler,
        tokens=tokens, selections=selections, cart=cart, events=events,
    )


@pytest.fixture()
def shirt_items() -> List[Dict[str, Any]]:
    return [{"product": {"id": "p1", "name": "Shirt", "price": 1200}, "quantity": 2}]


@pytest.fixture()
def app(tmp_path: Path, clock: ManualClock, scheduler: ManualScheduler, durable: MemoryStore):
    """
    Flask app fixture (testing mode ON) on manual time and an in-memory durable tier.
    """
    flask_app = create_app(
        {
            "STORAGE_BACKEND": "memory",
            "STATE_DIR": str(tmp_path / "state"),
            "LOG_DIR": str(tmp_path / "logs"),
            "LOG_TO_FILES": "0",
            "SECRET_KEY": "test-secret",
        },
        durable=durable,
        clock=clock,
        scheduler_factory=lambda lock: scheduler,
    )
    flask_app.config.update(TESTING=True)
    yield flask_app


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def tab_headers() -> Dict[str, str]:
    return {"X-Tab-ID": "tab-1", "Content-Type": "application/json"}
