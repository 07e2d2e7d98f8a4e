"""
TokenStore: redundant writes, lookup cascade, expiry, recency cap, GC pairs.
"""

from __future__ import annotations
import json

from checkout import CURRENT_DATA_KEY, CURRENT_TOKEN_KEY, RECENT_TOKENS_KEY  # type: ignore
from checkout.order_token import mint, verify_integrity  # type: ignore
from checkout.token_store import TokenCache, TokenStore, normalize_items  # type: ignore
from storage.tiers import MemoryStore  # type: ignore

THIRTY_MIN = 30 * 60 * 1000


def fresh_page(session, durable, clock) -> TokenStore:
    """Same storage, empty in-memory cache (what a new page load sees)."""
    return TokenStore(session=session, durable=durable, clock=clock, cache=TokenCache())


def test_store_writes_every_tier(tokens, session, durable, clock, shirt_items):
    token = mint("buy_now", clock)
    data = tokens.store(token, "buy_now", shirt_items)

    assert data["items"] == [{"productId": "p1", "productName": "Shirt", "quantity": 2}]
    assert data["contextItems"] == shirt_items
    assert data["expiresAt"] == clock.now_ms() + THIRTY_MIN

    assert session.get_item(CURRENT_TOKEN_KEY) == token
    assert json.loads(session.get_item(CURRENT_DATA_KEY))["token"] == token
    assert json.loads(durable.get_item(f"token_{token}"))["source"] == "buy_now"
    assert json.loads(durable.get_item(f"order_source_{clock.now_ms()}"))["token"] == token
    recent = json.loads(durable.get_item(RECENT_TOKENS_KEY))
    assert recent == [{"token": token, "source": "buy_now", "timestamp": clock.now_ms()}]
    assert tokens.cache.token == token


def test_scenario_mint_verify_store_resolve(tokens, clock):
    token = "buy_now_1700000000000_ab12cd34"
    assert verify_integrity(token, clock.now_ms())
    tokens.store(token, "buy_now", [{"product": {"id": "p1", "name": "Shirt"}, "quantity": 2}])

    res = tokens.resolve(token)
    assert res.source == "buy_now"
    assert res.data["items"] == [{"productId": "p1", "productName": "Shirt", "quantity": 2}]


def test_resolve_cascade_tiers(tokens, session, durable, clock, events, shirt_items):
    token = mint("cart", clock)
    tokens.store(token, "cart", shirt_items)

    assert tokens.resolve(token).tier == "memory"

    # new page, same tab: session slot still there
    assert fresh_page(session, durable, clock).resolve(token).tier == "session"

    # another tab: only the durable tier is shared
    other_tab = fresh_page(MemoryStore(), durable, clock)
    assert other_tab.resolve(token).tier == "durable"

    # direct key evicted, sibling survives -> found by scan
    durable.remove_item(f"token_{token}")
    res = other_tab.resolve(token)
    assert res.tier == "scan"
    assert res.source == "cart"


def test_resolve_unknown_cases(tokens, clock, events):
    assert tokens.resolve(None).source == "unknown"
    assert tokens.resolve("").source == "unknown"
    assert tokens.resolve("cart_1_nothere").source == "unknown"
    assert events.count("token.unresolved") == 1


def test_expired_snapshot_is_unknown_and_purged(tokens, session, durable, clock, shirt_items):
    token = mint("buy_now", clock)
    tokens.store(token, "buy_now", shirt_items)
    ts = clock.now_ms()

    clock.advance(THIRTY_MIN - 1)
    assert tokens.resolve(token).source == "buy_now"

    clock.advance(1)
    assert tokens.resolve(token).source == "unknown"

    # resolve() ran a GC pass; one more ms makes expiresAt < now
    clock.advance(1)
    tokens.garbage_collect()
    assert durable.get_item(f"token_{token}") is None
    assert durable.get_item(f"order_source_{ts}") is None
    assert session.get_item(CURRENT_DATA_KEY) is None
    assert tokens.cache.token is None


def test_recent_index_capped_at_ten(tokens, clock, shirt_items):
    minted = []
    for _ in range(11):
        t = mint("cart", clock)
        minted.append(t)
        tokens.store(t, "cart", shirt_items)
        clock.advance(1)

    recent = tokens.recent_tokens()
    assert len(recent) == 10
    assert [r["token"] for r in recent] == minted[1:]


def test_recent_index_trimmed_after_an_hour(tokens, clock, shirt_items):
    tokens.store(mint("cart", clock), "cart", shirt_items)
    clock.advance(60 * 60 * 1000)
    tokens.garbage_collect()
    assert tokens.recent_tokens() == []


def test_gc_removes_pairs_without_orphans(tokens, durable, clock, shirt_items):
    old = mint("cart", clock)
    tokens.store(old, "cart", shirt_items)
    old_ts = clock.now_ms()

    clock.advance(20 * 60 * 1000)
    new = mint("buy_now", clock)
    tokens.store(new, "buy_now", shirt_items)
    new_ts = clock.now_ms()

    # only one half of the old pair left behind; GC must still clean it
    durable.remove_item(f"order_source_{old_ts}")
    clock.advance(15 * 60 * 1000)
    removed = tokens.garbage_collect()

    assert removed >= 1
    keys = set(durable.keys())
    assert f"token_{old}" not in keys
    assert f"order_source_{old_ts}" not in keys
    assert {f"token_{new}", f"order_source_{new_ts}"} <= keys


def test_gc_drops_malformed_durable_entries(tokens, durable):
    durable.set_item("token_cart_1_bad", "{broken")
    durable.set_item("order_source_42", json.dumps({"token": "x"}))
    durable.set_item("unrelated", "{broken")
    tokens.garbage_collect()
    assert durable.keys() == ["unrelated"]


def test_attach_order_id_updates_all_copies(tokens, session, durable, clock, shirt_items):
    token = mint("cart", clock)
    tokens.store(token, "cart", shirt_items)
    assert tokens.attach_order_id(token, "RBS123456")

    assert json.loads(session.get_item(CURRENT_DATA_KEY))["orderId"] == "RBS123456"
    assert json.loads(durable.get_item(f"token_{token}"))["orderId"] == "RBS123456"
    assert json.loads(durable.get_item(f"order_source_{clock.now_ms()}"))["orderId"] == "RBS123456"
    assert tokens.resolve(token).data["orderId"] == "RBS123456"

    assert not fresh_page(MemoryStore(), MemoryStore(), clock).attach_order_id(token, "x")


def test_purge_source_only_touches_that_flow(tokens, durable, clock, shirt_items):
    bn = mint("buy_now", clock)
    tokens.store(bn, "buy_now", shirt_items)
    clock.advance(1)
    ct = mint("cart", clock)
    tokens.store(ct, "cart", shirt_items)

    tokens.purge_source("buy_now")

    keys = durable.keys()
    assert not any(k.startswith("token_buy_now") for k in keys)
    assert f"token_{ct}" in keys
    assert [r["token"] for r in tokens.recent_tokens()] == [ct]


def test_store_survives_full_durable_tier(session, clock, events, shirt_items):
    full = MemoryStore(quota_bytes=10)
    store = TokenStore(session=session, durable=full, clock=clock, events=events)
    token = mint("cart", clock)
    store.store(token, "cart", shirt_items)

    assert events.count("storage.degraded") == 1
    assert store.resolve(token).source == "cart"


def test_clear_current(tokens, session, clock, shirt_items):
    token = mint("cart", clock)
    tokens.store(token, "cart", shirt_items)
    tokens.clear_current_order_source()
    assert session.get_item(CURRENT_TOKEN_KEY) is None
    assert tokens.cache.token is None
    # durable copy still resolves
    assert tokens.resolve(token).tier == "durable"


def test_normalize_items_accepts_flat_items():
    assert normalize_items([{"productId": "c1", "productName": "Combo", "quantity": 1}, "junk"]) == [
        {"productId": "c1", "productName": "Combo", "quantity": 1}
    ]


def test_numeric_product_id_resolves_after_reload(tokens, session, durable, clock):
    token = mint("buy_now", clock)
    tokens.store(token, "buy_now", [{"product": {"id": 42, "name": "Shirt"}, "quantity": 2}])

    same_tab = fresh_page(session, durable, clock).resolve(token)
    assert (same_tab.source, same_tab.tier) == ("buy_now", "session")
    assert same_tab.data["items"] == [{"productId": "42", "productName": "Shirt", "quantity": 2}]

    other_tab = fresh_page(MemoryStore(), durable, clock).resolve(token)
    assert (other_tab.source, other_tab.tier) == ("buy_now", "durable")


def test_form_quantity_and_numeric_order_id_are_coerced(tokens, durable, clock):
    token = mint("buy_now", clock)
    data = tokens.store(token, "buy_now", [{"productId": "c1", "productName": "Combo", "quantity": "2"}], order_id=123)
    assert data["items"][0]["quantity"] == 2
    assert data["orderId"] == "123"

    res = fresh_page(MemoryStore(), durable, clock).resolve(token)
    assert res.source == "buy_now"
    assert res.data["items"] == [{"productId": "c1", "productName": "Combo", "quantity": 2}]
    assert res.data["orderId"] == "123"


def test_store_rejects_unknown_source_without_raising(tokens, session, durable, clock, events, shirt_items):
    token = mint("cart", clock)
    assert tokens.store(token, "wishlist", shirt_items) == {}
    assert tokens.store("", "cart", shirt_items) == {}
    assert events.count("token.rejected") == 2
    assert list(durable.keys()) == []
    assert session.get_item(CURRENT_TOKEN_KEY) is None


def test_unserialisable_context_items_fall_back_to_items(tokens, session, durable, clock):
    token = mint("cart", clock)
    data = tokens.store(
        token, "cart", [{"product": {"id": "p1", "name": "Shirt"}, "quantity": 1}], context_items=[{"tags": {1, 2}}]
    )
    assert data["contextItems"] == [{"productId": "p1", "productName": "Shirt", "quantity": 1}]

    res = fresh_page(session, durable, clock).resolve(token)
    assert res.source == "cart"
    assert res.data["contextItems"] == data["items"]
