"""
HTTP surface: tab ids, buy-now selection, tokens/snapshots, cart, thank-you.
"""

from __future__ import annotations

SHIRT = {"id": "p1", "name": "Shirt", "price": 1200}


def test_health_and_ready(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.data == b"ok"

    r = client.get("/ready")
    assert r.status_code == 200
    assert r.get_json()["ready"] is True


def test_root(client):
    assert client.get("/").get_json() == {"ok": True, "storage": "memory"}


def test_tab_id_echoed_or_minted(client, tab_headers):
    assert client.get("/cart", headers=tab_headers).headers["X-Tab-ID"] == "tab-1"
    assert client.get("/cart?tab=abc").headers["X-Tab-ID"] == "abc"
    assert client.get("/cart").headers["X-Tab-ID"].startswith("tab_")


def test_selection_is_per_tab(client, tab_headers):
    r = client.post("/buy-now/selection", json={"kind": "product", "data": SHIRT, "quantity": 2}, headers=tab_headers)
    body = r.get_json()
    assert body["registered"] is True
    assert body["productSelection"]["data"]["id"] == "p1"
    assert body["productSelection"]["quantity"] == 2
    assert body["comboSelection"] is None

    assert client.get("/buy-now/selection", headers=tab_headers).get_json()["productSelection"]["quantity"] == 2
    other = client.get("/buy-now/selection", headers={"X-Tab-ID": "tab-2"}).get_json()
    assert other["productSelection"] is None


def test_selection_validation(client, tab_headers):
    r = client.post("/buy-now/selection", json={"kind": "bundle", "data": SHIRT}, headers=tab_headers)
    assert r.status_code == 400
    assert r.get_json()["error"] == "bad_request"

    r = client.post("/buy-now/selection", json={"kind": "product"}, headers=tab_headers)
    assert r.status_code == 400

    r = client.post("/buy-now/selection", data="[1, 2]", headers=tab_headers)
    assert r.status_code == 400


def test_clear_one_slot(client, tab_headers):
    client.post("/buy-now/selection", json={"kind": "combo", "data": {"products": []}}, headers=tab_headers)
    r = client.delete("/buy-now/selection?kind=combo", headers=tab_headers)
    assert r.get_json()["comboSelection"] is None


def test_hard_reset_drops_registrations_until_lock_expires(client, tab_headers, clock):
    client.post("/buy-now/selection", json={"data": SHIRT}, headers=tab_headers)

    r = client.post("/buy-now/reset", json={"hard": True}, headers=tab_headers)
    body = r.get_json()
    assert body["hard"] is True
    assert body["resetInProgress"] is True
    assert body["productSelection"] is None

    late = client.post("/buy-now/selection", json={"data": SHIRT}, headers=tab_headers).get_json()
    assert late["registered"] is False

    clock.advance(3000)
    again = client.post("/buy-now/selection", json={"data": SHIRT}, headers=tab_headers).get_json()
    assert again["registered"] is True


def test_soft_reset(client, tab_headers):
    client.post("/buy-now/selection", json={"data": SHIRT}, headers=tab_headers)
    body = client.post("/buy-now/reset", json={}, headers=tab_headers).get_json()
    assert body["hard"] is False
    assert body["resetInProgress"] is False
    assert body["productSelection"] is None


def test_token_and_snapshot(client, tab_headers):
    r = client.post("/checkout/token", json={"source": "cart"}, headers=tab_headers)
    body = r.get_json()
    assert body["valid"] is True
    token = body["token"]
    assert token.startswith("cart_")

    assert client.post("/checkout/token", json={"source": "later"}, headers=tab_headers).status_code == 400

    r = client.post(
        "/checkout/snapshot",
        json={"token": token, "source": "cart", "items": [{"product": SHIRT, "quantity": 1}]},
        headers=tab_headers,
    )
    assert r.status_code == 201
    assert r.get_json()["items"] == [{"productId": "p1", "productName": "Shirt", "quantity": 1}]

    r = client.post(f"/checkout/{token}/order-id", json={"orderId": "RBS42"}, headers=tab_headers)
    assert r.status_code == 200
    resolved = client.get(f"/order-source/{token}", headers=tab_headers).get_json()
    assert resolved["source"] == "cart"
    assert resolved["data"]["orderId"] == "RBS42"

    assert client.post("/checkout/cart_1_x/order-id", json={"orderId": "X"}, headers=tab_headers).status_code == 404


def test_snapshot_validation(client, tab_headers):
    r = client.post("/checkout/snapshot", json={"token": "cart_1_x", "source": "cart", "items": "no"}, headers=tab_headers)
    assert r.status_code == 400


def test_cart_endpoints(client, tab_headers):
    body = client.post("/cart", json={"product": SHIRT, "quantity": 2}, headers=tab_headers).get_json()
    assert body["cart"] == [{"product": SHIRT, "quantity": 2}]

    # the cart is shared between tabs
    assert client.get("/cart", headers={"X-Tab-ID": "tab-2"}).get_json()["cart"][0]["quantity"] == 2

    body = client.post("/cart/direct-checkout", json={"product": SHIRT}, headers=tab_headers).get_json()
    assert body["usingDirectCheckout"] is True
    assert body["activeCheckoutItems"] == [{"product": SHIRT, "quantity": 1}]

    body = client.post("/wishlist/toggle", json={"product": SHIRT}, headers=tab_headers).get_json()
    assert body["inWishlist"] is True

    assert client.post("/cart/coupon", json={"coupon": {}}, headers=tab_headers).status_code == 400
    body = client.post("/cart/coupon", json={"coupon": {"code": "FEST"}}, headers=tab_headers).get_json()
    assert body["appliedCoupon"] == {"code": "FEST"}

    assert client.delete("/cart/p1", headers=tab_headers).get_json()["cart"] == []
    assert client.post("/cart", json={"product": {"id": 3}}, headers=tab_headers).status_code == 400


def test_thank_you_buy_now_flow(client, tab_headers, clock):
    client.post("/buy-now/selection", json={"kind": "product", "data": SHIRT, "quantity": 1}, headers=tab_headers)
    token = client.post("/checkout/token", json={"source": "buy_now"}, headers=tab_headers).get_json()["token"]
    client.post(
        "/checkout/snapshot",
        json={"token": token, "source": "buy_now", "items": [{"product": SHIRT, "quantity": 1}]},
        headers=tab_headers,
    )

    r = client.get(f"/thank-you?token={token}&orderId=RBS7", headers=tab_headers)
    body = r.get_json()
    assert body["source"] == "buy_now"
    assert body["resolvedBy"] == "token"
    assert body["verification"]["checked"] is False

    clock.advance(250)
    status = client.get("/thank-you/status?orderId=RBS7", headers=tab_headers).get_json()
    assert status["verification"] == {"buyNow": True, "cart": False, "checked": True, "message": None}

    assert client.get("/buy-now/selection", headers=tab_headers).get_json()["productSelection"] is None
    assert client.get("/thank-you/status?orderId=nope", headers=tab_headers).status_code == 404


def test_thank_you_in_another_tab(client, tab_headers, clock):
    client.post("/cart", json={"product": SHIRT}, headers=tab_headers)
    token = client.post("/checkout/token", json={"source": "cart"}, headers=tab_headers).get_json()["token"]
    client.post(
        "/checkout/snapshot",
        json={"token": token, "source": "cart", "items": [{"product": SHIRT, "quantity": 1}]},
        headers=tab_headers,
    )

    body = client.get(f"/thank-you?token={token}&orderId=RBS8", headers={"X-Tab-ID": "tab-9"}).get_json()
    assert (body["source"], body["resolvedBy"]) == ("cart", "token")
    assert client.get("/cart", headers=tab_headers).get_json()["cart"] == []


def test_thank_you_with_numeric_ids_from_the_storefront(client, tab_headers):
    token = client.post("/checkout/token", json={"source": "buy_now"}, headers=tab_headers).get_json()["token"]
    r = client.post(
        "/checkout/snapshot",
        json={"token": token, "source": "buy_now", "items": [{"product": {"id": 42, "name": "Shirt"}, "quantity": "2"}]},
        headers=tab_headers,
    )
    assert r.get_json()["items"] == [{"productId": "42", "productName": "Shirt", "quantity": 2}]

    body = client.get(f"/thank-you?token={token}&orderId=RBS10", headers={"X-Tab-ID": "tab-9"}).get_json()
    assert (body["source"], body["resolvedBy"]) == ("buy_now", "token")


def test_thank_you_without_anything(client, tab_headers, clock):
    body = client.get("/thank-you?orderId=RBS9", headers=tab_headers).get_json()
    assert body["source"] == "unknown"
    clock.advance(350)
    status = client.get("/thank-you/status?orderId=RBS9", headers=tab_headers).get_json()
    assert status["verification"]["message"] == "Both contexts reset as precaution"


def test_order_source_housekeeping(client, tab_headers):
    assert client.post("/order-source/cleanup", headers=tab_headers).get_json() == {"removed": 0}
    assert client.delete("/order-source/current", headers=tab_headers).get_json() == {"cleared": True}
    assert client.get("/order-source/garbage", headers=tab_headers).get_json() == {"source": "unknown"}


def test_json_errors(client):
    assert client.get("/nope").get_json() == {"error": "not_found"}
    assert client.put("/cart").status_code == 405
