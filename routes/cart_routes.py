from __future__ import annotations
from flask import Blueprint, abort, jsonify

from checkout.commerce_cart import ensure_product
from routes import current_tab, json_body

bp = Blueprint("cart", __name__)

# every handler re-reads the envelope first: other tabs may have written it


def _product_from_body():
    body = json_body()
    product = body.get("product")
    if not ensure_product(product):
        abort(400, description="product with string id required")
    return product, body.get("quantity", 1)


@bp.get("/cart")
def get_cart():
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        return jsonify(tab.cart.to_dict())


@bp.post("/cart")
def add_to_cart():
    product, quantity = _product_from_body()
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        tab.cart.add_to_cart(product, quantity)
        return jsonify(tab.cart.to_dict())


@bp.delete("/cart")
def clear_cart():
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        tab.cart.clear_cart()
        return jsonify(tab.cart.to_dict())


@bp.delete("/cart/<product_id>")
def remove_from_cart(product_id: str):
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        tab.cart.remove_from_cart(product_id)
        return jsonify(tab.cart.to_dict())


@bp.post("/cart/direct-checkout")
def start_direct_checkout():
    product, quantity = _product_from_body()
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        tab.cart.start_direct_checkout(product, quantity)
        return jsonify(tab.cart.to_dict())


@bp.delete("/cart/direct-checkout")
def clear_direct_checkout():
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        tab.cart.clear_direct_checkout()
        return jsonify(tab.cart.to_dict())


@bp.post("/cart/coupon")
def apply_coupon():
    coupon = json_body().get("coupon")
    if not isinstance(coupon, dict) or not coupon.get("code"):
        abort(400, description="coupon with code required")
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        tab.cart.apply_coupon(coupon)
        return jsonify(tab.cart.to_dict())


@bp.post("/wishlist/toggle")
def toggle_wishlist():
    product, _ = _product_from_body()
    tab = current_tab()
    with tab.lock:
        tab.cart.load()
        present = tab.cart.toggle_wishlist(product)
        return jsonify({"inWishlist": present, **tab.cart.to_dict()})
