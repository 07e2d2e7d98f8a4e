from __future__ import annotations
from flask import Blueprint, abort, jsonify, request

from checkout import TOKEN_SOURCES
from checkout.order_token import verify_integrity
from checkout.selection_store import SelectionKind
from routes import current_tab, json_body

bp = Blueprint("checkout", __name__)


def _kind(raw):
    if raw is None:
        return None
    try:
        return SelectionKind(raw)
    except ValueError:
        abort(400, description=f"unknown selection kind: {raw}")


def _selection_view(tab):
    out = tab.selections.get_context_state().to_dict()
    out["resetInProgress"] = tab.selections.reset_in_progress
    return out


@bp.get("/buy-now/selection")
def get_selection():
    tab = current_tab()
    with tab.lock:
        return jsonify(_selection_view(tab))


@bp.post("/buy-now/selection")
def register_selection():
    """
    Contract:
    { "kind": "product"|"combo"?, "data": {...}, "quantity": int? }
    Returns:
    { "registered": bool, "productSelection": ..., "comboSelection": ... }
    A registration arriving during a reset window is dropped (registered=false).
    """
    body = json_body()
    data = body.get("data")
    if not isinstance(data, dict) or not data:
        abort(400, description="missing_data")
    kind = _kind(body.get("kind"))
    tab = current_tab()
    with tab.lock:
        ok = tab.selections.register_selection(kind, data, body.get("quantity", 1))
        return jsonify({"registered": ok, **_selection_view(tab)})


@bp.delete("/buy-now/selection")
def clear_selection():
    kind = _kind(request.args.get("kind"))
    tab = current_tab()
    with tab.lock:
        if kind is None:
            tab.selections.clear_selections()
        else:
            tab.selections.clear(kind)
        return jsonify(_selection_view(tab))


@bp.post("/buy-now/reset")
def reset_selection():
    hard = bool(json_body().get("hard", False))
    tab = current_tab()
    with tab.lock:
        if hard:
            tab.selections.force_reset_context()
        else:
            tab.selections.reset_context()
        return jsonify({"hard": hard, **_selection_view(tab)})


@bp.post("/checkout/token")
def generate_token():
    source = json_body().get("source")
    if source not in TOKEN_SOURCES:
        abort(400, description="source must be buy_now or cart")
    tab = current_tab()
    with tab.lock:
        token = tab.selections.generate_order_token(source)
        return jsonify({"token": token, "valid": verify_integrity(token, tab.clock.now_ms())})


@bp.post("/checkout/snapshot")
def store_snapshot():
    """
    Contract:
    { "token": str, "source": "buy_now"|"cart", "items": [...], "orderId": str?, "contextItems": [...]? }
    """
    body = json_body()
    token = body.get("token")
    source = body.get("source")
    items = body.get("items")
    context_items = body.get("contextItems")
    if not isinstance(token, str) or not token:
        abort(400, description="missing_token")
    if source not in TOKEN_SOURCES:
        abort(400, description="source must be buy_now or cart")
    if not isinstance(items, list):
        abort(400, description="items must be a list")
    if context_items is not None and not isinstance(context_items, list):
        abort(400, description="contextItems must be a list")
    tab = current_tab()
    with tab.lock:
        snap = tab.selections.store_order_source_snapshot(token, source, items, body.get("orderId"), context_items)
        return jsonify(snap), 201


@bp.post("/checkout/<token>/order-id")
def attach_order_id(token: str):
    order_id = json_body().get("orderId")
    if not isinstance(order_id, str) or not order_id:
        abort(400, description="missing_order_id")
    tab = current_tab()
    with tab.lock:
        ok = tab.tokens.attach_order_id(token, order_id)
        if not ok:
            abort(404)
        return jsonify({"token": token, "orderId": order_id})
