from __future__ import annotations
from flask import Blueprint, abort, jsonify, request

from routes import current_tab

bp = Blueprint("confirmation", __name__)


@bp.get("/thank-you")
def thank_you():
    """
    Landing point of the payment redirect.
    Query: token?, source?, orderId?
    Returns the reconcile result; `verification.checked` turns true once the
    delayed storage re-read has run (poll /thank-you/status).
    """
    tab = current_tab()
    with tab.lock:
        # a redirect is a full page load
        tab.navigate()
        result = tab.reconciler.reconcile(
            token=request.args.get("token"),
            source=request.args.get("source"),
            order_id=request.args.get("orderId"),
        )
        return jsonify(result.to_dict())


@bp.get("/thank-you/status")
def thank_you_status():
    order_id = request.args.get("orderId") or ""
    tab = current_tab()
    with tab.lock:
        result = tab.reconciler.status(order_id)
        if result is None:
            abort(404)
        return jsonify(result.to_dict())


@bp.get("/order-source/<token>")
def order_source(token: str):
    tab = current_tab()
    with tab.lock:
        return jsonify(tab.tokens.get_order_source_from_token(token).to_dict())


@bp.post("/order-source/cleanup")
def cleanup_order_sources():
    tab = current_tab()
    with tab.lock:
        return jsonify({"removed": tab.tokens.cleanup_old_order_sources()})


@bp.delete("/order-source/current")
def clear_current_order_source():
    tab = current_tab()
    with tab.lock:
        tab.tokens.clear_current_order_source()
        return jsonify({"cleared": True})
