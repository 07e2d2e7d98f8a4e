from __future__ import annotations
from flask import Blueprint, current_app, jsonify

from routes import get_container

bp = Blueprint("health", __name__)

@bp.get("/health")
def health():
    # lightweight liveness
    return "ok", 200, {"Content-Type": "text/plain; charset=utf-8"}

@bp.get("/ready")
def ready():
    # durable tier must answer a key listing
    try:
        c = get_container()
        c.durable.keys()
        return jsonify({"ready": True, "tabs": len(c.tabs), "events": c.events.snapshot()}), 200
    except Exception as e:
        current_app.logger.error(f"Readiness check failed: {e}")
        return jsonify({"ready": False, "error": str(e)}), 503
