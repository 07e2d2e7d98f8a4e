"""
Route helpers.

Exports:
- get_container(): typed access to app.container
- current_tab(): TabSession for this request's X-Tab-ID
- json_body(): request JSON as a dict, 400 otherwise
"""

from __future__ import annotations
from typing import Any, Dict

from flask import abort, current_app, g, request

# ---- Container access ----

def get_container():
    c = getattr(current_app, "container", None)
    if c is None:
        raise RuntimeError("Container not initialized on app")
    return c


def current_tab():
    return get_container().tab(g.tab_id)

# ---- Request parsing ----

def json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="expected a JSON object")
    return data
