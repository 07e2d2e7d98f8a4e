"""
Middleware installers for Flask.

- Tab ID injection (X-Tab-ID header or ?tab=; minted when absent)
- Per-request timing log
"""

from __future__ import annotations
import logging
import time
import uuid

from flask import Flask, g, request

log = logging.getLogger("Checkout.HTTP")

TAB_HEADER = "X-Tab-ID"


def install_tab_id(app: Flask) -> None:
    @app.before_request
    def _tab_id():
        g.tab_id = request.headers.get(TAB_HEADER) or request.args.get("tab") or f"tab_{uuid.uuid4().hex[:12]}"

    @app.after_request
    def _stamp(response):
        response.headers[TAB_HEADER] = g.get("tab_id", "-")
        return response


def install_timing_log(app: Flask) -> None:
    @app.before_request
    def _start_timer():
        g._t0 = time.time()

    @app.after_request
    def _stop_timer(response):
        t0 = getattr(g, "_t0", None)
        if t0 is not None:
            dt = int((time.time() - t0) * 1000)
            log.debug(
                f"{request.method} {request.path} -> {response.status_code} in {dt}ms",
                extra={"tab_id": g.get("tab_id", "-")},
            )
        return response
