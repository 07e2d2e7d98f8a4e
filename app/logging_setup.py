"""
Logging setup.

- Console handler always
- Rotating file handlers for runtime, checkout events, errors (LOG_TO_FILES)
- Tab ID aware formatter
"""

from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.config import Settings

_CONFIGURED_ATTR = "_checkout_state_handler"


class TabIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Middleware stores tab_id in record if present
        if not hasattr(record, "tab_id"):
            record.tab_id = "-"
        return True


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _CONFIGURED_ATTR, True)
    return handler


def _mk_handler(path: Path, level: int) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setLevel(level)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s %(tab_id)s - %(message)s"
    )
    handler.setFormatter(fmt)
    handler.addFilter(TabIdFilter())
    return _mark(handler)


def _drop_previous(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        if getattr(h, _CONFIGURED_ATTR, False):
            logger.removeHandler(h)
            h.close()


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    # create_app() may run many times in one process (tests)
    for name in ("", "Checkout", "Checkout.Events"):
        _drop_previous(logging.getLogger(name))

    # Console (dev)
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s"))
    root.addHandler(_mark(console))

    if not settings.LOG_TO_FILES:
        return

    # Files
    logs_dir = Path(settings.LOG_DIR)
    runtime = _mk_handler(logs_dir / "checkout.log", logging.INFO)
    errors = _mk_handler(logs_dir / "errors.log", logging.ERROR)
    events = _mk_handler(logs_dir / "events.log", logging.INFO)

    logging.getLogger("Checkout").addHandler(runtime)
    logging.getLogger("Checkout.Events").addHandler(events)
    root.addHandler(errors)
