"""
EpochGuard — per-tab version counter, lock window and reset marker.

- epoch (session tier): bumped on every hard reset; persisted selections carry
  the epoch they were written under and are unreadable once it moves on
- lock window (session tier): absolute ms timestamp; reads and writes are
  suppressed while now < lockUntil
- reset marker (durable tier): ms timestamp written when a hard reset starts;
  "pending" for RESET_MARKER_MS afterwards

Unreadable values read as epoch 0 / not locked / not pending. Storage failures
are logged and swallowed; the guard never raises.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Optional

from checkout import (
    EPOCH_KEY,
    LOCK_UNTIL_KEY,
    RESET_MARKER_MS,
    RESET_TS_KEY,
    ClockLike,
)
from storage.tiers import KeyValueStore, StorageError

log = logging.getLogger("Checkout.BuyNow")


def _to_number(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        n = float(raw)
    except ValueError:
        return None
    return n if math.isfinite(n) else None


@dataclass
class EpochGuard:
    session: KeyValueStore
    durable: KeyValueStore
    clock: ClockLike
    marker_ms: int = RESET_MARKER_MS

    # -------- epoch --------

    def current(self) -> int:
        try:
            n = _to_number(self.session.get_item(EPOCH_KEY))
        except StorageError as e:
            log.warning(f"epoch read failed: {e}")
            return 0
        return int(n) if n is not None else 0

    def bump(self) -> int:
        nxt = self.current() + 1
        try:
            self.session.set_item(EPOCH_KEY, str(nxt))
        except StorageError as e:
            log.warning(f"epoch write failed: {e}")
        return nxt

    # -------- lock window --------

    def lock_for(self, ms: int) -> None:
        try:
            self.session.set_item(LOCK_UNTIL_KEY, str(self.clock.now_ms() + ms))
        except StorageError as e:
            log.warning(f"lock write failed: {e}")

    def is_locked(self) -> bool:
        try:
            until = _to_number(self.session.get_item(LOCK_UNTIL_KEY))
        except StorageError:
            return False
        return until is not None and self.clock.now_ms() < until

    # -------- reset marker --------

    def mark_reset_pending(self) -> None:
        try:
            self.durable.set_item(RESET_TS_KEY, str(self.clock.now_ms()))
        except StorageError as e:
            log.warning(f"reset marker write failed: {e}")

    def is_reset_pending(self) -> bool:
        try:
            ts = _to_number(self.durable.get_item(RESET_TS_KEY))
        except StorageError:
            return False
        if ts is None:
            return False
        return self.clock.now_ms() - ts < self.marker_ms

    def clear_reset_flag(self) -> None:
        try:
            self.durable.remove_item(RESET_TS_KEY)
        except StorageError as e:
            log.warning(f"reset marker clear failed: {e}")

    def blocked(self) -> bool:
        """True while either time-boxed guard is active."""
        return self.is_locked() or self.is_reset_pending()
