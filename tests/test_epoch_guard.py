"""
EpochGuard: epoch counter, lock window, reset marker.
"""

from __future__ import annotations

from checkout import EPOCH_KEY, LOCK_UNTIL_KEY, RESET_TS_KEY  # type: ignore
from checkout.epoch_guard import EpochGuard  # type: ignore
from storage.tiers import MemoryStore  # type: ignore


def make_guard(session, durable, clock) -> EpochGuard:
    return EpochGuard(session=session, durable=durable, clock=clock)


def test_epoch_starts_at_zero_and_bumps(session, durable, clock):
    g = make_guard(session, durable, clock)
    assert g.current() == 0
    assert g.bump() == 1
    assert g.bump() == 2
    assert session.get_item(EPOCH_KEY) == "2"
    # a fresh guard over the same tab storage sees the same epoch
    assert make_guard(session, durable, clock).current() == 2


def test_garbage_epoch_reads_as_zero(session, durable, clock):
    session.set_item(EPOCH_KEY, "not-a-number")
    assert make_guard(session, durable, clock).current() == 0


def test_lock_window_expires(session, durable, clock):
    g = make_guard(session, durable, clock)
    assert not g.is_locked()
    g.lock_for(3000)
    assert session.get_item(LOCK_UNTIL_KEY) == str(clock.now_ms() + 3000)
    clock.advance(2999)
    assert g.is_locked()
    clock.advance(1)
    assert not g.is_locked()


def test_reset_marker_is_short_lived(session, durable, clock):
    g = make_guard(session, durable, clock)
    g.mark_reset_pending()
    assert durable.get_item(RESET_TS_KEY) is not None
    assert g.is_reset_pending()
    clock.advance(3000)
    assert not g.is_reset_pending()

    g.mark_reset_pending()
    g.clear_reset_flag()
    assert not g.is_reset_pending()
    assert durable.get_item(RESET_TS_KEY) is None


def test_guard_never_raises_on_disabled_storage(clock):
    off = MemoryStore(disabled=True)
    g = EpochGuard(session=off, durable=off, clock=clock)
    assert g.current() == 0
    assert g.bump() == 1
    g.lock_for(100)
    g.mark_reset_pending()
    g.clear_reset_flag()
    assert not g.is_locked()
    assert not g.is_reset_pending()
    assert not g.blocked()
