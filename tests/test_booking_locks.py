import threading
import time

import pytest

from roro.core.exceptions import ConcurrentModification
from roro.services.booking_locks import BookingLockRegistry


def test_same_booking_is_serialized():
    locks = BookingLockRegistry(timeout_s=5)
    order = []
    entered = threading.Event()

    def first():
        with locks.hold(1):
            entered.set()
            time.sleep(0.1)
            order.append("first")

    t = threading.Thread(target=first)
    t.start()
    entered.wait(timeout=5)
    with locks.hold(1):
        order.append("second")
    t.join()
    assert order == ["first", "second"]


def test_timeout_raises_retriable_conflict():
    locks = BookingLockRegistry(timeout_s=5)
    with locks.hold(1):
        result = {}

        def contender():
            try:
                with locks.hold(1, timeout_s=0.05):
                    result["got"] = True
            except ConcurrentModification as e:
                result["error"] = e

        t = threading.Thread(target=contender)
        t.start()
        t.join()
    assert "got" not in result
    assert result["error"].retriable is True


def test_different_bookings_do_not_contend():
    locks = BookingLockRegistry(timeout_s=0.05)
    with locks.hold(1):
        with locks.hold(2):
            assert locks.active_count() == 2


def test_entries_are_dropped_when_released():
    locks = BookingLockRegistry()
    with locks.hold(1):
        pass
    with pytest.raises(ValueError):
        with locks.hold(2):
            raise ValueError("boom")
    assert locks.active_count() == 0
