from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Iterator

from roro.core.exceptions import ConcurrentModification

logger = logging.getLogger(__name__)


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0  # threads holding or waiting


class BookingLockRegistry:
    """Exclusive lock per booking id.

    Locks for different ids never contend. An entry lives only while some
    thread holds or waits on it, so the registry does not grow with the
    number of bookings ever touched.
    """

    def __init__(self, timeout_s: float = 10.0) -> None:
        self.timeout_s = timeout_s
        self._entries: dict[int, _Entry] = {}
        self._guard = threading.Lock()

    def _checkout(self, booking_id: int) -> _Entry:
        with self._guard:
            entry = self._entries.get(booking_id)
            if entry is None:
                entry = self._entries[booking_id] = _Entry()
            entry.holders += 1
            return entry

    def _checkin(self, booking_id: int, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(booking_id, None)

    @contextmanager
    def hold(self, booking_id: int, timeout_s: float | None = None) -> Iterator[None]:
        entry = self._checkout(booking_id)
        wait = self.timeout_s if timeout_s is None else timeout_s
        if not entry.lock.acquire(timeout=wait):
            self._checkin(booking_id, entry)
            logger.warning("booking_lock_timeout booking_id=%s wait_s=%s", booking_id, wait)
            raise ConcurrentModification(
                f"booking {booking_id} is being modified by another actor",
                details={"booking_id": booking_id},
            )
        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(booking_id, entry)

    def active_count(self) -> int:
        with self._guard:
            return len(self._entries)
