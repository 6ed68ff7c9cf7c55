"""
Deadline timers for bookings.

Two states carry a deadline: WAITING_FOR_PAYMENT (lapses to CANCELLED) and
IN_REVIEW (lapses to IN_PROGRESS). The deadline itself lives on the booking
row; this module only keeps an in-memory index of "fire at" times so the
process can wake up on time. The index is disposable: ``rebuild`` recreates
it from the database at startup, and the Celery sweep in
``roro.tasks.worker_jobs`` finds anything a crashed process missed.

Firing never calls the action validator. The callback (the orchestrator's
``fire_deadline``) re-checks the booking's state under its lock and treats a
superseded timer as a no-op.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import heapq
import itertools
import logging
import threading
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from roro.core.clock import Clock, ensure_utc, utcnow
from roro.models.booking import Booking
from roro.services.state_registry import BookingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadlineKind:
    source: BookingStatus
    target: BookingStatus
    column: str
    reason: str


PAYMENT_DEADLINE = DeadlineKind(
    BookingStatus.WAITING_FOR_PAYMENT, BookingStatus.CANCELLED, "payment_deadline", "payment deadline exceeded"
)
REVIEW_DEADLINE = DeadlineKind(
    BookingStatus.IN_REVIEW, BookingStatus.IN_PROGRESS, "review_deadline", "Auto-approved due to review timeout"
)
DEADLINES: dict[BookingStatus, DeadlineKind] = {k.source: k for k in (PAYMENT_DEADLINE, REVIEW_DEADLINE)}
DEADLINES_BY_TARGET: dict[BookingStatus, DeadlineKind] = {k.target: k for k in DEADLINES.values()}

FireCallback = Callable[[int, BookingStatus], Any]
TimerKey = tuple[int, BookingStatus]


@dataclass(order=True)
class _Timer:
    fire_at: datetime
    seq: int
    booking_id: int = field(compare=False)
    target: BookingStatus = field(compare=False)
    attempt: int = field(default=0, compare=False)

    @property
    def key(self) -> TimerKey:
        return (self.booking_id, self.target)


class DeadlineScheduler:
    def __init__(
        self,
        on_fire: Optional[FireCallback] = None,
        clock: Clock = utcnow,
        retry_base_s: float = 5.0,
        retry_max_s: float = 300.0,
        idle_sleep_s: float = 60.0,
    ) -> None:
        self.on_fire = on_fire
        self._clock = clock
        self.retry_base_s = retry_base_s
        self.retry_max_s = retry_max_s
        self.idle_sleep_s = idle_sleep_s
        self._heap: list[_Timer] = []
        self._timers: dict[TimerKey, _Timer] = {}
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    # -- timer table ---------------------------------------------------

    def schedule(self, booking_id: int, target: BookingStatus, fire_at: datetime, attempt: int = 0) -> None:
        """Arm the (booking, target) timer, replacing any earlier one for the same key."""
        timer = _Timer(ensure_utc(fire_at), next(self._seq), booking_id, BookingStatus(target), attempt)
        with self._cond:
            self._timers[timer.key] = timer
            heapq.heappush(self._heap, timer)
            self._cond.notify_all()
        logger.debug("deadline armed booking_id=%s target=%s fire_at=%s", booking_id, timer.target.value, timer.fire_at)

    def cancel(self, booking_id: int, target: Optional[BookingStatus] = None) -> int:
        """Disarm one or all timers of a booking. Unknown keys are a no-op."""
        with self._cond:
            keys = [k for k in self._timers if k[0] == booking_id and (target is None or k[1] == target)]
            for k in keys:
                del self._timers[k]
        # heap entries are dropped lazily when they surface
        return len(keys)

    def sync(self, booking_id: int, status: "BookingStatus | str", booking: Any) -> None:
        """Make the timer table match a booking that just entered ``status``."""
        self.cancel(booking_id)
        kind = DEADLINES.get(BookingStatus(status))
        if kind is None:
            return
        fire_at = getattr(booking, kind.column, None)
        if fire_at is not None:
            self.schedule(booking_id, kind.target, fire_at)

    def pending(self) -> list[tuple[int, BookingStatus, datetime]]:
        with self._cond:
            return sorted(((t.booking_id, t.target, t.fire_at) for t in self._timers.values()), key=lambda x: x[2])

    def next_fire_at(self) -> Optional[datetime]:
        with self._cond:
            self._drop_stale_locked()
            return self._heap[0].fire_at if self._heap else None

    def _drop_stale_locked(self) -> None:
        while self._heap and self._timers.get(self._heap[0].key) is not self._heap[0]:
            heapq.heappop(self._heap)

    # -- firing --------------------------------------------------------

    def _pop_due(self, now: datetime) -> list[_Timer]:
        due = []
        with self._cond:
            while True:
                self._drop_stale_locked()
                if not self._heap or self._heap[0].fire_at > now:
                    break
                timer = heapq.heappop(self._heap)
                del self._timers[timer.key]
                due.append(timer)
        return due

    def _backoff(self, attempt: int) -> timedelta:
        return timedelta(seconds=min(self.retry_base_s * (2 ** attempt), self.retry_max_s))

    def run_due(self, now: Optional[datetime] = None) -> list[TimerKey]:
        """Fire every timer due at ``now``. Returns the keys whose callback succeeded."""
        if self.on_fire is None:
            raise RuntimeError("DeadlineScheduler has no fire callback bound")
        now = ensure_utc(now) if now is not None else self._clock()
        fired: list[TimerKey] = []
        # the callback takes the booking lock and may re-arm timers, so no scheduler lock here
        for timer in self._pop_due(now):
            try:
                self.on_fire(timer.booking_id, timer.target)
            except Exception:
                retry_at = now + self._backoff(timer.attempt)
                logger.error(
                    "deadline fire failed booking_id=%s target=%s attempt=%s; retrying at %s",
                    timer.booking_id, timer.target.value, timer.attempt + 1, retry_at,
                    exc_info=True,
                )
                with self._cond:
                    rearmed = timer.key in self._timers
                if not rearmed:
                    self.schedule(timer.booking_id, timer.target, retry_at, attempt=timer.attempt + 1)
                continue
            fired.append(timer.key)
        return fired

    # -- durability ----------------------------------------------------

    def rebuild(self, db: Session) -> int:
        """Re-arm timers from the deadline columns of bookings still waiting on them."""
        count = 0
        for kind in DEADLINES.values():
            column = getattr(Booking, kind.column)
            rows = db.execute(
                select(Booking.id, column).where(Booking.status == kind.source.value, column.is_not(None))
            ).all()
            for booking_id, fire_at in rows:
                self.schedule(booking_id, kind.target, fire_at)
                count += 1
        logger.info("deadline scheduler rebuilt %s timers from storage", count)
        return count

    # -- background thread ---------------------------------------------

    def _sleep_for_locked(self) -> float:
        self._drop_stale_locked()
        if not self._heap:
            return self.idle_sleep_s
        delta = (self._heap[0].fire_at - self._clock()).total_seconds()
        return max(0.0, min(delta, self.idle_sleep_s))

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                wait = self._sleep_for_locked()
                if wait > 0:
                    self._cond.wait(timeout=wait)
                if self._stopping:
                    return
            try:
                self.run_due()
            except Exception:
                logger.exception("deadline scheduler tick failed")

    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name="deadline-scheduler", daemon=True)
            self._thread.start()
        logger.info("deadline scheduler started")

    def stop(self, timeout_s: float = 5.0) -> None:
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout=timeout_s)
        logger.info("deadline scheduler stopped")


def find_overdue(db: Session, now: Optional[datetime] = None) -> list[TimerKey]:
    """(booking_id, target) pairs whose persisted deadline has already passed."""
    now = now or utcnow()
    overdue: list[TimerKey] = []
    for kind in DEADLINES.values():
        column = getattr(Booking, kind.column)
        ids = db.execute(
            select(Booking.id).where(Booking.status == kind.source.value, column.is_not(None), column <= now)
        ).scalars().all()
        overdue.extend((booking_id, kind.target) for booking_id in ids)
    return overdue
