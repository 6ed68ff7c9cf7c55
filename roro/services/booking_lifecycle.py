"""
Booking lifecycle orchestrator.

``apply_action`` is the single entry point for human actions:

    lock booking -> load row -> authorize -> validate payload -> mutate
    -> audit + commit -> re-arm deadline timers -> unlock -> publish events

Deadline timers re-enter through ``fire_deadline``, which skips
``authorize`` (there is no human to authorize) but still checks the
transition table against the booking's *current* state.

Collaborators are never called while a booking lock is held. PAY and
PROCESS_REFUND must talk to the payment service before the state may
change, so they pre-check without the lock, settle with the payment
service, then lock and verify nobody moved the booking in between.
If recording fails after the money moved, the settlement is kept for an
idempotent retry, or a PAY is refunded when the booking has moved on.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
import threading
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from roro.core.clock import Clock, ensure_utc, utcnow
from roro.core.exceptions import (
    BookingNotFound,
    CollaboratorFailure,
    ConcurrentModification,
    InsufficientRole,
    InvalidTransition,
    NotOwner,
    ValidationFailure,
    WrongState,
)
from roro.events import BookingTransitioned, EventPublisher
from roro.models.booking import Booking
from roro.schemas.booking import BookingSnapshot, parse_payload
from roro.services import refund_service
from roro.services.action_validator import ACTION_TARGETS, Action, Deny, DenyReason, Role, authorize, permitted_actions
from roro.services.audit_service import log_audit
from roro.services.booking_locks import BookingLockRegistry
from roro.services.collaborators import (
    CapacityService,
    LoggingCapacityService,
    LoggingNotificationService,
    ManualPaymentService,
    NotificationService,
    PaymentService,
)
from roro.services.deadline_scheduler import DEADLINES_BY_TARGET, DeadlineScheduler
from roro.services.state_registry import AUTOMATIC_TRANSITIONS, BookingStatus, is_valid_transition

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"

_DENIALS = {
    DenyReason.WRONG_STATE: WrongState,
    DenyReason.INSUFFICIENT_ROLE: InsufficientRole,
    DenyReason.NOT_OWNER: NotOwner,
}


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    def as_dict(self) -> dict:
        return {"id": self.id, "role": self.role.value}


SYSTEM = Actor(SYSTEM_ACTOR_ID, Role.SYSTEM)


@dataclass(frozen=True)
class Hop:
    from_state: BookingStatus
    to_state: BookingStatus
    actor: Actor
    label: str
    payload: dict


@dataclass(frozen=True)
class Settlement:
    """Money moved by the payment service for a booking version, not yet recorded."""
    booking_id: int
    action: Action
    version: int
    amount: Decimal

    @property
    def key(self) -> tuple[int, Action]:
        return (self.booking_id, self.action)


class BookingOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        capacity: Optional[CapacityService] = None,
        payment: Optional[PaymentService] = None,
        notifier: Optional[NotificationService] = None,
        publisher: Optional[EventPublisher] = None,
        scheduler: Optional[DeadlineScheduler] = None,
        locks: Optional[BookingLockRegistry] = None,
        clock: Clock = utcnow,
        payment_deadline: timedelta = timedelta(hours=24),
        review_window: timedelta = timedelta(minutes=30),
        auto_refund_on_paid_cancel: bool = True,
    ) -> None:
        self.session_factory = session_factory
        self.capacity = capacity or LoggingCapacityService()
        self.payment = payment or ManualPaymentService()
        self.notifier = notifier or LoggingNotificationService()
        self.publisher = publisher or EventPublisher()
        self.scheduler = scheduler or DeadlineScheduler(clock=clock)
        self.locks = locks or BookingLockRegistry()
        self.clock = clock
        self.payment_deadline = payment_deadline
        self.review_window = review_window
        self.auto_refund_on_paid_cancel = auto_refund_on_paid_cancel
        self._settlements: dict[tuple[int, Action], Settlement] = {}
        self._settlements_lock = threading.Lock()

        self.scheduler.on_fire = self.fire_deadline
        self.publisher.subscribe(self._notify)

    # ------------------------------------------------------------------
    # reads

    def get_booking(self, booking_id: int) -> BookingSnapshot:
        with self.session_factory() as db:
            return BookingSnapshot.model_validate(self._load(db, booking_id))

    def permitted_actions(self, booking_id: int, actor_role: Role | str, actor_id: str) -> list[Action]:
        with self.session_factory() as db:
            booking = self._load(db, booking_id)
            actions = permitted_actions(booking, actor_role, actor_id)
            if Action.PAY in actions and self._payment_deadline_passed(booking):
                actions.remove(Action.PAY)
            return actions

    # ------------------------------------------------------------------
    # human actions

    def apply_action(
        self,
        booking_id: int,
        action: Action | str,
        actor_role: Role | str,
        actor_id: str,
        payload: Optional[dict] = None,
    ) -> BookingSnapshot:
        try:
            action = Action(action)
            actor = Actor(str(actor_id), Role(actor_role))
        except ValueError as e:
            raise ValidationFailure(str(e))
        data = parse_payload(action.value, payload)

        settlement = None
        if action in (Action.PAY, Action.PROCESS_REFUND):
            settlement = self._settle_with_payment(booking_id, action, actor, data)

        try:
            with self.locks.hold(booking_id):
                with self.session_factory() as db:
                    booking = self._load(db, booking_id, for_update=True)
                    if settlement is not None and booking.version != settlement.version:
                        raise ConcurrentModification(
                            f"booking {booking_id} was modified by another actor",
                            details={"booking_id": booking_id, "status": booking.status},
                        )
                    # a settled PAY was accepted before its deadline at the pre-check
                    self._guard(booking, action, actor, data, check_deadline=settlement is None)
                    now = self.clock()
                    hops = self._apply(booking, action, actor, data, now)
                    snapshot = self._commit(db, booking, hops)
                    self.scheduler.sync(booking.id, booking.status, booking)
        except Exception as e:
            if settlement is not None:
                self._settlement_not_recorded(settlement, e)
            raise

        if settlement is not None:
            with self._settlements_lock:
                self._settlements.pop(settlement.key, None)
        logger.info(
            "booking %s %s by %s/%s: %s",
            booking_id, action.value, actor.role.value, actor.id,
            " -> ".join([hops[0].from_state.value] + [h.to_state.value for h in hops]),
        )
        self._after_commit(snapshot, hops)
        return snapshot

    def _guard(self, booking: Booking, action: Action, actor: Actor, data: Any, check_deadline: bool = True) -> None:
        decision = authorize(booking, action, actor.role, actor.id)
        if isinstance(decision, Deny):
            raise _DENIALS[decision.reason](
                decision.message,
                details={"booking_id": booking.id, "status": booking.status, "action": action.value},
            )
        if action == Action.PAY and check_deadline and self._payment_deadline_passed(booking):
            raise WrongState(
                "payment deadline exceeded",
                details={"booking_id": booking.id, "payment_deadline": str(booking.payment_deadline)},
            )
        if action == Action.PROCESS_REFUND:
            refund_service.validate_refund_amount(booking, data.amount)

    def _payment_deadline_passed(self, booking: Booking) -> bool:
        deadline = ensure_utc(booking.payment_deadline)
        return deadline is not None and deadline <= self.clock()

    # ------------------------------------------------------------------
    # payment settlement

    def _settle_with_payment(self, booking_id: int, action: Action, actor: Actor, data: Any) -> Settlement:
        """Move the money for PAY / PROCESS_REFUND before the booking is locked.

        A settlement that succeeded but could not be recorded is remembered
        against the booking version it was made for, so a retry records it
        instead of charging or refunding a second time.
        """
        with self.session_factory() as db:
            booking = self._load(db, booking_id)
            with self._settlements_lock:
                pending = self._settlements.get((booking_id, action))
            if pending is not None and pending.version != booking.version:
                pending = None
            self._guard(booking, action, actor, data, check_deadline=pending is None)
            if action == Action.PROCESS_REFUND:
                amount = refund_service.validate_refund_amount(booking, data.amount)
            else:
                amount = Decimal(booking.total_amount or 0)
            version = booking.version

        if pending is not None:
            if pending.amount != amount:
                raise ValidationFailure(
                    f"{pending.amount} was already settled for booking {booking_id}; retry with that amount",
                    details={"booking_id": booking_id, "settled_amount": str(pending.amount)},
                )
            logger.info("booking %s %s: recording earlier settlement of %s", booking_id, action.value, amount)
            return pending

        try:
            if action == Action.PAY:
                ok = self.payment.confirm_payment(booking_id)
            else:
                ok = self.payment.issue_refund(booking_id, amount)
        except Exception as e:
            logger.warning("payment service failed for booking %s %s: %s", booking_id, action.value, e)
            raise CollaboratorFailure(
                f"payment service failed: {e}", details={"booking_id": booking_id, "action": action.value}
            ) from e
        if not ok:
            raise CollaboratorFailure(
                "payment service declined the request", details={"booking_id": booking_id, "action": action.value}
            )

        settlement = Settlement(booking_id, action, version, amount)
        with self._settlements_lock:
            self._settlements[settlement.key] = settlement
        return settlement

    def _settlement_not_recorded(self, settlement: Settlement, error: Exception) -> None:
        """Called with no lock held when the locked section failed after money moved."""
        booking_id, action = settlement.booking_id, settlement.action
        try:
            with self.session_factory() as db:
                current = self._load(db, booking_id)
                version, status = current.version, current.status
        except Exception:
            logger.exception("could not reload booking %s after unrecorded %s", booking_id, action.value)
            version, status = settlement.version, None

        if version == settlement.version:
            logger.error(
                "booking %s %s of %s settled with the payment service but not recorded (%s); "
                "kept for retry, reconcile if no retry follows",
                booking_id, action.value, settlement.amount, error,
            )
            return

        with self._settlements_lock:
            self._settlements.pop(settlement.key, None)
        if action == Action.PROCESS_REFUND:
            logger.error(
                "booking %s changed while a refund of %s was issued (version %s -> %s, now %s); "
                "refund needs manual reconciliation",
                booking_id, settlement.amount, settlement.version, version, status,
            )
            return

        logger.error(
            "booking %s changed while PAY of %s was settling (version %s -> %s, now %s); "
            "refunding the payment",
            booking_id, settlement.amount, settlement.version, version, status,
        )
        try:
            refunded = self.payment.issue_refund(booking_id, settlement.amount)
        except Exception:
            logger.exception("compensating refund failed for booking %s; needs manual reconciliation", booking_id)
            return
        if not refunded:
            logger.error("compensating refund declined for booking %s; needs manual reconciliation", booking_id)

    # ------------------------------------------------------------------
    # system path

    def fire_deadline(self, booking_id: int, target: BookingStatus | str) -> bool:
        """Apply a lapsed deadline. Returns False when the timer was superseded."""
        target = BookingStatus(target)
        kind = DEADLINES_BY_TARGET.get(target)
        if kind is None:
            raise ValueError(f"no deadline leads to {target.value}")

        with self.locks.hold(booking_id):
            with self.session_factory() as db:
                booking = db.execute(
                    select(Booking).where(Booking.id == booking_id).with_for_update()
                ).scalar_one_or_none()
                if booking is None:
                    logger.warning("deadline for missing booking %s ignored", booking_id)
                    return False
                current = BookingStatus(booking.status)
                if current != kind.source or not is_valid_transition(current, target):
                    logger.info(
                        "stale deadline ignored booking_id=%s status=%s target=%s",
                        booking_id, current.value, target.value,
                    )
                    return False
                now = self.clock()
                deadline = ensure_utc(getattr(booking, kind.column))
                if deadline is None:
                    return False
                if deadline > now:
                    # fired early (clock skew or a sweep racing a re-arm); wait for the real deadline
                    self.scheduler.schedule(booking.id, target, deadline)
                    return False
                hops = [self._move(booking, target, SYSTEM, now, {"reason": kind.reason}, label=f"deadline_{target.value.lower()}")]
                hops += self._automatic_hops(booking, now)
                snapshot = self._commit(db, booking, hops)
                self.scheduler.sync(booking.id, booking.status, booking)

        logger.info("booking %s deadline lapsed: %s -> %s", booking_id, kind.source.value, snapshot.status)
        self._after_commit(snapshot, hops)
        return True

    # ------------------------------------------------------------------
    # mutation (only reached with the lock held and every check passed)

    def _apply(self, booking: Booking, action: Action, actor: Actor, data: Any, now: datetime) -> list[Hop]:
        payload = data.model_dump(mode="json")
        if action == Action.CONFIRM_ARRIVAL:
            booking.confirmed_arrival_by = actor.id
            booking.confirmed_arrival_at = now
            state = BookingStatus(booking.status)
            return [Hop(state, state, actor, "confirm_arrival", payload)]

        target = ACTION_TARGETS[action]
        hops = [self._move(booking, target, actor, now, payload, label=action.value.lower())]
        hops += self._automatic_hops(booking, now)
        return hops

    def _automatic_hops(self, booking: Booking, now: datetime) -> list[Hop]:
        hops = []
        while True:
            current = BookingStatus(booking.status)
            nxt = AUTOMATIC_TRANSITIONS.get(current)
            payload: dict = {}
            if nxt is None and current == BookingStatus.CANCELLED and self._owes_refund(booking):
                nxt = BookingStatus.IN_REFUND
                payload = {"reason": refund_service.SYSTEM_REFUND_REASON}
            if nxt is None:
                return hops
            hops.append(self._move(booking, nxt, SYSTEM, now, payload, label=f"auto_{nxt.value.lower()}"))

    def _owes_refund(self, booking: Booking) -> bool:
        return (
            self.auto_refund_on_paid_cancel
            and booking.paid_at is not None
            and booking.refund_requested_at is None
        )

    def _move(self, booking: Booking, target: BookingStatus, actor: Actor, now: datetime, payload: dict, label: str) -> Hop:
        source = BookingStatus(booking.status)
        if not is_valid_transition(source, target):
            raise InvalidTransition(
                f"cannot move booking from {source.value} to {target.value}",
                details={"booking_id": booking.id, "from": source.value, "to": target.value},
            )
        self._write_audit_group(booking, target, actor, now, payload)
        booking.status = target.value
        return Hop(source, target, actor, label, payload)

    def _write_audit_group(self, booking: Booking, target: BookingStatus, actor: Actor, now: datetime, payload: dict) -> None:
        if target == BookingStatus.CONFIRMED:
            booking.approved_by = actor.id
            booking.approved_at = now
            booking.approval_notes = payload.get("notes") or None
        elif target == BookingStatus.REJECTED:
            booking.rejected_by = actor.id
            booking.rejected_at = now
            booking.rejection_reason = payload["reason"]
        elif target == BookingStatus.WAITING_FOR_PAYMENT:
            if booking.payment_deadline is None:
                booking.payment_deadline = now + self.payment_deadline
        elif target == BookingStatus.PAID:
            booking.paid_at = now
        elif target == BookingStatus.IN_REVIEW:
            booking.review_started_at = now
            booking.review_deadline = now + self.review_window
        elif target == BookingStatus.IN_PROGRESS:
            booking.reviewed_by = actor.id
            booking.reviewed_at = now
            booking.review_notes = payload.get("notes") or payload.get("reason") or None
        elif target == BookingStatus.COMPLETED:
            booking.completed_at = now
        elif target == BookingStatus.CANCELLED:
            booking.cancelled_by = actor.id
            booking.cancelled_at = now
            booking.cancellation_reason = payload["reason"]
        elif target == BookingStatus.IN_REFUND:
            refund_service.request_refund(booking, actor.id, payload.get("reason", ""), now)
        elif target == BookingStatus.REFUNDED:
            refund_service.process_refund(booking, actor.id, payload["amount"], payload.get("notes", ""), now)

    def _commit(self, db: Session, booking: Booking, hops: list[Hop]) -> BookingSnapshot:
        for hop in hops:
            log_audit(db, hop.actor.id, f"booking.{hop.label}", "booking", str(booking.id), {
                "booking_code": booking.booking_code,
                "from": hop.from_state.value,
                "to": hop.to_state.value,
                "actor_role": hop.actor.role.value,
                "payload": hop.payload,
            })
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise ConcurrentModification(
                f"booking {booking.id} was modified by another process",
                details={"booking_id": booking.id},
            )
        return BookingSnapshot.model_validate(booking)

    # ------------------------------------------------------------------
    # after the lock is released

    def _after_commit(self, snapshot: BookingSnapshot, hops: list[Hop]) -> None:
        for hop in hops:
            self.publisher.publish(BookingTransitioned(
                booking_id=snapshot.id,
                booking_code=snapshot.booking_code,
                from_state=hop.from_state.value,
                to_state=hop.to_state.value,
                actor_id=hop.actor.id,
                actor_role=hop.actor.role.value,
                timestamp=self.clock(),
                payload=hop.payload,
            ))
        if any(h.to_state == BookingStatus.CANCELLED for h in hops):
            try:
                self.capacity.release(snapshot.schedule_id, snapshot.passenger_count, list(snapshot.vehicle_ids))
            except Exception:
                logger.exception("capacity release failed for cancelled booking %s", snapshot.id)

    def _notify(self, event: BookingTransitioned) -> None:
        self.notifier.notify(event.booking_id, event.from_state, event.to_state, event.actor)

    @staticmethod
    def _load(db: Session, booking_id: int, for_update: bool = False) -> Booking:
        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        booking = db.execute(stmt).scalar_one_or_none()
        if booking is None:
            raise BookingNotFound(f"booking {booking_id} not found", details={"booking_id": booking_id})
        return booking


def build_orchestrator(session_factory: Optional[Callable[[], Session]] = None) -> BookingOrchestrator:
    """Orchestrator wired from settings, with the logging collaborators."""
    from roro.core.config import settings
    from roro.db.session import SessionLocal

    return BookingOrchestrator(
        session_factory or SessionLocal,
        scheduler=DeadlineScheduler(
            retry_base_s=settings.DEADLINE_RETRY_BASE_SECONDS,
            retry_max_s=settings.DEADLINE_RETRY_MAX_SECONDS,
        ),
        locks=BookingLockRegistry(timeout_s=settings.LOCK_TIMEOUT_SECONDS),
        payment_deadline=timedelta(minutes=settings.PAYMENT_DEADLINE_MINUTES),
        review_window=timedelta(minutes=settings.REVIEW_WINDOW_MINUTES),
        auto_refund_on_paid_cancel=settings.AUTO_REFUND_ON_PAID_CANCEL,
    )
