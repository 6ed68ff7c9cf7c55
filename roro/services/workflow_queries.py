"""Read-only work queues and counters for the staff dashboards."""
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roro.core.clock import utcnow
from roro.core.exceptions import InsufficientRole, ValidationFailure
from roro.models.booking import Booking
from roro.services.action_validator import Role
from roro.services.state_registry import BookingStatus

QUEUES: dict[str, BookingStatus] = {
    "pending-approval": BookingStatus.PENDING,
    "awaiting-payment": BookingStatus.WAITING_FOR_PAYMENT,
    "in-review": BookingStatus.IN_REVIEW,
    "in-progress": BookingStatus.IN_PROGRESS,
    "refund-requests": BookingStatus.IN_REFUND,
}

QUEUE_ROLES: dict[str, frozenset[Role]] = {
    "pending-approval": frozenset({Role.ACCOUNTANT, Role.ADMIN}),
    "awaiting-payment": frozenset({Role.CUSTOMER, Role.ACCOUNTANT, Role.ADMIN}),
    "in-review": frozenset({Role.PLANNER, Role.OPERATION_MANAGER, Role.ADMIN}),
    "in-progress": frozenset({Role.PLANNER, Role.OPERATION_MANAGER, Role.ADMIN}),
    "refund-requests": frozenset({Role.ACCOUNTANT, Role.ADMIN}),
}

STATS_ROLES = frozenset({Role.ADMIN, Role.ACCOUNTANT, Role.OPERATION_MANAGER})


def list_queue(db: Session, queue: str, role: Role | str, actor_id: str, limit: int = 200) -> list[Booking]:
    if queue not in QUEUES:
        raise ValidationFailure(f"unknown queue {queue!r}", details={"queues": sorted(QUEUES)})
    role = Role(role)
    if role not in QUEUE_ROLES[queue]:
        raise InsufficientRole(f"role {role.value} cannot view {queue}")
    stmt = select(Booking).where(Booking.status == QUEUES[queue].value)
    if role == Role.CUSTOMER:
        # customers only ever see their own bookings
        stmt = stmt.where(Booking.customer_id == str(actor_id))
    stmt = stmt.order_by(Booking.created_at.asc()).limit(min(max(limit, 1), 1000))
    return list(db.execute(stmt).scalars().all())


def status_counts(db: Session) -> dict[str, int]:
    rows = db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status)).all()
    counts = {s.value: 0 for s in BookingStatus}
    counts.update({status: n for status, n in rows})
    return counts


def overdue_review_count(db: Session, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return db.execute(
        select(func.count(Booking.id)).where(
            Booking.status == BookingStatus.IN_REVIEW.value,
            Booking.review_deadline.is_not(None),
            Booking.review_deadline <= now,
        )
    ).scalar_one()


def review_statistics(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    total = status_counts(db)[BookingStatus.IN_REVIEW.value]
    overdue = overdue_review_count(db, now)
    return {
        "totalInReview": total,
        "overdueCount": overdue,
        "withinDeadline": total - overdue,
        "checkTime": now.isoformat(),
    }


def workflow_stats(db: Session, role: Role | str, now: Optional[datetime] = None) -> dict:
    role = Role(role)
    if role not in STATS_ROLES:
        raise InsufficientRole(f"role {role.value} cannot view workflow statistics")
    counts = status_counts(db)
    return {
        "counts": counts,
        "pending_count": counts[BookingStatus.PENDING.value],
        "awaiting_payment_count": counts[BookingStatus.WAITING_FOR_PAYMENT.value],
        "in_progress_count": counts[BookingStatus.IN_PROGRESS.value],
        "refund_requests_count": counts[BookingStatus.IN_REFUND.value],
        "completed_count": counts[BookingStatus.COMPLETED.value],
        "overdue_reviews": overdue_review_count(db, now),
    }
