"""Refund branch: COMPLETED/CANCELLED -> IN_REFUND -> REFUNDED.

There is no "refund declined" edge; a request, once made, settles to
REFUNDED. These helpers mutate an already-locked booking; the orchestrator
owns locking, persistence and collaborator calls.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation

from roro.core.exceptions import ValidationFailure, WrongState
from roro.models.booking import Booking
from roro.services.action_validator import Action, Role, authorize
from roro.services.state_registry import BookingStatus, is_valid_transition

REFUND_SOURCE_STATES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
SYSTEM_REFUND_REASON = "automatic refund for cancelled paid booking"


def can_request_refund(booking: Booking, actor_role: Role | str, actor_id: str) -> bool:
    return bool(authorize(booking, Action.REQUEST_REFUND, actor_role, actor_id))


def validate_refund_amount(booking: Booking, amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationFailure("refund amount must be a number", details={"amount": str(amount)})
    if not value.is_finite() or value < 0:
        raise ValidationFailure("refund amount must be non-negative", details={"amount": str(value)})
    if value.as_tuple().exponent < -2:
        raise ValidationFailure("refund amount has more than 2 decimal places", details={"amount": str(value)})
    total = Decimal(booking.total_amount or 0)
    if value > total:
        raise ValidationFailure(
            "refund amount exceeds booking total",
            details={"amount": str(value), "total_amount": str(total)},
        )
    return value.quantize(Decimal("0.01"))


def _require_edge(booking: Booking, target: BookingStatus) -> None:
    if not is_valid_transition(booking.status, target):
        raise WrongState(
            f"cannot move booking from {booking.status} to {target.value}",
            details={"status": booking.status, "target": target.value},
        )


def request_refund(booking: Booking, actor_id: str, reason: str, now: datetime) -> None:
    if booking.status not in {s.value for s in REFUND_SOURCE_STATES}:
        raise WrongState(
            f"refund can only be requested for completed or cancelled bookings, not {booking.status}",
            details={"status": booking.status},
        )
    _require_edge(booking, BookingStatus.IN_REFUND)
    booking.refund_requested_by = actor_id
    booking.refund_requested_at = now
    booking.refund_reason = reason or None
    booking.status = BookingStatus.IN_REFUND.value


def process_refund(booking: Booking, actor_id: str, amount, notes: str, now: datetime) -> Decimal:
    _require_edge(booking, BookingStatus.REFUNDED)
    value = validate_refund_amount(booking, amount)
    booking.refund_amount = value
    booking.refund_notes = notes or None
    booking.refund_processed_by = actor_id
    booking.refund_processed_at = now
    booking.status = BookingStatus.REFUNDED.value
    return value
