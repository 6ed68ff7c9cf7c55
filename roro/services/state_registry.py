"""Booking states and the directed transition graph.

Every other component asks ``is_valid_transition`` before moving a booking;
nothing special-cases an edge that is not in ``TRANSITIONS``.
"""
from enum import Enum

from roro.core.exceptions import ValidationFailure


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    WAITING_FOR_PAYMENT = "WAITING_FOR_PAYMENT"
    PAID = "PAID"
    IN_REVIEW = "IN_REVIEW"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    IN_REFUND = "IN_REFUND"
    REFUNDED = "REFUNDED"


TERMINAL_STATES: frozenset[BookingStatus] = frozenset({
    BookingStatus.REJECTED,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.REFUNDED,
})

# COMPLETED and CANCELLED are terminal for the journey but still open the refund branch
TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.WAITING_FOR_PAYMENT, BookingStatus.CANCELLED}),
    BookingStatus.WAITING_FOR_PAYMENT: frozenset({BookingStatus.PAID, BookingStatus.CANCELLED}),
    BookingStatus.PAID: frozenset({BookingStatus.IN_REVIEW, BookingStatus.CANCELLED}),
    BookingStatus.IN_REVIEW: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset({BookingStatus.IN_REFUND}),
    BookingStatus.CANCELLED: frozenset({BookingStatus.IN_REFUND}),
    BookingStatus.IN_REFUND: frozenset({BookingStatus.REFUNDED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.REFUNDED: frozenset(),
}

# Hops the system takes on its own right after entering the key state
AUTOMATIC_TRANSITIONS: dict[BookingStatus, BookingStatus] = {
    BookingStatus.CONFIRMED: BookingStatus.WAITING_FOR_PAYMENT,
    BookingStatus.PAID: BookingStatus.IN_REVIEW,
}


def parse_status(value: "str | BookingStatus") -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationFailure(f"unknown booking status: {value!r}", details={"status": str(value)})


def is_valid_transition(from_status: "str | BookingStatus", to_status: "str | BookingStatus") -> bool:
    try:
        src, dst = BookingStatus(from_status), BookingStatus(to_status)
    except ValueError:
        return False
    return dst in TRANSITIONS[src]


def allowed_targets(status: "str | BookingStatus") -> frozenset[BookingStatus]:
    return TRANSITIONS[parse_status(status)]


def is_terminal(status: "str | BookingStatus") -> bool:
    return parse_status(status) in TERMINAL_STATES
