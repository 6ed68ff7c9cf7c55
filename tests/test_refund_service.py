from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import T0
from roro.core.exceptions import ValidationFailure, WrongState
from roro.models.booking import Booking
from roro.services import refund_service
from roro.services.action_validator import Role


def _booking(status, total="100.00"):
    return Booking(id=1, customer_id="cust-1", status=status, total_amount=Decimal(total))


@pytest.mark.parametrize("amount, expected", [
    ("0", Decimal("0.00")),
    ("12.5", Decimal("12.50")),
    (Decimal("100.00"), Decimal("100.00")),
    (40, Decimal("40.00")),
])
def test_validate_refund_amount_accepts(amount, expected):
    assert refund_service.validate_refund_amount(_booking("IN_REFUND"), amount) == expected


@pytest.mark.parametrize("amount", ["100.01", "-0.01", "1.001", "NaN", "Infinity", "abc", None])
def test_validate_refund_amount_rejects(amount):
    with pytest.raises(ValidationFailure):
        refund_service.validate_refund_amount(_booking("IN_REFUND"), amount)


def test_request_refund_from_completed():
    booking = _booking("COMPLETED")
    refund_service.request_refund(booking, "cust-1", "weather", T0)
    assert booking.status == "IN_REFUND"
    assert booking.refund_requested_by == "cust-1"
    assert booking.refund_requested_at == T0
    assert booking.refund_reason == "weather"


@pytest.mark.parametrize("status", ["PENDING", "IN_PROGRESS", "IN_REFUND", "REFUNDED", "REJECTED"])
def test_request_refund_needs_completed_or_cancelled(status):
    booking = _booking(status)
    with pytest.raises(WrongState):
        refund_service.request_refund(booking, "cust-1", "", T0)
    assert booking.status == status
    assert booking.refund_requested_at is None


def test_process_refund_records_settlement():
    booking = _booking("IN_REFUND", total="80.00")
    later = T0 + timedelta(days=1)
    value = refund_service.process_refund(booking, "acc-1", "80", "", later)
    assert value == Decimal("80.00")
    assert booking.status == "REFUNDED"
    assert booking.refund_amount == Decimal("80.00")
    assert booking.refund_notes is None
    assert booking.refund_processed_by == "acc-1"
    assert booking.refund_processed_at == later


def test_process_refund_outside_in_refund_is_refused():
    with pytest.raises(WrongState):
        refund_service.process_refund(_booking("COMPLETED"), "acc-1", "1", "", T0)


def test_can_request_refund_is_owner_only():
    booking = _booking("CANCELLED")
    assert refund_service.can_request_refund(booking, Role.CUSTOMER, "cust-1")
    assert not refund_service.can_request_refund(booking, Role.CUSTOMER, "cust-2")
    assert not refund_service.can_request_refund(booking, Role.ACCOUNTANT, "acc-1")
