from decimal import Decimal
import re

import pytest
from sqlalchemy import func, select

from roro.core.exceptions import CollaboratorFailure
from roro.models.booking import Booking
from roro.schemas.booking import BookingCreate
from roro.services import booking_service
from roro.services.booking_service import create_booking, make_booking_code


def _body(**overrides):
    data = {"scheduleId": "sched-1", "vehicleIds": ["veh-1", "veh-2"], "passengerCount": 4, "totalAmount": "320.00"}
    data.update(overrides)
    return BookingCreate.model_validate(data)


def test_booking_code_shape():
    assert re.fullmatch(r"BK\d{8}[A-Z0-9]{4}", make_booking_code())


def test_create_booking_starts_pending_and_holds_capacity(db, capacity):
    booking = create_booking(db, "cust-1", _body(), capacity)

    assert booking.status == "PENDING"
    assert booking.customer_id == "cust-1"
    assert booking.total_amount == Decimal("320.00")
    assert booking.vehicle_ids == ["veh-1", "veh-2"]
    assert booking.version == 1
    assert capacity.reserved == [("sched-1", 4, ["veh-1", "veh-2"])]


def test_booking_codes_are_unique(db, capacity):
    codes = {create_booking(db, "cust-1", _body(), capacity).booking_code for _ in range(5)}
    assert len(codes) == 5


@pytest.mark.parametrize("ok, error", [(False, None), (True, TimeoutError("capacity service timeout"))])
def test_no_booking_without_capacity(db, capacity, ok, error):
    capacity.ok, capacity.error = ok, error
    with pytest.raises(CollaboratorFailure):
        create_booking(db, "cust-1", _body(), capacity)
    assert db.execute(select(func.count(Booking.id))).scalar_one() == 0


def test_create_payload_validation():
    with pytest.raises(ValueError):
        _body(passengerCount=0)
    with pytest.raises(ValueError):
        _body(totalAmount="-1")
    with pytest.raises(ValueError):
        _body(totalAmount="1.005")


def _audit_down(*args, **kwargs):
    raise RuntimeError("audit store down")


def test_failed_insert_hands_capacity_back(db, capacity, monkeypatch):
    monkeypatch.setattr(booking_service, "log_audit", _audit_down)
    with pytest.raises(RuntimeError, match="audit store down"):
        create_booking(db, "cust-1", _body(), capacity)
    assert capacity.released == [("sched-1", 4, ["veh-1", "veh-2"])]
    assert db.execute(select(func.count(Booking.id))).scalar_one() == 0


def test_failed_release_keeps_the_original_error(db, capacity, monkeypatch, caplog):
    def release_down(*args):
        raise ConnectionError("capacity service unreachable")

    monkeypatch.setattr(booking_service, "log_audit", _audit_down)
    monkeypatch.setattr(capacity, "release", release_down)
    with pytest.raises(RuntimeError, match="audit store down"):
        create_booking(db, "cust-1", _body(), capacity)
    assert "capacity release failed" in caplog.text
