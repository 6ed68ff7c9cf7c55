import logging
import random
import string
import time
from sqlalchemy.orm import Session
from sqlalchemy import select
from roro.core.exceptions import CollaboratorFailure, ValidationFailure
from roro.models.booking import Booking
from roro.schemas.booking import BookingCreate
from roro.services.audit_service import log_audit
from roro.services.collaborators import CapacityService
from roro.services.state_registry import BookingStatus

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits

def make_booking_code() -> str:
    # BK + last 8 digits of the ms clock + 4 random chars
    return "BK" + f"{int(time.time() * 1000) % 100_000_000:08d}" + "".join(random.choices(CODE_ALPHABET, k=4))

def create_booking(db: Session, customer_id: str, body: BookingCreate, capacity: CapacityService) -> Booking:
    if body.passenger_count < 1:
        raise ValidationFailure("passenger_count must be >= 1")
    if body.total_amount < 0:
        raise ValidationFailure("total_amount must be >= 0")

    # booking_code must be unique
    for _ in range(10):
        code = make_booking_code()
        exists = db.execute(select(Booking.id).where(Booking.booking_code == code)).first()
        if not exists:
            break
    else:
        raise ValidationFailure("could not allocate booking code")

    # Capacity is held before the row exists; no booking lock is involved yet
    try:
        reserved = capacity.reserve(body.schedule_id, body.passenger_count, body.vehicle_ids)
    except Exception as e:
        raise CollaboratorFailure(f"capacity service failed: {e}", details={"schedule_id": body.schedule_id}) from e
    if not reserved:
        raise CollaboratorFailure("not enough capacity on schedule", details={"schedule_id": body.schedule_id})

    booking = Booking(
        booking_code=code,
        customer_id=customer_id,
        schedule_id=body.schedule_id,
        route_id=body.route_id,
        ferry_id=body.ferry_id,
        vehicle_ids=list(body.vehicle_ids),
        passenger_count=body.passenger_count,
        total_amount=body.total_amount,
        note=body.note,
        status=BookingStatus.PENDING.value,
    )
    db.add(booking)
    try:
        db.flush()
        log_audit(db, customer_id, "booking.create", "booking", str(booking.id), {
            "booking_code": code,
            "to": BookingStatus.PENDING.value,
            "total_amount": str(body.total_amount),
        })
        db.commit()
    except Exception:
        db.rollback()
        try:
            capacity.release(body.schedule_id, body.passenger_count, body.vehicle_ids)
        except Exception:
            logger.exception("capacity release failed for schedule %s; hold needs manual release", body.schedule_id)
        raise
    db.refresh(booking)
    logger.info("booking %s (%s) created for customer %s", booking.id, code, customer_id)
    return booking
