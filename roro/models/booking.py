from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from roro.db.session import Base

def _now() -> datetime:
    return datetime.now(timezone.utc)

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    customer_id: Mapped[str] = mapped_column(String(36), index=True)  # owner
    schedule_id: Mapped[str] = mapped_column(String(36), index=True)
    route_id: Mapped[str] = mapped_column(String(36), default="")
    ferry_id: Mapped[str] = mapped_column(String(36), default="")
    vehicle_ids: Mapped[list] = mapped_column(JSON, default=list)
    passenger_count: Mapped[int] = mapped_column(Integer, default=1)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    note: Mapped[str] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(30), index=True, default="PENDING")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)

    # Transition audit groups: written once by the transition that owns them, never cleared
    approved_by: Mapped[str] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[str] = mapped_column(Text, nullable=True)

    rejected_by: Mapped[str] = mapped_column(String(36), nullable=True)
    rejected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str] = mapped_column(Text, nullable=True)

    payment_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    review_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    review_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    reviewed_by: Mapped[str] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str] = mapped_column(Text, nullable=True)

    confirmed_arrival_by: Mapped[str] = mapped_column(String(36), nullable=True)
    confirmed_arrival_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_by: Mapped[str] = mapped_column(String(36), nullable=True)
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str] = mapped_column(Text, nullable=True)

    refund_requested_by: Mapped[str] = mapped_column(String(36), nullable=True)
    refund_requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=True)
    refund_notes: Mapped[str] = mapped_column(Text, nullable=True)
    refund_processed_by: Mapped[str] = mapped_column(String(36), nullable=True)
    refund_processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}
