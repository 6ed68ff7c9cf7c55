from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from roro.core.exceptions import ValidationFailure


class _Api(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, serialize_by_alias=True)


class BookingCreate(_Api):
    schedule_id: str
    route_id: str = ""
    ferry_id: str = ""
    vehicle_ids: List[str] = []
    passenger_count: int = Field(default=1, ge=1)
    total_amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    note: Optional[str] = None


class BookingOut(_Api):
    """Immutable snapshot of a booking, returned by every workflow call."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    booking_code: str
    customer_id: str
    schedule_id: str
    route_id: str = ""
    ferry_id: str = ""
    vehicle_ids: List[str] = []
    passenger_count: int
    total_amount: Decimal
    note: Optional[str] = None
    status: str
    version: int
    created_at: datetime
    updated_at: datetime

    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    payment_deadline: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    review_started_at: Optional[datetime] = None
    review_deadline: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    confirmed_arrival_by: Optional[str] = None
    confirmed_arrival_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_requested_by: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_notes: Optional[str] = None
    refund_processed_by: Optional[str] = None
    refund_processed_at: Optional[datetime] = None


BookingSnapshot = BookingOut


# Action payloads. Unknown keys are ignored so clients may send a generic body.

class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class EmptyPayload(_Payload):
    pass


class NotesPayload(_Payload):
    notes: str = ""


class ReasonPayload(_Payload):
    reason: str = Field(min_length=1)


class RefundRequestPayload(_Payload):
    reason: str = ""


class RefundDecisionPayload(_Payload):
    amount: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    notes: str = ""


PAYLOAD_MODELS: dict[str, type[_Payload]] = {
    "APPROVE": NotesPayload,
    "REJECT": ReasonPayload,
    "PAY": EmptyPayload,
    "APPROVE_REVIEW": NotesPayload,
    "CONFIRM_ARRIVAL": EmptyPayload,
    "COMPLETE": EmptyPayload,
    "CANCEL": ReasonPayload,
    "REQUEST_REFUND": RefundRequestPayload,
    "PROCESS_REFUND": RefundDecisionPayload,
}


def parse_payload(action: str, payload: Optional[dict]) -> _Payload:
    model = PAYLOAD_MODELS[action]
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        raise ValidationFailure(
            f"invalid payload for {action}",
            details={"errors": e.errors(include_url=False, include_context=False)},
        )


class ActionsOut(BaseModel):
    booking_id: int
    role: str
    actions: List[str]


class WorkflowStats(_Api):
    counts: dict[str, int]
    pending_count: int
    awaiting_payment_count: int
    in_progress_count: int
    refund_requests_count: int
    completed_count: int
    overdue_reviews: int
