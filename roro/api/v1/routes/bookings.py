from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session
from roro.db.session import get_db
from roro.api.deps import get_current_actor, get_orchestrator, require_roles
from roro.core.exceptions import NotOwner
from roro.schemas.booking import ActionsOut, BookingCreate, BookingOut
from roro.services.action_validator import Action, Role
from roro.services.audit_service import booking_history
from roro.services.booking_lifecycle import Actor, BookingOrchestrator
from roro.services.booking_service import create_booking

router = APIRouter(prefix="/bookings", tags=["bookings"])

def _visible_to(actor: Actor, booking: BookingOut) -> None:
    if actor.role == Role.CUSTOMER and booking.customer_id != actor.id:
        raise NotOwner("booking does not belong to you", details={"booking_id": booking.id})

@router.post("", response_model=BookingOut, status_code=201)
def submit_booking(
    body: BookingCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(Role.CUSTOMER)),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    booking = create_booking(db, actor.id, body, orchestrator.capacity)
    return BookingOut.model_validate(booking)

@router.get("/{booking_id}", response_model=BookingOut)
def get_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    booking = orchestrator.get_booking(booking_id)
    _visible_to(actor, booking)
    return booking

@router.get("/{booking_id}/history")
def get_booking_history(
    booking_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    _visible_to(actor, orchestrator.get_booking(booking_id))
    return booking_history(db, booking_id)

@router.get("/{booking_id}/permitted-actions", response_model=ActionsOut)
def get_permitted_actions(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    actions = orchestrator.permitted_actions(booking_id, actor.role, actor.id)
    return ActionsOut(booking_id=booking_id, role=actor.role.value, actions=[a.value for a in actions])

@router.post("/{booking_id}/actions/{action}", response_model=BookingOut)
def apply_booking_action(
    booking_id: int,
    action: Action,
    payload: dict | None = Body(default=None),
    actor: Actor = Depends(get_current_actor),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.apply_action(booking_id, action, actor.role, actor.id, payload)
