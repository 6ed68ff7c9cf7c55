from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from roro.db.session import get_db
from roro.api.deps import get_current_actor
from roro.core.exceptions import InsufficientRole
from roro.schemas.booking import BookingOut, WorkflowStats
from roro.services.booking_lifecycle import Actor
from roro.services.workflow_queries import STATS_ROLES, list_queue, review_statistics, workflow_stats

router = APIRouter(prefix="/workflow", tags=["workflow"])

@router.get("/queues/{queue}", response_model=list[BookingOut])
def get_queue(
    queue: str,
    limit: int = 200,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return [BookingOut.model_validate(b) for b in list_queue(db, queue, actor.role, actor.id, limit=limit)]

@router.get("/stats", response_model=WorkflowStats)
def get_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return workflow_stats(db, actor.role)

@router.get("/review-stats")
def get_review_stats(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    if actor.role not in STATS_ROLES:
        raise InsufficientRole(f"role {actor.role.value} cannot view review statistics")
    return review_statistics(db)
