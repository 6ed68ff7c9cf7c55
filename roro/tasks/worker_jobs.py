import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from roro.services.booking_lifecycle import BookingOrchestrator, build_orchestrator
from roro.services.deadline_scheduler import find_overdue

logger = logging.getLogger(__name__)

def sweep_deadlines(orchestrator: BookingOrchestrator | None = None) -> dict:
    """
    Fire every persisted deadline that has already passed. Complements the
    API's in-process timer thread: covers restarts and multi-process deploys.
    fire_deadline re-checks state under the booking lock, so racing the
    timer thread is harmless.
    """
    orchestrator = orchestrator or build_orchestrator()
    db: Session = orchestrator.session_factory()
    try:
        try:
            overdue = find_overdue(db, orchestrator.clock())
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()

    fired = failed = 0
    for booking_id, target in overdue:
        try:
            if orchestrator.fire_deadline(booking_id, target):
                fired += 1
        except Exception:
            failed += 1
            logger.exception("deadline sweep failed booking_id=%s target=%s", booking_id, target.value)
    if overdue:
        logger.info("deadline sweep: %s overdue, %s fired, %s failed", len(overdue), fired, failed)
    return {"overdue": len(overdue), "fired": fired, "failed": failed}
