import uuid, json
from sqlalchemy import select
from sqlalchemy.orm import Session
from roro.models.audit_log import AuditLog

def log_audit(db: Session, actor_user_id: str, action: str, entity_type: str, entity_id: str, details: dict | None = None):
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

def booking_history(db: Session, booking_id: int) -> list[dict]:
    rows = db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == "booking", AuditLog.entity_id == str(booking_id))
        .order_by(AuditLog.created_at.asc())
    ).scalars().all()
    return [{
        "actor": r.actor_user_id,
        "action": r.action,
        "details": json.loads(r.details_json or "{}"),
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    } for r in rows]
