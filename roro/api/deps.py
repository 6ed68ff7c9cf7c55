from functools import lru_cache

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from roro.db.session import get_db
from roro.core.security import decode_token
from roro.models.user import User
from roro.services.action_validator import Role
from roro.services.booking_lifecycle import Actor, BookingOrchestrator, build_orchestrator

bearer = HTTPBearer(auto_error=False)

def get_current_actor(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> Actor:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    user = db.get(User, user_id) if user_id else None
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    try:
        role = Role(user.role)
    except ValueError:
        raise HTTPException(status_code=403, detail="Unknown role")
    if role == Role.SYSTEM:
        raise HTTPException(status_code=403, detail="Forbidden")
    return Actor(user.id, role)

def require_roles(*roles: Role):
    def _guard(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor
    return _guard

@lru_cache(maxsize=1)
def get_orchestrator() -> BookingOrchestrator:
    return build_orchestrator()
