"""Booking domain events."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict


@dataclass(frozen=True)
class BookingTransitioned:
    """Fired once per status hop, after the new state is committed."""

    booking_id: int
    booking_code: str
    from_state: str
    to_state: str
    actor_id: str
    actor_role: str
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def actor(self) -> Dict[str, str]:
        return {"id": self.actor_id, "role": self.actor_role}

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("actor_id")
        data.pop("actor_role")
        data["actor"] = self.actor
        data["timestamp"] = self.timestamp.isoformat()
        return data
