from roro.events.booking_events import BookingTransitioned
from roro.events.publisher import EventPublisher

__all__ = ["BookingTransitioned", "EventPublisher"]
