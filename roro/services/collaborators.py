"""Narrow interfaces to the services the workflow calls but does not own.

The defaults here only log. Deployments wire real adapters in
``roro.api.deps.get_orchestrator``.
"""
from decimal import Decimal
import logging
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)


class CapacityService(Protocol):
    def reserve(self, schedule_id: str, passenger_count: int, vehicle_ids: Sequence[str]) -> bool:
        ...

    def release(self, schedule_id: str, passenger_count: int, vehicle_ids: Sequence[str]) -> None:
        ...


class PaymentService(Protocol):
    def confirm_payment(self, booking_id: int) -> bool:
        ...

    def issue_refund(self, booking_id: int, amount: Decimal) -> bool:
        ...


class NotificationService(Protocol):
    def notify(self, booking_id: int, old_state: str, new_state: str, actor: dict) -> None:
        ...


class LoggingCapacityService:
    def reserve(self, schedule_id: str, passenger_count: int, vehicle_ids: Sequence[str]) -> bool:
        logger.info("capacity reserve schedule=%s pax=%s vehicles=%s", schedule_id, passenger_count, list(vehicle_ids))
        return True

    def release(self, schedule_id: str, passenger_count: int, vehicle_ids: Sequence[str]) -> None:
        logger.info("capacity release schedule=%s pax=%s vehicles=%s", schedule_id, passenger_count, list(vehicle_ids))


class ManualPaymentService:
    """Accepts every payment and refund; settlement happens outside the system."""

    def confirm_payment(self, booking_id: int) -> bool:
        logger.info("payment confirmed manually booking_id=%s", booking_id)
        return True

    def issue_refund(self, booking_id: int, amount: Decimal) -> bool:
        logger.info("refund issued manually booking_id=%s amount=%s", booking_id, amount)
        return True


class LoggingNotificationService:
    def notify(self, booking_id: int, old_state: str, new_state: str, actor: dict) -> None:
        logger.info(
            "booking %s: %s -> %s by %s/%s",
            booking_id, old_state, new_state, actor.get("role"), actor.get("id"),
        )
