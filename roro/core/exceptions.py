"""
Booking workflow errors.

Every failure the orchestrator can report is one of these. They carry a
machine-readable ``code`` and know how to turn themselves into an
``HTTPException`` so the API layer stays thin.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BookingWorkflowError(Exception):
    """Base class for all booking workflow errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    retriable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
                "retriable": self.retriable,
            },
        )


class BookingNotFound(BookingWorkflowError):
    status_code = status.HTTP_404_NOT_FOUND


class InvalidTransition(BookingWorkflowError):
    """Requested destination is unreachable from the current state."""

    status_code = status.HTTP_409_CONFLICT


class WrongState(InvalidTransition):
    """The action is not available in the booking's current state."""


class InsufficientRole(BookingWorkflowError):
    status_code = status.HTTP_403_FORBIDDEN


class NotOwner(BookingWorkflowError):
    status_code = status.HTTP_403_FORBIDDEN


class ValidationFailure(BookingWorkflowError):
    """Malformed action payload (empty reason, refund out of range, ...)."""

    status_code = 422


class ConcurrentModification(BookingWorkflowError):
    """Another actor changed the booking first. Re-fetch and decide again."""

    status_code = status.HTTP_409_CONFLICT
    retriable = True


class CollaboratorFailure(BookingWorkflowError):
    """Capacity or payment service refused or failed; nothing was changed."""

    status_code = status.HTTP_502_BAD_GATEWAY
