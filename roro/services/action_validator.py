"""Role-gated action rules.

``authorize`` is a pure function of the booking's current fields and the
actor. It never mutates anything, so UI layers may call it speculatively via
``permitted_actions`` to decide which buttons to show.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from roro.services.state_registry import BookingStatus, is_valid_transition


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    ACCOUNTANT = "ACCOUNTANT"
    PLANNER = "PLANNER"
    OPERATION_MANAGER = "OPERATION_MANAGER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"  # timers and automatic hops; never passes authorize


class Action(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PAY = "PAY"
    APPROVE_REVIEW = "APPROVE_REVIEW"
    CONFIRM_ARRIVAL = "CONFIRM_ARRIVAL"
    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"
    REQUEST_REFUND = "REQUEST_REFUND"
    PROCESS_REFUND = "PROCESS_REFUND"


class DenyReason(str, Enum):
    WRONG_STATE = "WrongState"
    INSUFFICIENT_ROLE = "InsufficientRole"
    NOT_OWNER = "NotOwner"


@dataclass(frozen=True)
class Allow:
    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Deny:
    reason: DenyReason
    message: str = ""

    def __bool__(self) -> bool:
        return False


Decision = Union[Allow, Deny]


@dataclass(frozen=True)
class ActionRule:
    source_states: frozenset[BookingStatus]
    roles: frozenset[Role]
    owner_only: bool = False  # CUSTOMER must own the booking; staff roles are never owner-checked


_STAFF_CANCEL = frozenset({Role.ACCOUNTANT, Role.ADMIN})

ACTION_RULES: dict[Action, ActionRule] = {
    Action.APPROVE: ActionRule(frozenset({BookingStatus.PENDING}), frozenset({Role.ACCOUNTANT})),
    Action.REJECT: ActionRule(frozenset({BookingStatus.PENDING}), frozenset({Role.ACCOUNTANT})),
    Action.PAY: ActionRule(frozenset({BookingStatus.WAITING_FOR_PAYMENT}), frozenset({Role.CUSTOMER}), owner_only=True),
    Action.APPROVE_REVIEW: ActionRule(frozenset({BookingStatus.IN_REVIEW}), frozenset({Role.PLANNER, Role.OPERATION_MANAGER})),
    Action.CONFIRM_ARRIVAL: ActionRule(frozenset({BookingStatus.IN_PROGRESS}), frozenset({Role.OPERATION_MANAGER, Role.PLANNER})),
    Action.COMPLETE: ActionRule(frozenset({BookingStatus.IN_PROGRESS}), frozenset({Role.CUSTOMER}), owner_only=True),
    Action.CANCEL: ActionRule(
        frozenset(s for s in BookingStatus if is_valid_transition(s, BookingStatus.CANCELLED)),
        frozenset({Role.CUSTOMER}) | _STAFF_CANCEL,
        owner_only=True,
    ),
    Action.REQUEST_REFUND: ActionRule(frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}), frozenset({Role.CUSTOMER}), owner_only=True),
    Action.PROCESS_REFUND: ActionRule(frozenset({BookingStatus.IN_REFUND}), frozenset({Role.ACCOUNTANT})),
}

# Where each action lands. CONFIRM_ARRIVAL records arrival without leaving IN_PROGRESS.
ACTION_TARGETS: dict[Action, BookingStatus | None] = {
    Action.APPROVE: BookingStatus.CONFIRMED,
    Action.REJECT: BookingStatus.REJECTED,
    Action.PAY: BookingStatus.PAID,
    Action.APPROVE_REVIEW: BookingStatus.IN_PROGRESS,
    Action.CONFIRM_ARRIVAL: None,
    Action.COMPLETE: BookingStatus.COMPLETED,
    Action.CANCEL: BookingStatus.CANCELLED,
    Action.REQUEST_REFUND: BookingStatus.IN_REFUND,
    Action.PROCESS_REFUND: BookingStatus.REFUNDED,
}


def _arrival_confirmed(booking: Any) -> bool:
    return getattr(booking, "confirmed_arrival_at", None) is not None


def _state_allows(action: Action, status: BookingStatus, booking: Any) -> bool:
    if status not in ACTION_RULES[action].source_states:
        return False
    if status == BookingStatus.IN_PROGRESS:
        if action == Action.CONFIRM_ARRIVAL:
            return not _arrival_confirmed(booking)
        if action in (Action.COMPLETE, Action.CANCEL):
            # COMPLETE needs arrival; CANCEL closes once the ferry has arrived
            return _arrival_confirmed(booking) == (action == Action.COMPLETE)
    target = ACTION_TARGETS[action]
    return target is None or is_valid_transition(status, target)


def authorize(booking: Any, action: "Action | str", actor_role: "Role | str", actor_id: str) -> Decision:
    try:
        action = Action(action)
        status = BookingStatus(booking.status)
    except ValueError as e:
        return Deny(DenyReason.WRONG_STATE, str(e))
    try:
        role = Role(actor_role)
    except ValueError:
        role = None

    rule = ACTION_RULES[action]
    if not _state_allows(action, status, booking):
        return Deny(DenyReason.WRONG_STATE, f"{action.value} is not allowed while booking is {status.value}")
    if role is None or role not in rule.roles:
        return Deny(DenyReason.INSUFFICIENT_ROLE, f"role {role.value if role else actor_role} may not {action.value}")
    if rule.owner_only and role == Role.CUSTOMER and str(booking.customer_id) != str(actor_id):
        return Deny(DenyReason.NOT_OWNER, f"booking does not belong to {actor_id}")
    return Allow()


def permitted_actions(booking: Any, actor_role: "Role | str", actor_id: str) -> list[Action]:
    return [a for a in Action if authorize(booking, a, actor_role, actor_id)]
