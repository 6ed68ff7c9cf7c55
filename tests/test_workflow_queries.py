from datetime import timedelta

import pytest

from conftest import ACCOUNTANT, CUSTOMER, OTHER_CUSTOMER, T0
from roro.core.exceptions import InsufficientRole, ValidationFailure
from roro.services.action_validator import Role
from roro.services.workflow_queries import list_queue, review_statistics, workflow_stats


@pytest.fixture
def seeded(make_booking, drive):
    pending = make_booking()
    waiting_mine = make_booking()
    waiting_other = make_booking(customer_id=OTHER_CUSTOMER)
    drive(waiting_mine.id, "approve")
    drive(waiting_other.id, "approve")
    reviewing = make_booking()
    drive(reviewing.id, "approve", "pay")
    return {"pending": pending.id, "waiting_mine": waiting_mine.id, "waiting_other": waiting_other.id, "reviewing": reviewing.id}


def test_queues_filter_by_status(db, seeded):
    assert [b.id for b in list_queue(db, "pending-approval", Role.ACCOUNTANT, ACCOUNTANT)] == [seeded["pending"]]
    assert [b.id for b in list_queue(db, "in-review", Role.PLANNER, "plan-1")] == [seeded["reviewing"]]
    assert {b.id for b in list_queue(db, "awaiting-payment", Role.ADMIN, "admin-1")} == {
        seeded["waiting_mine"], seeded["waiting_other"],
    }
    assert list_queue(db, "refund-requests", Role.ACCOUNTANT, ACCOUNTANT) == []


def test_customers_only_see_their_own_bookings(db, seeded):
    assert [b.id for b in list_queue(db, "awaiting-payment", Role.CUSTOMER, CUSTOMER)] == [seeded["waiting_mine"]]


def test_queue_access_is_role_gated(db, seeded):
    with pytest.raises(InsufficientRole):
        list_queue(db, "pending-approval", Role.CUSTOMER, CUSTOMER)
    with pytest.raises(InsufficientRole):
        list_queue(db, "in-review", Role.ACCOUNTANT, ACCOUNTANT)
    with pytest.raises(ValidationFailure):
        list_queue(db, "boarding", Role.ADMIN, "admin-1")


def test_workflow_stats(db, seeded):
    stats = workflow_stats(db, Role.ADMIN, now=T0)
    assert stats["pending_count"] == 1
    assert stats["awaiting_payment_count"] == 2
    assert stats["counts"]["IN_REVIEW"] == 1
    assert stats["counts"]["REFUNDED"] == 0
    assert stats["overdue_reviews"] == 0

    assert workflow_stats(db, Role.ACCOUNTANT, now=T0 + timedelta(hours=1))["overdue_reviews"] == 1
    with pytest.raises(InsufficientRole):
        workflow_stats(db, Role.CUSTOMER)


def test_review_statistics(db, seeded):
    stats = review_statistics(db, now=T0 + timedelta(hours=1))
    assert stats["totalInReview"] == 1
    assert stats["overdueCount"] == 1
    assert stats["withinDeadline"] == 0
