"""Shared fixtures: a throwaway SQLite database, a hand-driven clock and recording collaborators."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from jose import jwt
import pytest
from sqlalchemy.orm import sessionmaker

from roro.core.config import settings
from roro.core.security import ALGO
from roro.db.session import Base, make_engine
from roro.models.audit_log import AuditLog  # noqa: F401
from roro.models.booking import Booking  # noqa: F401
from roro.models.user import User  # noqa: F401
from roro.events import EventPublisher
from roro.schemas.booking import BookingCreate
from roro.services.action_validator import Action, Role
from roro.services.booking_lifecycle import BookingOrchestrator
from roro.services.booking_locks import BookingLockRegistry
from roro.services.booking_service import create_booking
from roro.services.deadline_scheduler import DeadlineScheduler

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

CUSTOMER = "cust-1"
OTHER_CUSTOMER = "cust-2"
ACCOUNTANT = "acc-1"
PLANNER = "plan-1"
OPS = "ops-1"
ADMIN = "admin-1"


def bearer_token(subject: str, role: str, minutes: int = 30) -> str:
    """Sign a token the way the identity service does."""
    exp = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode({"sub": subject, "role": role, "type": "access", "exp": exp}, settings.SECRET_KEY, algorithm=ALGO)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingCapacity:
    def __init__(self):
        self.ok = True
        self.error = None
        self.reserved = []
        self.released = []

    def reserve(self, schedule_id, passenger_count, vehicle_ids):
        if self.error:
            raise self.error
        self.reserved.append((schedule_id, passenger_count, list(vehicle_ids)))
        return self.ok

    def release(self, schedule_id, passenger_count, vehicle_ids):
        self.released.append((schedule_id, passenger_count, list(vehicle_ids)))


class RecordingPayment:
    def __init__(self):
        self.ok = True
        self.error = None
        self.on_call = None
        self.payments = []
        self.refunds = []

    def _maybe_fail(self):
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return self.ok

    def confirm_payment(self, booking_id):
        self.payments.append(booking_id)
        return self._maybe_fail()

    def issue_refund(self, booking_id, amount):
        self.refunds.append((booking_id, amount))
        return self._maybe_fail()


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, booking_id, old_state, new_state, actor):
        self.calls.append((booking_id, old_state, new_state, actor))


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'roro-test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def capacity():
    return RecordingCapacity()


@pytest.fixture
def payment():
    return RecordingPayment()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def events():
    return []


@pytest.fixture
def orchestrator(session_factory, clock, capacity, payment, notifier, events):
    publisher = EventPublisher()
    publisher.subscribe(events.append)
    return BookingOrchestrator(
        session_factory,
        capacity=capacity,
        payment=payment,
        notifier=notifier,
        publisher=publisher,
        scheduler=DeadlineScheduler(clock=clock),
        locks=BookingLockRegistry(timeout_s=2),
        clock=clock,
    )


@pytest.fixture
def make_booking(session_factory, capacity):
    def _make(customer_id: str = CUSTOMER, total_amount: str = "100.00", **fields):
        body = BookingCreate(
            schedule_id=fields.pop("schedule_id", "sched-1"),
            route_id="route-1",
            ferry_id="ferry-1",
            vehicle_ids=fields.pop("vehicle_ids", ["veh-1"]),
            passenger_count=fields.pop("passenger_count", 2),
            total_amount=Decimal(total_amount),
        )
        with session_factory() as session:
            return create_booking(session, customer_id, body, capacity)
    return _make


# (action, role, actor id, payload) for walking a booking forward
STEPS = {
    "approve": (Action.APPROVE, Role.ACCOUNTANT, ACCOUNTANT, {"notes": "ok"}),
    "pay": (Action.PAY, Role.CUSTOMER, CUSTOMER, None),
    "approve_review": (Action.APPROVE_REVIEW, Role.PLANNER, PLANNER, {"notes": "deck space fine"}),
    "arrive": (Action.CONFIRM_ARRIVAL, Role.OPERATION_MANAGER, OPS, None),
    "complete": (Action.COMPLETE, Role.CUSTOMER, CUSTOMER, None),
}


@pytest.fixture
def drive(orchestrator):
    def _drive(booking_id: int, *steps: str):
        snapshot = None
        for step in steps:
            action, role, actor_id, payload = STEPS[step]
            snapshot = orchestrator.apply_action(booking_id, action, role, actor_id, payload)
        return snapshot
    return _drive
