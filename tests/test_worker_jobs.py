from roro.services.state_registry import BookingStatus
from roro.tasks.worker_jobs import sweep_deadlines


def test_sweep_fires_overdue_deadlines(orchestrator, make_booking, drive, clock):
    waiting = make_booking()
    drive(waiting.id, "approve")
    reviewing = make_booking()
    drive(reviewing.id, "approve", "pay")
    untouched = make_booking()

    # a fresh process: nothing armed in memory
    orchestrator.scheduler.cancel(waiting.id)
    orchestrator.scheduler.cancel(reviewing.id)
    clock.advance(days=2)

    assert sweep_deadlines(orchestrator) == {"overdue": 2, "fired": 2, "failed": 0}
    assert orchestrator.get_booking(waiting.id).status == BookingStatus.CANCELLED.value
    assert orchestrator.get_booking(reviewing.id).status == BookingStatus.IN_PROGRESS.value
    assert orchestrator.get_booking(untouched.id).status == BookingStatus.PENDING.value

    assert sweep_deadlines(orchestrator) == {"overdue": 0, "fired": 0, "failed": 0}
