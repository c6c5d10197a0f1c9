from datetime import datetime, timedelta, timezone

from forkliftops.database import SessionLocal
from forkliftops.domain.job import JobStatus
from forkliftops.models.event_outbox import EventOutbox
from forkliftops.services import job_service
from forkliftops.services.sweep_service import run_sweep

T0 = datetime(2026, 3, 5, 2, 0, tzinfo=timezone.utc)
TECH = "tech-1"


def _act(job_id, action, role, actor, payload=None, now=T0):
    return job_service.apply_job_action(job_id, action, actor_id=actor, actor_role=role, payload=payload or {}, now=now)


def _notify_types(job_id):
    db = SessionLocal()
    try:
        rows = db.query(EventOutbox).filter(EventOutbox.aggregate_id == job_id, EventOutbox.event_type == "NOTIFY").all()
        return [r.payload["notification_type"] for r in rows]
    finally:
        db.close()


def test_unacknowledged_slot_in_escalates_exactly_once(job_factory):
    job = job_factory(job_type="Slot-In", now=T0)

    assert run_sweep(now=T0 + timedelta(minutes=10)).escalated == 0

    first = run_sweep(now=T0 + timedelta(minutes=16))
    assert first.escalated == 1
    assert first.conflicts == 0

    again = run_sweep(now=T0 + timedelta(minutes=45))
    assert again.escalated == 0

    stored = job_service.get_job(job.job_id)
    assert stored.escalation_triggered_at == T0 + timedelta(minutes=16)
    assert _notify_types(job.job_id) == ["job_escalated"]


def test_acknowledged_slot_in_is_not_escalated(job_factory):
    job = job_factory(job_type="Slot-In", now=T0)
    _act(job.job_id, "acknowledge", "supervisor", "sup-1", now=T0 + timedelta(minutes=5))

    assert run_sweep(now=T0 + timedelta(minutes=30)).escalated == 0


def test_silent_technician_triggers_one_alert(job_factory):
    job = job_factory(job_type="Slot-In", now=T0)
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})

    result = run_sweep(now=T0 + timedelta(minutes=20))
    assert result.no_response_alerts == 1
    # still unacknowledged past the SLA target as well
    assert result.escalated == 1

    again = run_sweep(now=T0 + timedelta(minutes=40))
    assert (again.no_response_alerts, again.escalated) == (0, 0)

    stored = job_service.get_job(job.job_id)
    assert stored.status == JobStatus.ASSIGNED
    assert stored.no_response_alerted_at == T0 + timedelta(minutes=20)
    assert sorted(_notify_types(job.job_id)) == ["job_assigned", "job_escalated", "technician_no_response"]


def test_long_running_job_escalates_after_a_day(job_factory):
    job = job_factory(now=T0)
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    _act(job.job_id, "accept", "technician", TECH)
    _act(job.job_id, "start", "technician", TECH, {"hourmeter_reading": 500})

    assert run_sweep(now=T0 + timedelta(hours=23)).escalated == 0
    assert run_sweep(now=T0 + timedelta(hours=25)).escalated == 1
    assert job_service.get_job(job.job_id).escalation_triggered_at == T0 + timedelta(hours=25)


def test_expired_acknowledgement_window_auto_completes(job_factory):
    job = job_factory(job_type="Courier", now=T0)
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    _act(job.job_id, "accept", "technician", TECH)
    _act(job.job_id, "start", "technician", TECH)
    _act(job.job_id, "sign", "technician", TECH, {"kind": "technician", "signer_name": "Ali"})
    deferred = _act(
        job.job_id,
        "defer_complete",
        "technician",
        TECH,
        {"reason": "Customer away", "evidence_media_ids": ["m-1"]},
    )
    deadline = deferred.job.customer_response_deadline
    assert deadline > T0

    assert run_sweep(now=deadline - timedelta(minutes=1)).auto_completed == 0

    result = run_sweep(now=deadline + timedelta(minutes=1))
    assert result.auto_completed == 1

    stored = job_service.get_job(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.verification_type == "auto_completed"
    assert stored.invoiced_at is None


def test_finished_and_cancelled_jobs_are_ignored(job_factory):
    job = job_factory(job_type="Slot-In", now=T0)
    _act(job.job_id, "cancel", "admin", "admin-1", {"reason": "Duplicate call"})

    result = run_sweep(now=T0 + timedelta(hours=30))
    assert (result.escalated, result.no_response_alerts, result.auto_completed) == (0, 0, 0)
