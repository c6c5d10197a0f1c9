from dataclasses import replace
from datetime import datetime, timedelta, timezone

from forkliftops.core.config import EngineConfig
from forkliftops.domain.job import JobStatus, JobType, new_job
from forkliftops.services import sla_tracker

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _slot_in(**overrides):
    job = new_job(job_id="j-sla", customer_id="c1", job_type=JobType.SLOT_IN, created_at=T0)
    return replace(job, **overrides)


def test_slot_in_defaults_to_15_minute_target():
    job = _slot_in()
    assert job.sla_target_minutes == 15

    sla = sla_tracker.evaluate_sla(job, T0 + timedelta(minutes=10))
    assert sla.applies is True
    assert sla.pending_ack is True
    assert sla.overdue is False
    assert sla.remaining_minutes == 5


def test_unacknowledged_slot_in_is_overdue_after_target():
    job = _slot_in()
    sla = sla_tracker.evaluate_sla(job, T0 + timedelta(minutes=16))
    assert sla.overdue is True
    assert sla.remaining_minutes == 0
    assert sla_tracker.escalation_reason(job, T0 + timedelta(minutes=16)) == sla_tracker.ESCALATION_SLA_BREACH


def test_acknowledged_job_does_not_escalate_for_sla():
    job = _slot_in(acknowledged_at=T0 + timedelta(minutes=5))
    sla = sla_tracker.evaluate_sla(job, T0 + timedelta(minutes=30))
    assert sla.pending_ack is False
    assert sla.remaining_minutes is None
    assert sla_tracker.escalation_reason(job, T0 + timedelta(minutes=30)) is None


def test_non_slot_in_jobs_have_no_sla():
    job = new_job(job_id="j2", customer_id="c1", job_type=JobType.REPAIR, created_at=T0)
    sla = sla_tracker.evaluate_sla(job, T0 + timedelta(hours=5))
    assert sla.applies is False
    assert sla.overdue is False


def test_already_escalated_never_re_escalates():
    job = _slot_in(escalation_triggered_at=T0 + timedelta(minutes=16))
    assert sla_tracker.escalation_reason(job, T0 + timedelta(hours=2)) is None


def test_in_progress_overrun_after_24_hours():
    job = new_job(job_id="j3", customer_id="c1", job_type=JobType.REPAIR, created_at=T0)
    job = replace(job, status=JobStatus.IN_PROGRESS, started_at=T0)

    assert sla_tracker.escalation_reason(job, T0 + timedelta(hours=23)) is None
    assert sla_tracker.escalation_reason(job, T0 + timedelta(hours=25)) == sla_tracker.ESCALATION_OVERRUN

    short = EngineConfig(in_progress_escalation_hours=2)
    assert sla_tracker.in_progress_overrun(job, T0 + timedelta(hours=3), short) is True


def test_response_state_expires_without_changing_status():
    job = _slot_in(
        status=JobStatus.ASSIGNED,
        assigned_technician_id="tech-1",
        technician_response_deadline=T0 + timedelta(minutes=15),
    )
    assert sla_tracker.response_state(job, T0 + timedelta(minutes=10)) == "pending"
    assert sla_tracker.response_state(job, T0 + timedelta(minutes=20)) == "expired"
    assert sla_tracker.response_expired(job, T0 + timedelta(minutes=20)) is True
    assert job.status == JobStatus.ASSIGNED

    accepted = replace(job, technician_accepted_at=T0 + timedelta(minutes=3))
    assert sla_tracker.response_state(accepted, T0 + timedelta(minutes=20)) == "accepted"


def test_ack_window_boundaries():
    deadline = T0 + timedelta(days=3)
    job = _slot_in(status=JobStatus.COMPLETED_AWAITING_ACK, customer_response_deadline=deadline)

    assert sla_tracker.ack_window_open(job, deadline - timedelta(seconds=1)) is True
    assert sla_tracker.ack_window_expired(job, deadline - timedelta(seconds=1)) is False
    assert sla_tracker.ack_window_expired(job, deadline) is True
    assert sla_tracker.ack_window_open(job, deadline) is False
    assert sla_tracker.ack_window_open(job, deadline + timedelta(seconds=1)) is False
