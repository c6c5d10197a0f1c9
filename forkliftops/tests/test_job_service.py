from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from forkliftops.core.errors import JobNotFoundError, JobTransitionError, RejectionKind
from forkliftops.database import SessionLocal
from forkliftops.domain.job import ChecklistState, FlagReason, JobStatus
from forkliftops.models.event_outbox import EventOutbox
from forkliftops.models.hourmeter import HourmeterAmendmentRecord
from forkliftops.services import job_repository, job_service

T0 = datetime(2026, 3, 5, 2, 0, tzinfo=timezone.utc)
TECH = "tech-1"


def _outbox_rows(job_id):
    db = SessionLocal()
    try:
        return db.query(EventOutbox).filter(EventOutbox.aggregate_id == job_id).order_by(EventOutbox.id.asc()).all()
    finally:
        db.close()


def _act(job_id, action, role, actor, payload=None, now=T0, **kwargs):
    return job_service.apply_job_action(
        job_id,
        action,
        actor_id=actor,
        actor_role=role,
        payload=payload or {},
        now=now,
        **kwargs,
    )


def test_create_job_persists_snapshot_and_audit(job_factory):
    job = job_factory(job_type="Slot-In", now=T0)
    assert job.status == JobStatus.NEW
    assert job.sla_target_minutes == 15

    stored = job_service.get_job(job.job_id)
    assert stored.version == 0
    assert stored.created_at == T0

    rows = _outbox_rows(job.job_id)
    assert [(r.event_type, r.idempotency_key) for r in rows] == [("AUDIT", f"{job.job_id}:0:0")]
    assert rows[0].payload["action"] == "create"


def test_create_job_requires_dispatch_role_and_known_type(job_factory):
    with pytest.raises(JobTransitionError) as exc:
        job_factory(actor_role="technician")
    assert exc.value.rejection.kind == RejectionKind.UNAUTHORIZED

    with pytest.raises(JobTransitionError) as exc:
        job_factory(job_type="Teleport")
    assert exc.value.rejection.kind == RejectionKind.VALIDATION_ERROR


def test_transition_bumps_version_and_enqueues_effects(job_factory):
    job = job_factory()

    result = _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    assert result.job.version == 1
    assert result.job.status == JobStatus.ASSIGNED

    stored = job_service.get_job(job.job_id)
    assert stored.version == 1
    assert stored.assigned_technician_id == TECH

    keys = [(r.event_type, r.idempotency_key) for r in _outbox_rows(job.job_id)]
    assert keys[1:] == [("NOTIFY", f"{job.job_id}:1:0"), ("AUDIT", f"{job.job_id}:1:1")]


def test_rejection_writes_nothing(job_factory):
    job = job_factory()
    before = len(_outbox_rows(job.job_id))

    with pytest.raises(JobTransitionError) as exc:
        _act(job.job_id, "cancel", "admin", "admin-1", {"reason": ""})
    assert exc.value.rejection.kind == RejectionKind.VALIDATION_ERROR

    assert job_service.get_job(job.job_id).version == 0
    assert len(_outbox_rows(job.job_id)) == before


def test_stale_expected_version_is_conflict(job_factory):
    job = job_factory()
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})

    with pytest.raises(JobTransitionError) as exc:
        _act(job.job_id, "cancel", "admin", "admin-1", {"reason": "dup", "expected_version": 0})
    assert exc.value.rejection.kind == RejectionKind.CONFLICT
    assert job_service.get_job(job.job_id).status == JobStatus.ASSIGNED


def test_compare_and_swap_refuses_lost_update(job_factory):
    job = job_factory()

    db = SessionLocal()
    try:
        stale = job_repository.snapshot_from_row(job_repository.load_row(db, job.job_id))
        db.rollback()

        # another writer commits first
        _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})

        assert job_repository.compare_and_swap(db, replace(stale, title="overwrite"), stale.version, T0) is False
        db.rollback()

        fresh = job_repository.snapshot_from_row(job_repository.load_row(db, job.job_id))
        assert fresh.version == 1
        assert fresh.title != "overwrite"
        assert job_repository.compare_and_swap(db, replace(fresh, title="renamed"), fresh.version, T0) is True
        db.commit()
    finally:
        db.close()

    assert job_service.get_job(job.job_id).version == 2


def test_missing_job_raises_not_found():
    with pytest.raises(JobNotFoundError):
        job_service.get_job("nope")
    with pytest.raises(JobNotFoundError):
        _act("nope", "assign", "admin", "admin-1", {"technician_id": TECH})


def test_nested_values_round_trip_through_storage(job_factory):
    job = job_factory()
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    _act(job.job_id, "accept", "technician", TECH)
    _act(job.job_id, "start", "technician", TECH, {"hourmeter_reading": 1000, "checklist": {"lighting_horn": "not_ok"}})
    _act(job.job_id, "attach_media", "technician", TECH, {"media_id": "m1", "category": "after"})
    _act(job.job_id, "sign", "technician", TECH, {"kind": "technician", "signer_name": "Ali"})
    _act(job.job_id, "add_part", "technician", TECH, {"part_id": "P-1", "part_name": "Seal", "quantity": 2, "unit_price": 9.5})
    _act(job.job_id, "create_request", "technician", TECH, {"request_type": "assistance", "description": "Need a second pair of hands"})

    stored = job_service.get_job(job.job_id)
    assert stored.version == 7
    assert stored.status == JobStatus.IN_PROGRESS
    assert stored.condition_checklist == {"lighting_horn": ChecklistState.NOT_OK}
    assert stored.media[0].media_id == "m1"
    assert stored.technician_signature.signer_name == "Ali"
    assert stored.technician_signature.signed_at == T0
    assert stored.parts_used[0].amount == 19.0
    assert stored.requests[0].request_type.value == "assistance"
    assert stored.started_at == T0


def test_forklift_history_feeds_hourmeter_checks(job_factory, forklift_factory):
    forklift = forklift_factory(current_hourmeter=1200.0, hourmeter_updated_at=T0 - timedelta(days=1))
    job = job_factory(forklift_id=forklift.id)
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    _act(job.job_id, "accept", "technician", TECH)

    result = _act(job.job_id, "start", "technician", TECH, {"hourmeter_reading": 1000})
    assert result.job.hourmeter_flagged is True
    assert result.job.hourmeter_previous == 1200.0
    assert FlagReason.LOWER_THAN_PREVIOUS in result.job.hourmeter_flag_reasons

    _act(
        job.job_id,
        "amend_hourmeter",
        "admin_service",
        "svc-1",
        {"hourmeter_reading": 1210, "justification": "technician dropped a digit"},
    )

    db = SessionLocal()
    try:
        amendment = db.query(HourmeterAmendmentRecord).filter(HourmeterAmendmentRecord.job_id == job.job_id).one()
        assert amendment.original_reading == 1000.0
        assert amendment.amended_reading == 1210.0
        assert amendment.flag_reasons == ["lower_than_previous"]
        assert amendment.forklift_id == forklift.id
    finally:
        db.close()

    assert job_service.get_job(job.job_id).hourmeter_flagged is False


@pytest.mark.parametrize("client_context", [{}, {"previous_reading": 0}, {"previous_reading": "abc"}])
def test_caller_supplied_hourmeter_context_is_ignored(job_factory, forklift_factory, client_context):
    forklift = forklift_factory(current_hourmeter=1000.0, hourmeter_updated_at=T0 - timedelta(days=1))
    job = job_factory(forklift_id=forklift.id)
    _act(job.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    _act(job.job_id, "accept", "technician", TECH)

    result = _act(
        job.job_id,
        "start",
        "technician",
        TECH,
        {"hourmeter_reading": 900, "hourmeter_context": client_context},
    )
    assert result.job.hourmeter_previous == 1000.0
    assert result.job.hourmeter_flag_reasons == frozenset({FlagReason.LOWER_THAN_PREVIOUS})


def test_list_jobs_filters(job_factory):
    a = job_factory()
    b = job_factory()
    _act(b.job_id, "assign", "admin", "admin-1", {"technician_id": TECH})
    _act(a.job_id, "cancel", "admin", "admin-1", {"reason": "Duplicate"})

    assert [j.job_id for j in job_service.list_jobs(technician_id=TECH)] == [b.job_id]
    assert [j.job_id for j in job_service.list_jobs()] == [b.job_id]
    assert {j.job_id for j in job_service.list_jobs(include_deleted=True)} == {a.job_id, b.job_id}
    assert job_service.list_jobs(status="Cancelled", include_deleted=True)[0].job_id == a.job_id
