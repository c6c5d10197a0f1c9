from datetime import datetime, timedelta, timezone

from forkliftops.database import SessionLocal
from forkliftops.models.event_outbox import EventOutbox
from forkliftops.models.forklift import Forklift
from forkliftops.models.hourmeter import HourmeterReading
from forkliftops.models.job_audit_log import JobAuditLog
from forkliftops.models.notification import Notification
from forkliftops.services import job_service
from forkliftops.services.outbox_handlers import handle_asset_update, handle_audit
from forkliftops.services.outbox_processor import process_outbox_batch

T0 = datetime(2026, 3, 5, 2, 0, tzinfo=timezone.utc)
TECH = "tech-1"


def _drain(now=T0 + timedelta(minutes=1)):
    return process_outbox_batch(now=now, batch_size=100)


def _asset_row(db, key, **payload) -> EventOutbox:
    row = EventOutbox(
        aggregate_id=payload.get("job_id", "job-x"),
        event_type="ASSET_UPDATE",
        idempotency_key=key,
        payload=payload,
        created_at=T0,
    )
    db.add(row)
    db.flush()
    return row


def test_job_effects_reach_notifications_audit_and_asset(job_factory, forklift_factory):
    forklift = forklift_factory()
    job = job_factory(forklift_id=forklift.id, now=T0)
    job_service.apply_job_action(job.job_id, "assign", actor_id="admin-1", actor_role="admin", payload={"technician_id": TECH}, now=T0)
    job_service.apply_job_action(job.job_id, "accept", actor_id=TECH, actor_role="technician", now=T0)
    job_service.apply_job_action(
        job.job_id, "start", actor_id=TECH, actor_role="technician", payload={"hourmeter_reading": 1000}, now=T0
    )

    result = _drain()
    assert result.failed == 0
    assert result.processed == 7  # 4 audits, 2 notifies, 1 asset update

    db = SessionLocal()
    try:
        notes = db.query(Notification).filter(Notification.job_id == job.job_id).all()
        assert {(n.notification_type, n.user_id) for n in notes} == {("job_assigned", TECH), ("job_accepted", "admin-1")}

        actions = [a.action for a in db.query(JobAuditLog).filter(JobAuditLog.job_id == job.job_id).order_by(JobAuditLog.id)]
        assert actions == ["create", "assign", "accept", "start"]

        fresh = db.query(Forklift).filter(Forklift.id == forklift.id).one()
        assert fresh.current_hourmeter == 1000.0
        readings = db.query(HourmeterReading).filter(HourmeterReading.forklift_id == forklift.id).all()
        assert [(r.reading, r.job_id) for r in readings] == [(1000.0, job.job_id)]
    finally:
        db.close()

    assert _drain().processed == 0


def test_notify_fans_out_one_row_per_role(job_factory):
    job = job_factory(now=T0)
    job_service.apply_job_action(job.job_id, "assign", actor_id="admin-1", actor_role="admin", payload={"technician_id": TECH}, now=T0)
    job_service.apply_job_action(
        job.job_id, "reject", actor_id=TECH, actor_role="technician", payload={"reason": "On leave"}, now=T0
    )
    _drain()

    db = SessionLocal()
    try:
        rows = (
            db.query(Notification)
            .filter(Notification.job_id == job.job_id, Notification.notification_type == "job_rejected")
            .all()
        )
        assert sorted(r.role for r in rows) == ["admin", "admin_service", "supervisor"]
        assert all(r.user_id is None for r in rows)
    finally:
        db.close()


def test_audit_handler_is_idempotent():
    db = SessionLocal()
    try:
        row = EventOutbox(
            aggregate_id="job-9",
            event_type="AUDIT",
            idempotency_key="job-9:1:0",
            payload={"job_id": "job-9", "action": "cancel", "actor_id": "a", "actor_role": "admin", "details": {"reason": "x"}},
            created_at=T0,
        )
        db.add(row)
        db.flush()

        handle_audit(row, db)
        handle_audit(row, db)
        db.commit()

        entries = db.query(JobAuditLog).filter(JobAuditLog.job_id == "job-9").all()
        assert len(entries) == 1
        assert entries[0].details == {"reason": "x"}
    finally:
        db.close()


def test_asset_hourmeter_only_moves_forward_unless_exact(forklift_factory):
    forklift = forklift_factory(current_hourmeter=1500.0)

    db = SessionLocal()
    try:
        handle_asset_update(_asset_row(db, "a:1:0", forklift_id=forklift.id, job_id="job-1", hourmeter=1400.0), db)
        fl = db.query(Forklift).filter(Forklift.id == forklift.id).one()
        assert fl.current_hourmeter == 1500.0

        handle_asset_update(
            _asset_row(db, "a:2:0", forklift_id=forklift.id, job_id="job-1", hourmeter=1400.0, exact=True), db
        )
        assert fl.current_hourmeter == 1400.0

        readings = db.query(HourmeterReading).filter(HourmeterReading.forklift_id == forklift.id).all()
        assert sorted(r.is_amendment for r in readings) == [False, True]
        db.commit()
    finally:
        db.close()


def test_asset_service_reset_and_due_flag(forklift_factory):
    forklift = forklift_factory(current_hourmeter=900.0, last_service_hourmeter=400.0)

    db = SessionLocal()
    try:
        handle_asset_update(_asset_row(db, "b:1:0", forklift_id=forklift.id, service_due=True), db)
        fl = db.query(Forklift).filter(Forklift.id == forklift.id).one()
        assert fl.service_due is True

        handle_asset_update(
            _asset_row(db, "b:2:0", forklift_id=forklift.id, reset_service_counter=True, service_due=False), db
        )
        assert fl.last_service_hourmeter == 900.0
        assert fl.service_due is False
        db.commit()
    finally:
        db.close()


def test_asset_update_for_unknown_forklift_is_retried():
    db = SessionLocal()
    try:
        _asset_row(db, "c:1:0", forklift_id="missing", hourmeter=10.0)
        db.commit()
    finally:
        db.close()

    result = _drain()
    assert (result.processed, result.failed) == (0, 1)

    db = SessionLocal()
    try:
        row = db.query(EventOutbox).filter(EventOutbox.idempotency_key == "c:1:0").one()
        assert row.retry_count == 1
        assert "Unknown forklift" in row.last_error
    finally:
        db.close()
