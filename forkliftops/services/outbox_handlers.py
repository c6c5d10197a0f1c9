import logging
from typing import Any

from sqlalchemy.orm import Session

from forkliftops.core.errors import JobTransitionError, RejectionKind
from forkliftops.models.event_outbox import EventOutbox
from forkliftops.models.forklift import Forklift
from forkliftops.models.hourmeter import HourmeterReading
from forkliftops.models.job_audit_log import JobAuditLog
from forkliftops.models.notification import Notification

logger = logging.getLogger(__name__)


def _payload(row: EventOutbox) -> dict:
    payload: Any = row.payload or {}
    if not isinstance(payload, dict):
        raise ValueError(f"{row.event_type} payload must be an object")
    return payload


def handle_notify(row: EventOutbox, db: Session) -> None:
    """Fan a Notify effect out to one notification row per recipient."""
    payload = _payload(row)

    recipients = []
    if payload.get("user_id"):
        recipients.append({"user_id": str(payload["user_id"])})
    for role in payload.get("roles") or ():
        recipients.append({"role": str(role)})
    if payload.get("customer_id"):
        recipients.append({"customer_id": str(payload["customer_id"])})

    if not recipients:
        logger.info("NOTIFY without recipients; skipping", extra={"event_outbox_id": row.id})
        return

    for recipient in recipients:
        db.add(
            Notification(
                job_id=payload.get("job_id"),
                notification_type=str(payload.get("notification_type") or "job"),
                title=str(payload.get("title") or ""),
                message=str(payload.get("message") or ""),
                source_event_id=row.id,
                created_at=row.created_at,
                **recipient,
            )
        )
    db.flush()


def handle_audit(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)

    exists = db.query(JobAuditLog.id).filter(JobAuditLog.source_event_id == row.id).first()
    if exists is not None:
        return

    db.add(
        JobAuditLog(
            job_id=str(payload["job_id"]),
            action=str(payload["action"]),
            actor_id=str(payload.get("actor_id") or ""),
            actor_role=str(payload.get("actor_role") or ""),
            from_status=payload.get("from_status") or None,
            to_status=payload.get("to_status") or None,
            details=payload.get("details") or {},
            source_event_id=row.id,
            created_at=row.created_at,
        )
    )
    db.flush()


def handle_export(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    job_id = payload.get("job_id")
    if not job_id:
        logger.info("EXPORT missing job_id; skipping", extra={"event_outbox_id": row.id})
        return

    from forkliftops.services.autocount_export_service import create_export_for_job

    try:
        create_export_for_job(str(job_id), now=row.created_at, db=db)
    except JobTransitionError as exc:
        if exc.rejection.kind != RejectionKind.CONFLICT:
            raise
        # an active export already exists; nothing to do
        logger.info("EXPORT already active for job", extra={"event_outbox_id": row.id, "job_id": job_id})


def handle_asset_update(row: EventOutbox, db: Session) -> None:
    payload = _payload(row)
    forklift = db.query(Forklift).filter(Forklift.id == str(payload.get("forklift_id"))).first()
    if forklift is None:
        raise ValueError(f"Unknown forklift: {payload.get('forklift_id')}")

    hourmeter = payload.get("hourmeter")
    if hourmeter is not None:
        hourmeter = float(hourmeter)
        exact = bool(payload.get("exact"))

        # counters only move forward unless an approved amendment sets them
        if exact or forklift.current_hourmeter is None or hourmeter >= float(forklift.current_hourmeter):
            forklift.current_hourmeter = hourmeter
            forklift.hourmeter_updated_at = row.created_at

        db.add(
            HourmeterReading(
                forklift_id=forklift.id,
                job_id=payload.get("job_id"),
                reading=hourmeter,
                is_amendment=exact,
                recorded_at=row.created_at,
            )
        )

    if payload.get("reset_service_counter"):
        forklift.last_service_hourmeter = forklift.current_hourmeter if hourmeter is None else hourmeter
        forklift.last_service_at = row.created_at
        forklift.service_due = False

    if payload.get("service_due") is not None:
        forklift.service_due = bool(payload["service_due"])

    db.flush()
