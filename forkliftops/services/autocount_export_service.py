"""Persistence and push loop for AutoCount invoice exports."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from forkliftops.core.clock import as_utc, utcnow
from forkliftops.core.config import load_engine_config
from forkliftops.core.errors import JobNotFoundError, JobTransitionError, conflict
from forkliftops.database import SessionLocal
from forkliftops.domain.export import ExportRecord, ExportStatus
from forkliftops.models.autocount_export import AutoCountExport
from forkliftops.services import export_state_machine, job_repository

logger = logging.getLogger(__name__)


class AutoCountClient(Protocol):
    def create_invoice(self, record: ExportRecord) -> str:
        """Push one invoice; returns the AutoCount invoice number or raises."""


@dataclass(frozen=True)
class PushResult:
    exported: int
    failed: int


def record_from_row(row: AutoCountExport) -> ExportRecord:
    return ExportRecord(
        export_id=row.id,
        job_id=row.job_id,
        customer_id=row.customer_id,
        status=ExportStatus(row.status),
        created_at=as_utc(row.created_at),
        total_amount=float(row.total_amount),
        currency=row.currency,
        line_items=tuple(row.line_items or ()),
        retry_count=int(row.retry_count or 0),
        export_error=row.export_error,
        autocount_invoice_number=row.autocount_invoice_number,
        exported_at=as_utc(row.exported_at),
        last_retry_at=as_utc(row.last_retry_at),
        cancelled_at=as_utc(row.cancelled_at),
    )


def _apply_to_row(row: AutoCountExport, record: ExportRecord) -> None:
    row.status = record.status.value
    row.retry_count = record.retry_count
    row.export_error = record.export_error
    row.autocount_invoice_number = record.autocount_invoice_number
    row.exported_at = record.exported_at
    row.last_retry_at = record.last_retry_at
    row.cancelled_at = record.cancelled_at


def _records_for_job(db: Session, job_id: str) -> List[ExportRecord]:
    rows = db.query(AutoCountExport).filter(AutoCountExport.job_id == str(job_id)).all()
    return [record_from_row(r) for r in rows]


def _load(db: Session, export_id: str) -> AutoCountExport:
    row = db.query(AutoCountExport).filter(AutoCountExport.id == str(export_id)).populate_existing().first()
    if row is None:
        raise LookupError(f"Export {export_id} not found")
    return row


def _check(result: export_state_machine.ExportResult) -> ExportRecord:
    if not result.ok:
        raise JobTransitionError(result.rejection)
    return result.record


def create_export_for_job(
    job_id: str,
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> ExportRecord:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()

    try:
        job_row = job_repository.load_row(db, job_id)
        if job_row is None:
            raise JobNotFoundError(job_id)
        job = job_repository.snapshot_from_row(job_row)

        record = _check(
            export_state_machine.create_export(
                job,
                _records_for_job(db, job_id),
                export_id=str(uuid.uuid4()),
                now=now,
                currency=load_engine_config().currency,
            )
        )

        db.add(
            AutoCountExport(
                id=record.export_id,
                job_id=record.job_id,
                customer_id=record.customer_id,
                status=record.status.value,
                retry_count=record.retry_count,
                line_items=list(record.line_items),
                total_amount=record.total_amount,
                currency=record.currency,
                created_at=record.created_at,
            )
        )
        try:
            db.flush()
        except IntegrityError as exc:
            # lost a race against another creator; the partial unique index held
            raise JobTransitionError(conflict(f"Job {job_id} already has an active export")) from exc

        if owns_db:
            db.commit()

        logger.info("AutoCount export created", extra={"export_id": record.export_id, "job_id": record.job_id})
        return record

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def _transition(export_id: str, fn, *, db: Optional[Session], **kwargs: Any) -> ExportRecord:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()
    try:
        row = _load(db, export_id)
        record = _check(fn(record_from_row(row), db=db, **kwargs))
        _apply_to_row(row, record)
        db.flush()
        if owns_db:
            db.commit()
        return record
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def retry_export(export_id: str, *, now: Optional[datetime] = None, db: Optional[Session] = None) -> ExportRecord:
    now = now or utcnow()

    def _retry(record: ExportRecord, db: Session):
        others = [r for r in _records_for_job(db, record.job_id) if r.export_id != record.export_id]
        return export_state_machine.retry(record, others, now)

    return _transition(export_id, _retry, db=db)


def cancel_export(export_id: str, *, now: Optional[datetime] = None, db: Optional[Session] = None) -> ExportRecord:
    now = now or utcnow()
    return _transition(export_id, lambda record, db: export_state_machine.cancel(record, now), db=db)


def list_exports(*, job_id: Optional[str] = None, status: Optional[str] = None, db: Optional[Session] = None) -> List[ExportRecord]:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()
    try:
        q = db.query(AutoCountExport)
        if job_id is not None:
            q = q.filter(AutoCountExport.job_id == str(job_id))
        if status is not None:
            q = q.filter(AutoCountExport.status == ExportStatus(status).value)
        return [record_from_row(r) for r in q.order_by(AutoCountExport.created_at.asc()).all()]
    finally:
        if owns_db:
            db.close()


def push_pending_exports(
    client: AutoCountClient,
    *,
    limit: int = 50,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
) -> PushResult:
    """Send pending records to AutoCount; each ends exported or failed."""
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()

    exported = 0
    failed = 0

    try:
        rows = (
            db.query(AutoCountExport)
            .filter(AutoCountExport.status == ExportStatus.PENDING.value)
            .order_by(AutoCountExport.created_at.asc())
            .limit(int(limit))
            .all()
        )

        for row in rows:
            record = record_from_row(row)
            try:
                invoice_number = client.create_invoice(record)
                result = export_state_machine.mark_exported(record, invoice_number, now)
            except Exception as exc:
                logger.exception(
                    "AutoCount export failed",
                    extra={"export_id": record.export_id, "job_id": record.job_id},
                )
                result = export_state_machine.mark_failed(record, str(exc), now)

            if result.ok and result.record.status == ExportStatus.EXPORTED:
                exported += 1
            else:
                if not result.ok:
                    # e.g. blank invoice number from the client
                    result = export_state_machine.mark_failed(record, result.rejection.message, now)
                failed += 1

            _apply_to_row(row, result.record)
            db.flush()

        if owns_db:
            db.commit()

        return PushResult(exported=exported, failed=failed)

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
