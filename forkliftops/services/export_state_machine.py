"""AutoCount invoice export lifecycle.

pending -> exported | failed | cancelled, failed -> pending (retry).
Exported and cancelled are terminal. At most one pending or exported record
exists per job.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from forkliftops.core.errors import Rejection, conflict, invalid_transition, precondition_failed, validation_error
from forkliftops.domain.export import ExportRecord, ExportStatus
from forkliftops.domain.job import JobSnapshot, JobStatus


@dataclass(frozen=True)
class ExportResult:
    ok: bool
    record: Optional[ExportRecord] = None
    rejection: Optional[Rejection] = None


def _ok(record: ExportRecord) -> ExportResult:
    return ExportResult(ok=True, record=record)


def _reject(rejection: Rejection, record: Optional[ExportRecord] = None) -> ExportResult:
    return ExportResult(ok=False, record=record, rejection=rejection)


def _has_other_active(record_job_id: str, others: Iterable[ExportRecord], exclude_id: Optional[str] = None) -> bool:
    return any(o.job_id == record_job_id and o.is_active and o.export_id != exclude_id for o in others)


def build_line_items(job: JobSnapshot) -> tuple:
    items = [
        {
            "description": p.part_name,
            "item_code": p.part_id,
            "quantity": p.quantity,
            "unit_price": p.unit_price,
            "amount": p.amount,
        }
        for p in job.parts_used
    ]
    if job.labor_cost:
        items.append(
            {"description": "Labor", "item_code": "LABOR", "quantity": 1, "unit_price": job.labor_cost, "amount": job.labor_cost}
        )
    for c in job.extra_charges:
        items.append(
            {"description": c.name, "item_code": "EXTRA", "quantity": 1, "unit_price": c.amount, "amount": c.amount}
        )
    return tuple(items)


def create_export(
    job: JobSnapshot,
    existing: Iterable[ExportRecord],
    *,
    export_id: str,
    now: datetime,
    currency: str = "MYR",
) -> ExportResult:
    if job.status != JobStatus.COMPLETED or job.invoiced_at is None:
        return _reject(precondition_failed("Job must be completed and invoiced before export", ["invoiced_at"]))
    if _has_other_active(job.job_id, existing):
        return _reject(conflict(f"Job {job.job_id} already has a pending or exported record"))

    return _ok(
        ExportRecord(
            export_id=export_id,
            job_id=job.job_id,
            customer_id=job.customer_id,
            status=ExportStatus.PENDING,
            created_at=now,
            total_amount=job.invoice_total(),
            currency=currency,
            line_items=build_line_items(job),
        )
    )


def mark_exported(record: ExportRecord, invoice_number: str, now: datetime) -> ExportResult:
    if record.status != ExportStatus.PENDING:
        return _reject(invalid_transition(f"Cannot export a {record.status.value} record"), record)
    if not (invoice_number or "").strip():
        return _reject(validation_error("autocount_invoice_number is required"), record)
    return _ok(
        replace(
            record,
            status=ExportStatus.EXPORTED,
            autocount_invoice_number=invoice_number.strip(),
            exported_at=now,
            export_error=None,
        )
    )


def mark_failed(record: ExportRecord, error: str, now: datetime) -> ExportResult:
    if record.status != ExportStatus.PENDING:
        return _reject(invalid_transition(f"Cannot fail a {record.status.value} record"), record)
    return _ok(replace(record, status=ExportStatus.FAILED, export_error=(error or "unknown error"), last_retry_at=now))


def retry(record: ExportRecord, others: Iterable[ExportRecord], now: datetime) -> ExportResult:
    if record.status != ExportStatus.FAILED:
        return _reject(invalid_transition(f"Cannot retry a {record.status.value} record"), record)
    if _has_other_active(record.job_id, others, exclude_id=record.export_id):
        return _reject(conflict(f"Job {record.job_id} already has a pending or exported record"), record)
    return _ok(
        replace(
            record,
            status=ExportStatus.PENDING,
            retry_count=record.retry_count + 1,
            last_retry_at=now,
            export_error=None,
        )
    )


def cancel(record: ExportRecord, now: datetime) -> ExportResult:
    if record.status != ExportStatus.PENDING:
        return _reject(invalid_transition(f"Cannot cancel a {record.status.value} record"), record)
    return _ok(replace(record, status=ExportStatus.CANCELLED, cancelled_at=now))
