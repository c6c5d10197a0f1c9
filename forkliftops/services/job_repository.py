"""Mapping between ``jobs`` rows and immutable JobSnapshot values."""

from __future__ import annotations

from dataclasses import fields
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from forkliftops.core.clock import as_utc
from forkliftops.database import is_postgres
from forkliftops.domain import job as d
from forkliftops.domain.job import FlagReason, JobPriority, JobSnapshot, JobStatus, JobType
from forkliftops.models.job import Job

_ENUMS = {"status": JobStatus, "job_type": JobType, "priority": JobPriority}


def _tuple_of(encode: Callable, decode: Callable) -> Tuple[Callable, Callable]:
    return (
        lambda items: [encode(i) for i in items],
        lambda data: tuple(decode(i) for i in (data or ())),
    )


_JSON: Dict[str, Tuple[Callable[[Any], Any], Callable[[Any], Any]]] = {
    "hourmeter_flag_reasons": (
        lambda reasons: sorted(r.value for r in reasons),
        lambda data: frozenset(FlagReason(v) for v in (data or ())),
    ),
    "hourmeter_amendment": (d.amendment_to_json, d.amendment_from_json),
    "condition_checklist": (d.checklist_to_json, d.checklist_from_json),
    "checklist_override": (d.override_to_json, d.override_from_json),
    "service_upgrade_prompt": (d.prompt_to_json, d.prompt_from_json),
    "technician_signature": (d.signature_to_json, d.signature_from_json),
    "customer_signature": (d.signature_to_json, d.signature_from_json),
    "media": _tuple_of(d.media_to_json, d.media_from_json),
    "evidence_media_ids": (list, lambda data: tuple(str(v) for v in (data or ()))),
    "parts_used": _tuple_of(d.part_to_json, d.part_from_json),
    "extra_charges": _tuple_of(d.charge_to_json, d.charge_from_json),
    "requests": _tuple_of(d.request_to_json, d.request_from_json),
}


def _column(name: str) -> str:
    return "id" if name == "job_id" else name


def snapshot_from_row(row: Job) -> JobSnapshot:
    values = {}
    for f in fields(JobSnapshot):
        raw = getattr(row, _column(f.name))
        if f.name in _ENUMS:
            values[f.name] = _ENUMS[f.name](raw)
        elif f.name in _JSON:
            values[f.name] = _JSON[f.name][1](raw)
        elif isinstance(raw, datetime):
            values[f.name] = as_utc(raw)
        else:
            values[f.name] = raw
    values["version"] = int(row.version or 0)
    return JobSnapshot(**values)


def row_values(snapshot: JobSnapshot) -> Dict[str, Any]:
    out = {}
    for f in fields(JobSnapshot):
        if f.name == "version":
            continue
        value = getattr(snapshot, f.name)
        if f.name in _ENUMS:
            value = value.value
        elif f.name in _JSON:
            value = None if value is None else _JSON[f.name][0](value)
        out[_column(f.name)] = value
    return out


def insert_snapshot(db: Session, snapshot: JobSnapshot, now: datetime) -> Job:
    row = Job(**row_values(snapshot), version=snapshot.version, updated_at=now)
    db.add(row)
    db.flush()
    return row


def load_row(db: Session, job_id: str, *, for_update: bool = False) -> Optional[Job]:
    q = db.query(Job).filter(Job.id == str(job_id)).populate_existing()
    if for_update and is_postgres(db):
        q = q.with_for_update()
    return q.first()


def compare_and_swap(db: Session, snapshot: JobSnapshot, expected_version: int, now: datetime) -> bool:
    """Write ``snapshot`` only if the stored version still equals ``expected_version``."""
    values = row_values(snapshot)
    values.pop("id")
    res = db.execute(
        update(Job)
        .where(Job.id == snapshot.job_id, Job.version == int(expected_version))
        .values(**values, version=int(expected_version) + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1
