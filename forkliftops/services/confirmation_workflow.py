"""Dual sign-off (parts and job) required before invoicing."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional, Tuple, Union

from forkliftops.core.authorization import Permission, Role, has_permission
from forkliftops.core.errors import Rejection, precondition_failed, unauthorized
from forkliftops.domain.job import JobSnapshot

PARTS_GATE = "parts_confirmation"
JOB_GATE = "job_confirmation"


def parts_gate_satisfied(job: JobSnapshot) -> bool:
    return job.parts_confirmed_at is not None or job.parts_confirmation_skipped or not job.parts_used


def job_gate_satisfied(job: JobSnapshot) -> bool:
    return job.job_confirmed_at is not None


def missing_gates(job: JobSnapshot) -> Tuple[str, ...]:
    missing = []
    if not parts_gate_satisfied(job):
        missing.append(PARTS_GATE)
    if not job_gate_satisfied(job):
        missing.append(JOB_GATE)
    return tuple(missing)


def mark_parts_skipped(job: JobSnapshot) -> JobSnapshot:
    if job.parts_used:
        return job
    return replace(job, parts_confirmation_skipped=True)


def reset_parts_gate(job: JobSnapshot) -> JobSnapshot:
    """Parts changed after sign-off; the store has to confirm again."""
    return replace(
        job,
        parts_confirmed_at=None,
        parts_confirmed_by_id=None,
        parts_confirmed_by_name=None,
        parts_confirmation_notes=None,
        parts_confirmation_skipped=False,
    )


def confirm_parts(
    job: JobSnapshot,
    role: Role,
    actor_id: str,
    actor_name: str,
    notes: Optional[str],
    now: datetime,
) -> Union[JobSnapshot, Rejection]:
    if not has_permission(role, Permission.CONFIRM_PARTS):
        return unauthorized(f"Role {role.value} cannot confirm parts")
    if job.parts_confirmed_at is not None:
        return precondition_failed("Parts already confirmed")
    if job.parts_confirmation_skipped or not job.parts_used:
        return precondition_failed("No parts used; parts confirmation is skipped")

    updated = replace(
        job,
        parts_confirmed_at=now,
        parts_confirmed_by_id=actor_id,
        parts_confirmed_by_name=actor_name,
        parts_confirmation_notes=notes,
    )

    # a single admin holds both gates; confirming parts confirms the job too
    if role == Role.ADMIN and updated.job_confirmed_at is None:
        updated = _stamp_job(updated, actor_id, actor_name, notes, now)

    return updated


def confirm_job(
    job: JobSnapshot,
    role: Role,
    actor_id: str,
    actor_name: str,
    notes: Optional[str],
    now: datetime,
) -> Union[JobSnapshot, Rejection]:
    if not has_permission(role, Permission.CONFIRM_JOB):
        return unauthorized(f"Role {role.value} cannot confirm jobs")
    if job.job_confirmed_at is not None:
        return precondition_failed("Job already confirmed")
    return _stamp_job(job, actor_id, actor_name, notes, now)


def _stamp_job(job: JobSnapshot, actor_id: str, actor_name: str, notes: Optional[str], now: datetime) -> JobSnapshot:
    return replace(
        job,
        job_confirmed_at=now,
        job_confirmed_by_id=actor_id,
        job_confirmed_by_name=actor_name,
        job_confirmation_notes=notes,
    )
