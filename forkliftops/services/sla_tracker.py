"""Derived SLA, response-window and acknowledgement-window state.

Nothing here is stored; every value is a function of (snapshot, now). The
host sweep is responsible for surfacing expirations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from forkliftops.core.clock import as_utc
from forkliftops.core.config import DEFAULT_CONFIG, EngineConfig
from forkliftops.domain.job import JobSnapshot, JobStatus, JobType

ESCALATION_SLA_BREACH = "sla_breach"
ESCALATION_OVERRUN = "in_progress_overrun"

_OPEN_STATUSES = frozenset(
    {JobStatus.NEW, JobStatus.ASSIGNED, JobStatus.IN_PROGRESS, JobStatus.INCOMPLETE_CONTINUING}
)
_WORKING_STATUSES = frozenset({JobStatus.IN_PROGRESS, JobStatus.INCOMPLETE_CONTINUING})


@dataclass(frozen=True)
class SlaStatus:
    applies: bool
    pending_ack: bool
    overdue: bool
    elapsed_minutes: float
    remaining_minutes: Optional[float]
    escalated: bool


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


def evaluate_sla(job: JobSnapshot, now: datetime, config: EngineConfig = DEFAULT_CONFIG) -> SlaStatus:
    now = as_utc(now)
    elapsed = _minutes(now - as_utc(job.created_at))
    escalated = job.escalation_triggered_at is not None

    if job.job_type != JobType.SLOT_IN:
        return SlaStatus(False, False, False, elapsed, None, escalated)

    target = job.sla_target_minutes if job.sla_target_minutes is not None else config.slot_in_sla_minutes
    pending_ack = job.acknowledged_at is None
    return SlaStatus(
        applies=True,
        pending_ack=pending_ack,
        overdue=elapsed > target,
        elapsed_minutes=elapsed,
        remaining_minutes=max(0.0, target - elapsed) if pending_ack else None,
        escalated=escalated,
    )


def in_progress_overrun(job: JobSnapshot, now: datetime, config: EngineConfig = DEFAULT_CONFIG) -> bool:
    if job.status not in _WORKING_STATUSES or job.started_at is None:
        return False
    return as_utc(now) - as_utc(job.started_at) > timedelta(hours=config.in_progress_escalation_hours)


def escalation_reason(job: JobSnapshot, now: datetime, config: EngineConfig = DEFAULT_CONFIG) -> Optional[str]:
    """Why the job should escalate now, or None. Already-escalated jobs never re-escalate."""
    if job.escalation_triggered_at is not None or job.deleted_at is not None:
        return None

    if job.status in _OPEN_STATUSES:
        sla = evaluate_sla(job, now, config)
        if sla.applies and sla.pending_ack and sla.overdue:
            return ESCALATION_SLA_BREACH

    if in_progress_overrun(job, now, config):
        return ESCALATION_OVERRUN

    return None


def response_state(job: JobSnapshot, now: datetime) -> Optional[str]:
    """Acceptance sub-state of an assigned job: pending, accepted, rejected or expired."""
    if job.technician_accepted_at is not None:
        return "accepted"
    if job.technician_rejected_at is not None and job.status == JobStatus.NEW:
        return "rejected"
    if job.status != JobStatus.ASSIGNED:
        return None
    deadline = as_utc(job.technician_response_deadline)
    if deadline is not None and as_utc(now) > deadline:
        return "expired"
    return "pending"


def response_expired(job: JobSnapshot, now: datetime) -> bool:
    return response_state(job, now) == "expired"


def ack_window_open(job: JobSnapshot, now: datetime) -> bool:
    deadline = as_utc(job.customer_response_deadline)
    if job.status != JobStatus.COMPLETED_AWAITING_ACK or deadline is None:
        return False
    return as_utc(now) < deadline


def ack_window_expired(job: JobSnapshot, now: datetime) -> bool:
    deadline = as_utc(job.customer_response_deadline)
    if job.status != JobStatus.COMPLETED_AWAITING_ACK or deadline is None:
        return False
    return as_utc(now) >= deadline
