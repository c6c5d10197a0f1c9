"""Periodic re-evaluation of timers the engine only derives on read.

Surfaces SLA breaches and 24h overruns as escalations, expired technician
responses as one-time alerts, and expired customer acknowledgement windows
as auto-completions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from forkliftops.core.authorization import Role
from forkliftops.core.clock import utcnow
from forkliftops.core.config import EngineConfig, load_engine_config
from forkliftops.core.errors import JobTransitionError, RejectionKind
from forkliftops.database import SessionLocal
from forkliftops.domain.job import JobStatus
from forkliftops.models.job import Job
from forkliftops.services import job_repository, sla_tracker
from forkliftops.services.job_service import apply_job_action
from forkliftops.services.job_state_machine import Action

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"

_SWEEP_STATUSES = [
    JobStatus.NEW.value,
    JobStatus.ASSIGNED.value,
    JobStatus.IN_PROGRESS.value,
    JobStatus.INCOMPLETE_CONTINUING.value,
    JobStatus.COMPLETED_AWAITING_ACK.value,
]


@dataclass(frozen=True)
class SweepResult:
    escalated: int
    no_response_alerts: int
    auto_completed: int
    conflicts: int


def run_sweep(
    *,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
    config: Optional[EngineConfig] = None,
) -> SweepResult:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()
    if config is None:
        config = load_engine_config()

    counts = {Action.ESCALATE: 0, Action.ALERT_NO_RESPONSE: 0, Action.AUTO_COMPLETE: 0}
    conflicts = 0

    try:
        rows = (
            db.query(Job)
            .filter(Job.status.in_(_SWEEP_STATUSES), Job.deleted_at.is_(None))
            .order_by(Job.created_at.asc())
            .all()
        )
        snapshots = [job_repository.snapshot_from_row(r) for r in rows]

        for job in snapshots:
            due = []
            if sla_tracker.escalation_reason(job, now, config) is not None:
                due.append(Action.ESCALATE)
            if sla_tracker.response_expired(job, now) and job.no_response_alerted_at is None:
                due.append(Action.ALERT_NO_RESPONSE)
            if sla_tracker.ack_window_expired(job, now):
                due.append(Action.AUTO_COMPLETE)

            for action in due:
                try:
                    apply_job_action(
                        job.job_id,
                        action,
                        actor_id=SYSTEM_ACTOR_ID,
                        actor_role=Role.SYSTEM.value,
                        now=now,
                        db=db,
                        config=config,
                    )
                    counts[action] += 1
                except JobTransitionError as exc:
                    if exc.rejection.kind == RejectionKind.CONFLICT:
                        conflicts += 1
                        continue
                    logger.warning(
                        "Sweep action rejected",
                        extra={"job_id": job.job_id, "action": action.value, "kind": exc.rejection.kind.value},
                    )

        if owns_db:
            db.commit()

        result = SweepResult(
            escalated=counts[Action.ESCALATE],
            no_response_alerts=counts[Action.ALERT_NO_RESPONSE],
            auto_completed=counts[Action.AUTO_COMPLETE],
            conflicts=conflicts,
        )
        logger.info(
            "Sweep finished",
            extra={
                "escalated": result.escalated,
                "no_response_alerts": result.no_response_alerts,
                "auto_completed": result.auto_completed,
                "conflicts": result.conflicts,
            },
        )
        return result

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
