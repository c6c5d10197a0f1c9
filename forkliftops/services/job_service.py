import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from forkliftops.core.authorization import Permission, has_permission, parse_role
from forkliftops.core.clock import utcnow
from forkliftops.core.config import EngineConfig, load_engine_config
from forkliftops.core.errors import (
    JobNotFoundError,
    JobTransitionError,
    RejectionKind,
    conflict,
    unauthorized,
    validation_error,
)
from forkliftops.database import SessionLocal
from forkliftops.domain.effects import Audit, SideEffect, effect_event_type, effect_payload
from forkliftops.domain.job import JobPriority, JobSnapshot, JobStatus, JobType, new_job
from forkliftops.models.event_outbox import EventOutbox
from forkliftops.models.forklift import Forklift
from forkliftops.models.hourmeter import HourmeterAmendmentRecord
from forkliftops.models.job import Job
from forkliftops.services import job_repository
from forkliftops.services.job_state_machine import Action, TransitionResult, apply_transition, parse_action

logger = logging.getLogger(__name__)

# actions whose guards read the forklift's hourmeter history
_HOURMETER_ACTIONS = frozenset({Action.START, Action.RECORD_HOURMETER, Action.DEFER_COMPLETE})


def enqueue_effects(db: Session, job_id: str, version: int, effects: List[SideEffect], now: datetime) -> None:
    for index, effect in enumerate(effects):
        db.add(
            EventOutbox(
                aggregate_id=str(job_id),
                event_type=effect_event_type(effect),
                idempotency_key=f"{job_id}:{version}:{index}",
                payload=effect_payload(effect),
                created_at=now,
            )
        )
    db.flush()


def hourmeter_context(db: Session, forklift_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not forklift_id:
        return None
    forklift = db.query(Forklift).filter(Forklift.id == str(forklift_id)).first()
    if forklift is None:
        return None
    return {
        "previous_reading": forklift.current_hourmeter,
        "previous_recorded_at": forklift.hourmeter_updated_at,
        "average_daily_usage": forklift.average_daily_usage,
        "last_service_hourmeter": forklift.last_service_hourmeter,
    }


def create_job(
    *,
    customer_id: str,
    job_type: str,
    actor_id: str,
    actor_role: str,
    forklift_id: Optional[str] = None,
    title: str = "",
    description: str = "",
    priority: str = JobPriority.MEDIUM.value,
    labor_cost: Optional[float] = None,
    job_id: Optional[str] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
    config: Optional[EngineConfig] = None,
) -> JobSnapshot:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()
    if config is None:
        config = load_engine_config()

    try:
        role = parse_role(actor_role)
    except ValueError as exc:
        raise JobTransitionError(unauthorized(f"Unknown role: {actor_role}")) from exc
    if not has_permission(role, Permission.CREATE_JOB):
        raise JobTransitionError(unauthorized(f"Role {role.value} cannot create jobs"))

    try:
        jt = JobType(job_type)
        prio = JobPriority(priority)
    except ValueError as exc:
        raise JobTransitionError(validation_error(str(exc))) from exc
    if not str(customer_id or "").strip():
        raise JobTransitionError(validation_error("customer_id is required"))

    try:
        snapshot = new_job(
            job_id=job_id or str(uuid.uuid4()),
            customer_id=str(customer_id),
            job_type=jt,
            created_at=now,
            priority=prio,
            forklift_id=forklift_id,
            title=title,
            description=description,
            created_by_id=str(actor_id),
            labor_cost=config.default_labor_cost if labor_cost is None else float(labor_cost),
            sla_target_minutes=config.slot_in_sla_minutes if jt == JobType.SLOT_IN else None,
        )
        job_repository.insert_snapshot(db, snapshot, now)

        audit = Audit(
            job_id=snapshot.job_id,
            action="create",
            actor_id=str(actor_id),
            actor_role=role.value,
            from_status="",
            to_status=snapshot.status.value,
            details={"job_type": jt.value, "customer_id": snapshot.customer_id},
        )
        enqueue_effects(db, snapshot.job_id, snapshot.version, [audit], now)

        if owns_db:
            db.commit()

        logger.info("Job created", extra={"job_id": snapshot.job_id, "job_type": jt.value})
        return snapshot

    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()


def get_job(job_id: str, *, db: Optional[Session] = None) -> JobSnapshot:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()
    try:
        row = job_repository.load_row(db, job_id)
        if row is None:
            raise JobNotFoundError(job_id)
        return job_repository.snapshot_from_row(row)
    finally:
        if owns_db:
            db.close()


def list_jobs(
    *,
    status: Optional[str] = None,
    technician_id: Optional[str] = None,
    include_deleted: bool = False,
    limit: int = 50,
    offset: int = 0,
    db: Optional[Session] = None,
) -> List[JobSnapshot]:
    owns_db = db is None
    if owns_db:
        db = SessionLocal()
    try:
        q = db.query(Job)
        if status is not None:
            q = q.filter(Job.status == JobStatus(status).value)
        if technician_id is not None:
            q = q.filter(Job.assigned_technician_id == str(technician_id))
        if not include_deleted:
            q = q.filter(Job.deleted_at.is_(None))
        rows = q.order_by(Job.created_at.asc(), Job.id.asc()).limit(int(limit)).offset(int(offset)).all()
        return [job_repository.snapshot_from_row(r) for r in rows]
    finally:
        if owns_db:
            db.close()


def apply_job_action(
    job_id: str,
    action: Any,
    *,
    actor_id: str,
    actor_role: str,
    actor_name: Optional[str] = None,
    payload: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
    db: Optional[Session] = None,
    config: Optional[EngineConfig] = None,
) -> TransitionResult:
    """Load, transition and persist one job.

    The write is a compare-and-swap on ``jobs.version`` (plus a row lock on
    Postgres); a concurrent writer makes this call fail with Conflict rather
    than overwrite. Side effects land in ``event_outbox`` in the same
    transaction. Rejections raise JobTransitionError.
    """
    owns_db = db is None
    if owns_db:
        db = SessionLocal()

    if now is None:
        now = utcnow()
    if config is None:
        config = load_engine_config()

    payload = dict(payload or {})

    try:
        row = job_repository.load_row(db, job_id, for_update=True)
        if row is None:
            raise JobNotFoundError(job_id)
        snapshot = job_repository.snapshot_from_row(row)

        try:
            parsed = parse_action(action)
        except ValueError:
            parsed = None
        # asset history comes from the forklift row only, never from the caller
        payload.pop("hourmeter_context", None)
        if parsed in _HOURMETER_ACTIONS:
            ctx = hourmeter_context(db, snapshot.forklift_id)
            if ctx is not None:
                payload["hourmeter_context"] = ctx

        result = apply_transition(
            snapshot,
            action,
            actor_role,
            actor_id,
            payload,
            now,
            actor_name=actor_name,
            config=config,
        )
        if not result.ok:
            raise JobTransitionError(result.rejection)

        if not job_repository.compare_and_swap(db, result.job, snapshot.version, now):
            raise JobTransitionError(conflict(f"Job {job_id} was modified concurrently"))

        new_version = snapshot.version + 1
        enqueue_effects(db, snapshot.job_id, new_version, list(result.effects), now)

        if parsed == Action.AMEND_HOURMETER and result.job.hourmeter_amendment is not None:
            a = result.job.hourmeter_amendment
            db.add(
                HourmeterAmendmentRecord(
                    job_id=snapshot.job_id,
                    forklift_id=snapshot.forklift_id,
                    original_reading=a.original_reading,
                    amended_reading=a.amended_reading,
                    justification=a.justification,
                    flag_reasons=list(a.flag_reasons),
                    approved_by_id=a.approved_by_id,
                    approved_at=a.approved_at,
                )
            )
            db.flush()

        if owns_db:
            db.commit()

        logger.info(
            "Job transition applied",
            extra={
                "job_id": snapshot.job_id,
                "action": str(getattr(parsed, "value", action)),
                "from_status": snapshot.status.value,
                "to_status": result.job.status.value,
                "version": new_version,
            },
        )
        return replace(result, job=replace(result.job, version=new_version))

    except JobTransitionError as exc:
        if owns_db:
            db.rollback()
        if exc.rejection.kind == RejectionKind.CONFLICT:
            logger.warning("Job transition conflict", extra={"job_id": str(job_id), "reason": exc.rejection.message})
        raise
    except Exception:
        if owns_db:
            db.rollback()
        raise
    finally:
        if owns_db:
            db.close()
