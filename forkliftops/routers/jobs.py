from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from forkliftops.core.authorization import Permission, require_permission
from forkliftops.core.clock import utcnow
from forkliftops.core.config import load_engine_config
from forkliftops.core.errors import JobNotFoundError, JobTransitionError
from forkliftops.database import SessionLocal
from forkliftops.deps.auth import require_auth
from forkliftops.deps.errors import to_http_exception
from forkliftops.schemas.job import (
    ChecklistCategory,
    ChecklistResponse,
    HourmeterEvaluateRequest,
    HourmeterEvaluateResponse,
    JobCreate,
    JobResponse,
    SlaResponse,
    TransitionRequest,
    TransitionResponse,
    job_to_response,
    transition_to_response,
)
from forkliftops.services import checklist_gate, hourmeter_validator, job_service, sla_tracker

router = APIRouter(prefix="/jobs", tags=["Jobs"])


def _get_or_404(job_id: str):
    try:
        return job_service.get_job(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


@router.post("", response_model=JobResponse)
def create_job(
    payload: JobCreate,
    request: Request,
    _role=Depends(require_permission(Permission.CREATE_JOB)),
):
    try:
        job = job_service.create_job(
            customer_id=payload.customer_id,
            job_type=payload.job_type,
            forklift_id=payload.forklift_id,
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            labor_cost=payload.labor_cost,
            actor_id=request.state.user_id,
            actor_role=request.state.role,
        )
    except JobTransitionError as exc:
        raise to_http_exception(exc) from exc
    return job_to_response(job)


@router.get("", response_model=List[JobResponse])
def list_jobs(
    status: Optional[str] = None,
    technician_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=1_000_000),
    _role=Depends(require_permission(Permission.VIEW_JOBS)),
):
    try:
        jobs = job_service.list_jobs(status=status, technician_id=technician_id, limit=limit, offset=offset)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [job_to_response(j) for j in jobs]


@router.get("/checklist/catalog", response_model=List[ChecklistCategory])
def checklist_catalog(_role=Depends(require_permission(Permission.VIEW_JOBS))):
    return [{"category": name, "items": list(items)} for name, items in checklist_gate.CATALOG]


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, _role=Depends(require_permission(Permission.VIEW_JOBS))):
    return job_to_response(_get_or_404(job_id))


@router.post("/{job_id}/actions/{action}", response_model=TransitionResponse)
def apply_action(
    job_id: str,
    action: str,
    body: TransitionRequest,
    request: Request,
    _auth: tuple[str, str] = Depends(require_auth),
):
    # role checks happen inside the engine so every rejection is typed
    payload = dict(body.payload)
    if body.expected_version is not None:
        payload["expected_version"] = body.expected_version

    try:
        result = job_service.apply_job_action(
            job_id,
            action,
            actor_id=request.state.user_id,
            actor_role=request.state.role,
            actor_name=request.state.user_name,
            payload=payload,
        )
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except JobTransitionError as exc:
        raise to_http_exception(exc) from exc

    return transition_to_response(result)


@router.get("/{job_id}/sla", response_model=SlaResponse)
def get_sla(job_id: str, _role=Depends(require_permission(Permission.VIEW_JOBS))):
    job = _get_or_404(job_id)
    now = utcnow()
    sla = sla_tracker.evaluate_sla(job, now, load_engine_config())
    return {
        "applies": sla.applies,
        "pending_ack": sla.pending_ack,
        "overdue": sla.overdue,
        "elapsed_minutes": sla.elapsed_minutes,
        "remaining_minutes": sla.remaining_minutes,
        "escalated": sla.escalated,
        "response_state": sla_tracker.response_state(job, now),
    }


@router.get("/{job_id}/checklist", response_model=ChecklistResponse)
def get_checklist(job_id: str, _role=Depends(require_permission(Permission.VIEW_JOBS))):
    job = _get_or_404(job_id)
    gate = checklist_gate.evaluate(job.condition_checklist, checklist_gate.mandatory_for_template(job.checklist_template))
    return {
        "template": job.checklist_template,
        "checked_count": gate.checked_count,
        "total_mandatory": gate.total_mandatory,
        "missing_keys": list(gate.missing_keys),
        "complete": gate.complete,
    }


@router.post("/{job_id}/hourmeter/evaluate", response_model=HourmeterEvaluateResponse)
def evaluate_hourmeter(
    job_id: str,
    body: HourmeterEvaluateRequest,
    _role=Depends(require_permission(Permission.VIEW_JOBS)),
):
    job = _get_or_404(job_id)

    db = SessionLocal()
    try:
        context = hourmeter_validator.HourmeterContext.from_payload(job_service.hourmeter_context(db, job.forklift_id))
    finally:
        db.close()

    previous = context.previous_reading if context.previous_reading is not None else job.hourmeter_reading
    previous_at = context.previous_recorded_at if context.previous_reading is not None else job.first_hourmeter_recorded_at
    now = utcnow()
    evaluation = hourmeter_validator.evaluate(
        body.reading,
        previous,
        previous_at,
        now,
        average_daily_usage=context.average_daily_usage,
        device_captured_at=body.device_captured_at,
        received_at=now,
        config=load_engine_config(),
    )
    return {
        "flagged": evaluation.flagged,
        "reasons": evaluation.reason_values,
        "rate_per_hour": evaluation.rate_per_hour,
        "previous_reading": previous,
    }
