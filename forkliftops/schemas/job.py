from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from forkliftops.domain import job as d
from forkliftops.domain.job import JobSnapshot
from forkliftops.services.job_state_machine import TransitionResult


class JobCreate(BaseModel):
    customer_id: str = Field(min_length=1)
    job_type: str
    forklift_id: Optional[str] = None
    title: str = ""
    description: str = ""
    priority: str = "Medium"
    labor_cost: Optional[float] = Field(default=None, ge=0)


class TransitionRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict)
    expected_version: Optional[int] = None


class RejectionResponse(BaseModel):
    kind: str
    message: str
    missing: List[str] = Field(default_factory=list)


class JobResponse(BaseModel):
    job_id: str
    customer_id: str
    forklift_id: Optional[str]
    title: str
    description: str
    job_type: str
    priority: str
    status: str
    version: int
    created_by_id: Optional[str]

    created_at: datetime
    assigned_at: Optional[datetime]
    started_at: Optional[datetime]
    repair_start_time: Optional[datetime]
    repair_end_time: Optional[datetime]
    completed_at: Optional[datetime]
    cutoff_time: Optional[datetime]

    assigned_technician_id: Optional[str]
    assigned_by_id: Optional[str]
    technician_accepted_at: Optional[datetime]
    technician_rejected_at: Optional[datetime]
    technician_rejection_reason: Optional[str]
    technician_response_deadline: Optional[datetime]
    no_response_alerted_at: Optional[datetime]

    acknowledged_at: Optional[datetime]
    acknowledged_by_id: Optional[str]
    sla_target_minutes: Optional[int]
    escalation_triggered_at: Optional[datetime]
    escalation_resolved_at: Optional[datetime]
    escalation_resolution: Optional[str]

    hourmeter_reading: Optional[float]
    hourmeter_previous: Optional[float]
    first_hourmeter_recorded_by_id: Optional[str]
    hourmeter_flagged: bool
    hourmeter_flag_reasons: List[str]
    hourmeter_invalidated: bool
    hourmeter_amendment: Optional[Dict[str, Any]]

    condition_checklist: Dict[str, str]
    checklist_template: str
    checklist_used_check_all: bool
    checklist_override: Optional[Dict[str, Any]]

    service_upgrade_prompt: Optional[Dict[str, Any]]
    service_upgrade_decision: Optional[str]

    technician_signature: Optional[Dict[str, Any]]
    customer_signature: Optional[Dict[str, Any]]
    media: List[Dict[str, Any]]

    verification_type: Optional[str]
    deferred_reason: Optional[str]
    evidence_media_ids: List[str]
    customer_response_deadline: Optional[datetime]
    auto_completed_at: Optional[datetime]
    disputed_at: Optional[datetime]
    dispute_notes: Optional[str]

    parts_confirmed_at: Optional[datetime]
    parts_confirmed_by_name: Optional[str]
    parts_confirmation_skipped: bool
    job_confirmed_at: Optional[datetime]
    job_confirmed_by_name: Optional[str]

    parts_used: List[Dict[str, Any]]
    labor_cost: float
    extra_charges: List[Dict[str, Any]]
    invoice_total: float
    invoiced_at: Optional[datetime]

    requests: List[Dict[str, Any]]

    deleted_at: Optional[datetime]
    deletion_reason: Optional[str]


class TransitionResponse(BaseModel):
    job: JobResponse
    warnings: List[str]
    effects: List[str]


def job_to_response(job: JobSnapshot) -> Dict[str, Any]:
    return {
        "job_id": job.job_id,
        "customer_id": job.customer_id,
        "forklift_id": job.forklift_id,
        "title": job.title,
        "description": job.description,
        "job_type": job.job_type.value,
        "priority": job.priority.value,
        "status": job.status.value,
        "version": job.version,
        "created_by_id": job.created_by_id,
        "created_at": job.created_at,
        "assigned_at": job.assigned_at,
        "started_at": job.started_at,
        "repair_start_time": job.repair_start_time,
        "repair_end_time": job.repair_end_time,
        "completed_at": job.completed_at,
        "cutoff_time": job.cutoff_time,
        "assigned_technician_id": job.assigned_technician_id,
        "assigned_by_id": job.assigned_by_id,
        "technician_accepted_at": job.technician_accepted_at,
        "technician_rejected_at": job.technician_rejected_at,
        "technician_rejection_reason": job.technician_rejection_reason,
        "technician_response_deadline": job.technician_response_deadline,
        "no_response_alerted_at": job.no_response_alerted_at,
        "acknowledged_at": job.acknowledged_at,
        "acknowledged_by_id": job.acknowledged_by_id,
        "sla_target_minutes": job.sla_target_minutes,
        "escalation_triggered_at": job.escalation_triggered_at,
        "escalation_resolved_at": job.escalation_resolved_at,
        "escalation_resolution": job.escalation_resolution,
        "hourmeter_reading": job.hourmeter_reading,
        "hourmeter_previous": job.hourmeter_previous,
        "first_hourmeter_recorded_by_id": job.first_hourmeter_recorded_by_id,
        "hourmeter_flagged": job.hourmeter_flagged,
        "hourmeter_flag_reasons": sorted(r.value for r in job.hourmeter_flag_reasons),
        "hourmeter_invalidated": job.hourmeter_invalidated,
        "hourmeter_amendment": d.amendment_to_json(job.hourmeter_amendment),
        "condition_checklist": d.checklist_to_json(job.condition_checklist),
        "checklist_template": job.checklist_template,
        "checklist_used_check_all": job.checklist_used_check_all,
        "checklist_override": d.override_to_json(job.checklist_override),
        "service_upgrade_prompt": d.prompt_to_json(job.service_upgrade_prompt),
        "service_upgrade_decision": job.service_upgrade_decision,
        "technician_signature": d.signature_to_json(job.technician_signature),
        "customer_signature": d.signature_to_json(job.customer_signature),
        "media": [d.media_to_json(m) for m in job.media],
        "verification_type": job.verification_type,
        "deferred_reason": job.deferred_reason,
        "evidence_media_ids": list(job.evidence_media_ids),
        "customer_response_deadline": job.customer_response_deadline,
        "auto_completed_at": job.auto_completed_at,
        "disputed_at": job.disputed_at,
        "dispute_notes": job.dispute_notes,
        "parts_confirmed_at": job.parts_confirmed_at,
        "parts_confirmed_by_name": job.parts_confirmed_by_name,
        "parts_confirmation_skipped": job.parts_confirmation_skipped,
        "job_confirmed_at": job.job_confirmed_at,
        "job_confirmed_by_name": job.job_confirmed_by_name,
        "parts_used": [d.part_to_json(p) for p in job.parts_used],
        "labor_cost": job.labor_cost,
        "extra_charges": [d.charge_to_json(c) for c in job.extra_charges],
        "invoice_total": job.invoice_total(),
        "invoiced_at": job.invoiced_at,
        "requests": [d.request_to_json(r) for r in job.requests],
        "deleted_at": job.deleted_at,
        "deletion_reason": job.deletion_reason,
    }


def transition_to_response(result: TransitionResult) -> Dict[str, Any]:
    return {
        "job": job_to_response(result.job),
        "warnings": list(result.warnings),
        "effects": [type(e).__name__ for e in result.effects],
    }


class SlaResponse(BaseModel):
    applies: bool
    pending_ack: bool
    overdue: bool
    elapsed_minutes: float
    remaining_minutes: Optional[float]
    escalated: bool
    response_state: Optional[str]


class ChecklistResponse(BaseModel):
    template: str
    checked_count: int
    total_mandatory: int
    missing_keys: List[str]
    complete: bool


class ChecklistCategory(BaseModel):
    category: str
    items: List[str]


class HourmeterEvaluateRequest(BaseModel):
    reading: float = Field(ge=0)
    device_captured_at: Optional[datetime] = None


class HourmeterEvaluateResponse(BaseModel):
    flagged: bool
    reasons: List[str]
    rate_per_hour: Optional[float]
    previous_reading: Optional[float]
