"""Immutable job snapshot passed through the engine.

Every engine operation takes a JobSnapshot and returns a new one built with
``dataclasses.replace``; nothing mutates a snapshot in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple


class JobStatus(Enum):
    NEW = "New"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    INCOMPLETE_CONTINUING = "Incomplete - Continuing"
    COMPLETED_AWAITING_ACK = "Completed Awaiting Acknowledgement"
    DISPUTED = "Disputed"
    AWAITING_FINALIZATION = "Awaiting Finalization"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class JobType(Enum):
    SERVICE = "Service"
    FULL_SERVICE = "Full Service"
    MINOR_SERVICE = "Minor Service"
    REPAIR = "Repair"
    CHECKING = "Checking"
    SLOT_IN = "Slot-In"
    COURIER = "Courier"


class JobPriority(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    EMERGENCY = "Emergency"


class FlagReason(Enum):
    LOWER_THAN_PREVIOUS = "lower_than_previous"
    EXCESSIVE_JUMP = "excessive_jump"
    PATTERN_MISMATCH = "pattern_mismatch"
    TIMESTAMP_MISMATCH = "timestamp_mismatch"
    MANUAL_FLAG = "manual_flag"


class ChecklistState(Enum):
    OK = "ok"
    NOT_OK = "not_ok"


class RequestType(Enum):
    SPARE_PART = "spare_part"
    ASSISTANCE = "assistance"
    SKILLFUL_TECHNICIAN = "skillful_technician"


class RequestStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Job types that reset the 500h service cycle on completion.
SERVICE_RESET_JOB_TYPES = frozenset({JobType.SERVICE, JobType.FULL_SERVICE})

# Completion needs an "after" photo for these.
AFTER_PHOTO_JOB_TYPES = frozenset(
    {JobType.SERVICE, JobType.FULL_SERVICE, JobType.MINOR_SERVICE, JobType.REPAIR, JobType.CHECKING}
)

# Completion needs a recorded hourmeter for everything except courier runs.
HOURMETER_JOB_TYPES = frozenset(set(JobType) - {JobType.COURIER})


@dataclass(frozen=True)
class PartUsage:
    part_id: str
    part_name: str
    quantity: int
    unit_price: float

    @property
    def amount(self) -> float:
        return round(self.quantity * self.unit_price, 2)


@dataclass(frozen=True)
class Charge:
    charge_id: str
    name: str
    amount: float
    description: str = ""


@dataclass(frozen=True)
class Signature:
    signer_name: str
    signed_at: datetime
    signer_id: Optional[str] = None


@dataclass(frozen=True)
class MediaRef:
    media_id: str
    category: str  # before | after | evidence | other
    uploaded_at: Optional[datetime] = None


@dataclass(frozen=True)
class HourmeterAmendment:
    original_reading: Optional[float]
    amended_reading: float
    justification: str
    flag_reasons: Tuple[str, ...]
    approved_by_id: str
    approved_at: datetime


@dataclass(frozen=True)
class ChecklistOverride:
    reason: str
    by_id: str
    at: datetime
    missing_keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UpgradePrompt:
    current_hourmeter: float
    target_hourmeter: float
    overdue_hours: float


@dataclass(frozen=True)
class JobRequest:
    request_id: str
    request_type: RequestType
    status: RequestStatus
    requested_by_id: str
    description: str
    requested_at: datetime
    resolved_by_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


@dataclass(frozen=True)
class JobSnapshot:
    job_id: str
    customer_id: str
    job_type: JobType
    created_at: datetime
    status: JobStatus = JobStatus.NEW
    priority: JobPriority = JobPriority.MEDIUM
    forklift_id: Optional[str] = None
    title: str = ""
    description: str = ""
    created_by_id: Optional[str] = None

    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    repair_start_time: Optional[datetime] = None
    repair_end_time: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cutoff_time: Optional[datetime] = None

    assigned_technician_id: Optional[str] = None
    assigned_by_id: Optional[str] = None
    technician_accepted_at: Optional[datetime] = None
    technician_rejected_at: Optional[datetime] = None
    technician_rejection_reason: Optional[str] = None
    technician_response_deadline: Optional[datetime] = None
    no_response_alerted_at: Optional[datetime] = None

    acknowledged_at: Optional[datetime] = None
    acknowledged_by_id: Optional[str] = None
    sla_target_minutes: Optional[int] = None
    escalation_triggered_at: Optional[datetime] = None
    escalation_resolved_at: Optional[datetime] = None
    escalation_resolution: Optional[str] = None

    hourmeter_reading: Optional[float] = None
    hourmeter_previous: Optional[float] = None
    first_hourmeter_recorded_by_id: Optional[str] = None
    first_hourmeter_recorded_at: Optional[datetime] = None
    hourmeter_flagged: bool = False
    hourmeter_flag_reasons: FrozenSet[FlagReason] = frozenset()
    hourmeter_invalidated: bool = False
    hourmeter_amendment: Optional[HourmeterAmendment] = None

    condition_checklist: Mapping[str, ChecklistState] = field(default_factory=dict)
    checklist_template: str = "minor_service"
    checklist_used_check_all: bool = False
    checklist_override: Optional[ChecklistOverride] = None

    service_upgrade_prompt: Optional[UpgradePrompt] = None
    service_upgrade_decision: Optional[str] = None

    technician_signature: Optional[Signature] = None
    customer_signature: Optional[Signature] = None
    media: Tuple[MediaRef, ...] = ()

    verification_type: Optional[str] = None
    deferred_reason: Optional[str] = None
    evidence_media_ids: Tuple[str, ...] = ()
    customer_notified_at: Optional[datetime] = None
    customer_response_deadline: Optional[datetime] = None
    auto_completed_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    dispute_notes: Optional[str] = None

    parts_confirmed_at: Optional[datetime] = None
    parts_confirmed_by_id: Optional[str] = None
    parts_confirmed_by_name: Optional[str] = None
    parts_confirmation_notes: Optional[str] = None
    parts_confirmation_skipped: bool = False
    job_confirmed_at: Optional[datetime] = None
    job_confirmed_by_id: Optional[str] = None
    job_confirmed_by_name: Optional[str] = None
    job_confirmation_notes: Optional[str] = None

    parts_used: Tuple[PartUsage, ...] = ()
    labor_cost: float = 150.0
    extra_charges: Tuple[Charge, ...] = ()
    invoiced_at: Optional[datetime] = None
    invoiced_by_id: Optional[str] = None

    requests: Tuple[JobRequest, ...] = ()

    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[str] = None
    deletion_reason: Optional[str] = None
    hourmeter_before_delete: Optional[float] = None

    version: int = 0

    @property
    def is_slot_in(self) -> bool:
        return self.job_type == JobType.SLOT_IN

    def media_in(self, category: str) -> Tuple[MediaRef, ...]:
        return tuple(m for m in self.media if m.category == category)

    def invoice_total(self) -> float:
        parts = sum(p.amount for p in self.parts_used)
        extras = sum(c.amount for c in self.extra_charges)
        return round(parts + float(self.labor_cost or 0) + extras, 2)


def new_job(
    *,
    job_id: str,
    customer_id: str,
    job_type: JobType,
    created_at: datetime,
    priority: JobPriority = JobPriority.MEDIUM,
    forklift_id: Optional[str] = None,
    title: str = "",
    description: str = "",
    created_by_id: Optional[str] = None,
    labor_cost: float = 150.0,
    sla_target_minutes: Optional[int] = None,
) -> JobSnapshot:
    if job_type == JobType.SLOT_IN and sla_target_minutes is None:
        sla_target_minutes = 15

    return JobSnapshot(
        job_id=job_id,
        customer_id=customer_id,
        job_type=job_type,
        created_at=created_at,
        priority=priority,
        forklift_id=forklift_id,
        title=title,
        description=description,
        created_by_id=created_by_id,
        labor_cost=labor_cost,
        sla_target_minutes=sla_target_minutes,
        checklist_template="full_service" if job_type in SERVICE_RESET_JOB_TYPES else "minor_service",
    )


# ---------------------------------------------------------------------------
# JSON helpers for the nested value objects (persisted in JSON columns).
# ---------------------------------------------------------------------------


def _dt(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def checklist_to_json(checklist: Mapping[str, ChecklistState]) -> Dict[str, str]:
    return {k: v.value for k, v in checklist.items()}


def checklist_from_json(data: Optional[Mapping[str, Any]]) -> Dict[str, ChecklistState]:
    out: Dict[str, ChecklistState] = {}
    for key, value in (data or {}).items():
        if value in (None, "", "unset"):
            continue
        out[str(key)] = value if isinstance(value, ChecklistState) else ChecklistState(str(value))
    return out


def part_to_json(p: PartUsage) -> dict:
    return {"part_id": p.part_id, "part_name": p.part_name, "quantity": p.quantity, "unit_price": p.unit_price}


def part_from_json(d: Mapping[str, Any]) -> PartUsage:
    return PartUsage(
        part_id=str(d["part_id"]),
        part_name=str(d.get("part_name") or ""),
        quantity=int(d.get("quantity") or 0),
        unit_price=float(d.get("unit_price") or 0),
    )


def charge_to_json(c: Charge) -> dict:
    return {"charge_id": c.charge_id, "name": c.name, "amount": c.amount, "description": c.description}


def charge_from_json(d: Mapping[str, Any]) -> Charge:
    return Charge(
        charge_id=str(d["charge_id"]),
        name=str(d.get("name") or ""),
        amount=float(d.get("amount") or 0),
        description=str(d.get("description") or ""),
    )


def signature_to_json(s: Optional[Signature]) -> Optional[dict]:
    if s is None:
        return None
    return {"signer_name": s.signer_name, "signed_at": _dt(s.signed_at), "signer_id": s.signer_id}


def signature_from_json(d: Optional[Mapping[str, Any]]) -> Optional[Signature]:
    if not d:
        return None
    return Signature(signer_name=str(d["signer_name"]), signed_at=_parse_dt(d["signed_at"]), signer_id=d.get("signer_id"))


def media_to_json(m: MediaRef) -> dict:
    return {"media_id": m.media_id, "category": m.category, "uploaded_at": _dt(m.uploaded_at)}


def media_from_json(d: Mapping[str, Any]) -> MediaRef:
    return MediaRef(media_id=str(d["media_id"]), category=str(d.get("category") or "other"), uploaded_at=_parse_dt(d.get("uploaded_at")))


def amendment_to_json(a: Optional[HourmeterAmendment]) -> Optional[dict]:
    if a is None:
        return None
    return {
        "original_reading": a.original_reading,
        "amended_reading": a.amended_reading,
        "justification": a.justification,
        "flag_reasons": list(a.flag_reasons),
        "approved_by_id": a.approved_by_id,
        "approved_at": _dt(a.approved_at),
    }


def amendment_from_json(d: Optional[Mapping[str, Any]]) -> Optional[HourmeterAmendment]:
    if not d:
        return None
    return HourmeterAmendment(
        original_reading=d.get("original_reading"),
        amended_reading=float(d["amended_reading"]),
        justification=str(d.get("justification") or ""),
        flag_reasons=tuple(d.get("flag_reasons") or ()),
        approved_by_id=str(d.get("approved_by_id") or ""),
        approved_at=_parse_dt(d.get("approved_at")),
    )


def override_to_json(o: Optional[ChecklistOverride]) -> Optional[dict]:
    if o is None:
        return None
    return {"reason": o.reason, "by_id": o.by_id, "at": _dt(o.at), "missing_keys": list(o.missing_keys)}


def override_from_json(d: Optional[Mapping[str, Any]]) -> Optional[ChecklistOverride]:
    if not d:
        return None
    return ChecklistOverride(
        reason=str(d["reason"]),
        by_id=str(d.get("by_id") or ""),
        at=_parse_dt(d.get("at")),
        missing_keys=tuple(d.get("missing_keys") or ()),
    )


def prompt_to_json(p: Optional[UpgradePrompt]) -> Optional[dict]:
    if p is None:
        return None
    return {"current_hourmeter": p.current_hourmeter, "target_hourmeter": p.target_hourmeter, "overdue_hours": p.overdue_hours}


def prompt_from_json(d: Optional[Mapping[str, Any]]) -> Optional[UpgradePrompt]:
    if not d:
        return None
    return UpgradePrompt(
        current_hourmeter=float(d["current_hourmeter"]),
        target_hourmeter=float(d["target_hourmeter"]),
        overdue_hours=float(d["overdue_hours"]),
    )


def request_to_json(r: JobRequest) -> dict:
    return {
        "request_id": r.request_id,
        "request_type": r.request_type.value,
        "status": r.status.value,
        "requested_by_id": r.requested_by_id,
        "description": r.description,
        "requested_at": _dt(r.requested_at),
        "resolved_by_id": r.resolved_by_id,
        "resolved_at": _dt(r.resolved_at),
        "resolution_notes": r.resolution_notes,
    }


def request_from_json(d: Mapping[str, Any]) -> JobRequest:
    return JobRequest(
        request_id=str(d["request_id"]),
        request_type=RequestType(d["request_type"]),
        status=RequestStatus(d.get("status") or "pending"),
        requested_by_id=str(d.get("requested_by_id") or ""),
        description=str(d.get("description") or ""),
        requested_at=_parse_dt(d.get("requested_at")),
        resolved_by_id=d.get("resolved_by_id"),
        resolved_at=_parse_dt(d.get("resolved_at")),
        resolution_notes=d.get("resolution_notes"),
    )
