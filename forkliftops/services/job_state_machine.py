"""Job lifecycle engine.

``apply_transition`` is the single entry point. It is a pure function of
(snapshot, action, actor, payload, now): it returns a new snapshot plus the
side effects the host must execute, or a typed rejection. It never raises
for business-rule failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from forkliftops.core.authorization import Permission, Role, has_permission, parse_role
from forkliftops.core.clock import as_utc, utcnow
from forkliftops.core.config import DEFAULT_CONFIG, EngineConfig
from forkliftops.core.errors import (
    Rejection,
    conflict,
    invalid_transition,
    precondition_failed,
    unauthorized,
    validation_error,
)
from forkliftops.domain.effects import AssetUpdate, Audit, Export, Notify, SideEffect
from forkliftops.domain.job import (
    AFTER_PHOTO_JOB_TYPES,
    HOURMETER_JOB_TYPES,
    SERVICE_RESET_JOB_TYPES,
    Charge,
    ChecklistOverride,
    FlagReason,
    HourmeterAmendment,
    JobRequest,
    JobSnapshot,
    JobStatus,
    JobType,
    MediaRef,
    PartUsage,
    RequestStatus,
    RequestType,
    Signature,
)
from forkliftops.services import checklist_gate, confirmation_workflow, hourmeter_validator, sla_tracker
from forkliftops.services.business_days import add_business_days
from forkliftops.services.hourmeter_validator import HourmeterContext
from forkliftops.services.service_upgrade_advisor import DECISIONS, DECLINE, UPGRADE, advise

logger = logging.getLogger(__name__)


class Action(Enum):
    ASSIGN = "assign"
    ACCEPT = "accept"
    REJECT = "reject"
    START = "start"
    RECORD_HOURMETER = "record_hourmeter"
    CONTINUE_TOMORROW = "continue_tomorrow"
    RESUME = "resume"
    DEFER_COMPLETE = "defer_complete"
    CUSTOMER_ACKNOWLEDGE = "customer_acknowledge"
    AUTO_COMPLETE = "auto_complete"
    DISPUTE = "dispute"
    COMPLETE = "complete"
    CONFIRM_PARTS = "confirm_parts"
    CONFIRM_JOB = "confirm_job"
    FINALIZE = "finalize"
    CANCEL = "cancel"

    ACKNOWLEDGE = "acknowledge"
    ESCALATE = "escalate"
    RESOLVE_ESCALATION = "resolve_escalation"
    ALERT_NO_RESPONSE = "alert_no_response"
    DECIDE_SERVICE_UPGRADE = "decide_service_upgrade"
    UPDATE_CHECKLIST = "update_checklist"
    CHECK_ALL = "check_all"
    SIGN = "sign"
    ATTACH_MEDIA = "attach_media"
    ADD_PART = "add_part"
    ADD_EXTRA_CHARGE = "add_extra_charge"
    SET_LABOR_COST = "set_labor_cost"
    FLAG_HOURMETER = "flag_hourmeter"
    AMEND_HOURMETER = "amend_hourmeter"
    CREATE_REQUEST = "create_request"
    RESOLVE_REQUEST = "resolve_request"


S = JobStatus

ALL_STATUSES: FrozenSet[JobStatus] = frozenset(JobStatus)
_LIVE = ALL_STATUSES - {S.COMPLETED, S.CANCELLED}
_WORKING = frozenset({S.IN_PROGRESS, S.INCOMPLETE_CONTINUING})
_EDITABLE = frozenset({S.ASSIGNED, S.IN_PROGRESS, S.INCOMPLETE_CONTINUING, S.AWAITING_FINALIZATION})

APPROVER_ROLES = (Role.ADMIN.value, Role.ADMIN_SERVICE.value)
DISPATCH_ROLES = (Role.ADMIN.value, Role.ADMIN_SERVICE.value, Role.SUPERVISOR.value)
FINALIZATION_ROLES = (Role.ADMIN.value, Role.ADMIN_SERVICE.value, Role.ADMIN_STORE.value, Role.ACCOUNTANT.value)

MEDIA_CATEGORIES = frozenset({"before", "after", "evidence", "other"})


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    job: JobSnapshot
    effects: Tuple[SideEffect, ...] = ()
    rejection: Optional[Rejection] = None
    warnings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class _Ctx:
    job: JobSnapshot
    action: Action
    role: Role
    actor_id: str
    actor_name: str
    payload: Mapping[str, Any]
    now: datetime
    config: EngineConfig

    def has(self, permission: Permission) -> bool:
        return has_permission(self.role, permission)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def text(self, key: str) -> str:
        value = self.payload.get(key)
        return "" if value is None else str(value).strip()


@dataclass(frozen=True)
class _Done:
    job: JobSnapshot
    effects: Tuple[SideEffect, ...] = ()
    warnings: Tuple[str, ...] = ()
    details: Optional[Mapping[str, Any]] = None


Outcome = Any  # _Done | Rejection
Handler = Callable[[_Ctx], Outcome]


@dataclass(frozen=True)
class _Rule:
    permission: Permission
    from_statuses: FrozenSet[JobStatus]
    to_status: Optional[JobStatus]
    handler: Handler


# ---------------------------------------------------------------------------
# shared guards
# ---------------------------------------------------------------------------


def _require_assignee(ctx: _Ctx) -> Optional[Rejection]:
    """Technicians may only act on jobs assigned to them."""
    if ctx.role == Role.TECHNICIAN and ctx.actor_id != ctx.job.assigned_technician_id:
        return unauthorized("Only the assigned technician can perform this action")
    return None


def _parse_reading(ctx: _Ctx, key: str) -> Tuple[Optional[float], Optional[Rejection]]:
    raw = ctx.get(key)
    bad = hourmeter_validator.validate_reading(raw)
    if bad is not None:
        return None, bad
    return float(raw), None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


def _hourmeter_context(ctx: _Ctx) -> Tuple[Optional[HourmeterContext], Optional[Rejection]]:
    try:
        return HourmeterContext.from_payload(ctx.get("hourmeter_context")), None
    except (TypeError, ValueError):
        return None, validation_error("hourmeter_context is malformed")


def _bool_field(ctx: _Ctx, key: str) -> Tuple[bool, Optional[Rejection]]:
    raw = ctx.get(key)
    if raw is None:
        return False, None
    if not isinstance(raw, bool):
        return False, validation_error(f"{key} must be true or false")
    return raw, None


def _evaluate_reading(ctx: _Ctx, reading: float, context: HourmeterContext, manual_flag: bool = False):
    previous = context.previous_reading
    previous_at = context.previous_recorded_at
    if previous is None and ctx.job.hourmeter_reading is not None:
        previous = ctx.job.hourmeter_reading
        previous_at = ctx.job.first_hourmeter_recorded_at

    try:
        device_captured_at = _parse_dt(ctx.get("device_captured_at"))
    except ValueError:
        device_captured_at = None

    evaluation = hourmeter_validator.evaluate(
        reading,
        previous,
        previous_at,
        ctx.now,
        average_daily_usage=context.average_daily_usage,
        device_captured_at=device_captured_at,
        received_at=ctx.now,
        manual_flag=manual_flag,
        config=ctx.config,
    )
    return previous, evaluation


def _flag_notice(job: JobSnapshot, reasons) -> Notify:
    return Notify(
        job_id=job.job_id,
        notification_type="hourmeter_amendment_request",
        title="Hourmeter reading flagged",
        message="Reading %s flagged (%s); amendment required" % (job.hourmeter_reading, ", ".join(sorted(r.value for r in reasons))),
        roles=APPROVER_ROLES,
    )


def _asset_reading(job: JobSnapshot, reading: float) -> Tuple[SideEffect, ...]:
    if not job.forklift_id:
        return ()
    return (AssetUpdate(forklift_id=job.forklift_id, job_id=job.job_id, hourmeter=reading),)


# ---------------------------------------------------------------------------
# status transitions
# ---------------------------------------------------------------------------


def _assign(ctx: _Ctx) -> Outcome:
    technician_id = ctx.text("technician_id")
    if not technician_id:
        return validation_error("technician_id is required")

    deadline = None
    if ctx.job.is_slot_in:
        deadline = ctx.now + timedelta(minutes=ctx.config.response_window_minutes)

    job = replace(
        ctx.job,
        status=S.ASSIGNED,
        assigned_technician_id=technician_id,
        assigned_by_id=ctx.actor_id,
        assigned_at=ctx.now,
        technician_accepted_at=None,
        technician_rejected_at=None,
        technician_rejection_reason=None,
        technician_response_deadline=deadline,
        no_response_alerted_at=None,
    )
    notice = Notify(
        job_id=job.job_id,
        notification_type="job_assigned",
        title="New job assigned",
        message=f"{job.job_type.value} job {job.title or job.job_id} has been assigned to you",
        user_id=technician_id,
    )
    return _Done(job, (notice,), details={"technician_id": technician_id})


def _response_guard(ctx: _Ctx) -> Optional[Rejection]:
    job = ctx.job
    if ctx.actor_id != job.assigned_technician_id:
        return unauthorized("Only the assigned technician can respond to this assignment")
    if job.technician_accepted_at is not None or job.technician_rejected_at is not None:
        return precondition_failed("Assignment already responded to")
    deadline = as_utc(job.technician_response_deadline)
    if deadline is not None and as_utc(ctx.now) > deadline:
        return precondition_failed("Response window has expired", ["technician_response_deadline"])
    return None


def _accept(ctx: _Ctx) -> Outcome:
    bad = _response_guard(ctx)
    if bad is not None:
        return bad

    job = replace(ctx.job, technician_accepted_at=ctx.now)
    if job.is_slot_in and job.acknowledged_at is None:
        job = replace(job, acknowledged_at=ctx.now, acknowledged_by_id=ctx.actor_id)

    effects: Tuple[SideEffect, ...] = ()
    if job.assigned_by_id:
        effects = (
            Notify(
                job_id=job.job_id,
                notification_type="job_accepted",
                title="Job accepted",
                message=f"{ctx.actor_name} accepted job {job.title or job.job_id}",
                user_id=job.assigned_by_id,
            ),
        )
    return _Done(job, effects)


def _reject(ctx: _Ctx) -> Outcome:
    bad = _response_guard(ctx)
    if bad is not None:
        return bad

    reason = ctx.text("reason")
    if not reason:
        return validation_error("A rejection reason is required")

    job = replace(
        ctx.job,
        status=S.NEW,
        assigned_technician_id=None,
        assigned_at=None,
        technician_response_deadline=None,
        technician_rejected_at=ctx.now,
        technician_rejection_reason=reason,
    )
    notice = Notify(
        job_id=job.job_id,
        notification_type="job_rejected",
        title="Job rejected by technician",
        message=f"{ctx.actor_name} rejected job {job.title or job.job_id}: {reason}",
        roles=DISPATCH_ROLES,
    )
    return _Done(job, (notice,), details={"reason": reason})


def _start(ctx: _Ctx) -> Outcome:
    job = ctx.job
    override, bad = _bool_field(ctx, "override")
    if bad is not None:
        return bad

    if override:
        if not ctx.has(Permission.OVERRIDE_START):
            return unauthorized("Start override requires an admin or supervisor role")
    else:
        bad = _require_assignee(ctx)
        if bad is not None:
            return bad
        if job.technician_accepted_at is None:
            return precondition_failed("Job must be accepted before it can be started", ["technician_accepted_at"])

    reading = None
    if ctx.get("hourmeter_reading") is not None or job.job_type in HOURMETER_JOB_TYPES:
        reading, bad = _parse_reading(ctx, "hourmeter_reading")
        if bad is not None:
            return bad
    context, bad = _hourmeter_context(ctx)
    if bad is not None:
        return bad

    checklist = job.condition_checklist
    if ctx.get("checklist"):
        checklist, problems = checklist_gate.merge_updates(checklist, ctx.get("checklist"))
        if problems:
            return validation_error("; ".join(problems))

    warnings: List[str] = []
    effects: List[SideEffect] = []

    job = replace(
        job,
        status=S.IN_PROGRESS,
        started_at=ctx.now,
        repair_start_time=ctx.now,
        condition_checklist=checklist,
    )

    if reading is not None:
        previous, evaluation = _evaluate_reading(ctx, reading, context)
        job = replace(
            job,
            hourmeter_reading=reading,
            hourmeter_previous=previous,
            first_hourmeter_recorded_by_id=ctx.actor_id,
            first_hourmeter_recorded_at=ctx.now,
            hourmeter_flagged=evaluation.flagged,
            hourmeter_flag_reasons=evaluation.reasons,
        )
        if evaluation.flagged:
            warnings.append("hourmeter flagged: " + ", ".join(evaluation.reason_values))
            effects.append(_flag_notice(job, evaluation.reasons))
        else:
            effects.extend(_asset_reading(job, reading))

        advice = advise(job.job_type, reading, context.last_service_hourmeter, ctx.config.service_interval_hours)
        if advice.prompt is not None:
            job = replace(job, service_upgrade_prompt=advice.prompt)
            warnings.append(f"service overdue by {advice.overdue_hours:g} hours; upgrade recommended")

    gate = checklist_gate.evaluate(job.condition_checklist, checklist_gate.mandatory_for_template(job.checklist_template))
    if not gate.complete:
        warnings.append(f"checklist incomplete: {len(gate.missing_keys)} mandatory items unset")

    return _Done(job, tuple(effects), tuple(warnings), details={"override": override, "hourmeter_reading": reading})


def _record_hourmeter(ctx: _Ctx) -> Outcome:
    job = ctx.job
    recorder = job.first_hourmeter_recorded_by_id
    if recorder is not None and recorder != ctx.actor_id and not ctx.has(Permission.RECORD_ANY_HOURMETER):
        return unauthorized("Only the first recorder or an admin/supervisor can update the hourmeter")
    if recorder is None:
        bad = _require_assignee(ctx)
        if bad is not None:
            return bad

    reading, bad = _parse_reading(ctx, "hourmeter_reading")
    if bad is not None:
        return bad

    keep_manual = FlagReason.MANUAL_FLAG in job.hourmeter_flag_reasons
    context, bad = _hourmeter_context(ctx)
    if bad is not None:
        return bad
    previous, evaluation = _evaluate_reading(ctx, reading, context, manual_flag=keep_manual)

    job = replace(
        job,
        hourmeter_reading=reading,
        hourmeter_previous=previous,
        first_hourmeter_recorded_by_id=recorder or ctx.actor_id,
        first_hourmeter_recorded_at=job.first_hourmeter_recorded_at or ctx.now,
        hourmeter_flagged=evaluation.flagged,
        hourmeter_flag_reasons=evaluation.reasons,
    )

    warnings: Tuple[str, ...] = ()
    if evaluation.flagged:
        effects: Tuple[SideEffect, ...] = (_flag_notice(job, evaluation.reasons),)
        warnings = ("hourmeter flagged: " + ", ".join(evaluation.reason_values),)
    else:
        effects = _asset_reading(job, reading)

    return _Done(job, effects, warnings, details={"hourmeter_reading": reading, "flags": evaluation.reason_values})


def _continue_tomorrow(ctx: _Ctx) -> Outcome:
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad
    reason = ctx.text("reason")
    if not reason:
        return validation_error("A reason is required to continue tomorrow")

    job = replace(ctx.job, status=S.INCOMPLETE_CONTINUING, cutoff_time=ctx.now)
    return _Done(job, details={"reason": reason})


def _resume(ctx: _Ctx) -> Outcome:
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad
    return _Done(replace(ctx.job, status=S.IN_PROGRESS))


def _defer_complete(ctx: _Ctx) -> Outcome:
    job = ctx.job
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad

    if job.technician_signature is None:
        return precondition_failed("Technician signature is required", ["technician_signature"])
    if job.customer_signature is not None:
        return precondition_failed("Customer has signed; use complete instead of deferred completion")

    reason = ctx.text("reason")
    if not reason:
        return validation_error("A reason for deferred acknowledgement is required")

    raw_evidence = ctx.get("evidence_media_ids")
    if raw_evidence is not None and not isinstance(raw_evidence, (list, tuple)):
        return validation_error("evidence_media_ids must be a list of media ids")
    evidence = tuple(str(m) for m in (raw_evidence or ()) if str(m).strip())
    if not evidence:
        return validation_error("At least one evidence photo is required")

    effects: List[SideEffect] = []
    warnings: List[str] = []

    if ctx.get("end_hourmeter") is not None or job.job_type in HOURMETER_JOB_TYPES:
        reading, bad = _parse_reading(ctx, "end_hourmeter")
        if bad is not None:
            return bad
        context, bad = _hourmeter_context(ctx)
        if bad is not None:
            return bad
        previous, evaluation = _evaluate_reading(ctx, reading, context)
        job = replace(
            job,
            hourmeter_reading=reading,
            hourmeter_previous=previous,
            first_hourmeter_recorded_by_id=job.first_hourmeter_recorded_by_id or ctx.actor_id,
            first_hourmeter_recorded_at=job.first_hourmeter_recorded_at or ctx.now,
            hourmeter_flagged=evaluation.flagged,
            hourmeter_flag_reasons=evaluation.reasons,
        )
        if evaluation.flagged:
            effects.append(_flag_notice(job, evaluation.reasons))
            warnings.append("hourmeter flagged: " + ", ".join(evaluation.reason_values))

    deadline = add_business_days(ctx.now, ctx.config.ack_window_business_days, ctx.config.public_holidays)
    job = replace(
        job,
        status=S.COMPLETED_AWAITING_ACK,
        repair_end_time=ctx.now,
        deferred_reason=reason,
        evidence_media_ids=evidence,
        customer_notified_at=ctx.now,
        customer_response_deadline=deadline,
    )
    effects.append(
        Notify(
            job_id=job.job_id,
            notification_type="customer_acknowledgement_request",
            title="Please acknowledge completed service",
            message=f"Job {job.title or job.job_id} was completed; please acknowledge by {deadline.isoformat()}",
            customer_id=job.customer_id,
        )
    )
    return _Done(job, tuple(effects), tuple(warnings), details={"reason": reason, "deadline": deadline.isoformat()})


def _customer_acknowledge(ctx: _Ctx) -> Outcome:
    if not sla_tracker.ack_window_open(ctx.job, ctx.now):
        return precondition_failed("Acknowledgement window has expired", ["customer_response_deadline"])
    job = replace(ctx.job, status=S.COMPLETED, verification_type="deferred", completed_at=ctx.now)
    return _Done(job)


def _auto_complete(ctx: _Ctx) -> Outcome:
    if not sla_tracker.ack_window_expired(ctx.job, ctx.now):
        return precondition_failed("Acknowledgement window is still open")
    job = replace(
        ctx.job,
        status=S.COMPLETED,
        verification_type="auto_completed",
        auto_completed_at=ctx.now,
        completed_at=ctx.now,
    )
    return _Done(job)


def _dispute(ctx: _Ctx) -> Outcome:
    if not sla_tracker.ack_window_open(ctx.job, ctx.now):
        return precondition_failed("Acknowledgement window has expired", ["customer_response_deadline"])
    notes = ctx.text("notes")
    if not notes:
        return validation_error("Dispute notes are required")

    job = replace(ctx.job, status=S.DISPUTED, disputed_at=ctx.now, dispute_notes=notes)
    notice = Notify(
        job_id=job.job_id,
        notification_type="job_disputed",
        title="Customer disputed job completion",
        message=notes,
        roles=DISPATCH_ROLES,
    )
    return _Done(job, (notice,), details={"notes": notes})


def _complete(ctx: _Ctx) -> Outcome:
    job = ctx.job
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad

    missing: List[str] = []
    if job.technician_signature is None:
        missing.append("technician_signature")
    if job.customer_signature is None:
        missing.append("customer_signature")
    if job.job_type in AFTER_PHOTO_JOB_TYPES and not job.media_in("after"):
        missing.append("after_photo")
    if job.job_type in HOURMETER_JOB_TYPES and job.hourmeter_reading is None:
        missing.append("hourmeter_reading")

    gate = checklist_gate.evaluate(job.condition_checklist, checklist_gate.mandatory_for_template(job.checklist_template))
    override = None
    if not gate.complete:
        reason = ctx.text("checklist_override_reason")
        if not reason:
            missing.extend(f"checklist.{k}" for k in gate.missing_keys)
        elif not ctx.has(Permission.OVERRIDE_CHECKLIST):
            return unauthorized("Checklist override requires an admin role")
        elif not ctx.config.allow_checklist_override:
            return precondition_failed("Checklist overrides are disabled", [f"checklist.{k}" for k in gate.missing_keys])
        else:
            override = ChecklistOverride(reason=reason, by_id=ctx.actor_id, at=ctx.now, missing_keys=gate.missing_keys)

    if missing:
        return precondition_failed("Cannot complete job: missing " + ", ".join(missing), missing)

    job = replace(
        job,
        status=S.AWAITING_FINALIZATION,
        completed_at=ctx.now,
        repair_end_time=ctx.now,
        checklist_override=override or job.checklist_override,
    )
    job = confirmation_workflow.mark_parts_skipped(job)

    effects: List[SideEffect] = [
        Notify(
            job_id=job.job_id,
            notification_type="job_awaiting_finalization",
            title="Job awaiting finalization",
            message=f"Job {job.title or job.job_id} is ready for confirmation and invoicing",
            roles=FINALIZATION_ROLES,
        )
    ]
    resets = job.job_type in SERVICE_RESET_JOB_TYPES or job.service_upgrade_decision == UPGRADE
    if resets and job.forklift_id:
        effects.append(
            AssetUpdate(
                forklift_id=job.forklift_id,
                job_id=job.job_id,
                hourmeter=None if job.hourmeter_flagged else job.hourmeter_reading,
                reset_service_counter=True,
                service_due=False,
            )
        )

    details = {"checklist_override": override.reason} if override else None
    return _Done(job, tuple(effects), details=details)


def _confirm_parts(ctx: _Ctx) -> Outcome:
    result = confirmation_workflow.confirm_parts(ctx.job, ctx.role, ctx.actor_id, ctx.actor_name, ctx.get("notes"), ctx.now)
    return result if isinstance(result, Rejection) else _Done(result, details={"notes": ctx.get("notes")})


def _confirm_job(ctx: _Ctx) -> Outcome:
    result = confirmation_workflow.confirm_job(ctx.job, ctx.role, ctx.actor_id, ctx.actor_name, ctx.get("notes"), ctx.now)
    return result if isinstance(result, Rejection) else _Done(result, details={"notes": ctx.get("notes")})


def _finalize(ctx: _Ctx) -> Outcome:
    missing = confirmation_workflow.missing_gates(ctx.job)
    if missing:
        return precondition_failed("Cannot finalize: missing " + ", ".join(missing), missing)

    job = replace(ctx.job, status=S.COMPLETED, invoiced_at=ctx.now, invoiced_by_id=ctx.actor_id)

    effects: List[SideEffect] = []
    if job.hourmeter_reading is not None and not job.hourmeter_flagged:
        effects.extend(_asset_reading(job, job.hourmeter_reading))
    if ctx.config.auto_export_on_finalize:
        effects.append(Export(job_id=job.job_id, requested_by_id=ctx.actor_id))

    return _Done(job, tuple(effects), details={"invoice_total": job.invoice_total()})


def _cancel(ctx: _Ctx) -> Outcome:
    reason = ctx.text("reason")
    if not reason:
        return validation_error("A cancellation reason is required")

    job = replace(
        ctx.job,
        status=S.CANCELLED,
        deleted_at=ctx.now,
        deleted_by_id=ctx.actor_id,
        deletion_reason=reason,
    )
    if job.hourmeter_reading is not None:
        job = replace(job, hourmeter_invalidated=True, hourmeter_before_delete=job.hourmeter_reading)

    effects: Tuple[SideEffect, ...] = ()
    if job.assigned_technician_id:
        effects = (
            Notify(
                job_id=job.job_id,
                notification_type="job_cancelled",
                title="Job cancelled",
                message=f"Job {job.title or job.job_id} was cancelled: {reason}",
                user_id=job.assigned_technician_id,
            ),
        )
    return _Done(job, effects, details={"reason": reason})


# ---------------------------------------------------------------------------
# non-status actions
# ---------------------------------------------------------------------------


def _acknowledge(ctx: _Ctx) -> Outcome:
    if ctx.job.acknowledged_at is not None:
        return precondition_failed("Job already acknowledged")
    return _Done(replace(ctx.job, acknowledged_at=ctx.now, acknowledged_by_id=ctx.actor_id))


def _escalate(ctx: _Ctx) -> Outcome:
    if ctx.job.escalation_triggered_at is not None:
        return precondition_failed("Job already escalated")
    reason = sla_tracker.escalation_reason(ctx.job, ctx.now, ctx.config)
    if reason is None:
        return precondition_failed("Job does not meet escalation criteria")

    job = replace(ctx.job, escalation_triggered_at=ctx.now)
    notice = Notify(
        job_id=job.job_id,
        notification_type="job_escalated",
        title="Job escalated",
        message=f"Job {job.title or job.job_id} escalated: {reason}",
        roles=DISPATCH_ROLES,
    )
    return _Done(job, (notice,), details={"reason": reason})


def _resolve_escalation(ctx: _Ctx) -> Outcome:
    job = ctx.job
    if job.escalation_triggered_at is None:
        return precondition_failed("Job is not escalated")
    if job.escalation_resolved_at is not None:
        return precondition_failed("Escalation already resolved")
    resolution = ctx.text("resolution")
    if not resolution:
        return validation_error("A resolution note is required")
    return _Done(replace(job, escalation_resolved_at=ctx.now, escalation_resolution=resolution))


def _alert_no_response(ctx: _Ctx) -> Outcome:
    job = ctx.job
    if not sla_tracker.response_expired(job, ctx.now):
        return precondition_failed("Technician response window has not expired")
    if job.no_response_alerted_at is not None:
        return precondition_failed("No-response alert already sent")

    job = replace(job, no_response_alerted_at=ctx.now)
    notice = Notify(
        job_id=job.job_id,
        notification_type="technician_no_response",
        title="Technician has not responded",
        message=f"No response on job {job.title or job.job_id}; consider reassigning",
        roles=DISPATCH_ROLES,
    )
    return _Done(job, (notice,))


def _decide_service_upgrade(ctx: _Ctx) -> Outcome:
    job = ctx.job
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad
    if job.service_upgrade_prompt is None:
        return precondition_failed("No service upgrade prompt on this job")
    if job.service_upgrade_decision is not None:
        return precondition_failed("Service upgrade already decided")

    choice = ctx.text("choice").lower()
    if choice not in DECISIONS:
        return validation_error("choice must be 'upgrade' or 'decline'")

    effects: Tuple[SideEffect, ...] = ()
    if choice == UPGRADE:
        job = replace(
            job,
            service_upgrade_decision=UPGRADE,
            job_type=JobType.FULL_SERVICE,
            checklist_template="full_service",
        )
    else:
        job = replace(job, service_upgrade_decision=DECLINE)
        if job.forklift_id:
            effects = (AssetUpdate(forklift_id=job.forklift_id, job_id=job.job_id, service_due=True),)

    return _Done(job, effects, details={"choice": choice})


def _update_checklist(ctx: _Ctx) -> Outcome:
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad
    items = ctx.get("items")
    if not isinstance(items, Mapping) or not items:
        return validation_error("items must be a non-empty mapping")

    checklist, problems = checklist_gate.merge_updates(ctx.job.condition_checklist, items)
    if problems:
        return validation_error("; ".join(problems))
    return _Done(replace(ctx.job, condition_checklist=checklist), details={"items": sorted(items)})


def _check_all(ctx: _Ctx) -> Outcome:
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad
    job = replace(
        ctx.job,
        condition_checklist=checklist_gate.check_all(ctx.job.condition_checklist),
        checklist_used_check_all=True,
    )
    return _Done(job)


def _sign(ctx: _Ctx) -> Outcome:
    kind = ctx.text("kind").lower()
    signer_name = ctx.text("signer_name")
    if kind not in {"technician", "customer"}:
        return validation_error("kind must be 'technician' or 'customer'")
    if not signer_name:
        return validation_error("signer_name is required")

    bad = _require_assignee(ctx)
    if bad is not None:
        return bad

    if kind == "technician":
        sig = Signature(signer_name=signer_name, signed_at=ctx.now, signer_id=ctx.actor_id)
        job = replace(ctx.job, technician_signature=sig)
    else:
        job = replace(ctx.job, customer_signature=Signature(signer_name=signer_name, signed_at=ctx.now))
    return _Done(job, details={"kind": kind, "signer_name": signer_name})


def _attach_media(ctx: _Ctx) -> Outcome:
    media_id = ctx.text("media_id")
    category = ctx.text("category").lower() or "other"
    if not media_id:
        return validation_error("media_id is required")
    if category not in MEDIA_CATEGORIES:
        return validation_error(f"category must be one of {sorted(MEDIA_CATEGORIES)}")

    bad = _require_assignee(ctx)
    if bad is not None:
        return bad

    media = ctx.job.media + (MediaRef(media_id=media_id, category=category, uploaded_at=ctx.now),)
    return _Done(replace(ctx.job, media=media), details={"media_id": media_id, "category": category})


def _money(ctx: _Ctx, key: str) -> Tuple[Optional[float], Optional[Rejection]]:
    raw = ctx.get(key)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None, validation_error(f"{key} must be a number")
    if value < 0:
        return None, validation_error(f"{key} must be >= 0")
    return round(value, 2), None


def _add_part(ctx: _Ctx) -> Outcome:
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad

    part_id = ctx.text("part_id")
    part_name = ctx.text("part_name")
    if not part_id or not part_name:
        return validation_error("part_id and part_name are required")
    try:
        quantity = int(ctx.get("quantity"))
    except (TypeError, ValueError):
        return validation_error("quantity must be an integer")
    if quantity <= 0:
        return validation_error("quantity must be > 0")
    unit_price, bad = _money(ctx, "unit_price")
    if bad is not None:
        return bad

    job = ctx.job
    part = PartUsage(part_id=part_id, part_name=part_name, quantity=quantity, unit_price=unit_price)
    job = replace(job, parts_used=job.parts_used + (part,))
    if ctx.job.parts_confirmed_at is not None or ctx.job.parts_confirmation_skipped:
        job = confirmation_workflow.reset_parts_gate(job)
    return _Done(job, details={"part_id": part_id, "quantity": quantity})


def _add_extra_charge(ctx: _Ctx) -> Outcome:
    name = ctx.text("name")
    if not name:
        return validation_error("name is required")
    amount, bad = _money(ctx, "amount")
    if bad is not None:
        return bad

    charge_id = ctx.text("charge_id") or f"{ctx.job.job_id}-chg-{len(ctx.job.extra_charges) + 1}"
    charge = Charge(charge_id=charge_id, name=name, amount=amount, description=ctx.text("description"))
    return _Done(replace(ctx.job, extra_charges=ctx.job.extra_charges + (charge,)), details={"name": name, "amount": amount})


def _set_labor_cost(ctx: _Ctx) -> Outcome:
    amount, bad = _money(ctx, "amount")
    if bad is not None:
        return bad
    return _Done(replace(ctx.job, labor_cost=amount), details={"amount": amount})


def _flag_hourmeter(ctx: _Ctx) -> Outcome:
    job = ctx.job
    if job.hourmeter_reading is None:
        return precondition_failed("No hourmeter reading to flag", ["hourmeter_reading"])
    reasons = frozenset(job.hourmeter_flag_reasons | {FlagReason.MANUAL_FLAG})
    job = replace(job, hourmeter_flagged=True, hourmeter_flag_reasons=reasons)
    return _Done(job, (_flag_notice(job, reasons),), details={"note": ctx.text("note")})


def _amend_hourmeter(ctx: _Ctx) -> Outcome:
    job = ctx.job
    if not job.hourmeter_flagged:
        return precondition_failed("Hourmeter reading is not flagged")

    bad = hourmeter_validator.validate_amendment(ctx.get("hourmeter_reading"), ctx.get("justification"), ctx.config)
    if bad is not None:
        return bad

    amended = float(ctx.get("hourmeter_reading"))
    amendment = HourmeterAmendment(
        original_reading=job.hourmeter_reading,
        amended_reading=amended,
        justification=ctx.text("justification"),
        flag_reasons=tuple(sorted(r.value for r in job.hourmeter_flag_reasons)),
        approved_by_id=ctx.actor_id,
        approved_at=ctx.now,
    )
    job = replace(
        job,
        hourmeter_reading=amended,
        hourmeter_flagged=False,
        hourmeter_flag_reasons=frozenset(),
        hourmeter_amendment=amendment,
    )

    effects: Tuple[SideEffect, ...] = ()
    if job.forklift_id:
        effects = (AssetUpdate(forklift_id=job.forklift_id, job_id=job.job_id, hourmeter=amended, exact=True),)
    return _Done(job, effects, details={"original": amendment.original_reading, "amended": amended})


def _create_request(ctx: _Ctx) -> Outcome:
    bad = _require_assignee(ctx)
    if bad is not None:
        return bad
    try:
        request_type = RequestType(ctx.text("request_type"))
    except ValueError:
        return validation_error(f"request_type must be one of {[t.value for t in RequestType]}")
    description = ctx.text("description")
    if not description:
        return validation_error("description is required")

    request_id = ctx.text("request_id") or f"{ctx.job.job_id}-req-{len(ctx.job.requests) + 1}"
    req = JobRequest(
        request_id=request_id,
        request_type=request_type,
        status=RequestStatus.PENDING,
        requested_by_id=ctx.actor_id,
        description=description,
        requested_at=ctx.now,
    )
    roles = DISPATCH_ROLES + ((Role.ADMIN_STORE.value,) if request_type == RequestType.SPARE_PART else ())
    notice = Notify(
        job_id=ctx.job.job_id,
        notification_type="job_request",
        title=f"New {request_type.value.replace('_', ' ')} request",
        message=description,
        roles=roles,
    )
    job = replace(ctx.job, requests=ctx.job.requests + (req,))
    return _Done(job, (notice,), details={"request_id": request_id, "request_type": request_type.value})


def _resolve_request(ctx: _Ctx) -> Outcome:
    request_id = ctx.text("request_id")
    match = [r for r in ctx.job.requests if r.request_id == request_id]
    if not match:
        return validation_error(f"Unknown request_id: {request_id}")
    req = match[0]
    if req.status != RequestStatus.PENDING:
        return precondition_failed("Request already resolved")

    approve, bad = _bool_field(ctx, "approve")
    if bad is not None:
        return bad
    resolved = replace(
        req,
        status=RequestStatus.APPROVED if approve else RequestStatus.REJECTED,
        resolved_by_id=ctx.actor_id,
        resolved_at=ctx.now,
        resolution_notes=ctx.get("notes"),
    )
    requests = tuple(resolved if r.request_id == request_id else r for r in ctx.job.requests)
    notice = Notify(
        job_id=ctx.job.job_id,
        notification_type="job_request_resolved",
        title=f"Request {resolved.status.value}",
        message=resolved.resolution_notes or resolved.description,
        user_id=req.requested_by_id,
    )
    return _Done(replace(ctx.job, requests=requests), (notice,), details={"request_id": request_id, "approved": approve})


P = Permission
A = Action

RULES: Dict[Action, _Rule] = {
    A.ASSIGN: _Rule(P.ASSIGN_JOB, frozenset({S.NEW}), S.ASSIGNED, _assign),
    A.ACCEPT: _Rule(P.PERFORM_WORK, frozenset({S.ASSIGNED}), None, _accept),
    A.REJECT: _Rule(P.PERFORM_WORK, frozenset({S.ASSIGNED}), S.NEW, _reject),
    A.START: _Rule(P.PERFORM_WORK, frozenset({S.ASSIGNED}), S.IN_PROGRESS, _start),
    A.RECORD_HOURMETER: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), None, _record_hourmeter),
    A.CONTINUE_TOMORROW: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), S.INCOMPLETE_CONTINUING, _continue_tomorrow),
    A.RESUME: _Rule(P.PERFORM_WORK, frozenset({S.INCOMPLETE_CONTINUING}), S.IN_PROGRESS, _resume),
    A.DEFER_COMPLETE: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), S.COMPLETED_AWAITING_ACK, _defer_complete),
    A.CUSTOMER_ACKNOWLEDGE: _Rule(
        P.RECORD_CUSTOMER_RESPONSE, frozenset({S.COMPLETED_AWAITING_ACK}), S.COMPLETED, _customer_acknowledge
    ),
    A.AUTO_COMPLETE: _Rule(P.RUN_SWEEP, frozenset({S.COMPLETED_AWAITING_ACK}), S.COMPLETED, _auto_complete),
    A.DISPUTE: _Rule(P.RECORD_CUSTOMER_RESPONSE, frozenset({S.COMPLETED_AWAITING_ACK}), S.DISPUTED, _dispute),
    A.COMPLETE: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), S.AWAITING_FINALIZATION, _complete),
    A.CONFIRM_PARTS: _Rule(P.CONFIRM_PARTS, frozenset({S.AWAITING_FINALIZATION}), None, _confirm_parts),
    A.CONFIRM_JOB: _Rule(P.CONFIRM_JOB, frozenset({S.AWAITING_FINALIZATION}), None, _confirm_job),
    A.FINALIZE: _Rule(P.FINALIZE_INVOICE, frozenset({S.AWAITING_FINALIZATION}), S.COMPLETED, _finalize),
    A.CANCEL: _Rule(P.CANCEL_JOB, _LIVE, S.CANCELLED, _cancel),
    A.ACKNOWLEDGE: _Rule(P.ACKNOWLEDGE_SLA, _LIVE, None, _acknowledge),
    A.ESCALATE: _Rule(P.RUN_SWEEP, _LIVE, None, _escalate),
    A.RESOLVE_ESCALATION: _Rule(P.RESOLVE_ESCALATION, ALL_STATUSES, None, _resolve_escalation),
    A.ALERT_NO_RESPONSE: _Rule(P.RUN_SWEEP, frozenset({S.ASSIGNED}), None, _alert_no_response),
    A.DECIDE_SERVICE_UPGRADE: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), None, _decide_service_upgrade),
    A.UPDATE_CHECKLIST: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), None, _update_checklist),
    A.CHECK_ALL: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), None, _check_all),
    A.SIGN: _Rule(P.PERFORM_WORK, frozenset({S.IN_PROGRESS}), None, _sign),
    A.ATTACH_MEDIA: _Rule(P.PERFORM_WORK, _WORKING, None, _attach_media),
    A.ADD_PART: _Rule(P.EDIT_PARTS, _EDITABLE, None, _add_part),
    A.ADD_EXTRA_CHARGE: _Rule(P.EDIT_PRICING, _EDITABLE, None, _add_extra_charge),
    A.SET_LABOR_COST: _Rule(P.EDIT_PRICING, _EDITABLE, None, _set_labor_cost),
    A.FLAG_HOURMETER: _Rule(P.FLAG_HOURMETER, _WORKING | {S.AWAITING_FINALIZATION}, None, _flag_hourmeter),
    A.AMEND_HOURMETER: _Rule(
        P.APPROVE_HOURMETER_AMENDMENT, _WORKING | {S.AWAITING_FINALIZATION}, None, _amend_hourmeter
    ),
    A.CREATE_REQUEST: _Rule(P.RAISE_REQUEST, frozenset({S.ASSIGNED}) | _WORKING, None, _create_request),
    A.RESOLVE_REQUEST: _Rule(P.RESOLVE_REQUEST, _LIVE, None, _resolve_request),
}


def status_edges() -> Dict[Action, Tuple[FrozenSet[JobStatus], JobStatus]]:
    """Every (action -> from statuses, to status) pair that moves status."""
    return {a: (r.from_statuses, r.to_status) for a, r in RULES.items() if r.to_status is not None}


def parse_action(value: Any) -> Action:
    if isinstance(value, Action):
        return value
    return Action(str(value).strip().lower())


def apply_transition(
    job: JobSnapshot,
    action: Any,
    actor_role: Any,
    actor_id: str,
    payload: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
    *,
    actor_name: Optional[str] = None,
    config: EngineConfig = DEFAULT_CONFIG,
) -> TransitionResult:
    payload = payload or {}
    now = as_utc(now) if now is not None else utcnow()

    try:
        action = parse_action(action)
    except ValueError:
        return _rejected(job, validation_error(f"Unknown action: {action}"))

    try:
        role = parse_role(actor_role)
    except ValueError:
        return _rejected(job, unauthorized(f"Unknown role: {actor_role}"))

    expected = payload.get("expected_version")
    if expected is not None:
        try:
            expected = int(expected)
        except (TypeError, ValueError):
            return _rejected(job, validation_error("expected_version must be an integer"))
    if expected is not None and expected != int(job.version):
        return _rejected(job, conflict(f"Job {job.job_id} changed (version {job.version}, expected {expected})"))

    rule = RULES[action]
    if job.status not in rule.from_statuses:
        return _rejected(job, invalid_transition(f"Cannot {action.value} a job in status {job.status.value}"))

    if not has_permission(role, rule.permission):
        return _rejected(job, unauthorized(f"Role {role.value} cannot {action.value}"))

    ctx = _Ctx(
        job=job,
        action=action,
        role=role,
        actor_id=str(actor_id),
        actor_name=actor_name or str(actor_id),
        payload=payload,
        now=now,
        config=config,
    )
    outcome = rule.handler(ctx)

    if isinstance(outcome, Rejection):
        return _rejected(job, outcome)

    updated = outcome.job
    if rule.to_status is not None and updated.status != rule.to_status:
        raise AssertionError(f"{action.value} produced {updated.status.value}, expected {rule.to_status.value}")
    if rule.to_status is None and updated.status != job.status:
        raise AssertionError(f"{action.value} must not change status")

    audit = Audit(
        job_id=job.job_id,
        action=action.value,
        actor_id=ctx.actor_id,
        actor_role=role.value,
        from_status=job.status.value,
        to_status=updated.status.value,
        details=dict(outcome.details or {}),
    )
    return TransitionResult(
        ok=True,
        job=updated,
        effects=tuple(outcome.effects) + (audit,),
        warnings=tuple(outcome.warnings),
    )


def _rejected(job: JobSnapshot, rejection: Rejection) -> TransitionResult:
    logger.info(
        "Job transition rejected",
        extra={"job_id": job.job_id, "kind": rejection.kind.value, "reason": rejection.message},
    )
    return TransitionResult(ok=False, job=job, rejection=rejection)
