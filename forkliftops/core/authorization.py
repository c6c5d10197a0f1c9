from enum import Enum
from typing import Dict, FrozenSet

from fastapi import Depends, HTTPException, Request

from forkliftops.deps.auth import require_auth


class Role(Enum):
    ADMIN = "admin"
    ADMIN_SERVICE = "admin_service"  # service operations, job confirmation, hourmeter approval
    ADMIN_STORE = "admin_store"  # parts/inventory, parts confirmation
    SUPERVISOR = "supervisor"
    TECHNICIAN = "technician"
    ACCOUNTANT = "accountant"
    SYSTEM = "system"  # scheduled sweep


class Permission(Enum):
    VIEW_JOBS = "view_jobs"
    CREATE_JOB = "create_job"
    ASSIGN_JOB = "assign_job"
    CANCEL_JOB = "cancel_job"
    PERFORM_WORK = "perform_work"
    OVERRIDE_START = "override_start"
    RECORD_ANY_HOURMETER = "record_any_hourmeter"
    FLAG_HOURMETER = "flag_hourmeter"
    APPROVE_HOURMETER_AMENDMENT = "approve_hourmeter_amendment"
    OVERRIDE_CHECKLIST = "override_checklist"
    EDIT_PARTS = "edit_parts"
    EDIT_PRICING = "edit_pricing"
    CONFIRM_PARTS = "confirm_parts"
    CONFIRM_JOB = "confirm_job"
    FINALIZE_INVOICE = "finalize_invoice"
    ACKNOWLEDGE_SLA = "acknowledge_sla"
    RESOLVE_ESCALATION = "resolve_escalation"
    RECORD_CUSTOMER_RESPONSE = "record_customer_response"
    RAISE_REQUEST = "raise_request"
    RESOLVE_REQUEST = "resolve_request"
    EXPORT_INVOICE = "export_invoice"
    RUN_SWEEP = "run_sweep"
    VIEW_OUTBOX = "view_outbox"


P = Permission

_OFFICE = frozenset({P.VIEW_JOBS, P.CREATE_JOB, P.ASSIGN_JOB, P.EDIT_PARTS, P.EDIT_PRICING, P.FINALIZE_INVOICE, P.RESOLVE_REQUEST})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.ADMIN: frozenset(P) - {P.RAISE_REQUEST},
    Role.ADMIN_SERVICE: _OFFICE
    | {
        P.CANCEL_JOB,
        P.PERFORM_WORK,
        P.OVERRIDE_START,
        P.RECORD_ANY_HOURMETER,
        P.FLAG_HOURMETER,
        P.APPROVE_HOURMETER_AMENDMENT,
        P.OVERRIDE_CHECKLIST,
        P.CONFIRM_JOB,
        P.ACKNOWLEDGE_SLA,
        P.RESOLVE_ESCALATION,
        P.RECORD_CUSTOMER_RESPONSE,
    },
    Role.ADMIN_STORE: _OFFICE | {P.CANCEL_JOB, P.CONFIRM_PARTS},
    Role.SUPERVISOR: _OFFICE
    | {
        P.PERFORM_WORK,
        P.OVERRIDE_START,
        P.RECORD_ANY_HOURMETER,
        P.FLAG_HOURMETER,
        P.CONFIRM_JOB,
        P.ACKNOWLEDGE_SLA,
        P.RESOLVE_ESCALATION,
        P.RECORD_CUSTOMER_RESPONSE,
        P.EXPORT_INVOICE,
    },
    Role.TECHNICIAN: frozenset({P.VIEW_JOBS, P.PERFORM_WORK, P.EDIT_PARTS, P.ACKNOWLEDGE_SLA, P.RAISE_REQUEST}),
    Role.ACCOUNTANT: frozenset({P.VIEW_JOBS, P.EDIT_PRICING, P.FINALIZE_INVOICE, P.EXPORT_INVOICE}),
    Role.SYSTEM: frozenset({P.VIEW_JOBS, P.RUN_SWEEP}),
}


def parse_role(value) -> Role:
    if isinstance(value, Role):
        return value
    return Role(str(value).strip().lower())


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def require_permission(permission: Permission):
    def dependency(request: Request, _auth: tuple[str, str] = Depends(require_auth)):
        try:
            user_role = parse_role(request.state.role)
        except ValueError as exc:
            raise HTTPException(status_code=403, detail="Invalid role claim") from exc

        if not has_permission(user_role, permission):
            raise HTTPException(status_code=403, detail="Insufficient role")

        return user_role

    return dependency
