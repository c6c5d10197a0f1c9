"""Side-effect requests returned by the engine.

The engine never performs I/O. The host turns each effect into an
``event_outbox`` row in the same transaction that persists the job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Union

NOTIFY = "NOTIFY"
AUDIT = "AUDIT"
EXPORT = "EXPORT"
ASSET_UPDATE = "ASSET_UPDATE"


@dataclass(frozen=True)
class Notify:
    job_id: str
    notification_type: str
    title: str
    message: str
    user_id: Optional[str] = None
    roles: Tuple[str, ...] = ()
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class Audit:
    job_id: str
    action: str
    actor_id: str
    actor_role: str
    from_status: str
    to_status: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Export:
    job_id: str
    requested_by_id: str


@dataclass(frozen=True)
class AssetUpdate:
    forklift_id: str
    job_id: str
    hourmeter: Optional[float] = None
    # amended readings overwrite the counter; everything else only raises it
    exact: bool = False
    reset_service_counter: bool = False
    service_due: Optional[bool] = None


SideEffect = Union[Notify, Audit, Export, AssetUpdate]


def effect_event_type(effect: SideEffect) -> str:
    if isinstance(effect, Notify):
        return NOTIFY
    if isinstance(effect, Audit):
        return AUDIT
    if isinstance(effect, Export):
        return EXPORT
    if isinstance(effect, AssetUpdate):
        return ASSET_UPDATE
    raise ValueError(f"Unknown side effect: {effect!r}")


def effect_payload(effect: SideEffect) -> Dict[str, Any]:
    if isinstance(effect, Notify):
        return {
            "job_id": effect.job_id,
            "notification_type": effect.notification_type,
            "title": effect.title,
            "message": effect.message,
            "user_id": effect.user_id,
            "roles": list(effect.roles),
            "customer_id": effect.customer_id,
        }
    if isinstance(effect, Audit):
        return {
            "job_id": effect.job_id,
            "action": effect.action,
            "actor_id": effect.actor_id,
            "actor_role": effect.actor_role,
            "from_status": effect.from_status,
            "to_status": effect.to_status,
            "details": dict(effect.details),
        }
    if isinstance(effect, Export):
        return {"job_id": effect.job_id, "requested_by_id": effect.requested_by_id}
    if isinstance(effect, AssetUpdate):
        return {
            "forklift_id": effect.forklift_id,
            "job_id": effect.job_id,
            "hourmeter": effect.hourmeter,
            "exact": effect.exact,
            "reset_service_counter": effect.reset_service_counter,
            "service_due": effect.service_due,
        }
    raise ValueError(f"Unknown side effect: {effect!r}")
