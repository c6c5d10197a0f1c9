from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from forkliftops.domain.job import JobType, UpgradePrompt

SERVICE_INTERVAL_HOURS = 500.0

UPGRADE = "upgrade"
DECLINE = "decline"
DECISIONS = frozenset({UPGRADE, DECLINE})


@dataclass(frozen=True)
class UpgradeAdvice:
    overdue_hours: Optional[float]
    prompt: Optional[UpgradePrompt]


def overdue_hours(
    current_hourmeter: Optional[float],
    last_service_hourmeter: Optional[float],
    interval: float = SERVICE_INTERVAL_HOURS,
) -> Optional[float]:
    if current_hourmeter is None or last_service_hourmeter is None:
        return None
    return float(current_hourmeter) - (float(last_service_hourmeter) + float(interval))


def is_service_due(
    current_hourmeter: Optional[float],
    last_service_hourmeter: Optional[float],
    interval: float = SERVICE_INTERVAL_HOURS,
) -> bool:
    overdue = overdue_hours(current_hourmeter, last_service_hourmeter, interval)
    return overdue is not None and overdue >= 0


def advise(
    job_type: JobType,
    current_hourmeter: Optional[float],
    last_service_hourmeter: Optional[float],
    interval: float = SERVICE_INTERVAL_HOURS,
) -> UpgradeAdvice:
    """Only Minor Service jobs on an overdue asset prompt for an upgrade."""
    overdue = overdue_hours(current_hourmeter, last_service_hourmeter, interval)

    if job_type != JobType.MINOR_SERVICE or overdue is None or overdue <= 0:
        return UpgradeAdvice(overdue_hours=overdue, prompt=None)

    return UpgradeAdvice(
        overdue_hours=overdue,
        prompt=UpgradePrompt(
            current_hourmeter=float(current_hourmeter),
            target_hourmeter=float(last_service_hourmeter) + float(interval),
            overdue_hours=overdue,
        ),
    )
