import os
from dataclasses import dataclass, field
from datetime import date
from typing import Tuple


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip() not in {"0", "false", "False", "no", "NO"}


def _env_dates(name: str) -> Tuple[date, ...]:
    # comma separated YYYY-MM-DD list; malformed entries are ignored
    raw = os.getenv(name) or ""
    out = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(date.fromisoformat(part))
        except ValueError:
            continue
    return tuple(out)


@dataclass(frozen=True)
class EngineConfig:
    """Thresholds and policies consumed by the job engine.

    Hourmeter thresholds are not fixed by the business rules, so they are
    configuration with conservative defaults:
      - max_hours_per_hour: a meter cannot run faster than the wall clock (1.0)
      - alert_jump_hours: absolute jump that is always suspicious (500)
      - pattern_multiple: implied daily usage vs. rolling average (3x)
    """

    max_hours_per_hour: float = 1.0
    alert_jump_hours: float = 500.0
    pattern_multiple: float = 3.0
    timestamp_tolerance_minutes: int = 5
    amendment_min_justification: int = 10

    response_window_minutes: int = 15
    slot_in_sla_minutes: int = 15
    ack_window_business_days: int = 3
    public_holidays: Tuple[date, ...] = field(default_factory=tuple)

    service_interval_hours: float = 500.0
    in_progress_escalation_hours: int = 24

    allow_checklist_override: bool = True
    auto_export_on_finalize: bool = False

    default_labor_cost: float = 150.0
    currency: str = "MYR"


def load_engine_config() -> EngineConfig:
    return EngineConfig(
        max_hours_per_hour=_env_float("HOURMETER_MAX_RATE", 1.0),
        alert_jump_hours=_env_float("HOURMETER_ALERT_JUMP_HOURS", 500.0),
        pattern_multiple=_env_float("HOURMETER_PATTERN_MULTIPLE", 3.0),
        timestamp_tolerance_minutes=_env_int("HOURMETER_TIMESTAMP_TOLERANCE_MINUTES", 5),
        amendment_min_justification=_env_int("AMENDMENT_MIN_JUSTIFICATION", 10),
        response_window_minutes=_env_int("RESPONSE_WINDOW_MINUTES", 15),
        slot_in_sla_minutes=_env_int("SLOT_IN_SLA_MINUTES", 15),
        ack_window_business_days=_env_int("ACK_WINDOW_BUSINESS_DAYS", 3),
        public_holidays=_env_dates("PUBLIC_HOLIDAYS"),
        service_interval_hours=_env_float("SERVICE_INTERVAL_HOURS", 500.0),
        in_progress_escalation_hours=_env_int("IN_PROGRESS_ESCALATION_HOURS", 24),
        allow_checklist_override=_env_bool("ALLOW_CHECKLIST_OVERRIDE", True),
        auto_export_on_finalize=_env_bool("AUTO_EXPORT_ON_FINALIZE", False),
        default_labor_cost=_env_float("DEFAULT_LABOR_COST", 150.0),
        currency=os.getenv("INVOICE_CURRENCY") or "MYR",
    )


DEFAULT_CONFIG = EngineConfig()
