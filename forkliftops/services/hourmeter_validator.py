"""Hourmeter anomaly detection.

All rules are evaluated independently and their reasons accumulate. A flagged
reading never blocks job progress; it becomes an amendment request for an
approver role.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, FrozenSet, Mapping, Optional

from forkliftops.core.clock import as_utc
from forkliftops.core.config import DEFAULT_CONFIG, EngineConfig
from forkliftops.core.errors import Rejection, validation_error
from forkliftops.domain.job import FlagReason


@dataclass(frozen=True)
class HourmeterContext:
    """Asset history the host supplies alongside a new reading."""

    previous_reading: Optional[float] = None
    previous_recorded_at: Optional[datetime] = None
    average_daily_usage: Optional[float] = None
    last_service_hourmeter: Optional[float] = None

    @classmethod
    def from_payload(cls, data: Optional[Mapping[str, Any]]) -> "HourmeterContext":
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise TypeError("hourmeter context must be a mapping")

        def _f(key):
            v = data.get(key)
            return None if v is None else float(v)

        recorded_at = data.get("previous_recorded_at")
        if recorded_at is not None and not isinstance(recorded_at, datetime):
            recorded_at = datetime.fromisoformat(str(recorded_at))

        return cls(
            previous_reading=_f("previous_reading"),
            previous_recorded_at=as_utc(recorded_at),
            average_daily_usage=_f("average_daily_usage"),
            last_service_hourmeter=_f("last_service_hourmeter"),
        )


@dataclass(frozen=True)
class HourmeterEvaluation:
    flagged: bool
    reasons: FrozenSet[FlagReason]
    rate_per_hour: Optional[float] = None

    @property
    def reason_values(self):
        return sorted(r.value for r in self.reasons)


def evaluate(
    new_reading: float,
    previous_reading: Optional[float],
    previous_timestamp: Optional[datetime],
    new_timestamp: Optional[datetime],
    *,
    average_daily_usage: Optional[float] = None,
    device_captured_at: Optional[datetime] = None,
    received_at: Optional[datetime] = None,
    manual_flag: bool = False,
    config: EngineConfig = DEFAULT_CONFIG,
) -> HourmeterEvaluation:
    reasons = set()
    rate = None

    previous_timestamp = as_utc(previous_timestamp)
    new_timestamp = as_utc(new_timestamp)

    if previous_reading is not None:
        delta = float(new_reading) - float(previous_reading)

        if delta < 0:
            reasons.add(FlagReason.LOWER_THAN_PREVIOUS)

        hours = None
        if previous_timestamp is not None and new_timestamp is not None:
            hours = (new_timestamp - previous_timestamp).total_seconds() / 3600.0

        if delta > 0:
            if delta > config.alert_jump_hours:
                reasons.add(FlagReason.EXCESSIVE_JUMP)

            if hours is not None:
                if hours <= 0:
                    # meter advanced with no wall-clock time elapsed
                    reasons.add(FlagReason.EXCESSIVE_JUMP)
                else:
                    rate = delta / hours
                    if rate > config.max_hours_per_hour:
                        reasons.add(FlagReason.EXCESSIVE_JUMP)

            if average_daily_usage and average_daily_usage > 0 and hours is not None and hours > 0:
                # intervals shorter than a day count as one day
                days = max(hours / 24.0, 1.0)
                if delta / days > config.pattern_multiple * float(average_daily_usage):
                    reasons.add(FlagReason.PATTERN_MISMATCH)

    if device_captured_at is not None and received_at is not None:
        skew = abs((as_utc(received_at) - as_utc(device_captured_at)).total_seconds())
        if skew > config.timestamp_tolerance_minutes * 60:
            reasons.add(FlagReason.TIMESTAMP_MISMATCH)

    if manual_flag:
        reasons.add(FlagReason.MANUAL_FLAG)

    return HourmeterEvaluation(flagged=bool(reasons), reasons=frozenset(reasons), rate_per_hour=rate)


def validate_reading(value: Any) -> Optional[Rejection]:
    if value is None:
        return validation_error("hourmeter_reading is required")
    try:
        reading = float(value)
    except (TypeError, ValueError):
        return validation_error("hourmeter_reading must be a number")
    if reading < 0:
        return validation_error("hourmeter_reading must be >= 0")
    return None


def validate_amendment(
    amended_reading: Any,
    justification: Optional[str],
    config: EngineConfig = DEFAULT_CONFIG,
) -> Optional[Rejection]:
    bad = validate_reading(amended_reading)
    if bad is not None:
        return bad

    text = (justification or "").strip()
    if len(text) < config.amendment_min_justification:
        return validation_error(
            f"Justification must be at least {config.amendment_min_justification} characters"
        )
    return None
