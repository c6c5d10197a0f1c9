"""Condition checklist catalog and completeness gate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from forkliftops.domain.job import ChecklistState

CATALOG: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Drive", ("drive_front_axle", "drive_rear_axle", "drive_motor_engine", "drive_controller_transmission")),
    ("Hydraulic", ("hydraulic_pump", "hydraulic_control_valve", "hydraulic_hose", "hydraulic_oil_level")),
    ("Safety", ("safety_overhead_guard", "safety_cabin_body", "safety_backrest", "safety_seat_belt")),
    ("Steering", ("steering_wheel_valve", "steering_cylinder", "steering_motor", "steering_knuckle")),
    ("Load Handling", ("load_fork", "load_mast_roller", "load_chain_wheel", "load_cylinder")),
    ("Lighting", ("lighting_beacon_light", "lighting_horn", "lighting_buzzer", "lighting_rear_view_mirror")),
    ("Braking", ("braking_brake_pedal", "braking_parking_brake", "braking_fluid_pipe", "braking_master_pump")),
    ("Fuel", ("fuel_engine_oil_level", "fuel_line_leaks", "fuel_radiator", "fuel_exhaust_piping")),
    ("Tyres", ("tyres_front", "tyres_rear", "tyres_rim", "tyres_screw_nut")),
    ("Electrical", ("electrical_ignition", "electrical_battery", "electrical_wiring", "electrical_instruments")),
    ("Transmission", (
        "transmission_fluid_level",
        "transmission_inching_valve",
        "transmission_air_cleaner",
        "transmission_lpg_regulator",
    )),
    ("Wheels", ("wheels_drive", "wheels_load", "wheels_support", "wheels_hub_nut")),
)

ALL_ITEMS: Tuple[str, ...] = tuple(key for _, keys in CATALOG for key in keys)
_ITEM_SET = frozenset(ALL_ITEMS)

# Safety-critical subset required on every job.
MINOR_SERVICE_MANDATORY: Tuple[str, ...] = (
    "safety_overhead_guard",
    "safety_seat_belt",
    "lighting_horn",
    "lighting_beacon_light",
    "braking_brake_pedal",
    "braking_parking_brake",
    "steering_wheel_valve",
    "steering_cylinder",
)

TEMPLATES: Dict[str, Tuple[str, ...]] = {
    "minor_service": MINOR_SERVICE_MANDATORY,
    "full_service": ALL_ITEMS,
}


@dataclass(frozen=True)
class ChecklistEvaluation:
    checked_count: int
    total_mandatory: int
    missing_keys: Tuple[str, ...]

    @property
    def complete(self) -> bool:
        return not self.missing_keys


def mandatory_for_template(template: str) -> Tuple[str, ...]:
    try:
        return TEMPLATES[template]
    except KeyError:
        raise ValueError(f"Unknown checklist template: {template}") from None


def evaluate(checklist: Mapping[str, Any], mandatory_keys: Iterable[str]) -> ChecklistEvaluation:
    mandatory = list(dict.fromkeys(mandatory_keys))
    missing = [k for k in mandatory if checklist.get(k) in (None, "", "unset")]
    return ChecklistEvaluation(
        checked_count=len(mandatory) - len(missing),
        total_mandatory=len(mandatory),
        missing_keys=tuple(missing),
    )


def check_all(checklist: Mapping[str, ChecklistState]) -> Dict[str, ChecklistState]:
    """Bulk-mark every catalog item ok. Items stay individually editable."""
    out = dict(checklist)
    for key in ALL_ITEMS:
        out[key] = ChecklistState.OK
    return out


def merge_updates(
    checklist: Mapping[str, ChecklistState],
    updates: Mapping[str, Any],
) -> Tuple[Dict[str, ChecklistState], List[str]]:
    """Apply item updates; returns the new map and a list of problems.

    A value of ``None``/``"unset"`` clears the item.
    """
    out = dict(checklist)
    problems: List[str] = []

    for key, raw in updates.items():
        if key not in _ITEM_SET:
            problems.append(f"unknown checklist item: {key}")
            continue

        state = _parse_state(raw)
        if state is _INVALID:
            problems.append(f"invalid state for {key}: {raw!r}")
            continue

        if state is None:
            out.pop(key, None)
        else:
            out[key] = state

    return out, problems


_INVALID = object()


def _parse_state(raw: Any) -> Optional[ChecklistState]:
    if isinstance(raw, ChecklistState):
        return raw
    if raw is None or raw == "unset":
        return None
    if raw is True:
        return ChecklistState.OK
    if raw is False:
        return ChecklistState.NOT_OK
    try:
        return ChecklistState(str(raw).strip().lower())
    except ValueError:
        return _INVALID
