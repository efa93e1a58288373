"""Station entry gate.

A panel may enter station N only when station N-1 has a completion timestamp
and its most recent inspection passed. Station 1 is always open.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from solar_tracker.models.enums import InspectionResult

DEFAULT_STATION_COUNT = 4


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    missing_station: int | None = None
    reason: str = ""


def station_timestamp_field(station_number: int) -> str:
    return f"station_{station_number}_completed_at"


def latest_inspection(inspections: Iterable[Any], station_number: int) -> Any | None:
    """Most recent inspection for a station; inspections are ordered oldest first."""
    latest = None
    for inspection in inspections:
        if inspection.station_number == station_number:
            latest = inspection
    return latest


def check_station_entry(
    panel: Any,
    target_station: int,
    inspections: Iterable[Any],
    station_count: int = DEFAULT_STATION_COUNT,
) -> GateDecision:
    """Decide whether ``panel`` may enter ``target_station``."""
    if target_station < 1 or target_station > station_count:
        return GateDecision(
            allowed=False,
            reason=f"Station {target_station} does not exist (valid: 1-{station_count})",
        )
    if target_station == 1:
        return GateDecision(allowed=True)

    previous = target_station - 1
    if getattr(panel, station_timestamp_field(previous), None) is None:
        return GateDecision(
            allowed=False,
            missing_station=previous,
            reason=f"Station {previous} has not been completed",
        )

    inspection = latest_inspection(inspections, previous)
    if inspection is None:
        return GateDecision(
            allowed=False,
            missing_station=previous,
            reason=f"No inspection recorded at station {previous}",
        )
    if inspection.result != InspectionResult.PASS.value:
        return GateDecision(
            allowed=False,
            missing_station=previous,
            reason=f"Latest inspection at station {previous} is {inspection.result}, not PASS",
        )
    return GateDecision(allowed=True)
