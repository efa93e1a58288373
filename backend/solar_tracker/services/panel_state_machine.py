"""Panel workflow state machine.

All panel state changes go through this module. Functions here mutate the
panel object in place and return TransitionRecord entries; they never touch
the database, so persistence and locking stay in the workflow service.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from solar_tracker.core.errors import SequenceViolation, ValidationError
from solar_tracker.models.enums import InspectionResult, PanelState
from solar_tracker.services.station_gate import (
    DEFAULT_STATION_COUNT,
    check_station_entry,
    station_timestamp_field,
)

logger = logging.getLogger(__name__)

REENTRY_FAILED_STATION = "failed_station"
REENTRY_FIRST_STATION = "first_station"

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

PANEL_TRANSITIONS: dict[PanelState, tuple[PanelState, ...]] = {
    PanelState.SCANNED: (PanelState.VALIDATED, PanelState.FAILED),
    PanelState.VALIDATED: (PanelState.IN_STATION,),
    PanelState.IN_STATION: (
        PanelState.IN_STATION,  # advance to the next station
        PanelState.FAILED,
        PanelState.QUARANTINE,
        PanelState.COMPLETED,
    ),
    PanelState.FAILED: (PanelState.REWORK, PanelState.QUARANTINE),
    PanelState.QUARANTINE: (PanelState.REWORK, PanelState.FAILED),
    PanelState.REWORK: (PanelState.IN_STATION, PanelState.FAILED),
    PanelState.COMPLETED: (),
}


def can_transition(current: PanelState | str, target: PanelState | str) -> bool:
    return PanelState(target) in PANEL_TRANSITIONS[PanelState(current)]


def validate_transition(current: PanelState | str, target: PanelState | str) -> None:
    """Raise SequenceViolation if ``current -> target`` is not in the table."""
    if not can_transition(current, target):
        allowed = [s.value for s in PANEL_TRANSITIONS[PanelState(current)]]
        raise SequenceViolation(
            f"Cannot move panel from {PanelState(current).value} to {PanelState(target).value}",
            {
                "current_state": PanelState(current).value,
                "requested_state": PanelState(target).value,
                "allowed": allowed,
            },
        )


@dataclass
class TransitionRecord:
    """One accepted state change, returned to the caller for logging/display."""

    from_state: str
    to_state: str
    actor_id: str
    at: datetime
    station: int | None = None
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "actor_id": self.actor_id,
            "at": self.at.isoformat(),
            "station": self.station,
            "note": self.note,
        }


@dataclass
class InspectionOutcome:
    """Result of applying one inspection to a panel."""

    stored_result: str
    transitions: list[TransitionRecord] = field(default_factory=list)
    completed: bool = False


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _move(
    panel: Any,
    target: PanelState,
    actor_id: str,
    now: datetime,
    station: int | None = None,
    note: str | None = None,
) -> TransitionRecord:
    current = PanelState(panel.workflow_state)
    validate_transition(current, target)
    panel.workflow_state = target.value
    record = TransitionRecord(
        from_state=current.value,
        to_state=target.value,
        actor_id=actor_id,
        at=now,
        station=station,
        note=note,
    )
    logger.info(
        "Panel %s: %s -> %s (station=%s, actor=%s)",
        panel.barcode, current.value, target.value, station, actor_id,
    )
    return record


def _require_text(value: str | None, field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} is required", {"field": field_name})
    return value.strip()


# ---------------------------------------------------------------------------
# Scan and station movement
# ---------------------------------------------------------------------------


def mark_validated(panel: Any, actor_id: str, now: datetime | None = None) -> TransitionRecord:
    return _move(panel, PanelState.VALIDATED, actor_id, _now(now), note="Barcode validated")


def enter_station(
    panel: Any,
    station_number: int,
    inspections: Iterable[Any],
    actor_id: str,
    now: datetime | None = None,
    station_count: int = DEFAULT_STATION_COUNT,
) -> TransitionRecord:
    """Move a panel into ``station_number``.

    Station 1 is entered from VALIDATED; a panel in REWORK re-enters only at
    its re-entry station; otherwise the panel must sit at the previous station.
    """
    state = PanelState(panel.workflow_state)
    if state == PanelState.REWORK:
        if station_number != panel.rework_reentry_station:
            raise SequenceViolation(
                f"Panel in rework must re-enter at station {panel.rework_reentry_station}, "
                f"not station {station_number}",
                {"expected_station": panel.rework_reentry_station, "requested_station": station_number},
            )
    elif station_number == 1:
        if state != PanelState.VALIDATED:
            raise SequenceViolation(
                f"Panel must be VALIDATED to enter station 1 (current: {state.value})",
                {"current_state": state.value, "requested_station": 1},
            )
    elif state != PanelState.IN_STATION or panel.current_station != station_number - 1:
        raise SequenceViolation(
            f"Panel must be at station {station_number - 1} to enter station {station_number}",
            {
                "current_state": state.value,
                "current_station": panel.current_station,
                "requested_station": station_number,
            },
        )

    decision = check_station_entry(panel, station_number, inspections, station_count)
    if not decision.allowed:
        raise SequenceViolation(
            decision.reason,
            {"requested_station": station_number, "missing_station": decision.missing_station},
        )

    record = _move(panel, PanelState.IN_STATION, actor_id, _now(now), station=station_number)
    panel.current_station = station_number
    panel.rework_reentry_station = None
    return record


# ---------------------------------------------------------------------------
# Inspections and measurements
# ---------------------------------------------------------------------------


def set_measurements(panel: Any, wattage_pmax: float, vmp: float, imp: float) -> None:
    """Store electrical measurements; all three must be positive."""
    values = {"wattage_pmax": wattage_pmax, "vmp": vmp, "imp": imp}
    bad = [name for name, value in values.items() if value is None or value <= 0]
    if bad:
        raise ValidationError(
            f"Electrical measurements must be positive: {', '.join(bad)}",
            {"fields": bad},
        )
    if PanelState(panel.workflow_state) == PanelState.COMPLETED:
        raise SequenceViolation("Measurements cannot change on a completed panel")
    panel.wattage_pmax = wattage_pmax
    panel.vmp = vmp
    panel.imp = imp


def has_measurements(panel: Any) -> bool:
    return all(
        getattr(panel, name, None) is not None and getattr(panel, name) > 0
        for name in ("wattage_pmax", "vmp", "imp")
    )


def _record_station_pass(panel: Any, station_number: int, now: datetime) -> None:
    field_name = station_timestamp_field(station_number)
    if getattr(panel, field_name, None) is not None:
        raise SequenceViolation(
            f"Station {station_number} has already been passed",
            {"station": station_number},
        )
    stamp = now
    if station_number > 1:
        previous = getattr(panel, station_timestamp_field(station_number - 1))
        # Keep timestamps non-decreasing across stations.
        if previous is not None and previous > stamp:
            stamp = previous
    setattr(panel, field_name, stamp)


def apply_inspection(
    panel: Any,
    station_number: int,
    result: InspectionResult | str,
    inspector_id: str,
    notes: str | None = None,
    override_by: str | None = None,
    now: datetime | None = None,
    station_count: int = DEFAULT_STATION_COUNT,
) -> InspectionOutcome:
    """Apply an inspection result at the panel's current station.

    PASS stamps the station; at the final station it also completes the panel
    when measurements are present. FAIL needs notes and fails the panel.
    CONDITIONAL quarantines the panel unless ``override_by`` is given, in which
    case it is stored as PASS.
    """
    now = _now(now)
    result = InspectionResult(result)
    state = PanelState(panel.workflow_state)
    if state != PanelState.IN_STATION or panel.current_station != station_number:
        raise SequenceViolation(
            f"Panel is not at station {station_number} (state={state.value}, "
            f"station={panel.current_station})",
            {"current_state": state.value, "current_station": panel.current_station},
        )

    if result == InspectionResult.FAIL:
        reason = _require_text(notes, "notes")
        record = _move(panel, PanelState.FAILED, inspector_id, now, station=station_number, note=reason)
        panel.failure_reason = reason
        return InspectionOutcome(stored_result=result.value, transitions=[record])

    if result == InspectionResult.CONDITIONAL and not override_by:
        reason = (notes or "").strip() or f"Conditional result at station {station_number}"
        record = _move(panel, PanelState.QUARANTINE, inspector_id, now, station=station_number, note=reason)
        panel.quarantine_reason = reason
        return InspectionOutcome(stored_result=result.value, transitions=[record])

    _record_station_pass(panel, station_number, now)
    outcome = InspectionOutcome(stored_result=InspectionResult.PASS.value)
    if station_number == station_count and has_measurements(panel):
        outcome.transitions.append(complete_panel(panel, inspector_id, now, station_count))
        outcome.completed = True
    return outcome


# A correction puts the panel back where the corrected inspection found it:
# at that station, before its result was applied.
CORRECTION_REVERTS: dict[InspectionResult, PanelState] = {
    InspectionResult.PASS: PanelState.IN_STATION,
    InspectionResult.FAIL: PanelState.FAILED,
    InspectionResult.CONDITIONAL: PanelState.QUARANTINE,
}


def apply_correction(
    panel: Any,
    corrected: Any,
    result: InspectionResult | str,
    inspector_id: str,
    notes: str | None = None,
    override_by: str | None = None,
    now: datetime | None = None,
    station_count: int = DEFAULT_STATION_COUNT,
) -> InspectionOutcome:
    """Replace the effect of ``corrected`` with a new result at the same station.

    Allowed only while the panel still sits where the corrected inspection
    left it. Once the panel has moved on (next station, rework, completion)
    the earlier result stands.
    """
    now = _now(now)
    station_number = corrected.station_number
    if corrected.panel_id != panel.id:
        raise ValidationError(
            "A correction must reference an inspection of the same panel",
            {"corrects_inspection_id": str(corrected.id)},
        )
    state = PanelState(panel.workflow_state)
    expected = CORRECTION_REVERTS[InspectionResult(corrected.result)]
    stamp_field = station_timestamp_field(station_number)
    in_place = state == expected and panel.current_station == station_number
    if expected == PanelState.IN_STATION:
        in_place = in_place and getattr(panel, stamp_field, None) is not None
    if not in_place:
        raise SequenceViolation(
            f"Inspection at station {station_number} can no longer be corrected "
            f"(state={state.value}, station={panel.current_station})",
            {
                "current_state": state.value,
                "current_station": panel.current_station,
                "corrected_station": station_number,
            },
        )

    if InspectionResult(result) == InspectionResult.FAIL:
        _require_text(notes, "notes")

    panel.workflow_state = PanelState.IN_STATION.value
    revert = TransitionRecord(
        from_state=state.value,
        to_state=PanelState.IN_STATION.value,
        actor_id=inspector_id,
        at=now,
        station=station_number,
        note=f"Correcting {corrected.result} inspection",
    )
    if expected == PanelState.IN_STATION:
        setattr(panel, stamp_field, None)
    elif expected == PanelState.FAILED:
        panel.failure_reason = None
    else:
        panel.quarantine_reason = None
    logger.info(
        "Panel %s: correcting %s at station %s (actor=%s)",
        panel.barcode, corrected.result, station_number, inspector_id,
    )

    outcome = apply_inspection(
        panel,
        station_number,
        result,
        inspector_id,
        notes=notes,
        override_by=override_by,
        now=now,
        station_count=station_count,
    )
    outcome.transitions.insert(0, revert)
    return outcome


# ---------------------------------------------------------------------------
# Completion, rework, quarantine
# ---------------------------------------------------------------------------


def completion_problems(panel: Any, station_count: int = DEFAULT_STATION_COUNT) -> list[str]:
    problems = [
        f"station {n} not completed"
        for n in range(1, station_count + 1)
        if getattr(panel, station_timestamp_field(n), None) is None
    ]
    problems.extend(
        f"{name} missing"
        for name in ("wattage_pmax", "vmp", "imp")
        if getattr(panel, name, None) is None or getattr(panel, name) <= 0
    )
    return problems


def complete_panel(
    panel: Any,
    actor_id: str,
    now: datetime | None = None,
    station_count: int = DEFAULT_STATION_COUNT,
) -> TransitionRecord:
    """Move a panel to COMPLETED after re-checking every station and measurement."""
    state = PanelState(panel.workflow_state)
    if state != PanelState.IN_STATION or panel.current_station != station_count:
        raise SequenceViolation(
            f"Panel must be at station {station_count} to complete (state={state.value}, "
            f"station={panel.current_station})",
            {"current_state": state.value, "current_station": panel.current_station},
        )
    problems = completion_problems(panel, station_count)
    if problems:
        raise ValidationError(
            f"Panel {panel.barcode} cannot be completed: {'; '.join(problems)}",
            {"problems": problems},
        )
    now = _now(now)
    record = _move(panel, PanelState.COMPLETED, actor_id, now, station=station_count)
    panel.completed_at = now
    return record


def default_reentry_station(panel: Any, policy: str) -> int:
    if policy == REENTRY_FIRST_STATION:
        return 1
    return panel.current_station or 1


def send_to_rework(
    panel: Any,
    actor_id: str,
    reason: str,
    reentry_station: int | None = None,
    policy: str = REENTRY_FAILED_STATION,
    max_attempts: int = 3,
    now: datetime | None = None,
    station_count: int = DEFAULT_STATION_COUNT,
) -> TransitionRecord:
    """Route a FAILED or QUARANTINE panel to REWORK.

    Completion timestamps from the re-entry station onward are cleared so the
    panel repeats those stations.
    """
    reason = _require_text(reason, "reason")
    validate_transition(panel.workflow_state, PanelState.REWORK)
    if panel.rework_count >= max_attempts:
        raise ValidationError(
            f"Panel {panel.barcode} reached the maximum of {max_attempts} rework attempts",
            {"rework_count": panel.rework_count, "max_attempts": max_attempts},
        )

    if reentry_station is None:
        reentry_station = default_reentry_station(panel, policy)
    if reentry_station < 1 or reentry_station > station_count:
        raise ValidationError(
            f"Re-entry station {reentry_station} does not exist",
            {"reentry_station": reentry_station},
        )
    for n in range(1, reentry_station):
        if getattr(panel, station_timestamp_field(n), None) is None:
            raise SequenceViolation(
                f"Cannot re-enter at station {reentry_station}: station {n} was never completed",
                {"reentry_station": reentry_station, "missing_station": n},
            )

    record = _move(panel, PanelState.REWORK, actor_id, _now(now), station=reentry_station, note=reason)
    for n in range(reentry_station, station_count + 1):
        setattr(panel, station_timestamp_field(n), None)
    panel.rework_count += 1
    panel.rework_reason = reason
    panel.rework_reentry_station = reentry_station
    panel.current_station = None
    return record


def quarantine_panel(
    panel: Any, actor_id: str, reason: str, now: datetime | None = None
) -> TransitionRecord:
    reason = _require_text(reason, "reason")
    record = _move(panel, PanelState.QUARANTINE, actor_id, _now(now), station=panel.current_station, note=reason)
    panel.quarantine_reason = reason
    return record


def fail_panel(
    panel: Any, actor_id: str, reason: str, now: datetime | None = None
) -> TransitionRecord:
    """Scrap a panel: QUARANTINE/REWORK/IN_STATION/SCANNED -> FAILED."""
    reason = _require_text(reason, "reason")
    record = _move(panel, PanelState.FAILED, actor_id, _now(now), station=panel.current_station, note=reason)
    panel.failure_reason = reason
    return record
