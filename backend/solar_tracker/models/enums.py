"""Enumerations stored in string columns."""

from enum import Enum


class ProductionLine(str, Enum):
    LINE_1 = "LINE_1"
    LINE_2 = "LINE_2"


class StationType(str, Enum):
    ASSEMBLY_EL = "ASSEMBLY_EL"
    FRAMING = "FRAMING"
    JUNCTION_BOX = "JUNCTION_BOX"
    PERFORMANCE_FINAL = "PERFORMANCE_FINAL"


class FrameType(str, Enum):
    SILVER = "SILVER"
    BLACK = "BLACK"


class BacksheetType(str, Enum):
    TRANSPARENT = "TRANSPARENT"
    WHITE = "WHITE"
    BLACK = "BLACK"


class PanelState(str, Enum):
    """Workflow state of a single panel.

    IN_STATION covers every "station k" state; the station number lives in
    Panel.current_station.
    """

    SCANNED = "SCANNED"
    VALIDATED = "VALIDATED"
    IN_STATION = "IN_STATION"
    FAILED = "FAILED"
    REWORK = "REWORK"
    QUARANTINE = "QUARANTINE"
    COMPLETED = "COMPLETED"


class PanelStatus(str, Enum):
    """Coarse status vocabulary used for order progress reporting."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REWORK = "REWORK"
    QUARANTINE = "QUARANTINE"


# Single mapping between the workflow view and the reporting view.
PANEL_STATE_TO_STATUS: dict[PanelState, PanelStatus] = {
    PanelState.SCANNED: PanelStatus.PENDING,
    PanelState.VALIDATED: PanelStatus.PENDING,
    PanelState.IN_STATION: PanelStatus.IN_PROGRESS,
    PanelState.FAILED: PanelStatus.FAILED,
    PanelState.REWORK: PanelStatus.REWORK,
    PanelState.QUARANTINE: PanelStatus.QUARANTINE,
    PanelState.COMPLETED: PanelStatus.COMPLETED,
}


def status_for_state(state: PanelState | str) -> PanelStatus:
    return PANEL_STATE_TO_STATUS[PanelState(state)]


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class InspectionResult(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    CONDITIONAL = "CONDITIONAL"


class PalletStatus(str, Enum):
    OPEN = "OPEN"
    FULL = "FULL"
    CLOSED = "CLOSED"
    SHIPPED = "SHIPPED"


class ClosureKind(str, Enum):
    AUTOMATIC_CLOSE = "AUTOMATIC_CLOSE"
    MANUAL_CLOSE = "MANUAL_CLOSE"
    ROLLBACK = "ROLLBACK"


CLOSURE_KINDS = (ClosureKind.AUTOMATIC_CLOSE, ClosureKind.MANUAL_CLOSE)
