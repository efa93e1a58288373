"""Panel workflow Pydantic schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from solar_tracker.models.enums import InspectionResult


class PanelScan(BaseModel):
    barcode: str = Field(..., min_length=1, max_length=40)
    order_id: uuid.UUID
    actor_id: str = Field(..., min_length=1, max_length=100)


class StationEntry(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=100)


class Measurements(BaseModel):
    wattage_pmax: float = Field(..., gt=0)
    vmp: float = Field(..., gt=0)
    imp: float = Field(..., gt=0)


class InspectionCreate(BaseModel):
    station_number: int = Field(..., ge=1)
    inspector_id: str = Field(..., min_length=1, max_length=100)
    result: InspectionResult
    notes: str | None = None
    override_by: str | None = Field(default=None, max_length=100)
    corrects_inspection_id: uuid.UUID | None = None
    measurements: Measurements | None = None


class MeasurementsUpdate(Measurements):
    actor_id: str = Field(..., min_length=1, max_length=100)


class PanelActorRequest(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=100)


class PanelReasonRequest(PanelActorRequest):
    reason: str = Field(..., min_length=1)


class ReworkRequest(PanelReasonRequest):
    reentry_station: int | None = Field(default=None, ge=1)


class PanelResponse(BaseModel):
    """Schema for panel responses."""

    id: uuid.UUID
    barcode: str
    panel_type: str
    frame_type: str
    backsheet_type: str
    line: str
    order_id: uuid.UUID
    workflow_state: str
    status: str
    current_station: int | None
    station_1_completed_at: datetime | None
    station_2_completed_at: datetime | None
    station_3_completed_at: datetime | None
    station_4_completed_at: datetime | None
    rework_count: int
    rework_reentry_station: int | None
    wattage_pmax: float | None
    vmp: float | None
    imp: float | None
    completed_at: datetime | None


class WorkflowResult(BaseModel):
    panel: PanelResponse
    transitions: list[dict[str, Any]] = Field(default_factory=list)
    inspection_id: uuid.UUID | None = None


class GateResponse(BaseModel):
    panel_id: uuid.UUID
    station_number: int
    allowed: bool
    missing_station: int | None = None
    reason: str = ""
