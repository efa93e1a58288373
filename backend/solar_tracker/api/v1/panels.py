"""Panel workflow API endpoints."""

import uuid

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.database import get_db
from solar_tracker.schemas.panel import (
    GateResponse,
    InspectionCreate,
    MeasurementsUpdate,
    PanelActorRequest,
    PanelReasonRequest,
    PanelScan,
    ReworkRequest,
    StationEntry,
    WorkflowResult,
)
from solar_tracker.services.barcode import barcode_format_info
from solar_tracker.services.workflow_service import PanelWorkflowService

router = APIRouter(prefix="/panels", tags=["panels"])


@router.get("/barcode-format")
async def get_barcode_format() -> dict:
    return barcode_format_info()


@router.post("/scan", response_model=WorkflowResult, status_code=status.HTTP_201_CREATED)
async def scan_panel(
    payload: PanelScan,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    """Register a scanned barcode against a manufacturing order."""
    return await PanelWorkflowService(db).scan_panel(payload.barcode, payload.order_id, payload.actor_id)


@router.post("/{panel_id}/stations/{station_number}/enter", response_model=WorkflowResult)
async def enter_station(
    panel_id: uuid.UUID,
    payload: StationEntry,
    station_number: int = Path(..., ge=1),
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).enter_station(panel_id, station_number, payload.actor_id)


@router.get("/{panel_id}/gate/{station_number}", response_model=GateResponse)
async def check_station_gate(
    panel_id: uuid.UUID,
    station_number: int,
    db: AsyncSession = Depends(get_db),
) -> GateResponse:
    return await PanelWorkflowService(db).check_station_gate(panel_id, station_number)


@router.post("/{panel_id}/inspections", response_model=WorkflowResult, status_code=status.HTTP_201_CREATED)
async def record_inspection(
    panel_id: uuid.UUID,
    payload: InspectionCreate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).record_inspection(
        panel_id,
        payload.station_number,
        payload.inspector_id,
        payload.result,
        notes=payload.notes,
        measurements=payload.measurements.model_dump() if payload.measurements else None,
        override_by=payload.override_by,
        corrects_inspection_id=payload.corrects_inspection_id,
    )


@router.post("/{panel_id}/measurements", response_model=WorkflowResult)
async def record_measurements(
    panel_id: uuid.UUID,
    payload: MeasurementsUpdate,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).record_measurements(
        panel_id, payload.actor_id, payload.wattage_pmax, payload.vmp, payload.imp
    )


@router.post("/{panel_id}/complete", response_model=WorkflowResult)
async def complete_panel(
    panel_id: uuid.UUID,
    payload: PanelActorRequest,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).complete_panel(panel_id, payload.actor_id)


@router.post("/{panel_id}/rework", response_model=WorkflowResult)
async def send_to_rework(
    panel_id: uuid.UUID,
    payload: ReworkRequest,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).send_to_rework(
        panel_id, payload.actor_id, payload.reason, payload.reentry_station
    )


@router.post("/{panel_id}/quarantine", response_model=WorkflowResult)
async def quarantine_panel(
    panel_id: uuid.UUID,
    payload: PanelReasonRequest,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).quarantine_panel(panel_id, payload.actor_id, payload.reason)


@router.post("/{panel_id}/scrap", response_model=WorkflowResult)
async def scrap_panel(
    panel_id: uuid.UUID,
    payload: PanelReasonRequest,
    db: AsyncSession = Depends(get_db),
) -> WorkflowResult:
    return await PanelWorkflowService(db).scrap_panel(panel_id, payload.actor_id, payload.reason)
