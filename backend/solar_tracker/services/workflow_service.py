"""Panel workflow orchestration.

Loads and row-locks the panel, runs the pure state machine, stores the
inspection trail and keeps the owning order's counter and the progress cache
consistent. The caller's session commits (see get_db); any raised error rolls
the whole step back.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.config import settings
from solar_tracker.core.errors import NotFoundError, SequenceViolation, ValidationError
from solar_tracker.models.enums import InspectionResult, OrderStatus, PanelState, status_for_state
from solar_tracker.models.order import ManufacturingOrder
from solar_tracker.models.panel import Inspection, Panel
from solar_tracker.schemas.panel import GateResponse, PanelResponse, WorkflowResult
from solar_tracker.services import panel_state_machine as sm
from solar_tracker.services.barcode import parse_barcode
from solar_tracker.services.progress import ProgressAggregator
from solar_tracker.services.station_gate import check_station_entry, latest_inspection

logger = logging.getLogger(__name__)


def panel_to_response(panel: Panel) -> PanelResponse:
    return PanelResponse(
        id=panel.id,
        barcode=panel.barcode,
        panel_type=panel.panel_type,
        frame_type=panel.frame_type,
        backsheet_type=panel.backsheet_type,
        line=panel.line,
        order_id=panel.order_id,
        workflow_state=panel.workflow_state,
        status=status_for_state(panel.workflow_state).value,
        current_station=panel.current_station,
        station_1_completed_at=panel.station_1_completed_at,
        station_2_completed_at=panel.station_2_completed_at,
        station_3_completed_at=panel.station_3_completed_at,
        station_4_completed_at=panel.station_4_completed_at,
        rework_count=panel.rework_count,
        rework_reentry_station=panel.rework_reentry_station,
        wattage_pmax=panel.wattage_pmax,
        vmp=panel.vmp,
        imp=panel.imp,
        completed_at=panel.completed_at,
    )


class PanelWorkflowService:
    """Scan, station, inspection, rework and completion steps for panels."""

    def __init__(self, db: AsyncSession, progress: ProgressAggregator | None = None) -> None:
        self.db = db
        self.progress = progress or ProgressAggregator(db)
        self.station_count = settings.STATIONS_PER_LINE

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def scan_panel(self, barcode: str, order_id: uuid.UUID, actor_id: str) -> WorkflowResult:
        """Register a newly scanned panel against an order."""
        parsed = parse_barcode(barcode)
        order = await self._get_order(order_id)
        self._ensure_order_open(order)
        if order.panel_type and order.panel_type != parsed.panel_type:
            raise ValidationError(
                f"Panel type {parsed.panel_type} does not match order "
                f"{order.order_number} (panel type {order.panel_type})",
                {"barcode": parsed.barcode, "order_panel_type": order.panel_type},
            )
        if await self._find_panel_by_barcode(parsed.barcode) is not None:
            raise ValidationError(
                f"Panel {parsed.barcode} has already been scanned",
                {"barcode": parsed.barcode},
            )

        now = datetime.now(timezone.utc)
        panel = Panel(
            id=uuid.uuid4(),
            barcode=parsed.barcode,
            panel_type=parsed.panel_type,
            frame_type=parsed.frame_type.value,
            backsheet_type=parsed.backsheet_type.value,
            line=parsed.line.value,
            order_id=order.id,
            workflow_state=PanelState.SCANNED.value,
            current_station=None,
            station_1_completed_at=None,
            station_2_completed_at=None,
            station_3_completed_at=None,
            station_4_completed_at=None,
            rework_reentry_station=None,
            rework_count=0,
            wattage_pmax=None,
            vmp=None,
            imp=None,
            completed_at=None,
        )
        transitions = [sm.mark_validated(panel, actor_id, now)]
        self.db.add(panel)
        await self.db.flush()

        if order.status == OrderStatus.OPEN.value:
            await self._start_order(order, now)
        await self.progress.invalidate(order.id)
        logger.info("Panel %s scanned for order %s on %s", panel.barcode, order.order_number, panel.line)
        return self._result(panel, transitions)

    async def enter_station(
        self, panel_id: uuid.UUID, station_number: int, actor_id: str
    ) -> WorkflowResult:
        panel, _ = await self._load_for_update(panel_id)
        inspections = await self._get_inspections(panel.id)
        record = sm.enter_station(
            panel, station_number, inspections, actor_id, station_count=self.station_count
        )
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, [record])

    async def record_inspection(
        self,
        panel_id: uuid.UUID,
        station_number: int,
        inspector_id: str,
        result: InspectionResult | str,
        notes: str | None = None,
        measurements: dict[str, float] | None = None,
        override_by: str | None = None,
        corrects_inspection_id: uuid.UUID | None = None,
    ) -> WorkflowResult:
        """Store an inspection and apply its effect on the panel."""
        panel, order = await self._load_for_update(panel_id)
        corrected = None
        if corrects_inspection_id is not None:
            corrected = await self._correctable_inspection(panel, station_number, corrects_inspection_id)
        if measurements:
            sm.set_measurements(panel, **measurements)

        if corrected is not None:
            outcome = sm.apply_correction(
                panel,
                corrected,
                result,
                inspector_id,
                notes=notes,
                override_by=override_by,
                station_count=self.station_count,
            )
        else:
            outcome = sm.apply_inspection(
                panel,
                station_number,
                result,
                inspector_id,
                notes=notes,
                override_by=override_by,
                station_count=self.station_count,
            )
        inspection = Inspection(
            id=uuid.uuid4(),
            panel_id=panel.id,
            station_number=station_number,
            inspector_id=inspector_id,
            result=outcome.stored_result,
            notes=notes,
            override_by=override_by if InspectionResult(result) == InspectionResult.CONDITIONAL else None,
            corrects_inspection_id=corrects_inspection_id,
            # wall clock, not transaction start: the gate reads the latest row per station
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(inspection)
        if outcome.completed:
            await self._count_completion(order)
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, outcome.transitions, inspection_id=inspection.id)

    async def record_measurements(
        self, panel_id: uuid.UUID, actor_id: str, wattage_pmax: float, vmp: float, imp: float
    ) -> WorkflowResult:
        """Store electrical data; completes the panel if the final station already passed."""
        panel, order = await self._load_for_update(panel_id)
        sm.set_measurements(panel, wattage_pmax=wattage_pmax, vmp=vmp, imp=imp)
        transitions = []
        final_stamp = getattr(panel, f"station_{self.station_count}_completed_at")
        if (
            panel.workflow_state == PanelState.IN_STATION.value
            and panel.current_station == self.station_count
            and final_stamp is not None
        ):
            transitions.append(sm.complete_panel(panel, actor_id, station_count=self.station_count))
            await self._count_completion(order)
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, transitions)

    async def complete_panel(self, panel_id: uuid.UUID, actor_id: str) -> WorkflowResult:
        panel, order = await self._load_for_update(panel_id)
        record = sm.complete_panel(panel, actor_id, station_count=self.station_count)
        await self._count_completion(order)
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, [record])

    async def send_to_rework(
        self,
        panel_id: uuid.UUID,
        actor_id: str,
        reason: str,
        reentry_station: int | None = None,
    ) -> WorkflowResult:
        panel, _ = await self._load_for_update(panel_id)
        record = sm.send_to_rework(
            panel,
            actor_id,
            reason,
            reentry_station=reentry_station,
            policy=settings.REWORK_REENTRY_POLICY,
            max_attempts=settings.MAX_REWORK_ATTEMPTS,
            station_count=self.station_count,
        )
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, [record])

    async def quarantine_panel(self, panel_id: uuid.UUID, actor_id: str, reason: str) -> WorkflowResult:
        panel, _ = await self._load_for_update(panel_id)
        record = sm.quarantine_panel(panel, actor_id, reason)
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, [record])

    async def scrap_panel(self, panel_id: uuid.UUID, actor_id: str, reason: str) -> WorkflowResult:
        panel, _ = await self._load_for_update(panel_id)
        record = sm.fail_panel(panel, actor_id, reason)
        await self.db.flush()
        await self.progress.invalidate(panel.order_id)
        return self._result(panel, [record])

    async def check_station_gate(self, panel_id: uuid.UUID, station_number: int) -> GateResponse:
        panel = await self._get_panel(panel_id)
        if panel is None:
            raise NotFoundError(f"Panel {panel_id} not found", {"panel_id": str(panel_id)})
        inspections = await self._get_inspections(panel.id)
        decision = check_station_entry(panel, station_number, inspections, self.station_count)
        return GateResponse(
            panel_id=panel.id,
            station_number=station_number,
            allowed=decision.allowed,
            missing_station=decision.missing_station,
            reason=decision.reason,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _result(self, panel: Panel, transitions: list[Any], inspection_id: uuid.UUID | None = None) -> WorkflowResult:
        return WorkflowResult(
            panel=panel_to_response(panel),
            transitions=[t.to_dict() for t in transitions],
            inspection_id=inspection_id,
        )

    @staticmethod
    def _ensure_order_open(order: ManufacturingOrder) -> None:
        if order.status == OrderStatus.COMPLETED.value:
            raise ValidationError(
                f"Manufacturing order {order.order_number} is closed; panels cannot change",
                {"order_id": str(order.id)},
            )

    async def _load_for_update(self, panel_id: uuid.UUID) -> tuple[Panel, ManufacturingOrder]:
        panel = await self._lock_panel(panel_id)
        if panel is None:
            raise NotFoundError(f"Panel {panel_id} not found", {"panel_id": str(panel_id)})
        order = await self._get_order(panel.order_id)
        self._ensure_order_open(order)
        return panel, order

    async def _count_completion(self, order: ManufacturingOrder) -> None:
        if not await self._increment_completed_count(order.id):
            raise ValidationError(
                f"Manufacturing order {order.order_number} already has "
                f"{order.quantity} completed panels",
                {"order_id": str(order.id), "quantity": order.quantity},
            )

    async def _get_order(self, order_id: uuid.UUID) -> ManufacturingOrder:
        result = await self.db.execute(
            select(ManufacturingOrder).where(ManufacturingOrder.id == order_id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Manufacturing order {order_id} not found", {"order_id": str(order_id)})
        return order

    async def _get_panel(self, panel_id: uuid.UUID) -> Panel | None:
        result = await self.db.execute(select(Panel).where(Panel.id == panel_id))
        return result.scalar_one_or_none()

    async def _lock_panel(self, panel_id: uuid.UUID) -> Panel | None:
        result = await self.db.execute(
            select(Panel).where(Panel.id == panel_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _find_panel_by_barcode(self, barcode: str) -> Panel | None:
        result = await self.db.execute(select(Panel).where(Panel.barcode == barcode))
        return result.scalar_one_or_none()

    async def _correctable_inspection(
        self, panel: Panel, station_number: int, inspection_id: uuid.UUID
    ) -> Inspection:
        """The inspection a correction replaces: same panel and station, latest there."""
        inspections = await self._get_inspections(panel.id)
        target = next((i for i in inspections if i.id == inspection_id), None)
        if target is None:
            raise ValidationError(
                f"Inspection {inspection_id} does not belong to panel {panel.barcode}",
                {"corrects_inspection_id": str(inspection_id)},
            )
        if target.station_number != station_number:
            raise ValidationError(
                f"Inspection {inspection_id} was taken at station {target.station_number}, "
                f"not station {station_number}",
                {"corrects_inspection_id": str(inspection_id), "station": target.station_number},
            )
        latest = latest_inspection(inspections, station_number)
        if latest is not target:
            raise SequenceViolation(
                f"Only the latest inspection at station {station_number} can be corrected",
                {"corrects_inspection_id": str(inspection_id), "latest_inspection_id": str(latest.id)},
            )
        return target

    async def _get_inspections(self, panel_id: uuid.UUID) -> list[Inspection]:
        result = await self.db.execute(
            select(Inspection)
            .where(Inspection.panel_id == panel_id)
            .order_by(Inspection.created_at.asc(), Inspection.id.asc())
        )
        return list(result.scalars().all())

    async def _start_order(self, order: ManufacturingOrder, now: datetime) -> None:
        await self.db.execute(
            update(ManufacturingOrder)
            .where(
                ManufacturingOrder.id == order.id,
                ManufacturingOrder.status == OrderStatus.OPEN.value,
            )
            .values(status=OrderStatus.IN_PROGRESS.value, start_date=now)
        )

    async def _increment_completed_count(self, order_id: uuid.UUID) -> bool:
        """Atomically bump completed_count; refused once quantity is reached."""
        result = await self.db.execute(
            update(ManufacturingOrder)
            .where(
                ManufacturingOrder.id == order_id,
                ManufacturingOrder.completed_count < ManufacturingOrder.quantity,
                ManufacturingOrder.status != OrderStatus.COMPLETED.value,
            )
            .values(completed_count=ManufacturingOrder.completed_count + 1)
        )
        return result.rowcount == 1
