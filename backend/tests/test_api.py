"""Tests for the HTTP layer: route functions and error mapping."""

import json
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from solar_tracker.api.v1 import closure as closure_api
from solar_tracker.api.v1 import panels as panels_api
from solar_tracker.api.v1 import progress as progress_api
from solar_tracker.api.v1.router import health_check
from solar_tracker.core.errors import (
    AlreadyClosedError,
    NotFoundError,
    NotReadyError,
    SequenceViolation,
    ValidationError,
)
from solar_tracker.main import workflow_error_handler
from solar_tracker.schemas.closure import (
    ClosureOptions,
    ClosureRequest,
    ManualClosureRequest,
    RollbackRequest,
)
from solar_tracker.schemas.panel import InspectionCreate, PanelScan, StationEntry



def _service_mock(module, name):
    """Patch the service class used by a route module; returns (patcher, instance)."""
    instance = MagicMock()
    patcher = patch.object(module, name, MagicMock(return_value=instance))
    return patcher, instance


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self):
        assert await health_check() == {"status": "ok"}


class TestClosureRoutes:
    @pytest.mark.asyncio
    async def test_close_passes_options(self, mock_db):
        patcher, service = _service_mock(closure_api, "ClosureService")
        service.execute_automatic_closure = AsyncMock(return_value="closed")
        order_id = uuid.uuid4()
        payload = ClosureRequest(actor_id="supervisor-1", options=ClosureOptions(force=True))
        with patcher:
            result = await closure_api.execute_automatic_closure(order_id, payload, db=mock_db)
        assert result == "closed"
        service.execute_automatic_closure.assert_awaited_once_with(
            order_id, "supervisor-1", ClosureOptions(force=True)
        )

    @pytest.mark.asyncio
    async def test_manual_close_passes_reason(self, mock_db):
        patcher, service = _service_mock(closure_api, "ClosureService")
        service.execute_manual_closure = AsyncMock(return_value="closed")
        order_id = uuid.uuid4()
        payload = ManualClosureRequest(actor_id="supervisor-1", reason="Short shipment accepted")
        with patcher:
            await closure_api.execute_manual_closure(order_id, payload, db=mock_db)
        args = service.execute_manual_closure.await_args.args
        assert args[:3] == (order_id, "supervisor-1", "Short shipment accepted")

    @pytest.mark.asyncio
    async def test_rollback(self, mock_db):
        patcher, service = _service_mock(closure_api, "ClosureService")
        service.rollback_closure = AsyncMock(return_value="rolled back")
        order_id = uuid.uuid4()
        with patcher:
            await closure_api.rollback_closure(
                order_id, RollbackRequest(actor_id="qa-lead", reason="defect found"), db=mock_db
            )
        service.rollback_closure.assert_awaited_once_with(order_id, "qa-lead", "defect found")

    @pytest.mark.asyncio
    async def test_errors_propagate_to_handler(self, mock_db):
        patcher, service = _service_mock(closure_api, "ClosureService")
        service.assess_closure_readiness = AsyncMock(side_effect=NotFoundError("missing"))
        with patcher:
            with pytest.raises(NotFoundError):
                await closure_api.assess_closure_readiness(uuid.uuid4(), db=mock_db)

    def test_unknown_option_rejected_by_schema(self):
        with pytest.raises(PydanticValidationError):
            ClosureRequest.model_validate({"actor_id": "supervisor-1", "options": {"dry_run": True}})


class TestPanelRoutes:
    @pytest.mark.asyncio
    async def test_scan(self, mock_db):
        patcher, service = _service_mock(panels_api, "PanelWorkflowService")
        service.scan_panel = AsyncMock(return_value="scanned")
        order_id = uuid.uuid4()
        payload = PanelScan(barcode="CRS24WT3600001", order_id=order_id, actor_id="operator-1")
        with patcher:
            await panels_api.scan_panel(payload, db=mock_db)
        service.scan_panel.assert_awaited_once_with("CRS24WT3600001", order_id, "operator-1")

    @pytest.mark.asyncio
    async def test_enter_station(self, mock_db):
        patcher, service = _service_mock(panels_api, "PanelWorkflowService")
        service.enter_station = AsyncMock(return_value="entered")
        panel_id = uuid.uuid4()
        with patcher:
            await panels_api.enter_station(panel_id, StationEntry(actor_id="operator-1"), station_number=2, db=mock_db)
        service.enter_station.assert_awaited_once_with(panel_id, 2, "operator-1")

    @pytest.mark.asyncio
    async def test_inspection_unpacks_measurements(self, mock_db):
        patcher, service = _service_mock(panels_api, "PanelWorkflowService")
        service.record_inspection = AsyncMock(return_value="recorded")
        panel_id = uuid.uuid4()
        payload = InspectionCreate(
            station_number=4,
            inspector_id="inspector-1",
            result="PASS",
            measurements={"wattage_pmax": 401.0, "vmp": 41.0, "imp": 9.78},
        )
        with patcher:
            await panels_api.record_inspection(panel_id, payload, db=mock_db)
        kwargs = service.record_inspection.await_args.kwargs
        assert kwargs["measurements"] == {"wattage_pmax": 401.0, "vmp": 41.0, "imp": 9.78}
        assert kwargs["override_by"] is None

    @pytest.mark.asyncio
    async def test_barcode_format(self):
        info = await panels_api.get_barcode_format()
        assert info["format"] == "CRSYYFBPP#####"


class TestProgressRoutes:
    @pytest.mark.asyncio
    async def test_get_progress_fresh(self, mock_db):
        patcher, aggregator = _service_mock(progress_api, "ProgressAggregator")
        aggregator.get_progress = AsyncMock(return_value="progress")
        order_id = uuid.uuid4()
        with patcher:
            await progress_api.get_order_progress(order_id, fresh=True, db=mock_db)
        aggregator.get_progress.assert_awaited_once_with(order_id, fresh=True)

    @pytest.mark.asyncio
    async def test_clear_all_cache(self):
        with patch.object(progress_api, "clear_all_progress_cache", AsyncMock(return_value=3)):
            assert await progress_api.clear_all_cache() == {"cleared": 3}


class TestErrorHandler:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, status_code",
        [
            (ValidationError("bad barcode"), 422),
            (SequenceViolation("station skipped"), 409),
            (NotFoundError("no such order"), 404),
            (AlreadyClosedError("closed"), 409),
        ],
    )
    async def test_status_mapping(self, error, status_code):
        response = await workflow_error_handler(MagicMock(), error)
        assert response.status_code == status_code
        body = json.loads(response.body)
        assert body["error"]["kind"] == error.kind
        assert body["error"]["message"] == error.message

    @pytest.mark.asyncio
    async def test_not_ready_includes_blockers(self):
        blockers = [{"rule": "completion", "status": "failed", "reason": "3 panels remaining"}]
        response = await workflow_error_handler(MagicMock(), NotReadyError("not ready", blockers))
        body = json.loads(response.body)
        assert response.status_code == 409
        assert body["error"]["details"]["blockers"] == blockers
