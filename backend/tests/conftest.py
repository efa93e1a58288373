"""Pytest configuration with fixtures for async testing."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.services.order_locks import OrderLockRegistry
from solar_tracker.services.progress import InMemoryProgressCache


# ---------------------------------------------------------------------------
# Test Data Factories (using MagicMock for SQLAlchemy 2.0 compatibility)
# ---------------------------------------------------------------------------


def _make_mock(defaults: dict[str, Any], overrides: dict[str, Any]) -> MagicMock:
    """Create a MagicMock with given attributes."""
    merged = {**defaults, **overrides}
    mock = MagicMock()
    for k, v in merged.items():
        setattr(mock, k, v)
    return mock


class ManufacturingOrderFactory:
    """Factory for creating ManufacturingOrder instances for testing."""

    _counter = 0

    @classmethod
    def create(cls, **overrides: Any) -> MagicMock:
        cls._counter += 1
        now = datetime.now(timezone.utc)
        defaults = {
            "id": uuid.uuid4(),
            "order_number": f"MO-2026-{cls._counter:04d}",
            "panel_type": "36",
            "status": "IN_PROGRESS",
            "quantity": 10,
            "completed_count": 0,
            "start_date": now - timedelta(days=2),
            "expected_completion_date": now + timedelta(days=5),
            "actual_completion_date": None,
            "created_at": now - timedelta(days=3),
            "updated_at": now,
        }
        return _make_mock(defaults, overrides)


class PanelFactory:
    """Factory for creating Panel instances for testing."""

    _counter = 0

    @classmethod
    def create(cls, **overrides: Any) -> MagicMock:
        cls._counter += 1
        now = datetime.now(timezone.utc)
        defaults = {
            "id": uuid.uuid4(),
            "barcode": f"CRS24WT36{cls._counter:05d}",
            "panel_type": "36",
            "frame_type": "SILVER",
            "backsheet_type": "TRANSPARENT",
            "line": "LINE_1",
            "order_id": uuid.uuid4(),
            "workflow_state": "VALIDATED",
            "current_station": None,
            "station_1_completed_at": None,
            "station_2_completed_at": None,
            "station_3_completed_at": None,
            "station_4_completed_at": None,
            "rework_reentry_station": None,
            "rework_count": 0,
            "rework_reason": None,
            "quarantine_reason": None,
            "failure_reason": None,
            "wattage_pmax": None,
            "vmp": None,
            "imp": None,
            "completed_at": None,
            "created_at": now - timedelta(hours=1),
            "updated_at": now - timedelta(hours=1),
        }
        return _make_mock(defaults, overrides)

    @classmethod
    def completed(cls, finished_at: datetime | None = None, **overrides: Any) -> MagicMock:
        """A panel that passed all four stations with measurements."""
        finished_at = finished_at or datetime.now(timezone.utc) - timedelta(minutes=10)
        defaults = {
            "workflow_state": "COMPLETED",
            "current_station": 4,
            "station_1_completed_at": finished_at - timedelta(minutes=40),
            "station_2_completed_at": finished_at - timedelta(minutes=30),
            "station_3_completed_at": finished_at - timedelta(minutes=20),
            "station_4_completed_at": finished_at,
            "wattage_pmax": 405.2,
            "vmp": 41.3,
            "imp": 9.81,
            "completed_at": finished_at,
            "created_at": finished_at - timedelta(minutes=60),
            "updated_at": finished_at,
        }
        return cls.create(**{**defaults, **overrides})


class InspectionFactory:
    """Factory for creating Inspection instances for testing."""

    @classmethod
    def create(cls, **overrides: Any) -> MagicMock:
        defaults = {
            "id": uuid.uuid4(),
            "panel_id": uuid.uuid4(),
            "station_number": 1,
            "inspector_id": "inspector-1",
            "result": "PASS",
            "notes": None,
            "override_by": None,
            "corrects_inspection_id": None,
            "created_at": datetime.now(timezone.utc),
        }
        return _make_mock(defaults, overrides)


class ClosureAuditRecordFactory:
    """Factory for creating ClosureAuditRecord instances for testing."""

    _counter = 0

    @classmethod
    def create(cls, **overrides: Any) -> MagicMock:
        cls._counter += 1
        defaults = {
            "id": cls._counter,
            "order_id": uuid.uuid4(),
            "kind": "AUTOMATIC_CLOSE",
            "actor_id": "supervisor-1",
            "reason": None,
            "forced": False,
            "previous_status": "IN_PROGRESS",
            "rule_version": 0,
            "final_statistics": {"completed_panels": 10},
            "options": None,
            "assessment": None,
            "pallet_finalization": None,
            "completion_report": None,
            "reverses_record_id": None,
            "created_at": datetime.now(timezone.utc),
        }
        return _make_mock(defaults, overrides)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def order_factory():
    """Provide ManufacturingOrderFactory for tests."""
    ManufacturingOrderFactory._counter = 0
    return ManufacturingOrderFactory


@pytest.fixture
def panel_factory():
    """Provide PanelFactory for tests."""
    PanelFactory._counter = 0
    return PanelFactory


@pytest.fixture
def inspection_factory():
    """Provide InspectionFactory for tests."""
    return InspectionFactory


@pytest.fixture
def audit_factory():
    """Provide ClosureAuditRecordFactory for tests."""
    ClosureAuditRecordFactory._counter = 0
    return ClosureAuditRecordFactory


@pytest.fixture
def mock_db():
    """Provide a mock AsyncSession for unit tests."""
    session = AsyncMock(spec=AsyncSession)
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.delete = AsyncMock()
    session.begin_nested = MagicMock()
    return session


@pytest.fixture
def lock_registry():
    """A per-test lock registry so asyncio locks never cross event loops."""
    return OrderLockRegistry()


@pytest.fixture
def progress_cache():
    """An isolated in-memory progress cache."""
    return InMemoryProgressCache()
