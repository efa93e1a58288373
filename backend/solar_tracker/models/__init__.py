"""SQLAlchemy ORM models."""

from solar_tracker.models.closure import ClosureAuditRecord, ClosureRuleVersion
from solar_tracker.models.order import ManufacturingOrder
from solar_tracker.models.pallet import Pallet, PalletAssignment
from solar_tracker.models.panel import Inspection, Panel
from solar_tracker.models.station import Station

__all__ = [
    "ClosureAuditRecord",
    "ClosureRuleVersion",
    "Inspection",
    "ManufacturingOrder",
    "Pallet",
    "PalletAssignment",
    "Panel",
    "Station",
]
