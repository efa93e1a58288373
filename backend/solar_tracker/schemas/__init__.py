"""Pydantic v2 schemas for request/response validation."""

from solar_tracker.schemas.closure import (
    ClosureAuditRecordResponse,
    ClosureBlocker,
    ClosureOptions,
    ClosureResult,
    ClosureRuleSet,
    ClosureRulesUpdate,
    ReadinessAssessment,
    RollbackResult,
)
from solar_tracker.schemas.panel import InspectionCreate, PanelResponse, PanelScan, WorkflowResult
from solar_tracker.schemas.progress import OrderProgress, PalletSummary

__all__ = [
    "ClosureAuditRecordResponse",
    "ClosureBlocker",
    "ClosureOptions",
    "ClosureResult",
    "ClosureRuleSet",
    "ClosureRulesUpdate",
    "InspectionCreate",
    "OrderProgress",
    "PalletSummary",
    "PanelResponse",
    "PanelScan",
    "ReadinessAssessment",
    "RollbackResult",
    "WorkflowResult",
]
