"""Closure rule, option, assessment and audit Pydantic schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ClosureRuleSet(BaseModel):
    """Versioned closure rule configuration passed into each assessment."""

    version: int = 0
    min_completion_percentage: float = Field(default=95.0, ge=0, le=100)
    max_failure_rate: float = Field(default=15.0, ge=0, le=100)
    min_panels_for_closure: int = Field(default=1, ge=0)
    max_idle_time_hours: float = Field(default=24.0, gt=0)
    require_pallet_finalization: bool = True

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ClosureRulesUpdate(BaseModel):
    """Partial rule update; omitted fields keep their current value."""

    min_completion_percentage: float | None = Field(default=None, ge=0, le=100)
    max_failure_rate: float | None = Field(default=None, ge=0, le=100)
    min_panels_for_closure: int | None = Field(default=None, ge=0)
    max_idle_time_hours: float | None = Field(default=None, gt=0)
    require_pallet_finalization: bool | None = None
    updated_by: str | None = Field(default=None, max_length=100)

    model_config = ConfigDict(extra="forbid")


class ClosureOptions(BaseModel):
    """Options for a closure call; unknown keys are rejected."""

    force: bool = False
    skip_validation: bool = False
    generate_report: bool = True
    finalize_pallets: bool = True

    model_config = ConfigDict(extra="forbid", frozen=True)


class ClosureBlocker(BaseModel):
    """One failing (or unevaluable) readiness rule."""

    rule: str
    status: str  # "failed" or "unknown"
    severity: str
    reason: str
    details: dict[str, Any] = Field(default_factory=dict)


class Recommendation(BaseModel):
    type: str
    priority: str
    message: str
    details: str | None = None


class ReadinessAssessment(BaseModel):
    """Outcome of evaluating the closure rules against one order."""

    order_id: uuid.UUID
    is_ready: bool
    readiness_percentage: float
    blockers: list[ClosureBlocker] = Field(default_factory=list)
    passed_rules: list[str] = Field(default_factory=list)
    rule_version: int
    statistics: dict[str, Any] = Field(default_factory=dict)
    recommendations: list[Recommendation] = Field(default_factory=list)
    assessed_at: datetime


class PalletFinalization(BaseModel):
    pallets_finalized: int = 0
    assignments_finalized: int = 0
    pallet_numbers: list[str] = Field(default_factory=list)


class ClosureRequest(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=100)
    options: ClosureOptions = Field(default_factory=ClosureOptions)


class ManualClosureRequest(ClosureRequest):
    reason: str = Field(..., min_length=1)


class RollbackRequest(BaseModel):
    actor_id: str = Field(..., min_length=1, max_length=100)
    reason: str = ""


class ClosureResult(BaseModel):
    order_id: uuid.UUID
    order_number: str
    completed_at: datetime
    forced: bool
    final_statistics: dict[str, Any]
    pallet_finalization: PalletFinalization | None = None
    completion_report: dict[str, Any] | None = None
    audit_record_id: int


class RollbackResult(BaseModel):
    order_id: uuid.UUID
    order_number: str
    restored_status: str
    rolled_back_at: datetime
    audit_record_id: int
    reverses_record_id: int


class ClosureAuditRecordResponse(BaseModel):
    """Schema for audit log entries."""

    id: int
    order_id: uuid.UUID
    kind: str
    actor_id: str
    reason: str | None
    forced: bool
    previous_status: str | None
    rule_version: int | None
    final_statistics: dict[str, Any] | None
    options: dict[str, Any] | None
    pallet_finalization: dict[str, Any] | None
    completion_report: dict[str, Any] | None
    reverses_record_id: int | None
    created_at: datetime

    model_config = {"from_attributes": True}
