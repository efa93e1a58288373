"""Manufacturing order closure API endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.database import get_db
from solar_tracker.models.closure import ClosureAuditRecord
from solar_tracker.schemas.closure import (
    ClosureAuditRecordResponse,
    ClosureRequest,
    ClosureResult,
    ClosureRuleSet,
    ClosureRulesUpdate,
    ManualClosureRequest,
    ReadinessAssessment,
    RollbackRequest,
    RollbackResult,
)
from solar_tracker.services.closure_service import ClosureService

router = APIRouter(prefix="/mo-closure", tags=["mo-closure"])


@router.get("/rules", response_model=ClosureRuleSet)
async def get_closure_rules(db: AsyncSession = Depends(get_db)) -> ClosureRuleSet:
    """Return the live closure rule version."""
    return await ClosureService(db).get_closure_rules()


@router.put("/rules", response_model=ClosureRuleSet)
async def update_closure_rules(
    payload: ClosureRulesUpdate,
    db: AsyncSession = Depends(get_db),
) -> ClosureRuleSet:
    """Store a new closure rule version."""
    return await ClosureService(db).update_closure_rules(payload)


@router.get("/{order_id}/assessment", response_model=ReadinessAssessment)
async def assess_closure_readiness(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> ReadinessAssessment:
    return await ClosureService(db).assess_closure_readiness(order_id)


@router.post("/{order_id}/close", response_model=ClosureResult)
async def execute_automatic_closure(
    order_id: uuid.UUID,
    payload: ClosureRequest,
    db: AsyncSession = Depends(get_db),
) -> ClosureResult:
    return await ClosureService(db).execute_automatic_closure(
        order_id, payload.actor_id, payload.options
    )


@router.post("/{order_id}/manual-close", response_model=ClosureResult)
async def execute_manual_closure(
    order_id: uuid.UUID,
    payload: ManualClosureRequest,
    db: AsyncSession = Depends(get_db),
) -> ClosureResult:
    return await ClosureService(db).execute_manual_closure(
        order_id, payload.actor_id, payload.reason, payload.options
    )


@router.post("/{order_id}/rollback", response_model=RollbackResult)
async def rollback_closure(
    order_id: uuid.UUID,
    payload: RollbackRequest,
    db: AsyncSession = Depends(get_db),
) -> RollbackResult:
    return await ClosureService(db).rollback_closure(order_id, payload.actor_id, payload.reason)


@router.get("/{order_id}/audit", response_model=list[ClosureAuditRecordResponse])
async def get_closure_audit_history(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> list[ClosureAuditRecord]:
    """Closure audit records for an order, oldest first."""
    return await ClosureService(db).get_closure_audit_history(order_id)
