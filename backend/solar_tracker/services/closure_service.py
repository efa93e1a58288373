"""Manufacturing order closure, rollback and audit history.

Closure and rollback of one order are serialized three ways: an in-process
lock per order, a ``FOR UPDATE NOWAIT`` row lock, and a conditional status
update whose row count is checked. All writes of one closure or rollback
commit together or not at all.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.errors import (
    AlreadyClosedError,
    ConcurrentModificationError,
    NotCompletedError,
    NotFoundError,
    NotReadyError,
    ValidationError,
    WorkflowError,
    validation_error_from_pydantic,
)
from solar_tracker.models.closure import ClosureAuditRecord
from solar_tracker.models.enums import ClosureKind, OrderStatus, PalletStatus
from solar_tracker.models.order import ManufacturingOrder
from solar_tracker.models.pallet import Pallet, PalletAssignment
from solar_tracker.schemas.closure import (
    ClosureOptions,
    ClosureResult,
    ClosureRuleSet,
    ClosureRulesUpdate,
    PalletFinalization,
    ReadinessAssessment,
    RollbackResult,
)
from solar_tracker.services.audit_log import ClosureAuditLog
from solar_tracker.services.closure_rules import ClosureRuleStore
from solar_tracker.services.order_locks import OrderLockRegistry, order_locks
from solar_tracker.services.progress import ProgressAggregator, closed_snapshot
from solar_tracker.services.readiness import ClosureReadinessAssessor

logger = logging.getLogger(__name__)

LOCK_NOT_AVAILABLE = "55P03"


class ReportGenerator(Protocol):
    """Optional collaborator that renders a completion report."""

    async def generate(self, order: ManufacturingOrder, statistics: dict[str, Any]) -> dict[str, Any]:
        ...


def coerce_options(options: ClosureOptions | dict[str, Any] | None) -> ClosureOptions:
    """Validate closure options once; unknown keys raise ValidationError."""
    if options is None:
        return ClosureOptions()
    if isinstance(options, ClosureOptions):
        return options
    try:
        return ClosureOptions.model_validate(options)
    except PydanticValidationError as exc:
        raise validation_error_from_pydantic(exc) from exc


def _is_lock_conflict(exc: DBAPIError) -> bool:
    if isinstance(exc, OperationalError):
        return True
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code == LOCK_NOT_AVAILABLE


class ClosureService:
    """Readiness, closure, rollback and audit operations for one session."""

    def __init__(
        self,
        db: AsyncSession,
        locks: OrderLockRegistry | None = None,
        report_generator: ReportGenerator | None = None,
        progress: ProgressAggregator | None = None,
    ) -> None:
        self.db = db
        self.locks = locks if locks is not None else order_locks
        self.report_generator = report_generator
        self.progress = progress or ProgressAggregator(db)
        self.assessor = ClosureReadinessAssessor(db, self.progress)
        self.audit = ClosureAuditLog(db)
        self.rules = ClosureRuleStore(db)

    # ------------------------------------------------------------------
    # Rules and readiness
    # ------------------------------------------------------------------

    async def get_closure_rules(self) -> ClosureRuleSet:
        return await self.rules.get_current()

    async def update_closure_rules(self, changes: ClosureRulesUpdate) -> ClosureRuleSet:
        return await self.rules.update(changes)

    async def assess_closure_readiness(
        self, order_id: uuid.UUID, rules: ClosureRuleSet | None = None
    ) -> ReadinessAssessment:
        """Evaluate closure rules for an order. Read-only and idempotent."""
        return await self.assessor.assess(order_id, rules)

    # ------------------------------------------------------------------
    # Closure
    # ------------------------------------------------------------------

    async def execute_automatic_closure(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        options: ClosureOptions | dict[str, Any] | None = None,
        rules: ClosureRuleSet | None = None,
    ) -> ClosureResult:
        return await self._close(order_id, actor_id, options, ClosureKind.AUTOMATIC_CLOSE, None, rules)

    async def execute_manual_closure(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        reason: str,
        options: ClosureOptions | dict[str, Any] | None = None,
        rules: ClosureRuleSet | None = None,
    ) -> ClosureResult:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for manual closure", {"field": "reason"})
        return await self._close(
            order_id, actor_id, options, ClosureKind.MANUAL_CLOSE, reason.strip(), rules
        )

    async def _close(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        options: ClosureOptions | dict[str, Any] | None,
        kind: ClosureKind,
        reason: str | None,
        rules: ClosureRuleSet | None,
    ) -> ClosureResult:
        opts = coerce_options(options)
        if not actor_id:
            raise ValidationError("actor_id is required", {"field": "actor_id"})

        async with self.locks.hold(order_id):
            try:
                result = await self._close_locked(order_id, actor_id, opts, kind, reason, rules)
                await self.db.commit()
            except WorkflowError as exc:
                await self.db.rollback()
                logger.warning("Closure of order %s refused: %s", order_id, exc.message)
                raise
            except Exception:
                await self.db.rollback()
                logger.exception("Closure of order %s failed", order_id)
                raise

        await self.progress.invalidate(order_id)
        logger.info(
            "Order %s (%s) closed by %s [%s, forced=%s, audit=%s]",
            order_id, result.order_number, actor_id, kind.value, result.forced,
            result.audit_record_id,
        )
        return result

    async def _close_locked(
        self,
        order_id: uuid.UUID,
        actor_id: str,
        opts: ClosureOptions,
        kind: ClosureKind,
        reason: str | None,
        rules: ClosureRuleSet | None,
    ) -> ClosureResult:
        order = await self._lock_order(order_id)
        if order.status == OrderStatus.COMPLETED.value:
            raise AlreadyClosedError(
                f"Manufacturing order {order.order_number} is already closed",
                {"order_id": str(order_id)},
            )

        if rules is None:
            rules = await self.rules.get_current()

        assessment: ReadinessAssessment | None = None
        if not opts.skip_validation:
            assessment = await self.assessor.assess(order_id, rules)
            if not assessment.is_ready and not opts.force:
                raise NotReadyError(
                    f"Manufacturing order {order.order_number} is not ready for closure "
                    f"({len(assessment.blockers)} blockers)",
                    [b.model_dump() for b in assessment.blockers],
                )
        forced = opts.skip_validation or (assessment is not None and not assessment.is_ready)
        # A COMPLETED order short of its quantity is always recorded as forced.
        if not forced and order.completed_count < order.quantity:
            logger.warning(
                "Order %s closes with %d of %d panels; recording a forced closure",
                order.order_number, order.completed_count, order.quantity,
            )
            forced = True

        now = datetime.now(timezone.utc)
        pallet_finalization = None
        if opts.finalize_pallets:
            pallet_finalization = await self._finalize_pallets(order_id, actor_id, now)

        progress = await self.progress.get_progress(order_id, fresh=True)
        statistics = closed_snapshot(progress).model_dump(mode="json")

        report = None
        if opts.generate_report:
            report = await self._build_report(order, statistics, assessment, now)

        previous_status = order.status
        if not await self._mark_completed(order_id, now):
            raise AlreadyClosedError(
                f"Manufacturing order {order.order_number} was closed concurrently",
                {"order_id": str(order_id)},
            )

        record = await self.audit.append(
            order_id=order_id,
            kind=kind,
            actor_id=actor_id,
            reason=reason,
            forced=forced,
            previous_status=previous_status,
            rule_version=rules.version,
            final_statistics=statistics,
            options=opts.model_dump(),
            assessment=assessment.model_dump(mode="json") if assessment else None,
            pallet_finalization=pallet_finalization.model_dump() if pallet_finalization else None,
            completion_report=report,
        )
        return ClosureResult(
            order_id=order_id,
            order_number=order.order_number,
            completed_at=now,
            forced=forced,
            final_statistics=statistics,
            pallet_finalization=pallet_finalization,
            completion_report=report,
            audit_record_id=record.id,
        )

    async def _build_report(
        self,
        order: ManufacturingOrder,
        statistics: dict[str, Any],
        assessment: ReadinessAssessment | None,
        now: datetime,
    ) -> dict[str, Any]:
        report: dict[str, Any] = {
            "order_number": order.order_number,
            "panel_type": order.panel_type,
            "target_quantity": order.quantity,
            "start_date": order.start_date.isoformat() if order.start_date else None,
            "completed_at": now.isoformat(),
            "statistics": statistics,
            "readiness_percentage": assessment.readiness_percentage if assessment else None,
            "outstanding_blockers": [b.rule for b in assessment.blockers] if assessment else [],
        }
        if self.report_generator is not None:
            report["generated"] = await self.report_generator.generate(order, statistics)
        return report

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def rollback_closure(
        self, order_id: uuid.UUID, actor_id: str, reason: str
    ) -> RollbackResult:
        """Reopen a closed order and record a ROLLBACK referencing its closure."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to roll back a closure", {"field": "reason"})
        reason = reason.strip()

        async with self.locks.hold(order_id):
            try:
                result = await self._rollback_locked(order_id, actor_id, reason)
                await self.db.commit()
            except WorkflowError as exc:
                await self.db.rollback()
                logger.warning("Rollback of order %s refused: %s", order_id, exc.message)
                raise
            except Exception:
                await self.db.rollback()
                logger.exception("Rollback of order %s failed", order_id)
                raise

        await self.progress.invalidate(order_id)
        logger.info(
            "Order %s closure %s rolled back by %s: %s",
            order_id, result.reverses_record_id, actor_id, reason,
        )
        return result

    async def _rollback_locked(
        self, order_id: uuid.UUID, actor_id: str, reason: str
    ) -> RollbackResult:
        order = await self._lock_order(order_id)
        if order.status != OrderStatus.COMPLETED.value:
            raise NotCompletedError(
                f"Manufacturing order {order.order_number} is not closed (status {order.status})",
                {"order_id": str(order_id), "status": order.status},
            )

        closure = await self.audit.latest_reversible_closure(order_id)
        if closure is None:
            raise NotFoundError(
                f"No closure record to roll back for order {order.order_number}",
                {"order_id": str(order_id)},
            )

        restored = closure.previous_status or OrderStatus.IN_PROGRESS.value
        if not await self._restore_status(order_id, restored):
            raise ConcurrentModificationError(
                f"Manufacturing order {order.order_number} changed during rollback",
                {"order_id": str(order_id)},
            )

        now = datetime.now(timezone.utc)
        record = await self.audit.append(
            order_id=order_id,
            kind=ClosureKind.ROLLBACK,
            actor_id=actor_id,
            reason=reason,
            previous_status=OrderStatus.COMPLETED.value,
            rule_version=closure.rule_version,
            final_statistics=closure.final_statistics,
            reverses_record_id=closure.id,
        )
        return RollbackResult(
            order_id=order_id,
            order_number=order.order_number,
            restored_status=restored,
            rolled_back_at=now,
            audit_record_id=record.id,
            reverses_record_id=closure.id,
        )

    # ------------------------------------------------------------------
    # Audit history
    # ------------------------------------------------------------------

    async def get_closure_audit_history(self, order_id: uuid.UUID) -> list[ClosureAuditRecord]:
        if await self._get_order(order_id) is None:
            raise NotFoundError(f"Manufacturing order {order_id} not found", {"order_id": str(order_id)})
        return await self.audit.history(order_id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    async def _get_order(self, order_id: uuid.UUID) -> ManufacturingOrder | None:
        result = await self.db.execute(
            select(ManufacturingOrder).where(ManufacturingOrder.id == order_id)
        )
        return result.scalar_one_or_none()

    async def _lock_order(self, order_id: uuid.UUID) -> ManufacturingOrder:
        """Load the order row with FOR UPDATE NOWAIT."""
        try:
            result = await self.db.execute(
                select(ManufacturingOrder)
                .where(ManufacturingOrder.id == order_id)
                .with_for_update(nowait=True)
                .execution_options(populate_existing=True)
            )
        except DBAPIError as exc:
            if not _is_lock_conflict(exc):
                raise
            raise ConcurrentModificationError(
                f"Manufacturing order {order_id} is locked by another transaction",
                {"order_id": str(order_id)},
            ) from exc
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Manufacturing order {order_id} not found", {"order_id": str(order_id)})
        return order

    async def _mark_completed(self, order_id: uuid.UUID, now: datetime) -> bool:
        result = await self.db.execute(
            update(ManufacturingOrder)
            .where(
                ManufacturingOrder.id == order_id,
                ManufacturingOrder.status != OrderStatus.COMPLETED.value,
            )
            .values(status=OrderStatus.COMPLETED.value, actual_completion_date=now)
        )
        return result.rowcount == 1

    async def _restore_status(self, order_id: uuid.UUID, status: str) -> bool:
        result = await self.db.execute(
            update(ManufacturingOrder)
            .where(
                ManufacturingOrder.id == order_id,
                ManufacturingOrder.status == OrderStatus.COMPLETED.value,
            )
            .values(status=status, actual_completion_date=None)
        )
        return result.rowcount == 1

    async def _finalize_pallets(
        self, order_id: uuid.UUID, actor_id: str, now: datetime
    ) -> PalletFinalization:
        """Close every OPEN/FULL pallet of the order and freeze its assignments."""
        result = await self.db.execute(
            select(Pallet)
            .where(
                Pallet.order_id == order_id,
                Pallet.status.in_([PalletStatus.OPEN.value, PalletStatus.FULL.value]),
            )
            .with_for_update()
        )
        pallets = list(result.scalars().all())
        if not pallets:
            return PalletFinalization()

        for pallet in pallets:
            pallet.status = PalletStatus.CLOSED.value
            pallet.finalized_at = now
            pallet.finalized_by = actor_id

        assignments = await self.db.execute(
            update(PalletAssignment)
            .where(
                PalletAssignment.pallet_id.in_([p.id for p in pallets]),
                PalletAssignment.is_finalized.is_(False),
            )
            .values(is_finalized=True)
        )
        await self.db.flush()
        return PalletFinalization(
            pallets_finalized=len(pallets),
            assignments_finalized=assignments.rowcount,
            pallet_numbers=[p.pallet_number for p in pallets],
        )
