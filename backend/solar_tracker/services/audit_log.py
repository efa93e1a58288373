"""Append-only closure audit log."""

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.models.closure import ClosureAuditRecord
from solar_tracker.models.enums import CLOSURE_KINDS, ClosureKind

logger = logging.getLogger(__name__)


class ClosureAuditLog:
    """Writes and reads closure audit records. There is no update or delete."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def append(
        self,
        order_id: uuid.UUID,
        kind: ClosureKind,
        actor_id: str,
        reason: str | None = None,
        forced: bool = False,
        previous_status: str | None = None,
        rule_version: int | None = None,
        final_statistics: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        assessment: dict[str, Any] | None = None,
        pallet_finalization: dict[str, Any] | None = None,
        completion_report: dict[str, Any] | None = None,
        reverses_record_id: int | None = None,
    ) -> ClosureAuditRecord:
        record = ClosureAuditRecord(
            order_id=order_id,
            kind=kind.value,
            actor_id=actor_id,
            reason=reason,
            forced=forced,
            previous_status=previous_status,
            rule_version=rule_version,
            final_statistics=final_statistics,
            options=options,
            assessment=assessment,
            pallet_finalization=pallet_finalization,
            completion_report=completion_report,
            reverses_record_id=reverses_record_id,
        )
        self.db.add(record)
        await self.db.flush()
        logger.info(
            "Audit %s for order %s by %s (record %s)", kind.value, order_id, actor_id, record.id
        )
        return record

    async def history(self, order_id: uuid.UUID) -> list[ClosureAuditRecord]:
        """All records for an order in creation order."""
        result = await self.db.execute(
            select(ClosureAuditRecord)
            .where(ClosureAuditRecord.order_id == order_id)
            .order_by(ClosureAuditRecord.id.asc())
        )
        return list(result.scalars().all())

    async def latest_reversible_closure(self, order_id: uuid.UUID) -> ClosureAuditRecord | None:
        """Most recent closure record that no rollback references yet."""
        reversed_ids = (
            select(ClosureAuditRecord.reverses_record_id)
            .where(
                ClosureAuditRecord.order_id == order_id,
                ClosureAuditRecord.reverses_record_id.is_not(None),
            )
        )
        result = await self.db.execute(
            select(ClosureAuditRecord)
            .where(
                ClosureAuditRecord.order_id == order_id,
                ClosureAuditRecord.kind.in_([k.value for k in CLOSURE_KINDS]),
                ClosureAuditRecord.id.not_in(reversed_ids),
            )
            .order_by(ClosureAuditRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
