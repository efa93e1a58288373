"""Closure rule versions and the closure audit log."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from solar_tracker.core.database import Base


class ClosureRuleVersion(Base):
    """Immutable snapshot of the closure rule set; the highest version is live."""

    __tablename__ = "closure_rule_versions"

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    min_completion_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    max_failure_rate: Mapped[float] = mapped_column(Float, nullable=False)
    min_panels_for_closure: Mapped[int] = mapped_column(Integer, nullable=False)
    max_idle_time_hours: Mapped[float] = mapped_column(Float, nullable=False)
    require_pallet_finalization: Mapped[bool] = mapped_column(Boolean, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ClosureAuditRecord(Base):
    """Append-only record of a closure or rollback.

    The integer key gives creation order. Rows are never updated or deleted;
    a rollback is a new row pointing at the closure it reverses.
    """

    __tablename__ = "closure_audit_records"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('AUTOMATIC_CLOSE', 'MANUAL_CLOSE', 'ROLLBACK')", name="ck_closure_audit_kind"
        ),
        CheckConstraint(
            "kind <> 'ROLLBACK' OR (reverses_record_id IS NOT NULL AND reason IS NOT NULL)",
            name="ck_closure_audit_rollback_ref",
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("manufacturing_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    forced: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    rule_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    final_statistics: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    options: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    assessment: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    pallet_finalization: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    completion_report: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    reverses_record_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("closure_audit_records.id"), nullable=True, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
