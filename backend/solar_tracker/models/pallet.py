"""Pallet and PalletAssignment SQLAlchemy models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from solar_tracker.core.database import Base


class Pallet(Base):
    """Shipping pallet holding completed panels of one order."""

    __tablename__ = "pallets"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    pallet_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("manufacturing_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, server_default="25")
    assigned_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="OPEN")
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finalized_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    order: Mapped["ManufacturingOrder"] = relationship(back_populates="pallets")
    assignments: Mapped[list["PalletAssignment"]] = relationship(
        back_populates="pallet", cascade="all, delete-orphan"
    )


class PalletAssignment(Base):
    """Position of one panel on a pallet."""

    __tablename__ = "pallet_assignments"
    __table_args__ = (
        UniqueConstraint("panel_id", name="uq_pallet_assignment_panel"),
        UniqueConstraint("pallet_id", "position", name="uq_pallet_assignment_position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    pallet_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pallets.id", ondelete="CASCADE"),
        nullable=False,
    )
    panel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("panels.id", ondelete="RESTRICT"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    pallet: Mapped["Pallet"] = relationship(back_populates="assignments")
