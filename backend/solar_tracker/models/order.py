"""ManufacturingOrder SQLAlchemy model."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from solar_tracker.core.database import Base


class ManufacturingOrder(Base):
    """Batch of panels produced against a target quantity."""

    __tablename__ = "manufacturing_orders"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_mo_quantity_positive"),
        CheckConstraint(
            "completed_count >= 0 AND completed_count <= quantity",
            name="ck_mo_completed_count_range",
        ),
        CheckConstraint(
            "status IN ('OPEN', 'IN_PROGRESS', 'COMPLETED')",
            name="ck_mo_status",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    order_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    panel_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="OPEN"
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expected_completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    panels: Mapped[list["Panel"]] = relationship(back_populates="order")
    pallets: Mapped[list["Pallet"]] = relationship(back_populates="order")
