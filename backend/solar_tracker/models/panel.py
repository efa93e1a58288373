"""Panel and Inspection SQLAlchemy models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from solar_tracker.core.database import Base

BARCODE_PATTERN = r"^CRS[0-9]{2}[WB][TWB](36|40|60|72|144)[0-9]{5}$"


class Panel(Base):
    """A single solar panel tracked through the line stations."""

    __tablename__ = "panels"
    __table_args__ = (
        CheckConstraint(f"barcode ~ '{BARCODE_PATTERN}'", name="ck_panel_barcode_format"),
        CheckConstraint(
            "(station_2_completed_at IS NULL OR station_1_completed_at IS NOT NULL) AND "
            "(station_3_completed_at IS NULL OR station_2_completed_at IS NOT NULL) AND "
            "(station_4_completed_at IS NULL OR station_3_completed_at IS NOT NULL)",
            name="ck_panel_station_sequence",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    barcode: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    panel_type: Mapped[str] = mapped_column(String(10), nullable=False)
    frame_type: Mapped[str] = mapped_column(String(20), nullable=False)
    backsheet_type: Mapped[str] = mapped_column(String(20), nullable=False)
    line: Mapped[str] = mapped_column(String(20), nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("manufacturing_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    workflow_state: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="SCANNED"
    )
    current_station: Mapped[int | None] = mapped_column(Integer, nullable=True)
    station_1_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    station_2_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    station_3_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    station_4_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rework_reentry_station: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rework_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    rework_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    quarantine_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    wattage_pmax: Mapped[float | None] = mapped_column(Float, nullable=True, comment="Max power (W)")
    vmp: Mapped[float | None] = mapped_column(Float, nullable=True, comment="Voltage at max power (V)")
    imp: Mapped[float | None] = mapped_column(Float, nullable=True, comment="Current at max power (A)")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    order: Mapped["ManufacturingOrder"] = relationship(back_populates="panels")
    inspections: Mapped[list["Inspection"]] = relationship(
        back_populates="panel", order_by="Inspection.created_at"
    )


class Inspection(Base):
    """Append-only inspection result for one panel at one station."""

    __tablename__ = "inspections"
    __table_args__ = (
        CheckConstraint("result IN ('PASS', 'FAIL', 'CONDITIONAL')", name="ck_inspection_result"),
        CheckConstraint(
            "result <> 'FAIL' OR (notes IS NOT NULL AND length(trim(notes)) > 0)",
            name="ck_inspection_fail_notes",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    panel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("panels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    station_number: Mapped[int] = mapped_column(Integer, nullable=False)
    inspector_id: Mapped[str] = mapped_column(String(100), nullable=False)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    override_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    corrects_inspection_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("inspections.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    panel: Mapped["Panel"] = relationship(back_populates="inspections")
