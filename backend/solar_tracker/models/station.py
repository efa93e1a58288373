"""Station SQLAlchemy model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from solar_tracker.core.database import Base


class Station(Base):
    """Fixed inspection station on a production line."""

    __tablename__ = "stations"
    __table_args__ = (
        UniqueConstraint("line", "station_number", name="uq_station_line_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    line: Mapped[str] = mapped_column(String(20), nullable=False)
    station_number: Mapped[int] = mapped_column(Integer, nullable=False)
    station_type: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
