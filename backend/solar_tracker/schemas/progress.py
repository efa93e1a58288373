"""Order progress Pydantic schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ProgressAlert(BaseModel):
    """Alert raised while computing order progress."""

    type: str
    severity: str
    message: str


class OrderProgress(BaseModel):
    """Per-order completion statistics."""

    order_id: uuid.UUID
    order_number: str
    order_status: str
    target_quantity: int
    total_panels: int = 0
    completed_panels: int = 0
    failed_panels: int = 0
    in_progress_panels: int = 0
    rework_panels: int = 0
    quarantined_panels: int = 0
    pending_panels: int = 0
    panels_remaining: int = 0
    completion_percentage: float = 0.0
    failure_rate: float = 0.0
    station_completions: dict[int, int] = Field(default_factory=dict)
    average_processing_minutes: float | None = None
    last_activity_at: datetime | None = None
    alerts: list[ProgressAlert] = Field(default_factory=list)
    computed_at: datetime


class PalletSummary(BaseModel):
    """Pallet counts for one order, by finalization state."""

    total_pallets: int = 0
    open_pallets: int = 0
    full_pallets: int = 0
    closed_pallets: int = 0
    shipped_pallets: int = 0

    @property
    def unfinalized_pallets(self) -> int:
        return self.open_pallets + self.full_pallets
