"""Order progress aggregation with an invalidatable cache.

Progress is a pure function of the order and its panels. Results are cached
per order for PROGRESS_CACHE_TTL_SECONDS; every writer that changes a panel or
the order status must invalidate the entry. Closure decisions always read
with ``fresh=True``.
"""

import logging
import threading
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.config import settings
from solar_tracker.core.errors import NotFoundError
from solar_tracker.core.redis import get_redis
from solar_tracker.models.enums import OrderStatus, PanelStatus, status_for_state
from solar_tracker.models.order import ManufacturingOrder
from solar_tracker.models.panel import Panel
from solar_tracker.schemas.progress import OrderProgress, ProgressAlert
from solar_tracker.services.station_gate import station_timestamp_field

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "mo_progress"


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


def _panel_activity(panel: Any, station_count: int) -> datetime | None:
    stamps = [
        getattr(panel, name, None)
        for name in ("created_at", "updated_at", "completed_at")
    ]
    stamps.extend(
        getattr(panel, station_timestamp_field(n), None) for n in range(1, station_count + 1)
    )
    present = [s for s in stamps if s is not None]
    return max(present) if present else None


def _build_alerts(progress: OrderProgress) -> list[ProgressAlert]:
    alerts: list[ProgressAlert] = []
    if 0 < progress.panels_remaining <= settings.PANELS_REMAINING_ALERT:
        alerts.append(ProgressAlert(
            type="PANELS_REMAINING",
            severity="info",
            message=f"Only {progress.panels_remaining} panels remaining",
        ))
    if progress.failure_rate > settings.HIGH_FAILURE_RATE_ALERT:
        alerts.append(ProgressAlert(
            type="HIGH_FAILURE_RATE",
            severity="warning",
            message=f"Failure rate {progress.failure_rate:.2f}% exceeds "
            f"{settings.HIGH_FAILURE_RATE_ALERT}%",
        ))
    if progress.panels_remaining == 0 and progress.order_status != OrderStatus.COMPLETED.value:
        alerts.append(ProgressAlert(
            type="READY_FOR_COMPLETION",
            severity="info",
            message="Target quantity reached, order can be closed",
        ))
    return alerts


def closed_snapshot(progress: OrderProgress) -> OrderProgress:
    """Progress as it reads once the order is COMPLETED."""
    closed = progress.model_copy(update={"order_status": OrderStatus.COMPLETED.value})
    closed.alerts = _build_alerts(closed)
    return closed


def compute_order_progress(
    order: Any,
    panels: Sequence[Any],
    now: datetime | None = None,
    station_count: int | None = None,
) -> OrderProgress:
    """Aggregate panel states of one order into progress statistics."""
    now = now or datetime.now(timezone.utc)
    station_count = station_count or settings.STATIONS_PER_LINE

    counts = {status: 0 for status in PanelStatus}
    station_completions = {n: 0 for n in range(1, station_count + 1)}
    durations: list[float] = []
    last_activity: datetime | None = None

    for panel in panels:
        counts[status_for_state(panel.workflow_state)] += 1
        for n in station_completions:
            if getattr(panel, station_timestamp_field(n), None) is not None:
                station_completions[n] += 1
        if panel.completed_at is not None and panel.created_at is not None:
            durations.append((panel.completed_at - panel.created_at).total_seconds() / 60.0)
        activity = _panel_activity(panel, station_count)
        if activity is not None and (last_activity is None or activity > last_activity):
            last_activity = activity

    total = len(panels)
    completed = counts[PanelStatus.COMPLETED]
    failed = counts[PanelStatus.FAILED]
    target = order.quantity

    progress = OrderProgress(
        order_id=order.id,
        order_number=order.order_number,
        order_status=order.status,
        target_quantity=target,
        total_panels=total,
        completed_panels=completed,
        failed_panels=failed,
        in_progress_panels=counts[PanelStatus.IN_PROGRESS],
        rework_panels=counts[PanelStatus.REWORK],
        quarantined_panels=counts[PanelStatus.QUARANTINE],
        pending_panels=counts[PanelStatus.PENDING],
        panels_remaining=max(0, target - completed),
        completion_percentage=round(completed / target * 100, 2) if target > 0 else 0.0,
        failure_rate=round(failed / total * 100, 2) if total > 0 else 0.0,
        station_completions=station_completions,
        average_processing_minutes=round(sum(durations) / len(durations), 2) if durations else None,
        last_activity_at=last_activity,
        computed_at=now,
    )
    progress.alerts = _build_alerts(progress)
    return progress


# ---------------------------------------------------------------------------
# Cache backends
# ---------------------------------------------------------------------------


@dataclass
class InMemoryProgressCache:
    """Thread-safe process-local cache with per-entry expiry."""

    _entries: dict[str, tuple[float, OrderProgress]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    async def get(self, order_id: uuid.UUID) -> OrderProgress | None:
        key = str(order_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, progress = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return progress

    async def set(self, order_id: uuid.UUID, progress: OrderProgress, ttl: int) -> None:
        with self._lock:
            self._entries[str(order_id)] = (time.monotonic() + ttl, progress)

    async def delete(self, order_id: uuid.UUID) -> None:
        with self._lock:
            self._entries.pop(str(order_id), None)

    async def clear(self) -> int:
        with self._lock:
            cleared = len(self._entries)
            self._entries.clear()
            return cleared


class RedisProgressCache:
    """Redis-backed cache shared across worker processes."""

    def __init__(self, client: Any) -> None:
        self.client = client

    @staticmethod
    def _key(order_id: uuid.UUID | str) -> str:
        return f"{CACHE_KEY_PREFIX}:{order_id}"

    async def get(self, order_id: uuid.UUID) -> OrderProgress | None:
        raw = await self.client.get(self._key(order_id))
        if raw is None:
            return None
        return OrderProgress.model_validate_json(raw)

    async def set(self, order_id: uuid.UUID, progress: OrderProgress, ttl: int) -> None:
        await self.client.setex(self._key(order_id), ttl, progress.model_dump_json())

    async def delete(self, order_id: uuid.UUID) -> None:
        await self.client.delete(self._key(order_id))

    async def clear(self) -> int:
        cleared = 0
        async for key in self.client.scan_iter(match=f"{CACHE_KEY_PREFIX}:*"):
            cleared += await self.client.delete(key)
        return cleared


_memory_cache = InMemoryProgressCache()


def get_progress_cache() -> InMemoryProgressCache | RedisProgressCache:
    """Return the configured cache backend.

    Falls back to the in-memory cache when Redis is selected but not connected.
    """
    if settings.PROGRESS_CACHE_BACKEND == "redis":
        try:
            return RedisProgressCache(get_redis())
        except RuntimeError:
            logger.warning("Redis unavailable, using in-memory progress cache")
    return _memory_cache


async def clear_progress_cache(order_id: uuid.UUID) -> None:
    """Drop the cached progress entry for one order."""
    await get_progress_cache().delete(order_id)
    logger.debug("Progress cache cleared for order %s", order_id)


async def clear_all_progress_cache() -> int:
    cleared = await get_progress_cache().clear()
    logger.info("Progress cache cleared (%d entries)", cleared)
    return cleared


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class ProgressAggregator:
    """Loads an order with its panels and returns (possibly cached) progress."""

    def __init__(self, db: AsyncSession, cache: Any | None = None) -> None:
        self.db = db
        self.cache = cache if cache is not None else get_progress_cache()

    async def get_progress(self, order_id: uuid.UUID, fresh: bool = False) -> OrderProgress:
        if not fresh:
            cached = await self.cache.get(order_id)
            if cached is not None:
                return cached

        order = await self._get_order(order_id)
        if order is None:
            raise NotFoundError(f"Manufacturing order {order_id} not found", {"order_id": str(order_id)})
        panels = await self._get_panels(order_id)
        progress = compute_order_progress(order, panels)
        await self.cache.set(order_id, progress, settings.PROGRESS_CACHE_TTL_SECONDS)
        return progress

    async def invalidate(self, order_id: uuid.UUID) -> None:
        await self.cache.delete(order_id)

    async def _get_order(self, order_id: uuid.UUID) -> ManufacturingOrder | None:
        result = await self.db.execute(
            select(ManufacturingOrder).where(ManufacturingOrder.id == order_id)
        )
        return result.scalar_one_or_none()

    async def _get_panels(self, order_id: uuid.UUID) -> list[Panel]:
        result = await self.db.execute(select(Panel).where(Panel.order_id == order_id))
        return list(result.scalars().all())
