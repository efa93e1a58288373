"""Manufacturing order progress API endpoints."""

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.database import get_db
from solar_tracker.schemas.progress import OrderProgress
from solar_tracker.services.progress import (
    ProgressAggregator,
    clear_all_progress_cache,
    clear_progress_cache,
)

router = APIRouter(prefix="/mo-progress", tags=["mo-progress"])


@router.get("/{order_id}", response_model=OrderProgress)
async def get_order_progress(
    order_id: uuid.UUID,
    fresh: bool = Query(False),
    db: AsyncSession = Depends(get_db),
) -> OrderProgress:
    return await ProgressAggregator(db).get_progress(order_id, fresh=fresh)


@router.delete("/cache", status_code=status.HTTP_200_OK)
async def clear_all_cache() -> dict[str, int]:
    return {"cleared": await clear_all_progress_cache()}


@router.delete("/{order_id}/cache", status_code=status.HTTP_204_NO_CONTENT)
async def clear_order_cache(order_id: uuid.UUID) -> None:
    await clear_progress_cache(order_id)
