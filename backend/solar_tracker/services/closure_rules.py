"""Versioned closure rule store.

Each update writes a new immutable row; the highest version is live. Version 0
is the built-in default taken from settings when no row exists yet.
"""

import logging

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.config import settings
from solar_tracker.core.errors import validation_error_from_pydantic
from solar_tracker.models.closure import ClosureRuleVersion
from solar_tracker.schemas.closure import ClosureRuleSet, ClosureRulesUpdate

logger = logging.getLogger(__name__)


def default_rule_set() -> ClosureRuleSet:
    return ClosureRuleSet(
        version=0,
        min_completion_percentage=settings.CLOSURE_MIN_COMPLETION_PERCENTAGE,
        max_failure_rate=settings.CLOSURE_MAX_FAILURE_RATE,
        min_panels_for_closure=settings.CLOSURE_MIN_PANELS,
        max_idle_time_hours=settings.CLOSURE_MAX_IDLE_HOURS,
        require_pallet_finalization=settings.CLOSURE_REQUIRE_PALLET_FINALIZATION,
    )


class ClosureRuleStore:
    """Reads and appends closure rule versions."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_current(self) -> ClosureRuleSet:
        row = await self._latest_version()
        if row is None:
            return default_rule_set()
        return ClosureRuleSet.model_validate(row)

    async def update(self, changes: ClosureRulesUpdate) -> ClosureRuleSet:
        """Merge ``changes`` into the live rules and store them as a new version."""
        current = await self.get_current()
        merged = {
            **current.model_dump(exclude={"version"}),
            **changes.model_dump(exclude_none=True, exclude={"updated_by"}),
        }
        try:
            validated = ClosureRuleSet(**merged)
        except PydanticValidationError as exc:
            raise validation_error_from_pydantic(exc) from exc

        row = ClosureRuleVersion(
            **validated.model_dump(exclude={"version"}),
            updated_by=changes.updated_by,
        )
        self.db.add(row)
        await self.db.flush()
        logger.info(
            "Closure rules updated to version %s by %s (previous %s)",
            row.version, changes.updated_by, current.version,
        )
        return ClosureRuleSet.model_validate(row)

    async def _latest_version(self) -> ClosureRuleVersion | None:
        result = await self.db.execute(
            select(ClosureRuleVersion).order_by(ClosureRuleVersion.version.desc()).limit(1)
        )
        return result.scalar_one_or_none()
