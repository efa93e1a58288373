"""Closure readiness assessment.

Rules are evaluated in a fixed order against fresh progress and the order's
pallet summary:

    1. completion           completion percentage >= minimum
    2. failure_rate         failure rate <= maximum
    3. min_panels           completed panels >= minimum
    4. idle_time            hours since last panel activity <= maximum
    5. pallet_finalization  no open/full pallets (when required)

Each failing rule contributes one blocker. A rule whose inputs could not be
read, or whose check raises, contributes an "unknown" blocker instead of
aborting the assessment. The readiness percentage is the weighted share of
passing rules.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.core.config import settings
from solar_tracker.models.enums import PalletStatus
from solar_tracker.models.pallet import Pallet
from solar_tracker.schemas.closure import (
    ClosureBlocker,
    ClosureRuleSet,
    ReadinessAssessment,
    Recommendation,
)
from solar_tracker.schemas.progress import OrderProgress, PalletSummary
from solar_tracker.services.closure_rules import ClosureRuleStore
from solar_tracker.services.progress import ProgressAggregator

logger = logging.getLogger(__name__)

T = TypeVar("T")

RULE_WEIGHTS: dict[str, int] = {
    "completion": 3,
    "failure_rate": 2,
    "min_panels": 1,
    "idle_time": 1,
    "pallet_finalization": 1,
}


class RuleInputUnavailable(Exception):
    """A rule's input data could not be read."""


@dataclass
class _RuleResult:
    passed: bool
    severity: str = "info"
    reason: str = ""
    details: dict[str, Any] = field(default_factory=dict)


def _need(progress: OrderProgress | None) -> OrderProgress:
    if progress is None:
        raise RuleInputUnavailable("order progress unavailable")
    return progress


# ---------------------------------------------------------------------------
# Rule checks
# ---------------------------------------------------------------------------


def _check_completion(rules, progress, pallets, now) -> _RuleResult:
    p = _need(progress)
    details = {
        "completion_percentage": p.completion_percentage,
        "required": rules.min_completion_percentage,
        "completed_panels": p.completed_panels,
        "target_quantity": p.target_quantity,
        "panels_remaining": p.panels_remaining,
    }
    if p.completion_percentage < rules.min_completion_percentage:
        return _RuleResult(
            passed=False,
            severity="critical",
            reason=(
                f"Completion {p.completion_percentage:.2f}% is below the required "
                f"{rules.min_completion_percentage}% ({p.panels_remaining} panels remaining)"
            ),
            details=details,
        )
    return _RuleResult(passed=True, details=details)


def _check_failure_rate(rules, progress, pallets, now) -> _RuleResult:
    p = _need(progress)
    details = {
        "failure_rate": p.failure_rate,
        "maximum": rules.max_failure_rate,
        "failed_panels": p.failed_panels,
    }
    if p.failure_rate > rules.max_failure_rate:
        return _RuleResult(
            passed=False,
            severity="critical",
            reason=f"Failure rate {p.failure_rate:.2f}% exceeds the maximum {rules.max_failure_rate}%",
            details=details,
        )
    return _RuleResult(passed=True, details=details)


def _check_min_panels(rules, progress, pallets, now) -> _RuleResult:
    p = _need(progress)
    details = {"completed_panels": p.completed_panels, "minimum": rules.min_panels_for_closure}
    if p.completed_panels < rules.min_panels_for_closure:
        return _RuleResult(
            passed=False,
            severity="warning",
            reason=(
                f"Only {p.completed_panels} panels completed, at least "
                f"{rules.min_panels_for_closure} required"
            ),
            details=details,
        )
    return _RuleResult(passed=True, details=details)


def _check_idle_time(rules, progress, pallets, now) -> _RuleResult:
    p = _need(progress)
    if p.last_activity_at is None:
        return _RuleResult(
            passed=False,
            severity="warning",
            reason="No panel activity recorded for this order",
            details={"maximum_hours": rules.max_idle_time_hours},
        )
    # Worded against fixed timestamps so repeated assessments give equal blockers.
    idle_limit = p.last_activity_at + timedelta(hours=rules.max_idle_time_hours)
    details = {
        "last_activity_at": p.last_activity_at.isoformat(),
        "idle_limit_at": idle_limit.isoformat(),
        "maximum_hours": rules.max_idle_time_hours,
    }
    if now > idle_limit:
        return _RuleResult(
            passed=False,
            severity="warning",
            reason=(
                f"No panel activity since {p.last_activity_at.isoformat()}, longer than "
                f"the allowed {rules.max_idle_time_hours}h"
            ),
            details=details,
        )
    return _RuleResult(passed=True, details=details)


def _check_pallet_finalization(rules, progress, pallets, now) -> _RuleResult:
    if not rules.require_pallet_finalization:
        return _RuleResult(passed=True, reason="Pallet finalization not required")
    if pallets is None:
        raise RuleInputUnavailable("pallet summary unavailable")
    details = pallets.model_dump()
    if pallets.unfinalized_pallets > 0:
        return _RuleResult(
            passed=False,
            severity="warning",
            reason=f"{pallets.unfinalized_pallets} pallets not finalized",
            details=details,
        )
    return _RuleResult(passed=True, details=details)


RULE_CHECKS: tuple[tuple[str, Callable[..., _RuleResult]], ...] = (
    ("completion", _check_completion),
    ("failure_rate", _check_failure_rate),
    ("min_panels", _check_min_panels),
    ("idle_time", _check_idle_time),
    ("pallet_finalization", _check_pallet_finalization),
)

_RECOMMENDATIONS: dict[str, tuple[str, str, str]] = {
    "completion": ("action_required", "high", "Complete remaining panels or adjust the completion threshold"),
    "failure_rate": ("quality_review", "high", "Review failure causes and quality processes"),
    "min_panels": ("action_required", "medium", "Complete more panels before closing the order"),
    "idle_time": ("investigate", "medium", "Check why the order has had no recent panel activity"),
    "pallet_finalization": ("action_required", "medium", "Finalize all pallets before closure"),
}


def build_recommendations(
    blockers: list[ClosureBlocker], readiness_percentage: float
) -> list[Recommendation]:
    recommendations = []
    for blocker in blockers:
        if blocker.status == "unknown":
            recommendations.append(Recommendation(
                type="retry",
                priority="high",
                message=f"Re-run the assessment; rule '{blocker.rule}' could not be evaluated",
                details=blocker.reason,
            ))
            continue
        kind, priority, message = _RECOMMENDATIONS[blocker.rule]
        recommendations.append(Recommendation(
            type=kind, priority=priority, message=message, details=blocker.reason,
        ))
    if blockers:
        recommendations.append(Recommendation(
            type="not_ready",
            priority="info",
            message="Manufacturing order requires additional work before closure",
            details=f"{len(blockers)} blockers must be resolved",
        ))
    else:
        recommendations.append(Recommendation(
            type="ready_for_closure",
            priority="info",
            message="Manufacturing order is ready for automatic closure",
            details=f"Readiness score: {readiness_percentage:.1f}%",
        ))
    return recommendations


def evaluate_readiness(
    order_id: uuid.UUID,
    rules: ClosureRuleSet,
    progress: OrderProgress | None,
    pallets: PalletSummary | None,
    now: datetime | None = None,
) -> ReadinessAssessment:
    """Evaluate the rule set. Pure; the same inputs give the same assessment."""
    now = now or datetime.now(timezone.utc)
    blockers: list[ClosureBlocker] = []
    passed: list[str] = []
    passed_weight = 0

    for name, check in RULE_CHECKS:
        try:
            result = check(rules, progress, pallets, now)
        except Exception as exc:  # a broken rule degrades to "unknown"
            logger.warning("Readiness rule %s not evaluated for order %s: %s", name, order_id, exc)
            blockers.append(ClosureBlocker(
                rule=name,
                status="unknown",
                severity="critical",
                reason=f"Rule could not be evaluated: {exc}",
            ))
            continue
        if result.passed:
            passed.append(name)
            passed_weight += RULE_WEIGHTS[name]
        else:
            blockers.append(ClosureBlocker(
                rule=name,
                status="failed",
                severity=result.severity,
                reason=result.reason,
                details=result.details,
            ))

    total_weight = sum(RULE_WEIGHTS.values())
    percentage = round(passed_weight / total_weight * 100, 2)
    return ReadinessAssessment(
        order_id=order_id,
        is_ready=not blockers,
        readiness_percentage=percentage,
        blockers=blockers,
        passed_rules=passed,
        rule_version=rules.version,
        statistics=progress.model_dump(mode="json") if progress is not None else {},
        recommendations=build_recommendations(blockers, percentage),
        assessed_at=now,
    )


# ---------------------------------------------------------------------------
# Assessor (reads inputs, then evaluates)
# ---------------------------------------------------------------------------


class ClosureReadinessAssessor:
    """Reads fresh inputs for one order and evaluates the closure rules."""

    def __init__(self, db: AsyncSession, progress: ProgressAggregator | None = None) -> None:
        self.db = db
        self.progress = progress or ProgressAggregator(db)

    async def assess(
        self,
        order_id: uuid.UUID,
        rules: ClosureRuleSet | None = None,
        now: datetime | None = None,
    ) -> ReadinessAssessment:
        if rules is None:
            rules = await ClosureRuleStore(self.db).get_current()
        progress = await self._read_with_retry(
            "progress", lambda: self.progress.get_progress(order_id, fresh=True)
        )
        pallets = await self._read_with_retry("pallets", lambda: self._pallet_summary(order_id))
        assessment = evaluate_readiness(order_id, rules, progress, pallets, now)
        logger.info(
            "Order %s readiness %.2f%% (ready=%s, blockers=%d, rules v%s)",
            order_id, assessment.readiness_percentage, assessment.is_ready,
            len(assessment.blockers), rules.version,
        )
        return assessment

    async def _read_with_retry(self, label: str, read: Callable[[], Awaitable[T]]) -> T | None:
        """Run a read inside a savepoint, retrying once on a transient error.

        Returns None when both attempts fail so the dependent rules report
        "unknown". The savepoint keeps the caller's transaction and row locks.
        """
        for attempt in (1, 2):
            try:
                async with self.db.begin_nested():
                    return await read()
            except OperationalError as exc:
                logger.warning(
                    "Transient error reading %s (attempt %d): %s", label, attempt, exc
                )
                if attempt == 1:
                    await asyncio.sleep(settings.READ_RETRY_BACKOFF_SECONDS)
        return None

    async def _pallet_summary(self, order_id: uuid.UUID) -> PalletSummary:
        result = await self.db.execute(
            select(Pallet.status, func.count())
            .where(Pallet.order_id == order_id)
            .group_by(Pallet.status)
        )
        counts = {status: count for status, count in result.all()}
        return PalletSummary(
            total_pallets=sum(counts.values()),
            open_pallets=counts.get(PalletStatus.OPEN.value, 0),
            full_pallets=counts.get(PalletStatus.FULL.value, 0),
            closed_pallets=counts.get(PalletStatus.CLOSED.value, 0),
            shipped_pallets=counts.get(PalletStatus.SHIPPED.value, 0),
        )
