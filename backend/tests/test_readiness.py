"""Tests for closure readiness rules and the assessor."""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from solar_tracker.schemas.closure import ClosureRuleSet
from solar_tracker.schemas.progress import OrderProgress, PalletSummary
from solar_tracker.services import readiness
from solar_tracker.services.readiness import (
    RULE_WEIGHTS,
    ClosureReadinessAssessor,
    evaluate_readiness,
)

NOW = datetime(2026, 5, 4, 12, 0, tzinfo=timezone.utc)
ORDER_ID = uuid.UUID("11111111-2222-3333-4444-555555555555")
RULES = ClosureRuleSet()


def _progress(completed=10, quantity=10, failed=0, total=None, last_activity=NOW - timedelta(hours=1)):
    total = completed + failed if total is None else total
    return OrderProgress(
        order_id=ORDER_ID,
        order_number="MO-2026-0001",
        order_status="IN_PROGRESS",
        target_quantity=quantity,
        total_panels=total,
        completed_panels=completed,
        failed_panels=failed,
        panels_remaining=max(0, quantity - completed),
        completion_percentage=round(completed / quantity * 100, 2),
        failure_rate=round(failed / total * 100, 2) if total else 0.0,
        last_activity_at=last_activity,
        computed_at=NOW,
    )


def _pallets(open_=0, full=0, closed=2):
    return PalletSummary(total_pallets=open_ + full + closed, open_pallets=open_, full_pallets=full, closed_pallets=closed)


def _blocker(assessment, rule):
    return next(b for b in assessment.blockers if b.rule == rule)


def _savepoint_db(mock_db):
    savepoint = MagicMock()
    savepoint.__aenter__ = AsyncMock(return_value=None)
    savepoint.__aexit__ = AsyncMock(return_value=False)
    mock_db.begin_nested = MagicMock(return_value=savepoint)
    return mock_db


class TestEvaluateReadiness:
    def test_complete_order_is_ready(self):
        assessment = evaluate_readiness(ORDER_ID, RULES, _progress(), _pallets(), now=NOW)
        assert assessment.is_ready
        assert assessment.readiness_percentage == 100.0
        assert assessment.blockers == []
        assert assessment.passed_rules == list(RULE_WEIGHTS)
        assert assessment.recommendations[-1].type == "ready_for_closure"

    def test_incomplete_order_blocked(self):
        assessment = evaluate_readiness(ORDER_ID, RULES, _progress(completed=7), _pallets(), now=NOW)
        assert not assessment.is_ready
        blocker = _blocker(assessment, "completion")
        assert blocker.status == "failed"
        assert blocker.severity == "critical"
        assert "3 panels remaining" in blocker.reason
        assert assessment.readiness_percentage == 62.5
        assert assessment.recommendations[-1].type == "not_ready"

    def test_percentage_stays_in_bounds(self):
        assessment = evaluate_readiness(
            ORDER_ID, RULES, _progress(completed=0, failed=5, last_activity=None), _pallets(open_=1), now=NOW
        )
        assert 0 <= assessment.readiness_percentage <= 100
        assert assessment.readiness_percentage == 0.0
        assert assessment.passed_rules == []

    def test_high_failure_rate_blocks(self):
        assessment = evaluate_readiness(
            ORDER_ID, RULES, _progress(completed=10, failed=2), _pallets(), now=NOW
        )
        blocker = _blocker(assessment, "failure_rate")
        assert blocker.details["failure_rate"] == pytest.approx(16.67)
        assert [b.rule for b in assessment.blockers] == ["failure_rate"]

    def test_idle_order_blocked(self):
        progress = _progress(last_activity=NOW - timedelta(hours=30))
        assessment = evaluate_readiness(ORDER_ID, RULES, progress, _pallets(), now=NOW)
        assert [b.rule for b in assessment.blockers] == ["idle_time"]
        blocker = _blocker(assessment, "idle_time")
        assert blocker.details["idle_limit_at"] == (NOW - timedelta(hours=6)).isoformat()
        assert "longer than the allowed 24.0h" in blocker.reason

    def test_no_activity_blocks(self):
        assessment = evaluate_readiness(ORDER_ID, RULES, _progress(last_activity=None), _pallets(), now=NOW)
        assert "No panel activity" in _blocker(assessment, "idle_time").reason

    def test_open_pallets_block(self):
        assessment = evaluate_readiness(ORDER_ID, RULES, _progress(), _pallets(open_=1, full=1), now=NOW)
        blocker = _blocker(assessment, "pallet_finalization")
        assert blocker.reason == "2 pallets not finalized"

    def test_pallets_ignored_when_not_required(self):
        rules = ClosureRuleSet(require_pallet_finalization=False)
        assessment = evaluate_readiness(ORDER_ID, rules, _progress(), None, now=NOW)
        assert assessment.is_ready

    def test_missing_inputs_become_unknown(self):
        assessment = evaluate_readiness(ORDER_ID, RULES, None, None, now=NOW)
        assert not assessment.is_ready
        assert {b.status for b in assessment.blockers} == {"unknown"}
        assert len(assessment.blockers) == len(RULE_WEIGHTS)
        assert assessment.statistics == {}
        assert {r.type for r in assessment.recommendations[:-1]} == {"retry"}

    def test_raising_rule_becomes_unknown(self):
        def broken(rules, progress, pallets, now):
            raise ZeroDivisionError("bad input")

        checks = (("completion", broken),) + readiness.RULE_CHECKS[1:]
        with patch.object(readiness, "RULE_CHECKS", checks):
            assessment = evaluate_readiness(ORDER_ID, RULES, _progress(), _pallets(), now=NOW)
        blocker = _blocker(assessment, "completion")
        assert blocker.status == "unknown"
        assert "bad input" in blocker.reason
        assert assessment.readiness_percentage == 62.5

    def test_rule_version_and_thresholds_respected(self):
        rules = ClosureRuleSet(version=4, min_completion_percentage=70)
        assessment = evaluate_readiness(ORDER_ID, rules, _progress(completed=7), _pallets(), now=NOW)
        assert assessment.is_ready
        assert assessment.rule_version == 4

    def test_assessment_is_idempotent(self):
        args = (ORDER_ID, RULES, _progress(completed=8), _pallets(open_=1))
        assert evaluate_readiness(*args, now=NOW) == evaluate_readiness(*args, now=NOW)

    def test_idle_blocker_stable_across_calls(self):
        args = (ORDER_ID, RULES, _progress(last_activity=NOW - timedelta(hours=30)), _pallets())
        first = evaluate_readiness(*args, now=NOW)
        later = evaluate_readiness(*args, now=NOW + timedelta(minutes=6))
        assert [b.rule for b in first.blockers] == ["idle_time"]
        assert first.blockers == later.blockers
        assert first.readiness_percentage == later.readiness_percentage


class TestClosureReadinessAssessor:
    @pytest.mark.asyncio
    async def test_reads_fresh_progress_and_pallets(self, mock_db):
        _savepoint_db(mock_db)
        progress = MagicMock(get_progress=AsyncMock(return_value=_progress()))
        assessor = ClosureReadinessAssessor(mock_db, progress=progress)
        with patch.object(assessor, "_pallet_summary", AsyncMock(return_value=_pallets())):
            assessment = await assessor.assess(ORDER_ID, rules=RULES, now=NOW)
        assert assessment.is_ready
        progress.get_progress.assert_awaited_once_with(ORDER_ID, fresh=True)
        assert mock_db.begin_nested.call_count == 2

    @pytest.mark.asyncio
    async def test_transient_error_retried_once(self, mock_db):
        _savepoint_db(mock_db)
        transient = OperationalError("SELECT", {}, Exception("connection reset"))
        progress = MagicMock(get_progress=AsyncMock(side_effect=[transient, _progress()]))
        assessor = ClosureReadinessAssessor(mock_db, progress=progress)
        with (
            patch.object(readiness.settings, "READ_RETRY_BACKOFF_SECONDS", 0),
            patch.object(assessor, "_pallet_summary", AsyncMock(return_value=_pallets())),
        ):
            assessment = await assessor.assess(ORDER_ID, rules=RULES, now=NOW)
        assert assessment.is_ready
        assert progress.get_progress.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_error_gives_unknown_blockers(self, mock_db):
        _savepoint_db(mock_db)
        transient = OperationalError("SELECT", {}, Exception("connection reset"))
        progress = MagicMock(get_progress=AsyncMock(side_effect=transient))
        assessor = ClosureReadinessAssessor(mock_db, progress=progress)
        with (
            patch.object(readiness.settings, "READ_RETRY_BACKOFF_SECONDS", 0),
            patch.object(assessor, "_pallet_summary", AsyncMock(return_value=_pallets())),
        ):
            assessment = await assessor.assess(ORDER_ID, rules=RULES, now=NOW)
        assert not assessment.is_ready
        assert _blocker(assessment, "completion").status == "unknown"
        assert "pallet_finalization" in assessment.passed_rules
        assert progress.get_progress.await_count == 2

    @pytest.mark.asyncio
    async def test_pallet_summary_groups_by_status(self, mock_db):
        result = MagicMock()
        result.all.return_value = [("OPEN", 1), ("CLOSED", 3), ("SHIPPED", 2)]
        mock_db.execute = AsyncMock(return_value=result)
        summary = await ClosureReadinessAssessor(mock_db, progress=MagicMock())._pallet_summary(ORDER_ID)
        assert summary.total_pallets == 6
        assert summary.open_pallets == 1
        assert summary.unfinalized_pallets == 1
