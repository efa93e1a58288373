"""Tests for the versioned closure rule store."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from solar_tracker.core.errors import ValidationError
from solar_tracker.schemas.closure import ClosureRulesUpdate
from solar_tracker.services.closure_rules import ClosureRuleStore, default_rule_set


def _rule_row(**overrides):
    row = MagicMock()
    values = {
        "version": 3,
        "min_completion_percentage": 90.0,
        "max_failure_rate": 10.0,
        "min_panels_for_closure": 5,
        "max_idle_time_hours": 12.0,
        "require_pallet_finalization": False,
        **overrides,
    }
    for key, value in values.items():
        setattr(row, key, value)
    return row


class TestDefaultRules:
    def test_defaults_from_settings(self):
        rules = default_rule_set()
        assert rules.version == 0
        assert rules.min_completion_percentage == 95
        assert rules.max_failure_rate == 15
        assert rules.min_panels_for_closure == 1
        assert rules.max_idle_time_hours == 24
        assert rules.require_pallet_finalization is True


class TestClosureRuleStore:
    @pytest.mark.asyncio
    async def test_no_rows_returns_defaults(self, mock_db):
        store = ClosureRuleStore(mock_db)
        with patch.object(store, "_latest_version", AsyncMock(return_value=None)):
            rules = await store.get_current()
        assert rules == default_rule_set()

    @pytest.mark.asyncio
    async def test_latest_row_is_live(self, mock_db):
        store = ClosureRuleStore(mock_db)
        with patch.object(store, "_latest_version", AsyncMock(return_value=_rule_row())):
            rules = await store.get_current()
        assert rules.version == 3
        assert rules.min_panels_for_closure == 5

    @pytest.mark.asyncio
    async def test_update_writes_new_version(self, mock_db):
        store = ClosureRuleStore(mock_db)

        async def assign_version():
            mock_db.add.call_args.args[0].version = 4

        mock_db.flush = AsyncMock(side_effect=assign_version)
        with patch.object(store, "_latest_version", AsyncMock(return_value=_rule_row())):
            rules = await store.update(
                ClosureRulesUpdate(max_failure_rate=5.0, updated_by="qa-lead")
            )

        row = mock_db.add.call_args.args[0]
        assert row.updated_by == "qa-lead"
        assert rules.version == 4
        assert rules.max_failure_rate == 5.0
        # untouched fields carry over from version 3
        assert rules.min_completion_percentage == 90.0
        assert rules.require_pallet_finalization is False

    @pytest.mark.asyncio
    async def test_invalid_merge_rejected(self, mock_db):
        store = ClosureRuleStore(mock_db)
        # Bypass request validation to hit the merged-rule check.
        changes = ClosureRulesUpdate.model_construct(max_failure_rate=150.0, updated_by=None)
        with patch.object(store, "_latest_version", AsyncMock(return_value=None)):
            with pytest.raises(ValidationError):
                await store.update(changes)
        mock_db.add.assert_not_called()

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(PydanticValidationError):
            ClosureRulesUpdate(min_completion=80)
