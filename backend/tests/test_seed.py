"""Tests for station seed data."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from solar_tracker.db.seed import STATION_IDS, _create_stations, seed_if_empty


class TestSeedStations:
    def test_creates_four_stations_per_line(self):
        stations = _create_stations()
        assert len(stations) == 8
        for line in ("LINE_1", "LINE_2"):
            numbers = [s.station_number for s in stations if s.line == line]
            assert numbers == [1, 2, 3, 4]

    def test_station_order_and_names(self):
        line_1 = [s for s in _create_stations() if s.line == "LINE_1"]
        assert [s.station_type for s in line_1] == [
            "ASSEMBLY_EL",
            "FRAMING",
            "JUNCTION_BOX",
            "PERFORMANCE_FINAL",
        ]
        assert line_1[0].name == "Assembly & EL (Line 1)"

    def test_ids_are_deterministic(self):
        ids = {s.id for s in _create_stations()}
        assert ids == set(STATION_IDS.values())

    def test_all_stations_active(self):
        assert all(s.is_active for s in _create_stations())


class TestSeedIfEmpty:
    @pytest.mark.asyncio
    async def test_skips_when_populated(self, mock_db):
        result = MagicMock()
        result.scalar.return_value = 8
        mock_db.execute = AsyncMock(return_value=result)
        mock_db.add_all = MagicMock()

        assert await seed_if_empty(mock_db) is None
        mock_db.add_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_seeds_empty_table(self, mock_db):
        result = MagicMock()
        result.scalar.return_value = 0
        mock_db.execute = AsyncMock(return_value=result)
        mock_db.add_all = MagicMock()

        assert await seed_if_empty(mock_db) == {"stations": 8}
        mock_db.add_all.assert_called_once()
        mock_db.flush.assert_awaited_once()
