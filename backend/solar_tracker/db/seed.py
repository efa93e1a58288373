"""Seed the fixed station reference data.

Each production line has four stations in the same order:
1. Assembly & EL
2. Framing
3. Junction Box
4. Performance & Final
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from solar_tracker.models.enums import ProductionLine, StationType
from solar_tracker.models.station import Station

STATION_LAYOUT: tuple[tuple[int, StationType, str], ...] = (
    (1, StationType.ASSEMBLY_EL, "Assembly & EL"),
    (2, StationType.FRAMING, "Framing"),
    (3, StationType.JUNCTION_BOX, "Junction Box"),
    (4, StationType.PERFORMANCE_FINAL, "Performance & Final"),
)

# Fixed UUIDs for deterministic seeding
STATION_IDS = {
    (ProductionLine.LINE_1, 1): uuid.UUID("e0000000-0000-0000-0000-000000000011"),
    (ProductionLine.LINE_1, 2): uuid.UUID("e0000000-0000-0000-0000-000000000012"),
    (ProductionLine.LINE_1, 3): uuid.UUID("e0000000-0000-0000-0000-000000000013"),
    (ProductionLine.LINE_1, 4): uuid.UUID("e0000000-0000-0000-0000-000000000014"),
    (ProductionLine.LINE_2, 1): uuid.UUID("e0000000-0000-0000-0000-000000000021"),
    (ProductionLine.LINE_2, 2): uuid.UUID("e0000000-0000-0000-0000-000000000022"),
    (ProductionLine.LINE_2, 3): uuid.UUID("e0000000-0000-0000-0000-000000000023"),
    (ProductionLine.LINE_2, 4): uuid.UUID("e0000000-0000-0000-0000-000000000024"),
}


def _create_stations() -> list[Station]:
    """Create 8 stations, 4 per production line."""
    stations = []
    for line in ProductionLine:
        line_no = line.value.rsplit("_", 1)[-1]
        for number, station_type, name in STATION_LAYOUT:
            stations.append(
                Station(
                    id=STATION_IDS[(line, number)],
                    line=line.value,
                    station_number=number,
                    station_type=station_type.value,
                    name=f"{name} (Line {line_no})",
                    is_active=True,
                )
            )
    return stations


async def seed_stations(session: AsyncSession) -> dict[str, int]:
    stations = _create_stations()
    session.add_all(stations)
    await session.flush()
    return {"stations": len(stations)}


async def seed_if_empty(session: AsyncSession) -> dict[str, int] | None:
    """Seed stations only if the table is empty.

    Returns:
        Seed counts if data was seeded, None if stations already exist.
    """
    result = await session.execute(select(func.count()).select_from(Station))
    count = result.scalar() or 0

    if count > 0:
        return None

    return await seed_stations(session)
