"""Panel barcode parsing and validation.

Canonical format: ``CRS YY F B PP #####`` written without spaces.

    CRS     company prefix (fixed)
    YY      two-digit manufacturing year
    F       frame colour: W = silver, B = black
    B       backsheet: T = transparent, W = white, B = black
    PP      panel type (cell count): 36, 40, 60, 72 or 144
    #####   five-digit sequence number

Panel types 36/40/60/72 are built on LINE_1, 144 on LINE_2.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from solar_tracker.core.errors import ValidationError
from solar_tracker.models.enums import BacksheetType, FrameType, ProductionLine

COMPANY_PREFIX = "CRS"
VALID_PANEL_TYPES = ("36", "40", "60", "72", "144")
MIN_YEAR = 20
FUTURE_YEAR_TOLERANCE = 5

FRAME_CODES: dict[str, FrameType] = {"W": FrameType.SILVER, "B": FrameType.BLACK}
BACKSHEET_CODES: dict[str, BacksheetType] = {
    "T": BacksheetType.TRANSPARENT,
    "W": BacksheetType.WHITE,
    "B": BacksheetType.BLACK,
}
LINE_ASSIGNMENTS: dict[ProductionLine, tuple[str, ...]] = {
    ProductionLine.LINE_1: ("36", "40", "60", "72"),
    ProductionLine.LINE_2: ("144",),
}

BARCODE_RE = re.compile(
    r"^CRS(?P<year>[0-9]{2})(?P<frame>[WB])(?P<backsheet>[TWB])"
    r"(?P<panel_type>36|40|60|72|144)(?P<sequence>[0-9]{5})$"
)


@dataclass(frozen=True)
class ParsedBarcode:
    """Decoded components of a valid barcode."""

    barcode: str
    year: int
    frame_type: FrameType
    backsheet_type: BacksheetType
    panel_type: str
    sequence: int
    line: ProductionLine


def normalize_barcode(raw: str) -> str:
    return raw.strip().upper()


def _current_two_digit_year(now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    return now.year % 100


def _diagnose(barcode: str) -> tuple[str, str]:
    """Name the first component that breaks the grammar."""
    if not barcode.startswith(COMPANY_PREFIX):
        return "company_prefix", f"Invalid company prefix, expected '{COMPANY_PREFIX}'"
    rest = barcode[len(COMPANY_PREFIX):]
    if len(rest) < 2 or not rest[:2].isdigit():
        return "year", "Year must be two digits"
    if len(rest) < 3 or rest[2] not in FRAME_CODES:
        return "frame_type", f"Invalid frame code, valid codes: {', '.join(FRAME_CODES)}"
    if len(rest) < 4 or rest[3] not in BACKSHEET_CODES:
        return "backsheet_type", f"Invalid backsheet code, valid codes: {', '.join(BACKSHEET_CODES)}"
    tail = rest[4:]
    panel_type = next(
        (pt for pt in sorted(VALID_PANEL_TYPES, key=len, reverse=True) if tail.startswith(pt)),
        None,
    )
    if panel_type is None:
        return "panel_type", f"Invalid panel type, valid types: {', '.join(VALID_PANEL_TYPES)}"
    return "sequence", "Sequence number must be exactly 5 digits"


def parse_barcode(raw: str, now: datetime | None = None) -> ParsedBarcode:
    """Parse and validate a scanned barcode.

    Raises ValidationError naming the failing component.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Barcode is required", {"component": "input"})

    barcode = normalize_barcode(raw)
    match = BARCODE_RE.match(barcode)
    if match is None:
        component, message = _diagnose(barcode)
        raise ValidationError(
            f"Invalid barcode '{barcode}': {message}",
            {"component": component, "barcode": barcode},
        )

    year = int(match.group("year"))
    max_year = min(99, _current_two_digit_year(now) + FUTURE_YEAR_TOLERANCE)
    if year < MIN_YEAR or year > max_year:
        raise ValidationError(
            f"Invalid barcode '{barcode}': year {year:02d} must be between {MIN_YEAR} and {max_year}",
            {"component": "year", "barcode": barcode},
        )

    panel_type = match.group("panel_type")
    return ParsedBarcode(
        barcode=barcode,
        year=year,
        frame_type=FRAME_CODES[match.group("frame")],
        backsheet_type=BACKSHEET_CODES[match.group("backsheet")],
        panel_type=panel_type,
        sequence=int(match.group("sequence")),
        line=determine_line(panel_type),
    )


def is_valid_barcode(raw: str, now: datetime | None = None) -> bool:
    try:
        parse_barcode(raw, now=now)
    except ValidationError:
        return False
    return True


def determine_line(panel_type: str) -> ProductionLine:
    """Return the production line that builds the given panel type."""
    for line, panel_types in LINE_ASSIGNMENTS.items():
        if panel_type in panel_types:
            return line
    raise ValidationError(
        f"No production line builds panel type '{panel_type}'",
        {"component": "panel_type"},
    )


def generate_barcode(
    panel_type: str = "36",
    sequence: int = 1,
    year: int | None = None,
    frame: str = "W",
    backsheet: str = "T",
) -> str:
    """Build a valid barcode, used for seeding and tests."""
    if panel_type not in VALID_PANEL_TYPES:
        raise ValidationError(f"Invalid panel type '{panel_type}'", {"component": "panel_type"})
    if frame not in FRAME_CODES:
        raise ValidationError(f"Invalid frame code '{frame}'", {"component": "frame_type"})
    if backsheet not in BACKSHEET_CODES:
        raise ValidationError(f"Invalid backsheet code '{backsheet}'", {"component": "backsheet_type"})
    if not 0 <= sequence <= 99999:
        raise ValidationError(f"Sequence {sequence} out of range", {"component": "sequence"})
    if year is None:
        year = _current_two_digit_year()
    return f"{COMPANY_PREFIX}{year:02d}{frame}{backsheet}{panel_type}{sequence:05d}"


def barcode_format_info() -> dict:
    return {
        "format": "CRSYYFBPP#####",
        "pattern": BARCODE_RE.pattern,
        "components": {
            "CRS": "Company prefix (fixed)",
            "YY": "Year (2 digits)",
            "F": "Frame: W=silver, B=black",
            "B": "Backsheet: T=transparent, W=white, B=black",
            "PP": "Panel type (36/40/60/72/144)",
            "#####": "Sequence number (5 digits)",
        },
        "valid_panel_types": list(VALID_PANEL_TYPES),
        "line_assignments": {line.value: list(types) for line, types in LINE_ASSIGNMENTS.items()},
        "examples": ["CRS24WT3600001", "CRS24BB14400001"],
    }
