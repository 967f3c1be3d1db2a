"""
Spreadsheet loading for CareRoute.

The nurse keeps one sheet per day ("Lundi - Tableau 1", "Mardi - ...").
Each row is a patient visit in the order they are normally seen.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Union

import pandas as pd

from .models import DayRoute, Stop

logger = logging.getLogger(__name__)

COLUMN_LAST_NAME = "Nom de famille anonimisé"
COLUMN_FIRST_NAME = "Prénom"
COLUMN_ADDRESS = "Adresse"
COLUMN_PHONE = "Numero Tel"
DETAIL_COLUMNS = ("Transmission", "Ce que je fait")


def day_name_from_sheet(sheet_name: str) -> str:
    """``"Lundi - Tableau 1"`` -> ``"Lundi"``."""
    return sheet_name.split("-")[0].strip()


def _cell(row: Mapping, column: str) -> str:
    value = row.get(column)
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def stops_from_frame(day_name: str, frame: pd.DataFrame) -> List[Stop]:
    """Map spreadsheet rows to stops, skipping rows without an address."""
    stops = []
    for index, row in enumerate(frame.to_dict("records")):
        address = _cell(row, COLUMN_ADDRESS)
        if not address:
            continue
        details = " ".join(_cell(row, col) for col in DETAIL_COLUMNS).strip()
        stops.append(
            Stop(
                id=f"{day_name}-{index}",
                address=address,
                first_name=_cell(row, COLUMN_FIRST_NAME),
                last_name=_cell(row, COLUMN_LAST_NAME),
                phone=_cell(row, COLUMN_PHONE),
                details=details,
            )
        )
    return stops


def load_day_routes_from_frames(frames: Mapping[str, pd.DataFrame]) -> List[DayRoute]:
    """Build day routes from ``{sheet name: DataFrame}`` in sheet order."""
    return [
        DayRoute(day_name=day_name_from_sheet(name), stops=stops_from_frame(day_name_from_sheet(name), frame))
        for name, frame in frames.items()
    ]


def load_day_routes(path: Union[str, Path]) -> List[DayRoute]:
    """Read every sheet of the workbook at ``path``.

    Returns an empty list if the file is missing or cannot be parsed.
    """
    path = Path(path)
    if not path.exists():
        logger.error("Spreadsheet not found at %s", path)
        return []
    try:
        # Phone numbers must stay text, otherwise leading zeros are lost.
        frames = pd.read_excel(path, sheet_name=None, dtype=str)
    except (OSError, ValueError, ImportError) as exc:
        logger.error("Error parsing spreadsheet %s: %s", path, exc)
        return []
    routes = load_day_routes_from_frames(frames)
    logger.info("Loaded %d rounds, %d patients from %s", len(routes), sum(len(r.stops) for r in routes), path)
    return routes
