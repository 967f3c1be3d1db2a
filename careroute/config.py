"""
Configuration defaults for CareRoute.

The defaults describe the nurse's service area around Plaine des Cafres
on La Réunion. The Streamlit app overrides individual values from
``st.secrets``; library users construct ``ResolverSettings`` directly.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from .models import Coordinate, GeographicRegion

PACKAGE_DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_CORRECTIONS_PATH = PACKAGE_DATA_DIR / "corrections.json"
DEFAULT_SPREADSHEET_PATH = Path("data") / "patients.xls"
DEFAULT_CACHE_PATH = Path("data") / "geo-cache.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# La Réunion (approximate)
REUNION_BOUNDS = GeographicRegion(min_lat=-21.4, max_lat=-20.8, min_lon=55.1, max_lon=55.9)
# Plaine des Cafres / Bourg Murat
SERVICE_AREA_CENTER = Coordinate(-21.22, 55.56)


@dataclass(frozen=True)
class ResolverSettings:
    """Tunables for :class:`careroute.geocode.AddressResolver`.

    Attributes:
        center: Reference point for the distance check.
        region: Optional bounding box; candidates outside it are dropped.
        localities: Locality names appended to queries, most specific first.
        region_name: Broad region name, appended to every query.
        tight_radius_km: Normal acceptance radius around ``center``.
        loose_radius_km: Last-resort acceptance radius.
        good_enough_km: Stop querying once a candidate is this close.
        min_delay_seconds: Minimum interval between provider calls.
        result_limit: Number of candidates requested per query.
        user_agent: Client identification sent to the geocoding service.
    """

    center: Coordinate = SERVICE_AREA_CENTER
    region: Optional[GeographicRegion] = REUNION_BOUNDS
    localities: Tuple[str, ...] = ("Plaine des Cafres", "Le Tampon")
    region_name: str = "La Réunion"
    tight_radius_km: float = 20.0
    loose_radius_km: float = 30.0
    good_enough_km: float = 5.0
    min_delay_seconds: float = 1.0
    result_limit: int = 5
    user_agent: str = "CareRoute/1.0"


def load_corrections(
    source: Union[None, str, Path, Mapping[str, object]] = None,
) -> Dict[str, Coordinate]:
    """Load the operator-curated address corrections table.

    ``source`` may be a path to a JSON object mapping an address fragment
    to ``{"lat": .., "lng": ..}`` (or ``[lat, lon]``), an already loaded
    mapping of the same shape, or ``None`` for the bundled table. Keys are
    normalised the same way the resolver normalises addresses.

    Raises:
        ValueError: if an entry is not a valid coordinate.
    """
    if source is None:
        source = DEFAULT_CORRECTIONS_PATH
    if isinstance(source, (str, Path)):
        with open(source, encoding="utf-8") as fh:
            raw = json.load(fh)
    else:
        raw = source
    table: Dict[str, Coordinate] = {}
    for key, value in raw.items():
        try:
            if isinstance(value, Mapping):
                lat, lon = value.get("lat"), value.get("lng", value.get("lon"))
            else:
                lat, lon = value
            coord = Coordinate(float(lat), float(lon))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid correction for {key!r}: {value!r}") from None
        if not Coordinate.is_valid(*coord):
            raise ValueError(f"Correction for {key!r} is out of range: {value!r}")
        table[" ".join(key.lower().split())] = coord
    return table


def configure_logging(level: int = logging.INFO) -> None:
    """Configure root logging once for the app entry point."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
