"""
Data types shared across CareRoute.

A ``Stop`` is one patient visit in a day's round. Its coordinate is
filled in by the geocoder; a stop without one is shown in the list but
never placed on the map or in the optimised tour.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, NamedTuple, Optional


class Coordinate(NamedTuple):
    lat: float
    lon: float

    @staticmethod
    def is_valid(lat: float, lon: float) -> bool:
        """Return True if ``lat``/``lon`` are inside the WGS84 ranges."""
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


@dataclass(frozen=True)
class GeographicRegion:
    """Axis-aligned bounding box used to sanity check geocoding results."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, coord: Coordinate) -> bool:
        return (
            self.min_lat <= coord.lat <= self.max_lat
            and self.min_lon <= coord.lon <= self.max_lon
        )


@dataclass(frozen=True)
class Stop:
    id: str
    address: str
    coordinate: Optional[Coordinate] = None
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    details: str = ""

    @property
    def is_resolved(self) -> bool:
        return self.coordinate is not None

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.id

    def with_coordinate(self, coordinate: Optional[Coordinate]) -> "Stop":
        return replace(self, coordinate=coordinate)

    def with_address(self, address: str) -> "Stop":
        """Return a copy with a new address and the old coordinate cleared."""
        return replace(self, address=address, coordinate=None)


@dataclass
class DayRoute:
    day_name: str
    stops: List[Stop] = field(default_factory=list)
