"""
Routing utilities for CareRoute.

This module holds the great-circle distance used by both the geocoder's
plausibility filter and the route optimiser, and wraps the public OSRM
(Open Source Routing Machine) route service to obtain a driving path
for drawing on the map.

Example usage:

    points = [(-21.2313, 55.5360), (-21.2296, 55.5535)]
    path = fetch_driving_route(points)

The polyline is for display only. If OSRM is unavailable an empty list
is returned and the map falls back to straight legs between stops.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence, Tuple

import requests

EARTH_RADIUS_KM = 6371.0
OSRM_BASE_URL = "https://router.project-osrm.org"

logger = logging.getLogger(__name__)


def haversine_distance(coord1: Tuple[float, float], coord2: Tuple[float, float]) -> float:
    """Compute the great‑circle distance between two coordinates in kilometers."""
    lat1, lon1 = coord1
    lat2, lon2 = coord2
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def route_length_km(coords: Sequence[Tuple[float, float]]) -> float:
    """Sum of straight-line legs along ``coords`` in kilometers."""
    return sum(haversine_distance(coords[i], coords[i + 1]) for i in range(len(coords) - 1))


def fetch_driving_route(
    points: Sequence[Tuple[float, float]],
    base_url: str = OSRM_BASE_URL,
    timeout: float = 30.0,
) -> List[Tuple[float, float]]:
    """Ask OSRM for a driving path through ``points`` in the given order.

    Args:
        points: Ordered list of (lat, lon) tuples. At least two are needed.
        base_url: OSRM server root.
        timeout: Request timeout in seconds.

    Returns:
        The full-resolution path as a list of (lat, lon) tuples, or an
        empty list if fewer than two points were given or the request
        failed.
    """
    if len(points) < 2:
        return []
    # OSRM expects lon,lat order and semicolon separated list
    locs = ";".join(f"{lon},{lat}" for lat, lon in points)
    url = f"{base_url.rstrip('/')}/route/v1/driving/{locs}"
    try:
        resp = requests.get(url, params={"overview": "full", "geometries": "geojson"}, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("OSRM route request failed: %s", exc)
        return []
    routes = data.get("routes") or []
    if not routes:
        logger.warning("OSRM returned no route (code=%s)", data.get("code"))
        return []
    # GeoJSON coordinates are [lon, lat]
    try:
        return [(float(lat), float(lon)) for lon, lat in routes[0]["geometry"]["coordinates"]]
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Unexpected OSRM geometry: %s", exc)
        return []
