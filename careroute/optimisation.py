"""
Route optimisation heuristics for CareRoute.

A day's round is reordered with the nearest neighbour heuristic: start
at the first patient that has coordinates and repeatedly drive to the
closest patient not yet visited. This is a greedy construction, not an
optimal tour. Patients whose address could not be geocoded are kept at
the end of the round in their original order.
"""

from __future__ import annotations

from typing import List, Sequence

from .models import Stop
from .routing import haversine_distance


def nearest_neighbor(dist_matrix: Sequence[Sequence[float]], start: int = 0) -> List[int]:
    """Construct a route using the nearest neighbor heuristic.

    Ties are broken by the lowest index, so the result only depends on
    the matrix.

    Args:
        dist_matrix: A square matrix of distances or travel times.
        start: Index of the start location in the matrix.

    Returns:
        A list of indices representing the visiting order, starting
        with ``start`` and including all other indices exactly once.
    """
    n = len(dist_matrix)
    if n == 0:
        return []
    unvisited = [i for i in range(n) if i != start]
    route = [start]
    current = start
    while unvisited:
        # min() keeps the first of equal keys
        next_city = min(unvisited, key=lambda j: dist_matrix[current][j])
        route.append(next_city)
        unvisited.remove(next_city)
        current = next_city
    return route


def distance_matrix(stops: Sequence[Stop]) -> List[List[float]]:
    """Haversine distance matrix (km) between resolved stops."""
    coords = [stop.coordinate for stop in stops]
    n = len(coords)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            matrix[i][j] = matrix[j][i] = haversine_distance(coords[i], coords[j])
    return matrix


def optimize_route(stops: Sequence[Stop]) -> List[Stop]:
    """Reorder a round of stops by nearest neighbour.

    The first stop with a coordinate is the fixed start. Stops without a
    coordinate follow the tour in their input order. With fewer than two
    resolved stops the input order is returned as is. The input sequence
    is never modified; a new list is returned.
    """
    resolved = [stop for stop in stops if stop.is_resolved]
    unresolved = [stop for stop in stops if not stop.is_resolved]
    if len(resolved) < 2:
        return list(stops)
    order = nearest_neighbor(distance_matrix(resolved), start=0)
    return [resolved[i] for i in order] + unresolved
