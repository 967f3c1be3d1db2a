"""
CareRoute package initialization.

This package provides the core functionality for the CareRoute round
planner used by a home-care nurse. Components include spreadsheet
loading, geocoding, route optimisation, driving routes and map
visualisation.

Modules:
    models        – Stop, Coordinate and region types.
    spreadsheet   – Loads one round per sheet from the patient workbook.
    geocode       – Address resolution using Nominatim with cleanup,
                    corrections, plausibility checks and rate limiting.
    cache         – Persistent address → coordinate cache.
    routing       – Haversine distance and OSRM driving routes.
    optimisation  – Nearest neighbour reordering of a round.
    visualisation – Folium based map creation utilities.
    config        – Service area defaults and logging setup.
"""

__all__ = [
    "models",
    "spreadsheet",
    "geocode",
    "cache",
    "routing",
    "optimisation",
    "visualisation",
    "config",
]
