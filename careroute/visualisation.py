"""
Map visualisation utilities for CareRoute.

This module provides a helper function to build an interactive map of a
day's round using the Folium library. It renders a numbered marker for
each patient with known coordinates and draws the driving route (or
straight legs when no route is available) as a polyline. The map can be
embedded in the Streamlit app via ``streamlit_folium``.
"""

from __future__ import annotations

from html import escape
from typing import Optional, Sequence, Tuple

import folium

from .config import SERVICE_AREA_CENTER
from .models import Stop

MARKER_COLOR = "#94a3b8"
SELECTED_COLOR = "#10b981"
ROUTE_COLOR = "#10b981"


def _marker_icon(number: int, selected: bool) -> folium.DivIcon:
    color = SELECTED_COLOR if selected else MARKER_COLOR
    size = 30 if selected else 24
    return folium.DivIcon(
        icon_size=(size, size),
        icon_anchor=(size // 2, size // 2),
        html=(
            f"<div style='font-size: 12px; font-weight: bold; color: white; background-color: {color}; "
            f"border: 2px solid white; border-radius: 50%; width: {size}px; height: {size}px; "
            f"text-align: center; line-height: {size - 4}px;'>{number}</div>"
        ),
    )


def _popup_html(number: int, stop: Stop) -> str:
    lines = [f"<b>{number}. {escape(stop.display_name)}</b>", escape(stop.address)]
    if stop.phone:
        lines.append(f"Tél : {escape(stop.phone)}")
    return "<br>".join(lines)


def create_route_map(
    stops: Sequence[Stop],
    route_path: Optional[Sequence[Tuple[float, float]]] = None,
    selected_id: Optional[str] = None,
) -> folium.Map:
    """Create a Folium map with numbered markers and the route polyline.

    Args:
        stops: The round in display order. Numbers follow this order; stops
            without coordinates keep their number but get no marker.
        route_path: Driving path as (lat, lon) points. If empty, the
            resolved stops are joined by straight lines.
        selected_id: Id of the stop to highlight.

    Returns:
        A Folium Map object ready for display.
    """
    resolved = [(n, stop) for n, stop in enumerate(stops, start=1) if stop.is_resolved]
    if not resolved:
        return folium.Map(location=list(SERVICE_AREA_CENTER), zoom_start=12, tiles="OpenStreetMap")
    avg_lat = sum(stop.coordinate.lat for _, stop in resolved) / len(resolved)
    avg_lon = sum(stop.coordinate.lon for _, stop in resolved) / len(resolved)
    m = folium.Map(location=[avg_lat, avg_lon], zoom_start=13, tiles="OpenStreetMap")

    line = [list(p) for p in route_path] if route_path else [list(stop.coordinate) for _, stop in resolved]
    if len(line) > 1:
        folium.PolyLine(line, color=ROUTE_COLOR, weight=5, opacity=0.7).add_to(m)

    for number, stop in resolved:
        selected = stop.id == selected_id
        folium.Marker(
            location=list(stop.coordinate),
            popup=folium.Popup(_popup_html(number, stop), max_width=300),
            tooltip=f"{number}. {stop.display_name}",
            icon=_marker_icon(number, selected),
            z_index_offset=1000 if selected else 0,
        ).add_to(m)
    return m
