"""
Streamlit application for CareRoute.

This script defines the user interface for the nurse's weekly rounds.
It loads the patient spreadsheet, geocodes each address (one request at
a time, results cached on disk), lets the nurse switch between the
spreadsheet order and a nearest-neighbour optimised order, correct
addresses that could not be found, and shows the round on an
interactive map with the driving route.

To run this app locally, install the package and execute:

    streamlit run careroute/app.py

Paths and the Nominatim user agent can be set in
``.streamlit/secrets.toml`` (``SPREADSHEET_PATH``, ``CACHE_PATH``,
``CORRECTIONS_PATH``, ``NOMINATIM_USER_AGENT``, ``GEOCODE_MIN_DELAY``).
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Tuple
from urllib.parse import quote

import streamlit as st
from streamlit.errors import StreamlitAPIException
from streamlit_folium import folium_static

from careroute.cache import GeoCache
from careroute.config import (
    DEFAULT_CACHE_PATH,
    DEFAULT_SPREADSHEET_PATH,
    ResolverSettings,
    configure_logging,
)
from careroute.geocode import AddressResolver, ResolutionPolicy
from careroute.models import DayRoute, Stop
from careroute.optimisation import optimize_route
from careroute.routing import fetch_driving_route, route_length_km
from careroute.spreadsheet import load_day_routes
from careroute.visualisation import create_route_map

logger = logging.getLogger(__name__)

MODE_STRICT = "Ordre strict"
MODE_OPTIMISED = "Optimisé"
HOME = "Accueil"


def get_secret(key: str, default=None):
    """Read a value from Streamlit secrets, falling back to ``default``."""
    try:
        return st.secrets.get(key, default)
    except (FileNotFoundError, StreamlitAPIException):
        return default


@st.cache_resource
def get_resolver() -> AddressResolver:
    """One resolver, cache and rate limiter shared by all sessions."""
    settings = ResolverSettings()
    settings = replace(
        settings,
        user_agent=get_secret("NOMINATIM_USER_AGENT", settings.user_agent),
        min_delay_seconds=float(get_secret("GEOCODE_MIN_DELAY", settings.min_delay_seconds)),
    )
    cache = GeoCache(get_secret("CACHE_PATH", str(DEFAULT_CACHE_PATH)))
    return AddressResolver(
        cache=cache,
        corrections=get_secret("CORRECTIONS_PATH"),
        settings=settings,
    )


@st.cache_data
def get_day_routes(path: str) -> List[DayRoute]:
    return load_day_routes(path)


@st.cache_data(show_spinner=False)
def get_driving_route(points: Tuple[Tuple[float, float], ...]) -> List[Tuple[float, float]]:
    return fetch_driving_route(points)


def maps_directions_url(address: str) -> str:
    return f"https://www.google.com/maps/dir/?api=1&destination={quote(address)}"


def geocode_day(day: DayRoute) -> List[Stop]:
    """Return the day's stops with coordinates, geocoding once per session."""
    key = f"stops::{day.day_name}"
    if key not in st.session_state:
        st.session_state[key] = list(day.stops)
    stops = st.session_state[key]
    done_key = f"geocoded::{day.day_name}"
    if not st.session_state.get(done_key) and any(not s.is_resolved for s in stops):
        bar = st.progress(0, text="Géocodage en cours...")

        def report(done: int, total: int) -> None:
            pct = round(done / total * 100)
            bar.progress(pct, text=f"Géocodage en cours... {pct}%")

        stops = get_resolver().resolve_stops(stops, progress=report)
        bar.empty()
        st.session_state[key] = stops
    st.session_state[done_key] = True
    return stops


def correct_address(day: DayRoute, stop: Stop, new_address: str) -> Optional[Stop]:
    """Re-geocode ``stop`` with a corrected address and store the result."""
    coord = get_resolver().resolve(new_address, policy=ResolutionPolicy.FIRST_PLAUSIBLE)
    updated = stop.with_address(new_address).with_coordinate(coord)
    key = f"stops::{day.day_name}"
    st.session_state[key] = [updated if s.id == stop.id else s for s in st.session_state[key]]
    return updated if coord is not None else None


def render_overview(routes: List[DayRoute]) -> None:
    st.title("Bonjour, Docteur")
    st.write("Voici votre planning de la semaine.")
    col_patients, col_rounds = st.columns(2)
    col_patients.metric("Patients", sum(len(r.stops) for r in routes))
    col_rounds.metric("Tournées", len(routes))
    st.subheader("Vos tournées")
    for route in routes:
        st.markdown(f"**{route.day_name}** : {len(route.stops)} visites")


def render_stop(day: DayRoute, number: int, stop: Stop, selected: bool) -> None:
    title = f"{number}. {stop.display_name}"
    st.markdown(f"### :green[{title}]" if selected else f"#### {title}")
    st.caption(stop.address)
    if stop.details:
        st.info(stop.details)
    links = [f"[GPS]({maps_directions_url(stop.address)})"]
    if stop.phone:
        links.insert(0, f"[Appeler](tel:{stop.phone.replace(' ', '')})")
    st.markdown(" · ".join(links))
    if not stop.is_resolved:
        with st.form(f"fix_{stop.id}"):
            st.warning("Adresse introuvable.")
            new_address = st.text_input(
                "Nouvelle adresse :", value=stop.address, placeholder="Ex: 8 rue de la Gare, Le Tampon"
            )
            if st.form_submit_button("Corriger l'adresse") and new_address.strip():
                if correct_address(day, stop, new_address.strip()) is None:
                    logger.info("Corrected address for %s still not found", stop.id)
                    st.error("Impossible de trouver cette nouvelle adresse (même avec la correction).")
                else:
                    st.rerun()
    st.divider()


def render_day(day: DayRoute) -> None:
    st.title(day.day_name)
    stops = geocode_day(day)
    mode = st.radio("Ordre de visite", [MODE_STRICT, MODE_OPTIMISED], horizontal=True)
    displayed = optimize_route(stops) if mode == MODE_OPTIMISED else stops
    st.caption(f"{len(displayed)} patients à visiter")

    labels = {s.id: f"{n}. {s.display_name}" for n, s in enumerate(displayed, start=1)}
    selected_id = st.selectbox(
        "Patient sélectionné", [None] + list(labels), format_func=lambda i: "(aucun)" if i is None else labels[i]
    )

    col_list, col_map = st.columns([2, 3])
    with col_list:
        for number, stop in enumerate(displayed, start=1):
            render_stop(day, number, stop, stop.id == selected_id)
    with col_map:
        points = tuple(tuple(s.coordinate) for s in displayed if s.is_resolved)
        path = get_driving_route(points) if len(points) > 1 else []
        folium_static(create_route_map(displayed, path, selected_id), width=700, height=600)
        if len(points) > 1:
            st.caption(f"Distance à vol d'oiseau : {route_length_km(points):.1f} km")
        missing = sum(1 for s in displayed if not s.is_resolved)
        if missing:
            st.warning(f"{missing} adresse(s) non localisée(s), exclue(s) de l'itinéraire.")


def main():
    configure_logging()
    st.set_page_config(page_title="CareRoute", layout="wide")
    routes = get_day_routes(get_secret("SPREADSHEET_PATH", str(DEFAULT_SPREADSHEET_PATH)))
    if not routes:
        st.error("Aucune tournée trouvée. Vérifiez le fichier des patients.")
        st.stop()
    choice = st.sidebar.radio("Tournée", [HOME] + [r.day_name for r in routes])
    if choice == HOME:
        render_overview(routes)
    else:
        render_day(next(r for r in routes if r.day_name == choice))


if __name__ == "__main__":
    main()
