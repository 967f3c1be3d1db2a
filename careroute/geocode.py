"""
Geocoding for CareRoute.

Patient addresses come straight from the nurse's spreadsheet and are
noisy: phone numbers, door codes, "chez Mme ..." notes, sometimes a GPS
position typed in by hand. ``AddressResolver`` turns such text into a
coordinate, trying in order:

    1. a coordinate pair embedded in the text,
    2. the persistent cache,
    3. the operator-curated corrections table,
    4. Nominatim (through geopy), with the cleaned address and
       progressively broader locality context appended.

Nominatim results are only accepted if they fall inside the service
region and close enough to its centre. Requests go through a single
``geopy`` rate limiter so the public server never sees more than one
query per ``min_delay_seconds``.

Example usage:

    from careroute.cache import GeoCache
    from careroute.geocode import AddressResolver

    resolver = AddressResolver(cache=GeoCache("data/geo-cache.json"))
    coord = resolver.resolve("12 rue des Pensées, Bourg-Murat 0692123456")

``resolve`` returns ``None`` when no plausible location is found.
"""

from __future__ import annotations

import enum
import logging
import math
import re
import unicodedata
from typing import Callable, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Union

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from .cache import GeoCache
from .config import ResolverSettings, load_corrections
from .models import Coordinate, Stop
from .routing import haversine_distance

logger = logging.getLogger(__name__)

EMBEDDED_COORD_RE = re.compile(r"([-+]?\d+[.,]\d+)\s*[;,/]\s*([-+]?\d+[.,]\d+)")
PHONE_RE = re.compile(r"\d{10}")
NOISE_WORDS_RE = re.compile(
    r"\b(batiment|bat|residence|res|appt|appartement|etage|chez|digicode|code|porte)\b.*$",
    re.IGNORECASE,
)
HONORIFICS_RE = re.compile(r"\b(mr|mme|mlle)\b.*$", re.IGNORECASE)
NUMBER_SUFFIX_RE = re.compile(r"\b(bis|ter|quater)\b", re.IGNORECASE)
POSTAL_CODE_RE = re.compile(r"\b\d{5}\b")
HOUSE_NUMBER_RE = re.compile(r"^(\d+)[\s,]+(.+)$")

MIN_QUERY_LENGTH = 3


class Candidate(NamedTuple):
    lat: float
    lon: float
    display_name: str = ""


class ResolutionPolicy(enum.Enum):
    """How Nominatim candidates from successive queries are combined.

    ``FIRST_PLAUSIBLE`` stops at the first query that returns a candidate
    inside the loose radius. ``NEAREST_OVERALL`` keeps the candidate
    closest to the service-area centre across all queries and then
    applies the tight/loose acceptance radii.
    """

    FIRST_PLAUSIBLE = "first-plausible"
    NEAREST_OVERALL = "nearest-overall"


def normalise_address(address: str) -> str:
    """Lowercase and collapse whitespace."""
    return " ".join(address.lower().split())


def extract_embedded_coordinate(text: str) -> Optional[Coordinate]:
    """Return a ``lat;lon`` style pair written inside ``text``, if any.

    Both ``.`` and ``,`` are accepted as decimal separator and ``;``,
    ``,`` or ``/`` between the two numbers, e.g. ``"GPS: -21,212 ; 55,552"``.
    Values outside the latitude/longitude ranges are ignored.
    """
    match = EMBEDDED_COORD_RE.search(text)
    if not match:
        return None
    try:
        lat = float(match.group(1).replace(",", "."))
        lon = float(match.group(2).replace(",", "."))
    except ValueError:
        return None
    if math.isnan(lat) or math.isnan(lon) or not Coordinate.is_valid(lat, lon):
        return None
    return Coordinate(lat, lon)


def _accent_insensitive(text: str) -> str:
    parts = []
    for ch in text:
        base = unicodedata.normalize("NFKD", ch)[0]
        parts.append(f"[{re.escape(ch)}{re.escape(base)}]" if base != ch else re.escape(ch))
    return "".join(parts)


def clean_address(
    address: str,
    strip_noise_words: bool = True,
    strip_postal_codes: bool = False,
    region_name: Optional[str] = None,
) -> str:
    """Strip the parts of a spreadsheet address that confuse Nominatim.

    Args:
        address: Raw address text.
        strip_noise_words: Drop building/apartment words and honorifics
            together with everything after them.
        strip_postal_codes: Drop ``bis``/``ter``/``quater`` and 5-digit
            postal codes.
        region_name: Region name to remove so it is not repeated when the
            query context is appended.

    Returns:
        The cleaned address, possibly empty.
    """
    text = address.split("(")[0]
    text = re.sub(r"[\r\n]+", " ", text)
    text = PHONE_RE.sub("", text)
    if strip_noise_words:
        text = NOISE_WORDS_RE.sub("", text)
        text = HONORIFICS_RE.sub("", text)
    if strip_postal_codes:
        text = NUMBER_SUFFIX_RE.sub("", text)
        text = POSTAL_CODE_RE.sub("", text)
    if region_name:
        text = re.sub(_accent_insensitive(region_name), "", text, flags=re.IGNORECASE)
    text = " ".join(text.split())
    return text.strip(" ,;-")


def street_only(address: str) -> str:
    """Drop a leading house number: ``"12 rue de la Paix"`` -> ``"rue de la Paix"``."""
    match = HOUSE_NUMBER_RE.match(address)
    return match.group(2) if match else address


def build_strategies(
    cleaned: str,
    localities: Sequence[str],
    region_name: str,
    include_street_only: bool = False,
) -> List[str]:
    """Build the query strings for ``cleaned``, most specific first.

    Each locality is tried in turn, then the region name alone. With
    ``include_street_only`` the same localities are also tried without
    the house number, before falling back to the region.
    """
    if len(cleaned) < MIN_QUERY_LENGTH:
        return []
    queries = [f"{cleaned}, {locality}, {region_name}" for locality in localities]
    if include_street_only:
        street = street_only(cleaned)
        if street != cleaned:
            queries.extend(f"{street}, {locality}, {region_name}" for locality in localities)
    queries.append(f"{cleaned}, {region_name}")
    # keep first occurrence
    return list(dict.fromkeys(queries))


class NominatimProvider:
    """Candidate search against OpenStreetMap's Nominatim via geopy."""

    def __init__(self, user_agent: str, domain: str = "nominatim.openstreetmap.org", timeout: float = 10):
        # Nominatim's usage policy requires an identifying user agent.
        self._geocoder = Nominatim(user_agent=user_agent, domain=domain, timeout=timeout)

    def search(self, query: str, limit: int = 5) -> List[Candidate]:
        locations = self._geocoder.geocode(query, exactly_one=False, limit=limit)
        if not locations:
            return []
        return [Candidate(loc.latitude, loc.longitude, loc.address) for loc in locations]


class AddressResolver:
    """Resolve free-text addresses to coordinates.

    Args:
        provider: Object with ``search(query, limit) -> list[Candidate]``.
            Defaults to :class:`NominatimProvider`.
        cache: Resolution cache; an in-memory one is created if omitted.
        corrections: Corrections table as a mapping or JSON path. ``None``
            loads the table bundled with the package.
        settings: Service-area and rate-limit settings.
        default_policy: Policy used when ``resolve`` is not given one.
    """

    def __init__(
        self,
        provider=None,
        cache: Optional[GeoCache] = None,
        corrections: Union[None, str, Mapping[str, object]] = None,
        settings: Optional[ResolverSettings] = None,
        default_policy: ResolutionPolicy = ResolutionPolicy.NEAREST_OVERALL,
    ):
        self.settings = settings or ResolverSettings()
        self.provider = provider if provider is not None else NominatimProvider(user_agent=self.settings.user_agent)
        self.cache = cache if cache is not None else GeoCache()
        self.corrections = load_corrections(corrections)
        self.default_policy = ResolutionPolicy(default_policy)
        # Every provider call goes through this limiter, whatever the call site.
        self._search = RateLimiter(
            self.provider.search,
            min_delay_seconds=self.settings.min_delay_seconds,
            max_retries=0,
            swallow_exceptions=False,
        )

    def resolve(
        self,
        address: str,
        policy: Union[None, str, ResolutionPolicy] = None,
    ) -> Optional[Coordinate]:
        """Return the coordinate for ``address`` or ``None`` if not found."""
        if not address or not address.strip():
            return None
        coord = extract_embedded_coordinate(address)
        if coord is not None:
            logger.debug("Using coordinates written in address %r", address)
            return coord
        cached = self.cache.get(address)
        if cached is not None:
            return cached
        coord = self.lookup_correction(address)
        if coord is not None:
            logger.info("Using corrected coordinates for %r", address)
            return coord

        policy = ResolutionPolicy(policy) if policy is not None else self.default_policy
        if policy is ResolutionPolicy.FIRST_PLAUSIBLE:
            coord = self._resolve_first_plausible(address)
        else:
            coord = self._resolve_nearest_overall(address)
        if coord is None:
            logger.warning("No plausible location found for %r", address)
            return None
        self.cache.set(address, coord)
        return coord

    def resolve_stops(
        self,
        stops: Iterable[Stop],
        policy: Union[None, str, ResolutionPolicy] = None,
        progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[Stop]:
        """Resolve each stop in order and return updated copies.

        Stops that already carry a coordinate are kept as they are.
        ``progress(done, total)`` is called after every stop.
        """
        stops = list(stops)
        resolved = []
        for done, stop in enumerate(stops, start=1):
            if not stop.is_resolved:
                stop = stop.with_coordinate(self.resolve(stop.address, policy))
            resolved.append(stop)
            if progress is not None:
                progress(done, len(stops))
        return resolved

    def lookup_correction(self, address: str) -> Optional[Coordinate]:
        normalised = normalise_address(address)
        for fragment, coord in self.corrections.items():
            if fragment in normalised:
                return coord
        return None

    def distance_to_center(self, candidate: Candidate) -> Optional[float]:
        """Distance in km from the service-area centre, or ``None`` if out of bounds."""
        coord = Coordinate(candidate.lat, candidate.lon)
        region = self.settings.region
        if region is not None and not region.contains(coord):
            logger.debug("Rejecting %s: outside service region", candidate.display_name or coord)
            return None
        return haversine_distance(self.settings.center, coord)

    def _query(self, query: str) -> List[Candidate]:
        try:
            return list(self._search(query, self.settings.result_limit) or [])
        except GeopyError as exc:
            logger.error("Geocoding request failed for %r: %s", query, exc)
            return []

    def _resolve_first_plausible(self, address: str) -> Optional[Coordinate]:
        s = self.settings
        cleaned = clean_address(address, strip_noise_words=True, region_name=s.region_name)
        for query in build_strategies(cleaned, s.localities, s.region_name):
            for candidate in self._query(query):
                dist = self.distance_to_center(candidate)
                if dist is None:
                    continue
                if dist > s.loose_radius_km:
                    logger.warning("Result for %r is too far (%.1f km), rejecting", query, dist)
                    continue
                return Coordinate(candidate.lat, candidate.lon)
        return None

    def _resolve_nearest_overall(self, address: str) -> Optional[Coordinate]:
        s = self.settings
        cleaned = clean_address(
            address, strip_noise_words=False, strip_postal_codes=True, region_name=s.region_name
        )
        best: Optional[Coordinate] = None
        best_dist = math.inf
        for query in build_strategies(cleaned, s.localities, s.region_name, include_street_only=True):
            if best is not None and best_dist < s.good_enough_km:
                break
            for candidate in self._query(query):
                dist = self.distance_to_center(candidate)
                if dist is not None and dist < best_dist:
                    best, best_dist = Coordinate(candidate.lat, candidate.lon), dist
        if best is None:
            return None
        if best_dist <= s.tight_radius_km:
            return best
        if best_dist <= s.loose_radius_km:
            logger.warning("Address %r found %.1f km from the service area centre", address, best_dist)
            return best
        logger.warning("Closest result for %r is %.1f km away, rejecting", address, best_dist)
        return None
