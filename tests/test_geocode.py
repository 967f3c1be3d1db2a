import time
import unittest

from geopy.exc import GeocoderUnavailable

from careroute.cache import GeoCache
from careroute.config import ResolverSettings
from careroute.geocode import (
    AddressResolver,
    Candidate,
    ResolutionPolicy,
    build_strategies,
    clean_address,
    extract_embedded_coordinate,
    street_only,
)
from careroute.models import Coordinate, Stop

KM_PER_DEGREE = 6371.0 * 3.141592653589793 / 180.0
CENTER = Coordinate(-21.22, 55.56)


def north_of_center(km: float) -> Candidate:
    return Candidate(CENTER.lat + km / KM_PER_DEGREE, CENTER.lon, f"{km} km north")


class FakeProvider:
    """Returns the scripted candidate lists in call order, then nothing."""

    def __init__(self, *script, default=None):
        self.script = list(script)
        self.default = default
        self.calls = []

    def search(self, query, limit=5):
        self.calls.append(query)
        if self.script:
            result = self.script.pop(0)
        else:
            result = self.default or []
        if isinstance(result, Exception):
            raise result
        return list(result)


def make_resolver(provider, region=None, cache=None, corrections=None, **kwargs):
    settings = ResolverSettings(center=CENTER, region=region, min_delay_seconds=0)
    return AddressResolver(
        provider=provider,
        cache=cache if cache is not None else GeoCache(),
        corrections=corrections if corrections is not None else {},
        settings=settings,
        **kwargs,
    )


class TestEmbeddedCoordinate(unittest.TestCase):
    def test_formats(self):
        cases = {
            "Coordonnée GPS: -21,212 ; 55,552": (-21.212, 55.552),
            "chemin du volcan -21.2313504;55.5360075": (-21.2313504, 55.5360075),
            "GPS -21.23, 55.53 portail vert": (-21.23, 55.53),
            "-21,2296 / 55,5535": (-21.2296, 55.5535),
        }
        for text, expected in cases.items():
            coord = extract_embedded_coordinate(text)
            self.assertIsNotNone(coord, text)
            self.assertAlmostEqual(coord.lat, expected[0])
            self.assertAlmostEqual(coord.lon, expected[1])

    def test_no_pair(self):
        self.assertIsNone(extract_embedded_coordinate("12 rue des Lilas, 97418 Le Tampon"))
        self.assertIsNone(extract_embedded_coordinate("appel au 0692123456"))

    def test_out_of_range_pair_is_ignored(self):
        self.assertIsNone(extract_embedded_coordinate("lot 123.45 ; 200.5"))

    def test_resolver_skips_provider(self):
        provider = FakeProvider(default=[north_of_center(1)])
        resolver = make_resolver(provider)
        coord = resolver.resolve("Coordonnée GPS: -21,212 ; 55,552")
        self.assertEqual(coord, Coordinate(-21.212, 55.552))
        self.assertEqual(provider.calls, [])

    def test_embedded_wins_over_cache(self):
        cache = GeoCache()
        address = "GPS -21.23, 55.53"
        cache.set(address, Coordinate(-21.0, 55.0))
        resolver = make_resolver(FakeProvider(), cache=cache)
        self.assertEqual(resolver.resolve(address), Coordinate(-21.23, 55.53))


class TestCleanup(unittest.TestCase):
    def test_parenthesis_newline_and_phone(self):
        self.assertEqual(
            clean_address("12 rue des Lilas\n0692123456 (portail noir)"),
            "12 rue des Lilas",
        )

    def test_noise_words_and_honorifics(self):
        self.assertEqual(clean_address("5 chemin Piton Batiment B appt 12"), "5 chemin Piton")
        self.assertEqual(clean_address("8 rue Hoarau Mme Payet"), "8 rue Hoarau")
        self.assertEqual(
            clean_address("8 rue Hoarau Mme Payet", strip_noise_words=False),
            "8 rue Hoarau Mme Payet",
        )

    def test_postal_codes_and_number_suffixes(self):
        self.assertEqual(
            clean_address("12 bis rue Roland Garros 97430 Le Tampon", strip_noise_words=False, strip_postal_codes=True),
            "12 rue Roland Garros Le Tampon",
        )

    def test_region_name_removed(self):
        self.assertEqual(clean_address("3 rue A, La Reunion", region_name="La Réunion"), "3 rue A")
        self.assertEqual(clean_address("3 rue A, la réunion", region_name="La Réunion"), "3 rue A")

    def test_street_only(self):
        self.assertEqual(street_only("12 rue de la Paix"), "rue de la Paix")
        self.assertEqual(street_only("12, rue de la Paix"), "rue de la Paix")
        self.assertEqual(street_only("rue de la Paix"), "rue de la Paix")


class TestStrategies(unittest.TestCase):
    def test_most_specific_first(self):
        queries = build_strategies("12 rue des Lilas", ("Plaine des Cafres", "Le Tampon"), "La Réunion")
        self.assertEqual(
            queries,
            [
                "12 rue des Lilas, Plaine des Cafres, La Réunion",
                "12 rue des Lilas, Le Tampon, La Réunion",
                "12 rue des Lilas, La Réunion",
            ],
        )

    def test_street_only_variants(self):
        queries = build_strategies(
            "12 rue des Lilas", ("Plaine des Cafres", "Le Tampon"), "La Réunion", include_street_only=True
        )
        self.assertEqual(
            queries,
            [
                "12 rue des Lilas, Plaine des Cafres, La Réunion",
                "12 rue des Lilas, Le Tampon, La Réunion",
                "rue des Lilas, Plaine des Cafres, La Réunion",
                "rue des Lilas, Le Tampon, La Réunion",
                "12 rue des Lilas, La Réunion",
            ],
        )

    def test_too_short(self):
        self.assertEqual(build_strategies("ab", ("Le Tampon",), "La Réunion"), [])


class TestNearestOverall(unittest.TestCase):
    def test_picks_closest_across_strategies(self):
        provider = FakeProvider([north_of_center(12)], [north_of_center(45)], [north_of_center(3)])
        coord = make_resolver(provider).resolve("12 rue des Lilas")
        self.assertAlmostEqual(coord.lat, north_of_center(3).lat)

    def test_stops_querying_when_close_enough(self):
        provider = FakeProvider([north_of_center(2)], default=[north_of_center(1)])
        make_resolver(provider).resolve("12 rue des Lilas")
        self.assertEqual(len(provider.calls), 1)

    def test_far_candidate_rejected(self):
        provider = FakeProvider(default=[north_of_center(45)])
        cache = GeoCache()
        resolver = make_resolver(provider, cache=cache)
        self.assertIsNone(resolver.resolve("12 rue des Lilas"))
        self.assertEqual(len(provider.calls), 5)
        self.assertNotIn("12 rue des Lilas", cache)

    def test_loose_radius_accepts_as_last_resort(self):
        provider = FakeProvider(default=[north_of_center(25)])
        coord = make_resolver(provider).resolve("12 rue des Lilas")
        self.assertAlmostEqual(coord.lat, north_of_center(25).lat)

    def test_region_filter(self):
        # 25 km south of the centre is inside the loose radius but off the island's box
        south = Candidate(CENTER.lat - 25 / KM_PER_DEGREE, CENTER.lon)
        region = ResolverSettings().region
        self.assertIsNone(make_resolver(FakeProvider(default=[south]), region=region).resolve("12 rue des Lilas"))
        self.assertIsNotNone(make_resolver(FakeProvider(default=[south])).resolve("12 rue des Lilas"))

    def test_provider_error_moves_to_next_strategy(self):
        provider = FakeProvider(GeocoderUnavailable("down"), [north_of_center(3)])
        coord = make_resolver(provider).resolve("12 rue des Lilas")
        self.assertAlmostEqual(coord.lat, north_of_center(3).lat)
        self.assertEqual(len(provider.calls), 2)

    def test_no_candidates_is_not_an_error(self):
        provider = FakeProvider()
        self.assertIsNone(make_resolver(provider).resolve("12 rue des Lilas"))
        self.assertIsNone(make_resolver(provider).resolve("   "))


class TestFirstPlausible(unittest.TestCase):
    def test_accepts_first_plausible_strategy(self):
        provider = FakeProvider([], [north_of_center(12)], [north_of_center(3)])
        resolver = make_resolver(provider, default_policy=ResolutionPolicy.FIRST_PLAUSIBLE)
        coord = resolver.resolve("12 rue des Lilas")
        self.assertAlmostEqual(coord.lat, north_of_center(12).lat)
        self.assertEqual(len(provider.calls), 2)

    def test_skips_candidates_beyond_loose_radius(self):
        provider = FakeProvider([north_of_center(45)], [north_of_center(28)])
        coord = make_resolver(provider).resolve("12 rue des Lilas", policy="first-plausible")
        self.assertAlmostEqual(coord.lat, north_of_center(28).lat)

    def test_uses_noise_word_cleanup(self):
        provider = FakeProvider()
        make_resolver(provider).resolve("8 rue Hoarau chez Mme Payet", policy=ResolutionPolicy.FIRST_PLAUSIBLE)
        self.assertEqual(provider.calls[0], "8 rue Hoarau, Plaine des Cafres, La Réunion")


class TestCacheAndCorrections(unittest.TestCase):
    def test_second_resolution_uses_cache(self):
        provider = FakeProvider(default=[north_of_center(2)])
        cache = GeoCache()
        resolver = make_resolver(provider, cache=cache)
        first = resolver.resolve("12 rue des Lilas")
        calls = len(provider.calls)
        second = resolver.resolve("12 rue des Lilas")
        self.assertEqual(first, second)
        self.assertEqual(len(provider.calls), calls)
        self.assertEqual(cache.get("12 rue des Lilas"), first)

    def test_cache_key_is_exact_text(self):
        provider = FakeProvider(default=[north_of_center(2)])
        resolver = make_resolver(provider)
        resolver.resolve("12 rue des Lilas")
        calls = len(provider.calls)
        resolver.resolve("12 Rue des Lilas")
        self.assertGreater(len(provider.calls), calls)

    def test_correction_substring_match(self):
        provider = FakeProvider(default=[north_of_center(2)])
        resolver = make_resolver(
            provider, corrections={"35 Impasse  Bardeur": {"lat": -21.2313504, "lng": 55.5360075}}
        )
        coord = resolver.resolve("35   impasse BARDEUR, Le Tampon 0692000000")
        self.assertEqual(coord, Coordinate(-21.2313504, 55.5360075))
        self.assertEqual(provider.calls, [])

    def test_cache_wins_over_correction(self):
        cache = GeoCache()
        cache.set("35 impasse bardeur", Coordinate(-21.0, 55.5))
        resolver = make_resolver(FakeProvider(), cache=cache, corrections={"35 impasse bardeur": [-21.23, 55.53]})
        self.assertEqual(resolver.resolve("35 impasse bardeur"), Coordinate(-21.0, 55.5))

    def test_bundled_corrections_loaded_by_default(self):
        resolver = AddressResolver(provider=FakeProvider(), settings=ResolverSettings(min_delay_seconds=0))
        self.assertIn("35 impasse bardeur", resolver.corrections)


class TestResolveStops(unittest.TestCase):
    def test_sequential_with_progress(self):
        known = Stop("Lundi-0", "somewhere", Coordinate(-21.2, 55.5))
        embedded = Stop("Lundi-1", "GPS -21,23 ; 55,53")
        missing = Stop("Lundi-2", "rue inconnue")
        stops = [known, embedded, missing]
        progress = []
        resolver = make_resolver(FakeProvider())
        result = resolver.resolve_stops(stops, progress=lambda done, total: progress.append((done, total)))
        self.assertEqual(progress, [(1, 3), (2, 3), (3, 3)])
        self.assertIs(result[0], known)
        self.assertEqual(result[1].coordinate, Coordinate(-21.23, 55.53))
        self.assertIsNone(result[2].coordinate)
        self.assertIsNone(stops[1].coordinate)


class TestRateLimit(unittest.TestCase):
    def test_calls_are_spaced_by_min_delay(self):
        class TimedProvider(FakeProvider):
            def search(self, query, limit=5):
                self.times.append(time.perf_counter())
                return super().search(query, limit)

        provider = TimedProvider()
        provider.times = []
        settings = ResolverSettings(center=CENTER, region=None, min_delay_seconds=0.2)
        resolver = AddressResolver(provider=provider, corrections={}, settings=settings)
        self.assertIsNone(resolver.resolve("12 rue des Lilas"))
        self.assertEqual(len(provider.times), 5)
        gaps = [b - a for a, b in zip(provider.times, provider.times[1:])]
        for gap in gaps:
            self.assertGreaterEqual(gap, 0.2 - 0.01)

    def test_resolver_owns_the_limiter(self):
        settings = ResolverSettings(min_delay_seconds=1.5)
        resolver = AddressResolver(provider=FakeProvider(), corrections={}, settings=settings)
        self.assertEqual(resolver._search.min_delay_seconds, 1.5)


if __name__ == "__main__":
    unittest.main()
