import unittest
from unittest import mock

from geopy.exc import (
    GeocoderAuthenticationFailure,
    GeocoderParseError,
    GeocoderQueryError,
    GeocoderQuotaExceeded,
    GeocoderRateLimited,
    GeocoderServiceError,
    GeocoderUnavailable,
)
from geopy.location import Location

from tripspot.errors import ConfigurationError, MalformedResponse, ServiceUnavailable
from tripspot.geocode import AMap, GeocodeStats, geocode_places
from tripspot.models import Place, Settings

SETTINGS = Settings(amap_key="amap-key")


def _fake_geolocator(known):
    """Geolocator whose ``geocode`` answers from ``{address: (lat, lon)}``."""
    geolocator = mock.Mock()

    def geocode(address, city=None):
        if address not in known:
            return None
        return Location(address, known[address], {})

    geolocator.geocode.side_effect = geocode
    return geolocator


def _geocode(items, geolocator, **kwargs):
    return geocode_places(items, SETTINGS, geolocator=geolocator, min_delay_seconds=0, error_wait_seconds=0, **kwargs)


class TestGeocodePlaces(unittest.TestCase):
    def test_unmatched_items_are_dropped(self):
        matched = Place(id="m1", name="武侯祠", city="成都", category="spot", note="去武侯祠")
        unmatched = Place(id="u1", name="不存在的地方", city="成都")
        geolocator = _fake_geolocator({"成都武侯祠": (30.6460, 104.0480)})
        stats = GeocodeStats()

        result = _geocode([matched, unmatched], geolocator, stats=stats)

        self.assertEqual(len(result), 1)
        located = result[0]
        self.assertEqual(located.id, "m1")
        self.assertEqual((located.name, located.city, located.category, located.note),
                         ("武侯祠", "成都", "spot", "去武侯祠"))
        self.assertEqual(located.coords, (30.6460, 104.0480))
        self.assertEqual((stats.requested, stats.matched, stats.dropped), (2, 1, 1))

    def test_queries_city_plus_name_with_city_hint(self):
        geolocator = _fake_geolocator({})
        _geocode([Place(id="a", name="锦里", city="成都")], geolocator)
        geolocator.geocode.assert_called_once_with("成都锦里", city="成都")

    def test_keeps_source_order(self):
        items = [Place(id=str(i), name=f"p{i}", city="c") for i in range(4)]
        geolocator = _fake_geolocator({f"cp{i}": (30.0 + i, 104.0) for i in range(4)})
        self.assertEqual([p.id for p in _geocode(items, geolocator)], ["0", "1", "2", "3"])

    def test_missing_key_is_configuration_error(self):
        geolocator = _fake_geolocator({})
        with self.assertRaises(ConfigurationError):
            geocode_places([Place(id="a", name="x")], Settings(), geolocator=geolocator)
        geolocator.geocode.assert_not_called()

    def test_transport_failure_fails_batch(self):
        geolocator = mock.Mock()
        geolocator.geocode.side_effect = GeocoderUnavailable("down")
        with self.assertRaises(ServiceUnavailable):
            _geocode([Place(id="a", name="x", city="c")], geolocator)
        # retried once before giving up
        self.assertEqual(geolocator.geocode.call_count, 2)

    def test_transient_failure_is_retried(self):
        geolocator = mock.Mock()
        geolocator.geocode.side_effect = [GeocoderUnavailable("blip"), Location("x", (1.0, 2.0), {})]
        result = _geocode([Place(id="a", name="x", city="c")], geolocator)
        self.assertEqual(result[0].coords, (1.0, 2.0))

    def test_unparseable_response_is_malformed(self):
        geolocator = mock.Mock()
        geolocator.geocode.side_effect = GeocoderParseError("garbage")
        with self.assertRaises(MalformedResponse):
            _geocode([Place(id="a", name="x", city="c")], geolocator)

    def test_rate_limited_call_is_retried(self):
        geolocator = mock.Mock()
        geolocator.geocode.side_effect = [GeocoderRateLimited("slow down"), Location("x", (1.0, 2.0), {})]
        result = _geocode([Place(id="a", name="x", city="c")], geolocator)
        self.assertEqual(result[0].coords, (1.0, 2.0))
        self.assertEqual(geolocator.geocode.call_count, 2)

    def test_permanent_errors_are_not_retried(self):
        for error, expected in (
            (GeocoderAuthenticationFailure("bad key"), ServiceUnavailable),
            (GeocoderQueryError("bad address"), ServiceUnavailable),
            (GeocoderParseError("garbage"), MalformedResponse),
        ):
            geolocator = mock.Mock()
            geolocator.geocode.side_effect = error
            with self.assertRaises(expected):
                _geocode([Place(id="a", name="x", city="c")], geolocator)
            self.assertEqual(geolocator.geocode.call_count, 1)


class TestAMapParsing(unittest.TestCase):
    def setUp(self):
        self.geocoder = AMap("amap-key")

    def test_parses_first_match(self):
        page = {
            "status": "1",
            "count": "2",
            "geocodes": [
                {"formatted_address": "四川省成都市武侯区武侯祠", "location": "104.047926,30.646226"},
                {"formatted_address": "other", "location": "1.0,2.0"},
            ],
        }
        location = self.geocoder._parse_json(page)
        self.assertAlmostEqual(location.latitude, 30.646226)
        self.assertAlmostEqual(location.longitude, 104.047926)
        self.assertEqual(location.address, "四川省成都市武侯区武侯祠")
        self.assertEqual(len(self.geocoder._parse_json(page, exactly_one=False)), 2)

    def test_no_match_is_none(self):
        self.assertIsNone(self.geocoder._parse_json({"status": "1", "count": "0", "geocodes": []}))
        self.assertIsNone(self.geocoder._parse_json({"status": "1", "geocodes": [{"location": []}]}))

    def test_error_statuses(self):
        cases = {
            "10001": GeocoderAuthenticationFailure,
            "10003": GeocoderQuotaExceeded,
            "30001": GeocoderServiceError,
        }
        for code, exc_class in cases.items():
            with self.assertRaises(exc_class):
                self.geocoder._parse_json({"status": "0", "info": "ERR", "infocode": code})

    def test_invalid_location_is_parse_error(self):
        with self.assertRaises(GeocoderParseError):
            self.geocoder._parse_json({"status": "1", "geocodes": [{"location": "nonsense"}]})
        for value in ("104.0,95.0", "nan,30.6", "200.0,30.6"):
            with self.assertRaises(GeocoderParseError):
                self.geocoder._parse_json({"status": "1", "geocodes": [{"location": value}]})

    def test_geocode_builds_signed_url(self):
        geocoder = AMap("amap-key", security_code="secret")
        with mock.patch.object(geocoder, "_call_geocoder", return_value=None) as call:
            geocoder.geocode("成都锦里", city="成都")
        url = call.call_args.args[0]
        self.assertIn("key=amap-key", url)
        self.assertIn("sig=", url)
        self.assertIn("city=", url)


if __name__ == "__main__":
    unittest.main()
