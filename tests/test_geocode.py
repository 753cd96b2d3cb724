from unittest.mock import MagicMock

import pytest
import requests

from incidentwatch import db
from incidentwatch.errors import AuthorizationError, ConfigError, ProviderError
from incidentwatch.geocode import (
    OpenCageGeocoder,
    build_query,
    clamp_limit,
    enrich_missing_coordinates,
    run_geocoding,
)


class FakeClock:
    def __init__(self):
        self.t = 100.0
        self.sleeps = []

    def __call__(self):
        return self.t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.t += seconds


class FakeGeocoder:
    min_interval = 1.1

    def __init__(self, answers=None, clock=None, cost=0.0):
        self.answers = answers or {}
        self.queries = []
        self.clock = clock
        self.cost = cost

    def geocode(self, query):
        self.queries.append(query)
        if self.clock is not None:
            self.clock.t += self.cost
        hit = self.answers.get(query, {"lat": 50.0, "lng": 36.0})
        if isinstance(hit, Exception):
            raise hit
        return hit


@pytest.mark.parametrize("given, expected", [(10, 10), (0, 50), (-3, 50), (500, 100), ("abc", 50), (None, 50)])
def test_clamp_limit(given, expected):
    assert clamp_limit(given) == expected


def test_build_query():
    assert build_query("Kharkiv", None, "Ukraine") == "Kharkiv, Ukraine"
    assert build_query("Kharkiv", "Kharkiv Oblast", "Ukraine") == "Kharkiv, Kharkiv Oblast, Ukraine"
    assert build_query("", "  ", None) == ""


def test_enrichment_paces_provider_calls(con, make_incident):
    for loc in ("Kharkiv", "Izium", "Kupiansk"):
        db.insert_incident(con, make_incident(location=loc, country=None))

    clock = FakeClock()
    geocoder = FakeGeocoder(clock=clock, cost=0.3)
    summary = enrich_missing_coordinates(con, geocoder, limit=10, sleep=clock.sleep, clock=clock)

    assert summary.processed == 3
    assert summary.geocoded == 3
    assert summary.failed == 0
    assert sorted(geocoder.queries) == ["Izium", "Kharkiv", "Kupiansk"]
    # each call after the first waits out the remainder of the interval
    assert clock.sleeps == [pytest.approx(1.1), pytest.approx(1.1)]
    assert db.incidents_missing_coords(con, 10).empty


def test_offline_geocoder_is_not_paced(con, make_incident):
    db.insert_incident(con, make_incident(location="Kharkiv"))
    db.insert_incident(con, make_incident(location="Izium"))

    clock = FakeClock()
    geocoder = FakeGeocoder()
    geocoder.min_interval = 0.0
    summary = enrich_missing_coordinates(con, geocoder, sleep=clock.sleep, clock=clock)
    assert summary.geocoded == 2
    assert clock.sleeps == []


def test_empty_query_fails_without_provider_call(con, make_incident):
    db.insert_incident(con, make_incident(location="", country=None))
    geocoder = FakeGeocoder()
    summary = enrich_missing_coordinates(con, geocoder, sleep=lambda s: None)
    assert summary.failed == 1
    assert geocoder.queries == []


def test_misses_and_provider_errors_are_counted(con, make_incident):
    db.insert_incident(con, make_incident(location="Atlantis", country=None))
    db.insert_incident(con, make_incident(location="Kharkiv", country=None))
    db.insert_incident(con, make_incident(location="Izium", country=None))

    geocoder = FakeGeocoder(answers={"Atlantis": None, "Izium": ProviderError("HTTP 503", source="opencage")})
    summary = enrich_missing_coordinates(con, geocoder, sleep=lambda s: None)

    assert summary.processed == 3
    assert summary.geocoded == 1
    assert summary.failed == 2
    remaining = set(db.incidents_missing_coords(con, 10)["location"])
    assert remaining == {"Atlantis", "Izium"}


def test_limit_bounds_the_batch(con, make_incident):
    for i in range(4):
        db.insert_incident(con, make_incident(location=f"Town {i}"))
    summary = enrich_missing_coordinates(con, FakeGeocoder(), limit=2, sleep=lambda s: None)
    assert summary.processed == 2
    assert len(db.incidents_missing_coords(con, 10)) == 2


def test_nothing_to_do(con):
    geocoder = FakeGeocoder()
    summary = enrich_missing_coordinates(con, geocoder)
    assert summary.processed == 0
    assert geocoder.queries == []


def test_run_geocoding_requires_role(con, make_incident):
    db.insert_incident(con, make_incident())
    geocoder = FakeGeocoder()
    with pytest.raises(AuthorizationError):
        run_geocoding(con, geocoder, role="viewer")
    assert geocoder.queries == []


def _resp(payload, ok=True, status=200):
    r = MagicMock()
    r.ok = ok
    r.status_code = status
    r.json.return_value = payload
    return r


def test_opencage_requires_key():
    with pytest.raises(ConfigError):
        OpenCageGeocoder(api_key="", session=MagicMock())


def test_opencage_parses_first_result():
    session = MagicMock()
    session.get.return_value = _resp({"results": [{"geometry": {"lat": 49.99, "lng": 36.23}}]})
    geo = OpenCageGeocoder(api_key="k", session=session)

    assert geo.geocode("Kharkiv, Ukraine") == {"lat": 49.99, "lng": 36.23}
    params = session.get.call_args.kwargs["params"]
    assert params["q"] == "Kharkiv, Ukraine"
    assert params["limit"] == 1
    assert geo.min_interval >= 1.0


def test_opencage_no_results_or_http_error():
    session = MagicMock()
    session.get.return_value = _resp({"results": []})
    assert OpenCageGeocoder(api_key="k", session=session).geocode("Atlantis") is None

    session.get.return_value = _resp({}, ok=False, status=402)
    assert OpenCageGeocoder(api_key="k", session=session).geocode("Kharkiv") is None


def test_opencage_network_error():
    session = MagicMock()
    session.get.side_effect = requests.ConnectionError("unreachable")
    with pytest.raises(ProviderError):
        OpenCageGeocoder(api_key="k", session=session).geocode("Kharkiv")


def test_opencage_malformed_body_is_a_miss():
    session = MagicMock()
    session.get.return_value = _resp(["not", "an", "object"])
    assert OpenCageGeocoder(api_key="k", session=session).geocode("Kharkiv") is None

    session.get.return_value = _resp({"results": [{"geometry": None}]})
    assert OpenCageGeocoder(api_key="k", session=session).geocode("Kharkiv") is None


def test_non_json_response_does_not_abort_batch(con, make_incident):
    db.insert_incident(con, make_incident(location="Kharkiv"))
    db.insert_incident(con, make_incident(location="Izium"))

    broken = _resp(None)
    broken.json.side_effect = ValueError("Expecting value")
    session = MagicMock()
    session.get.return_value = broken
    geocoder = OpenCageGeocoder(api_key="k", session=session)
    geocoder.min_interval = 0

    summary = enrich_missing_coordinates(con, geocoder, limit=10)
    assert summary.processed == 2
    assert summary.geocoded == 0
    assert summary.failed == 2
    assert session.get.call_count == 2
