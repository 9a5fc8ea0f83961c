"""Tests for upstream API helpers and payload parsing."""

import pytest
import requests

import air_sources
from air_sources import (
    clamp_aqi,
    extract_value,
    fetch_city_feed,
    fetch_geo_feed,
    fetch_nearby_stations,
    fetch_station_feed,
    get_country_from_coordinates,
    map_dominant_pollutant,
    normalize_owm_components,
    parse_aqicn_feed,
    parse_owm_air_pollution,
    parse_owm_weather,
    reverse_geocode_owm,
    safe_get,
    search_stations,
)
from tests.aq_test_helpers import (
    FakeResponse,
    USER_LAT,
    USER_LON,
    aqicn_feed,
    owm_air_payload,
    owm_weather_payload,
)


@pytest.mark.parametrize("entry, expected", [
    ({"v": 42.34}, 42.3),
    ({"v": 42.35001}, 42.4),
    ({"v": "17"}, 17.0),
    ({"v": 0}, None),
    ({"v": None}, None),
    ({"v": "-"}, None),
    (None, None),
    ({}, None),
])
def test_extract_value(entry, expected):
    assert extract_value(entry) == expected


@pytest.mark.parametrize("aqi, expected", [
    (87.6, 88),
    (-5, 0),
    (612, 500),
    ("154", 154),
    ("-", 0),
    (None, 0),
])
def test_clamp_aqi(aqi, expected):
    assert clamp_aqi(aqi) == expected


def test_map_dominant_pollutant():
    assert map_dominant_pollutant("pm25") == "PM2.5"
    assert map_dominant_pollutant("o3") == "O3"
    assert map_dominant_pollutant("nh3") == "nh3"
    assert map_dominant_pollutant(None) == "unknown"
    assert map_dominant_pollutant("") == "unknown"


# ═════════════════════════════════════════════════════════════════
# safe_get
# ═════════════════════════════════════════════════════════════════

def _sequence(monkeypatch, responses):
    calls = []

    def fake_get(url, params=None, headers=None, timeout=None):
        calls.append(url)
        item = responses[min(len(calls), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr(requests, "get", fake_get)
    return calls


def test_safe_get_retries_rate_limit(monkeypatch):
    calls = _sequence(monkeypatch, [FakeResponse({}, 429), FakeResponse({"ok": 1}, 200)])

    r = safe_get("https://example.org/x", retries=3)

    assert r is not None and r.json() == {"ok": 1}
    assert len(calls) == 2


def test_safe_get_retries_server_errors_then_gives_up(monkeypatch):
    calls = _sequence(monkeypatch, [FakeResponse({}, 503)])

    assert safe_get("https://example.org/x", retries=3) is None
    assert len(calls) == 3


def test_safe_get_client_error_is_not_retried(monkeypatch):
    calls = _sequence(monkeypatch, [FakeResponse({}, 404)])

    assert safe_get("https://example.org/x", retries=3) is None
    assert len(calls) == 1


def test_safe_get_network_error(monkeypatch):
    calls = _sequence(monkeypatch, [requests.ConnectionError("boom")])

    assert safe_get("https://example.org/x", retries=2) is None
    assert len(calls) == 2


def test_safe_get_recovers_after_network_error(monkeypatch):
    calls = _sequence(monkeypatch, [requests.Timeout("slow"), FakeResponse([1, 2], 200)])

    r = safe_get("https://example.org/x", retries=3)

    assert r.json() == [1, 2]
    assert len(calls) == 2


# ═════════════════════════════════════════════════════════════════
# AQICN
# ═════════════════════════════════════════════════════════════════

def test_fetch_geo_feed_uses_token_and_coordinates(http):
    http.add("feed/geo:", aqicn_feed(57, -1.29, 36.82))

    data = fetch_geo_feed(USER_LAT, USER_LON)

    assert data["aqi"] == 57
    url, params = http.calls[0]
    assert url.endswith(f"feed/geo:{USER_LAT};{USER_LON}/")
    assert params["token"] == "test-token"


@pytest.mark.parametrize("aqi", ["-", 0, -3, None])
def test_fetch_station_feed_rejects_offline_readings(http, aqi):
    http.add("feed/@7/", aqicn_feed(aqi, -1.29, 36.82))

    assert fetch_station_feed(7) is None


def test_fetch_station_feed_rejects_error_status(http):
    http.add("feed/@7/", {"status": "error", "data": "Unknown station"})

    assert fetch_station_feed(7) is None


def test_search_stations_returns_list(http):
    http.add("/search/", {"status": "ok", "data": [{"uid": 1}, {"uid": 2}]})

    assert search_stations("KE") == [{"uid": 1}, {"uid": 2}]
    assert http.calls[0][1]["keyword"] == "KE"


def test_search_stations_failure_is_empty(http):
    assert search_stations("KE") == []


def test_parse_aqicn_feed():
    parsed = parse_aqicn_feed(aqicn_feed(612.4, -1.29, 36.82, name="Nairobi CBD", idx=44)["data"])

    assert parsed["aqi"] == 500
    assert parsed["station_uid"] == 44
    assert parsed["city"] == "Nairobi CBD"
    assert parsed["dominant_pollutant"] == "PM2.5"
    assert parsed["pollutants"] == {
        "pm25": 42.3, "pm10": 18.0, "no2": 7.1, "so2": None, "co": None, "o3": None,
    }
    assert parsed["environmental"]["temperature"] == 22.5
    assert parsed["environmental"]["humidity"] == 61.0
    assert parsed["environmental"]["wind_speed"] is None
    assert parsed["station_coordinates"] == {"lat": -1.29, "lon": 36.82}
    assert parsed["station_time"] == "2026-10-18 12:00:00"
    assert parsed["attributions"] == ["Test Agency"]


def test_parse_aqicn_feed_without_geo():
    data = aqicn_feed(50, 0, 0)["data"]
    data["city"] = {"name": "Somewhere"}

    assert parse_aqicn_feed(data)["station_coordinates"] is None


def test_country_lookup(http):
    http.add("bigdatacloud", {"countryCode": "RW"})

    assert get_country_from_coordinates(-1.95, 30.06) == "RW"


def test_country_lookup_defaults_to_us(http):
    assert get_country_from_coordinates(0.0, 0.0) == "US"

    http.add("bigdatacloud", {"countryCode": ""})
    assert get_country_from_coordinates(0.0, 0.0) == "US"


# ═════════════════════════════════════════════════════════════════
# OPENWEATHERMAP
# ═════════════════════════════════════════════════════════════════

def test_normalize_owm_components_converts_co_to_mg():
    pollutants = normalize_owm_components({
        "co": 230.31, "no2": 4.56, "o3": 0, "so2": None, "pm2_5": 8.44, "pm10": "12",
    })

    assert pollutants == {
        "pm25": 8.4, "pm10": 12.0, "no2": 4.6, "so2": None, "co": 0.23, "o3": None,
    }
    assert air_sources.POLLUTANT_UNITS["co"] == "mg/m³"
    assert air_sources.POLLUTANT_UNITS["pm25"] == "µg/m³"


@pytest.mark.parametrize("index, expected", [(1, 50), (2, 100), (3, 150), (4, 200), (5, 300), (9, 0)])
def test_parse_owm_air_pollution_scales_index(index, expected):
    parsed = parse_owm_air_pollution(owm_air_payload(index=index))

    assert parsed["aqi"] == expected
    assert parsed["owm_index"] == index


def test_parse_owm_air_pollution_fields():
    parsed = parse_owm_air_pollution(owm_air_payload(dt=0))

    assert parsed["timestamp"] == "1970-01-01T00:00:00+00:00"
    assert parsed["pollutants"]["pm25"] == 8.4
    assert parsed["coordinates"] == {"lat": USER_LAT, "lon": USER_LON}


@pytest.mark.parametrize("payload", [None, {}, {"list": []}, []])
def test_parse_owm_air_pollution_empty(payload):
    assert parse_owm_air_pollution(payload) is None


def test_parse_owm_weather():
    weather = parse_owm_weather(owm_weather_payload())

    assert weather["temperature"] == 24.1
    assert weather["visibility"] == 10.0
    assert weather["weather_condition"] == "Clear"
    assert weather["wind_gust"] == 5.1
    assert len(weather["sunrise_time"]) == 8


def test_parse_owm_weather_missing_fields():
    weather = parse_owm_weather({})

    assert weather["visibility"] is None
    assert weather["weather_condition"] is None
    assert weather["sunset_time"] is None


def test_reverse_geocode_owm(http):
    http.add("geo/1.0/reverse", [{"name": "Nairobi", "country": "KE"}])
    assert reverse_geocode_owm(USER_LAT, USER_LON, "owm-key") == "KE"


def test_reverse_geocode_owm_unknown(http):
    http.add("geo/1.0/reverse", [])
    assert reverse_geocode_owm(USER_LAT, USER_LON, "owm-key") == "Unknown"


@pytest.mark.parametrize("body", [["unexpected"], "maintenance", 42])
def test_non_object_bodies_are_ignored(http, body):
    http.add("feed/geo:", body)
    http.add("/search/", body)

    assert fetch_geo_feed(USER_LAT, USER_LON) is None
    assert search_stations("KE") == []


def test_fetch_nearby_stations(http):
    http.add("mapq/nearby/", {"status": "ok", "data": [{"uid": 5}]})

    assert fetch_nearby_stations(USER_LAT, USER_LON) == [{"uid": 5}]
    url, params = http.calls[0]
    assert params["latlng"] == f"{USER_LAT},{USER_LON}"
    assert params["token"] == "test-token"


def test_fetch_nearby_stations_failure_is_empty(http):
    http.add("mapq/nearby/", {"status": "error", "data": "Invalid key"})

    assert fetch_nearby_stations(USER_LAT, USER_LON) == []


def test_fetch_city_feed(http):
    http.add("feed/nairobi/", aqicn_feed(77, -1.2833, 36.8167, name="Nairobi"))

    assert fetch_city_feed("nairobi")["aqi"] == 77
    assert http.calls[0][0].endswith("/feed/nairobi/")
