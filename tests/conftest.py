import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest
import requests

import air_sources
import data_collection
import station_finder
from tests.aq_test_helpers import FakeHTTP, STATION_A, STATION_B, STATION_C, STATION_D, search_entry


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, tmp_path):
    monkeypatch.setattr(air_sources, "AQICN_API_KEY", "test-token")
    monkeypatch.setattr(air_sources, "OPENWEATHERMAP_API_KEY", "")
    monkeypatch.setattr(data_collection, "STORE_PATH", tmp_path / "global_environmental_data.csv")
    monkeypatch.setattr(time, "sleep", lambda seconds: None)
    station_finder.station_cache.clear()
    yield
    station_finder.station_cache.clear()


@pytest.fixture
def http(monkeypatch):
    fake = FakeHTTP()
    monkeypatch.setattr(requests, "get", fake)
    return fake


@pytest.fixture
def kenya(http):
    """Country lookup resolves to KE; search returns four live stations and one offline."""
    http.add("bigdatacloud", {"countryCode": "KE"})
    http.add("/search/", {"status": "ok", "data": [
        search_entry(STATION_B),
        search_entry(STATION_C),
        search_entry({"uid": 999, "name": "Offline", "lat": -1.28, "lon": 36.81}, aqi="-"),
        search_entry(STATION_A),
        search_entry(STATION_D, aqi=80),
    ]})
    return http
