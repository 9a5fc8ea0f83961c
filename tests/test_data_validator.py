"""Tests for placeholder and contaminated reading detection."""

import numpy as np
import pandas as pd
import pytest

from data_validator import (
    drop_contaminated,
    is_contaminated_record,
    is_legitimate_source,
    is_suspicious_aqi,
    validate_data_source,
)


@pytest.mark.parametrize("source", [
    "OpenWeatherMap API",
    "Integrated Weather System",
    "Manual Fetch",
    "Server-side Collection",
    "AQICN",
])
def test_legitimate_sources(source):
    assert is_legitimate_source(source)


@pytest.mark.parametrize("source", [None, "", "Initial Data", "openweathermap api", "Scraper"])
def test_unknown_sources_are_not_legitimate(source):
    assert not is_legitimate_source(source)


@pytest.mark.parametrize("aqi, expected", [
    (65, True),
    (75, True),
    (9, True),
    (0, True),
    (None, True),
    (10, False),
    (64, False),
    (152, False),
])
def test_is_suspicious_aqi(aqi, expected):
    assert is_suspicious_aqi(aqi) is expected


def test_valid_reading():
    result = validate_data_source("AQICN", 88)

    assert result == {
        "status": "valid",
        "message": "Data source verified",
        "data_source": "AQICN",
        "aqi": 88,
        "is_legitimate_source": True,
        "is_suspicious_aqi": False,
    }


@pytest.mark.parametrize("aqi", [65, 75, 3])
def test_placeholder_values_are_suspicious(aqi):
    result = validate_data_source("Manual Fetch", aqi)

    assert result["status"] == "suspicious"
    assert result["message"] == "AQI value may be inaccurate"
    assert result["is_suspicious_aqi"]


@pytest.mark.parametrize("aqi", [65, 75, 3])
def test_openweathermap_is_never_suspicious(aqi):
    result = validate_data_source("OpenWeatherMap API", aqi)

    assert result["status"] == "valid"
    assert result["is_suspicious_aqi"]


def test_unknown_source_is_contaminated():
    result = validate_data_source("Initial Data", 120)

    assert result["status"] == "contaminated"
    assert result["message"] == "Data source may be contaminated"


def test_missing_source_is_contaminated():
    result = validate_data_source(None, 120)

    assert result["status"] == "contaminated"
    assert result["data_source"] == "Unknown"


@pytest.mark.parametrize("source, aqi, expected", [
    ("Initial Data", 120, True),
    ("Legacy Data", 120, True),
    ("Demo feed", 120, True),
    ("PLACEHOLDER", 120, True),
    ("mock-sensor", 120, True),
    ("AQICN", 65, True),
    ("AQICN", 1, True),
    ("AQICN", 9, True),
    ("AQICN", 88, False),
    ("OpenWeatherMap API", 1, False),
    ("AQICN", None, False),
    ("AQICN", np.nan, False),
    (np.nan, 88, False),
])
def test_is_contaminated_record(source, aqi, expected):
    assert is_contaminated_record(source, aqi) is expected


def test_drop_contaminated():
    df = pd.DataFrame([
        {"city": "Nairobi", "data_source": "AQICN", "aqi": 88},
        {"city": "Mombasa", "data_source": "AQICN", "aqi": 65},
        {"city": "Kisumu", "data_source": "Initial Data", "aqi": 120},
        {"city": "Nakuru", "data_source": "OpenWeatherMap API", "aqi": 50},
    ])

    cleaned = drop_contaminated(df)

    assert list(cleaned["city"]) == ["Nairobi", "Nakuru"]
    assert list(cleaned.index) == [0, 1]
    assert len(df) == 4


def test_drop_contaminated_empty():
    df = pd.DataFrame(columns=["data_source", "aqi"])

    assert drop_contaminated(df).empty
