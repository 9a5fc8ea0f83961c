"""
data_collection.py — Scheduled environmental data collection

Pulls the AQICN coordinate feed for each tracked city, enriches it with
OpenWeatherMap weather when a key is configured, and stores the batch as
the new active set in a CSV store. Meant to run every 15 minutes
(cron / the /collect endpoint).

Usage:  python data_collection.py            # all cities
        python data_collection.py Nairobi    # one city
Output: data/global_environmental_data.csv
"""

import os
import re
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pandas as pd

import air_sources
from air_sources import (
    clamp_aqi,
    extract_value,
    fetch_geo_feed,
    fetch_owm_weather,
    parse_owm_weather,
    utc_now_iso,
)
from data_validator import AQICN_SOURCE, drop_contaminated

# ═════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═════════════════════════════════════════════════════════════════

DATA_DIR = Path(os.environ.get("DATA_DIR", "data"))
STORE_PATH = DATA_DIR / "global_environmental_data.csv"

COLLECTION_INTERVAL_MINUTES = 15
REQUEST_DELAY_SECONDS = 1

MAJOR_CITIES = [
    {"name": "Nairobi", "lat": -1.2921, "lon": 36.8219, "country": "Kenya"},
    {"name": "Mombasa", "lat": -4.0435, "lon": 39.6682, "country": "Kenya"},
    {"name": "Kisumu", "lat": -0.1022, "lon": 34.7617, "country": "Kenya"},
    {"name": "Nakuru", "lat": -0.3031, "lon": 36.0800, "country": "Kenya"},
    {"name": "Eldoret", "lat": 0.5204, "lon": 35.2699, "country": "Kenya"},
    {"name": "Thika", "lat": -1.0333, "lon": 37.0833, "country": "Kenya"},
    {"name": "Kakamega", "lat": 0.2833, "lon": 34.7500, "country": "Kenya"},
    {"name": "Kisii", "lat": -0.6833, "lon": 34.7667, "country": "Kenya"},
]

RECORD_COLUMNS = [
    "id", "city_name", "country", "latitude", "longitude", "aqi",
    "pm25", "pm10", "no2", "so2", "co", "o3",
    "temperature", "humidity", "wind_speed", "wind_direction", "wind_gust",
    "air_pressure", "visibility", "weather_condition", "feels_like_temperature",
    "sunrise_time", "sunset_time",
    "data_source", "collection_timestamp", "is_active",
]

WEATHER_FIELDS = [
    "wind_speed", "wind_direction", "wind_gust", "visibility",
    "weather_condition", "feels_like_temperature", "sunrise_time", "sunset_time",
]


class CityNotFoundError(KeyError):
    pass


def find_city(name, cities=MAJOR_CITIES):
    for city in cities:
        if city["name"].lower() == name.strip().lower():
            return city
    raise CityNotFoundError(name)


def _record_id(city_name, now=None):
    now = now or datetime.now(timezone.utc)
    slug = re.sub(r"\s+", "-", city_name.strip().lower())
    return f"{slug}-{int(now.timestamp() * 1000)}"


# ═════════════════════════════════════════════════════════════════
# COLLECTION
# ═════════════════════════════════════════════════════════════════

def collect_city_data(city, token=None, owm_key=None):
    """One record for a city, or None if AQICN has nothing usable."""
    token = token or air_sources.AQICN_API_KEY
    print(f"\n   📍 {city['name']}, {city['country']}")

    feed = fetch_geo_feed(city["lat"], city["lon"], token)
    if feed is None:
        print(f"     ❌ AQICN returned no data for {city['name']}")
        return None

    iaqi = feed.get("iaqi") or {}
    record = {
        "id": _record_id(city["name"]),
        "city_name": city["name"],
        "country": city["country"],
        "latitude": city["lat"],
        "longitude": city["lon"],
        "aqi": clamp_aqi(feed.get("aqi")),
        "pm25": extract_value(iaqi.get("pm25")),
        "pm10": extract_value(iaqi.get("pm10")),
        "no2": extract_value(iaqi.get("no2")),
        "so2": extract_value(iaqi.get("so2")),
        "co": extract_value(iaqi.get("co")),
        "o3": extract_value(iaqi.get("o3")),
        "temperature": extract_value(iaqi.get("t")),
        "humidity": extract_value(iaqi.get("h")),
        "air_pressure": extract_value(iaqi.get("p")),
        "data_source": AQICN_SOURCE,
        "collection_timestamp": utc_now_iso(),
        "is_active": True,
    }
    for field in WEATHER_FIELDS:
        record[field] = None

    if owm_key:
        weather = fetch_owm_weather(city["lat"], city["lon"], owm_key)
        if weather:
            parsed = parse_owm_weather(weather)
            for field in WEATHER_FIELDS:
                record[field] = parsed[field]
            # Station readings win; OWM only fills gaps
            for field in ("temperature", "humidity", "air_pressure"):
                if record[field] is None:
                    record[field] = parsed[field]
        else:
            print(f"     ⚠ OpenWeatherMap weather unavailable for {city['name']}")

    print(f"     ✓ AQI {record['aqi']}, Temp {record['temperature']}°C")
    return record


# ═════════════════════════════════════════════════════════════════
# STORE
# ═════════════════════════════════════════════════════════════════

def load_store(path=None) -> pd.DataFrame:
    path = Path(path or STORE_PATH)
    if not path.exists():
        return pd.DataFrame(columns=RECORD_COLUMNS)
    df = pd.read_csv(path)
    df["is_active"] = df["is_active"].astype(str).str.lower() == "true"
    return df


def load_active_records(path=None) -> pd.DataFrame:
    df = load_store(path)
    if df.empty:
        return df
    return df.loc[df["is_active"].astype(bool)].reset_index(drop=True)


def store_environmental_data(records, path=None):
    """Deactivate the existing rows and append the new batch.

    The batch is cleaned first; if nothing survives the store is left
    untouched and 0 is returned.
    """
    path = Path(path or STORE_PATH)

    new = drop_contaminated(pd.DataFrame(records, columns=RECORD_COLUMNS))
    if new.empty:
        print("   ⚠ No records left after cleanup, keeping the current active set")
        return 0

    path.parent.mkdir(parents=True, exist_ok=True)
    existing = load_store(path)
    if not existing.empty:
        existing["is_active"] = False

    frames = [f for f in (existing, new) if not f.empty]
    df = pd.concat(frames, ignore_index=True) if frames else new
    df.to_csv(path, index=False)
    print(f"   ✓ Stored {len(new)} environmental data records → {path}")
    return len(new)


def collect_all(token=None, owm_key=None, cities=MAJOR_CITIES,
                delay=REQUEST_DELAY_SECONDS, path=None):
    token = token or air_sources.AQICN_API_KEY
    started = datetime.now(timezone.utc)
    print("=" * 60)
    print(f"Collecting AQICN data for {len(cities)} cities")
    print(f"   Collection time (UTC): {started.isoformat()}")
    print("=" * 60)

    collected, errors = [], []
    for i, city in enumerate(cities):
        record = collect_city_data(city, token, owm_key)
        if record is not None:
            collected.append(record)
        else:
            errors.append(f"Failed to collect data for {city['name']}")
        # Rate limit between calls
        if delay and i < len(cities) - 1:
            time.sleep(delay)

    stored = store_environmental_data(collected, path) if collected else 0

    next_collection = started + timedelta(minutes=COLLECTION_INTERVAL_MINUTES)
    print(f"\n📊 Collection complete: {len(collected)}/{len(cities)} cities successful")
    for err in errors:
        print(f"   ❌ {err}")
    print(f"   Next scheduled collection (UTC): {next_collection.isoformat()}")

    return {
        "cities_processed": len(cities),
        "collected": len(collected),
        "stored": stored,
        "failed": len(errors),
        "errors": errors,
        "timestamp": started.isoformat(),
        "next_collection": next_collection.isoformat(),
    }


def collect_single_city(name, token=None, owm_key=None, path=None):
    city = find_city(name)
    record = collect_city_data(city, token, owm_key)
    if record is None:
        return None
    if not store_environmental_data([record], path):
        print(f"     ❌ Reading for {city['name']} rejected by cleanup, not stored")
        return None
    return record


def main():
    t0 = time.time()
    token = air_sources.AQICN_API_KEY
    if not token:
        print("❌ AQICN_API_KEY not set in environment")
        sys.exit(1)
    owm_key = air_sources.OPENWEATHERMAP_API_KEY or None

    if len(sys.argv) > 1:
        name = " ".join(sys.argv[1:])
        try:
            record = collect_single_city(name, token, owm_key)
        except CityNotFoundError:
            print(f"❌ City not found: {name}")
            sys.exit(1)
        if record is None:
            sys.exit(1)
    else:
        collect_all(token, owm_key)

    print(f"\n✅ DONE in {time.time() - t0:.1f}s")


if __name__ == "__main__":
    main()
