"""
air_sources.py — Upstream API access for AQICN and OpenWeatherMap

Thin wrappers around the WAQI (api.waqi.info) feed/search endpoints,
the OpenWeatherMap air pollution / weather / geocoding endpoints and the
BigDataCloud reverse geocoder, plus the parsing helpers that turn their
payloads into plain dicts with normalized units.
"""

import os
import time
from datetime import datetime, timezone
from math import radians, sin, cos, sqrt, atan2
from typing import Optional, Dict, Any, List

import numpy as np
import requests
from dotenv import load_dotenv

load_dotenv()

# ═════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═════════════════════════════════════════════════════════════════

AQICN_API_KEY = os.environ.get("AQICN_API_KEY", "")
OPENWEATHERMAP_API_KEY = os.environ.get("OPENWEATHERMAP_API_KEY", "")
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "15"))
HTTP_RETRIES = int(os.environ.get("HTTP_RETRIES", "3"))

AQICN_BASE_URL = "https://api.waqi.info"
OWM_BASE_URL = "https://api.openweathermap.org"
BIGDATACLOUD_URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"

EARTH_RADIUS_KM = 6371.0
DEFAULT_COUNTRY = "US"

POLLUTANT_KEYS = ["pm25", "pm10", "no2", "so2", "co", "o3"]

# Display units after normalization
POLLUTANT_UNITS = {
    "pm25": "µg/m³",
    "pm10": "µg/m³",
    "no2": "µg/m³",
    "so2": "µg/m³",
    "co": "mg/m³",
    "o3": "µg/m³",
}

DOMINANT_POLLUTANT_NAMES = {
    "pm25": "PM2.5",
    "pm10": "PM10",
    "no2": "NO2",
    "so2": "SO2",
    "co": "CO",
    "o3": "O3",
}

# OpenWeatherMap index (1-5) onto the 0-500 scale
OWM_AQI_SCALE = {1: 50, 2: 100, 3: 150, 4: 200, 5: 300}

# OpenWeatherMap component name -> our pollutant key
OWM_COMPONENTS = {
    "pm2_5": "pm25",
    "pm10": "pm10",
    "no2": "no2",
    "so2": "so2",
    "co": "co",
    "o3": "o3",
}


# ═════════════════════════════════════════════════════════════════
# HELPERS
# ═════════════════════════════════════════════════════════════════

def haversine_km(lat1, lon1, lat2, lon2):
    dlat, dlon = radians(lat2 - lat1), radians(lon2 - lon1)
    a = sin(dlat/2)**2 + cos(radians(lat1))*cos(radians(lat2))*sin(dlon/2)**2
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(a), sqrt(1 - a))


def haversine_km_array(lat, lon, lats, lons):
    """Distances (km) from one point to many, as a numpy array."""
    lats = np.radians(np.asarray(lats, dtype=float))
    lons = np.radians(np.asarray(lons, dtype=float))
    lat0, lon0 = radians(lat), radians(lon)
    dlat = lats - lat0
    dlon = lons - lon0
    a = np.sin(dlat/2)**2 + np.cos(lat0)*np.cos(lats)*np.sin(dlon/2)**2
    return EARTH_RADIUS_KM * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def safe_get(url, params=None, headers=None, timeout=None, retries=None):
    """GET with retry on 429/5xx and network errors. Returns None on failure."""
    timeout = HTTP_TIMEOUT if timeout is None else timeout
    retries = HTTP_RETRIES if retries is None else retries
    for attempt in range(retries):
        try:
            r = requests.get(url, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            if attempt == retries - 1:
                print(f"   ⚠ Request failed: {e}")
                return None
            time.sleep(1)
            continue

        if r.status_code == 200:
            return r
        if r.status_code == 429 or r.status_code >= 500:
            if attempt < retries - 1:
                time.sleep(2 ** attempt)
            continue
        print(f"   ⚠ HTTP {r.status_code} from {url}")
        return None
    return None


def _to_number(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if np.isnan(number):
        return None
    return number


def extract_value(entry) -> Optional[float]:
    """AQICN {"v": x} entry -> number rounded to 1 decimal, or None."""
    if not isinstance(entry, dict):
        return None
    value = _to_number(entry.get("v"))
    if not value:
        return None
    return round(value, 1)


def clamp_aqi(aqi) -> int:
    value = _to_number(aqi)
    if value is None or value < 0:
        return 0
    if value > 500:
        return 500
    return int(round(value))


def map_dominant_pollutant(code) -> str:
    if not code:
        return "unknown"
    return DOMINANT_POLLUTANT_NAMES.get(code, code)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_country_from_coordinates(lat, lon) -> str:
    """ISO country code via BigDataCloud, falling back to US."""
    r = safe_get(BIGDATACLOUD_URL, params={
        "latitude": lat, "longitude": lon, "localityLanguage": "en",
    })
    if r is None:
        print(f"   ⚠ Failed to get country for {lat}, {lon} — using {DEFAULT_COUNTRY}")
        return DEFAULT_COUNTRY
    try:
        code = r.json().get("countryCode")
    except ValueError:
        code = None
    return code or DEFAULT_COUNTRY


# ═════════════════════════════════════════════════════════════════
# AQICN
# ═════════════════════════════════════════════════════════════════

def _aqicn_payload(r) -> Optional[Any]:
    if r is None:
        return None
    try:
        body = r.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    if body.get("status") != "ok" or not body.get("data"):
        return None
    return body["data"]


def _valid_feed(data) -> Optional[Dict[str, Any]]:
    # Offline stations report aqi "-"
    if not isinstance(data, dict):
        return None
    aqi = _to_number(data.get("aqi"))
    if aqi is None or aqi <= 0:
        return None
    return data


def fetch_geo_feed(lat, lon, token=None):
    """Feed for the station AQICN associates with a coordinate."""
    token = token or AQICN_API_KEY
    r = safe_get(f"{AQICN_BASE_URL}/feed/geo:{lat};{lon}/", params={"token": token})
    return _valid_feed(_aqicn_payload(r))


def fetch_station_feed(uid, token=None):
    token = token or AQICN_API_KEY
    r = safe_get(f"{AQICN_BASE_URL}/feed/@{uid}/", params={"token": token})
    return _valid_feed(_aqicn_payload(r))


def fetch_city_feed(slug, token=None):
    """Feed for an AQICN city slug such as "nairobi"."""
    token = token or AQICN_API_KEY
    r = safe_get(f"{AQICN_BASE_URL}/feed/{slug}/", params={"token": token})
    return _valid_feed(_aqicn_payload(r))


def fetch_nearby_stations(lat, lon, token=None) -> List[Dict[str, Any]]:
    token = token or AQICN_API_KEY
    r = safe_get(f"{AQICN_BASE_URL}/mapq/nearby/",
                 params={"token": token, "latlng": f"{lat},{lon}"})
    data = _aqicn_payload(r)
    return data if isinstance(data, list) else []


def search_stations(keyword, token=None) -> List[Dict[str, Any]]:
    token = token or AQICN_API_KEY
    r = safe_get(f"{AQICN_BASE_URL}/search/", params={"token": token, "keyword": keyword})
    data = _aqicn_payload(r)
    return data if isinstance(data, list) else []


def parse_aqicn_feed(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten an AQICN feed payload."""
    iaqi = data.get("iaqi") or {}
    city = data.get("city") or {}
    geo = city.get("geo")
    station_coordinates = None
    if isinstance(geo, (list, tuple)) and len(geo) == 2:
        lat, lon = _to_number(geo[0]), _to_number(geo[1])
        if lat is not None and lon is not None:
            station_coordinates = {"lat": lat, "lon": lon}

    return {
        "aqi": clamp_aqi(data.get("aqi")),
        "station_uid": data.get("idx"),
        "city": city.get("name") or None,
        "dominant_pollutant": map_dominant_pollutant(data.get("dominentpol")),
        "pollutants": {key: extract_value(iaqi.get(key)) for key in POLLUTANT_KEYS},
        "environmental": {
            "temperature": extract_value(iaqi.get("t")),
            "humidity": extract_value(iaqi.get("h")),
            "pressure": extract_value(iaqi.get("p")),
            "wind_speed": extract_value(iaqi.get("w")),
            "wind_direction": extract_value(iaqi.get("wd")),
        },
        "station_coordinates": station_coordinates,
        "station_time": (data.get("time") or {}).get("s"),
        "attributions": [a.get("name") for a in data.get("attributions") or [] if a.get("name")],
    }


# ═════════════════════════════════════════════════════════════════
# OPENWEATHERMAP
# ═════════════════════════════════════════════════════════════════

def fetch_owm_air_pollution(lat, lon, key=None):
    key = key or OPENWEATHERMAP_API_KEY
    r = safe_get(f"{OWM_BASE_URL}/data/2.5/air_pollution",
                 params={"lat": lat, "lon": lon, "appid": key})
    if r is None:
        return None
    try:
        return r.json()
    except ValueError:
        return None


def fetch_owm_weather(lat, lon, key=None):
    key = key or OPENWEATHERMAP_API_KEY
    r = safe_get(f"{OWM_BASE_URL}/data/2.5/weather",
                 params={"lat": lat, "lon": lon, "appid": key, "units": "metric"})
    if r is None:
        return None
    try:
        return r.json()
    except ValueError:
        return None


def reverse_geocode_owm(lat, lon, key=None) -> str:
    key = key or OPENWEATHERMAP_API_KEY
    r = safe_get(f"{OWM_BASE_URL}/geo/1.0/reverse",
                 params={"lat": lat, "lon": lon, "limit": 1, "appid": key})
    if r is None:
        return "Unknown"
    try:
        places = r.json()
    except ValueError:
        return "Unknown"
    if isinstance(places, list) and places:
        return places[0].get("country") or "Unknown"
    return "Unknown"


def normalize_owm_components(components: Dict[str, Any]) -> Dict[str, Optional[float]]:
    """OWM reports everything in µg/m³; CO is converted to mg/m³."""
    pollutants = {key: None for key in POLLUTANT_KEYS}
    for owm_name, key in OWM_COMPONENTS.items():
        value = _to_number(components.get(owm_name))
        if not value:
            continue
        if key == "co":
            pollutants[key] = round(value / 1000.0, 3)
        else:
            pollutants[key] = round(value, 1)
    return pollutants


def parse_owm_air_pollution(payload) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    entries = payload.get("list") or []
    if not entries:
        return None
    current = entries[0]
    owm_index = (current.get("main") or {}).get("aqi")
    dt = current.get("dt")
    timestamp = (datetime.fromtimestamp(dt, tz=timezone.utc).isoformat()
                 if isinstance(dt, (int, float)) else utc_now_iso())
    coord = payload.get("coord") or {}
    return {
        "aqi": OWM_AQI_SCALE.get(owm_index, 0),
        "owm_index": owm_index,
        "pollutants": normalize_owm_components(current.get("components") or {}),
        "coordinates": {"lat": coord.get("lat"), "lon": coord.get("lon")},
        "timestamp": timestamp,
    }


def _clock_utc(epoch) -> Optional[str]:
    if not isinstance(epoch, (int, float)):
        return None
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%H:%M:%S")


def parse_owm_weather(payload) -> Dict[str, Any]:
    payload = payload or {}
    main = payload.get("main") or {}
    wind = payload.get("wind") or {}
    sys_info = payload.get("sys") or {}
    weather = payload.get("weather") or []
    visibility = _to_number(payload.get("visibility"))
    return {
        "temperature": _to_number(main.get("temp")),
        "feels_like_temperature": _to_number(main.get("feels_like")),
        "humidity": _to_number(main.get("humidity")),
        "air_pressure": _to_number(main.get("pressure")),
        "wind_speed": _to_number(wind.get("speed")),
        "wind_direction": _to_number(wind.get("deg")),
        "wind_gust": _to_number(wind.get("gust")),
        "visibility": visibility / 1000.0 if visibility is not None else None,
        "weather_condition": weather[0].get("main") if weather else None,
        "sunrise_time": _clock_utc(sys_info.get("sunrise")),
        "sunset_time": _clock_utc(sys_info.get("sunset")),
    }
