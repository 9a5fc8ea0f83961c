"""
air_quality.py — Multi-source air quality lookup for a user location

Order of attempts:
  1. AQICN direct coordinate feed
  2. AQICN nearest stations (sorted by distance, tried in order)
  3. AQICN feed for the nearest known city
  4. OpenWeatherMap air pollution at the user's coordinates
Readings that the data validator does not accept are skipped.
"""

from typing import Dict, Any, List

import air_sources
from air_sources import (
    fetch_city_feed,
    fetch_geo_feed,
    fetch_owm_air_pollution,
    fetch_station_feed,
    get_country_from_coordinates,
    haversine_km,
    parse_aqicn_feed,
    parse_owm_air_pollution,
    reverse_geocode_owm,
    utc_now_iso,
)
from data_validator import AQICN_SOURCE, OPENWEATHERMAP_SOURCE, validate_data_source
from station_finder import (
    MAX_CANDIDATES,
    find_closest_stations,
    find_nearest_capital_city,
    find_nearest_city_feed,
)


class MissingAPIKeyError(RuntimeError):
    """No upstream credentials are configured."""


class UpstreamError(RuntimeError):
    """An upstream API returned no usable data."""


EMPTY_POLLUTANTS = {"pm25": None, "pm10": None, "no2": None, "so2": None, "co": None, "o3": None}
EMPTY_ENVIRONMENTAL = {
    "temperature": None, "humidity": None, "pressure": None,
    "wind_speed": None, "wind_direction": None,
}


def _candidate_summary(stations: List[Dict[str, Any]]):
    return [{"uid": s["uid"], "name": s["name"], "distance": round(s["distance"], 2)}
            for s in stations]


def build_error_result(lat, lon, station_name, message, country="Unknown", candidates=None,
                       data_source=AQICN_SOURCE):
    return {
        "aqi": 0,
        "city": "Unknown Location",
        "station_name": station_name,
        "station_uid": None,
        "distance": 0.0,
        "country": country,
        "dominant_pollutant": "unknown",
        "pollutants": dict(EMPTY_POLLUTANTS),
        "environmental": dict(EMPTY_ENVIRONMENTAL),
        "coordinates": {"user": {"lat": lat, "lon": lon}, "station": {"lat": 0, "lon": 0}},
        "timestamp": utc_now_iso(),
        "data_source": data_source,
        "validation": None,
        "meta": {
            "selection": "none",
            "selection_reason": message,
            "candidates": _candidate_summary(candidates or []),
        },
        "error": True,
        "message": message,
    }


def build_aqicn_result(lat, lon, feed, station=None, country=None, known_coords=None):
    """Reading from an AQICN feed.

    station is the search hit the feed came from, if any. known_coords is
    used when neither the feed nor the station carries coordinates.
    """
    parsed = parse_aqicn_feed(feed)

    station_coords = parsed["station_coordinates"]
    if station_coords is None and station is not None:
        station_coords = {"lat": station["lat"], "lon": station["lon"]}
    if station_coords is None:
        station_coords = known_coords
    if station_coords is not None:
        distance = haversine_km(lat, lon, station_coords["lat"], station_coords["lon"])
    else:
        distance = 0.0
        station_coords = {"lat": 0, "lon": 0}

    station_name = station["name"] if station else (parsed["city"] or "Unknown Station")
    uid = station["uid"] if station else parsed["station_uid"]

    return {
        "aqi": parsed["aqi"],
        "city": parsed["city"] or station_name,
        "station_name": station_name,
        "station_uid": uid,
        "distance": round(distance, 2),
        "country": country or (station["country"] if station else "Unknown"),
        "dominant_pollutant": parsed["dominant_pollutant"],
        "pollutants": parsed["pollutants"],
        "environmental": parsed["environmental"],
        "coordinates": {"user": {"lat": lat, "lon": lon}, "station": station_coords},
        "timestamp": utc_now_iso(),
        "station_time": parsed["station_time"],
        "data_source": AQICN_SOURCE,
        "validation": validate_data_source(AQICN_SOURCE, parsed["aqi"]),
    }


def build_owm_result(lat, lon, owm, country="Unknown"):
    return {
        "aqi": owm["aqi"],
        "owm_index": owm["owm_index"],
        "city": "Unknown Location",
        "station_name": "OpenWeatherMap model",
        "station_uid": None,
        "distance": 0.0,
        "country": country,
        "dominant_pollutant": "unknown",
        "pollutants": owm["pollutants"],
        "environmental": dict(EMPTY_ENVIRONMENTAL),
        "coordinates": {"user": {"lat": lat, "lon": lon}, "station": {"lat": lat, "lon": lon}},
        "timestamp": owm["timestamp"],
        "data_source": OPENWEATHERMAP_SOURCE,
        "validation": validate_data_source(OPENWEATHERMAP_SOURCE, owm["aqi"]),
    }


# ═════════════════════════════════════════════════════════════════
# LOOKUP
# ═════════════════════════════════════════════════════════════════

def _accepted(result) -> bool:
    return result["aqi"] > 0 and result["validation"]["status"] == "valid"


def get_air_quality_data(lat, lon, aqicn_token=None, owm_key=None,
                         max_stations=MAX_CANDIDATES) -> Dict[str, Any]:
    aqicn_token = aqicn_token or air_sources.AQICN_API_KEY
    owm_key = owm_key or air_sources.OPENWEATHERMAP_API_KEY
    if not aqicn_token and not owm_key:
        raise MissingAPIKeyError("Neither AQICN_API_KEY nor OPENWEATHERMAP_API_KEY is configured")

    print(f"🌍 Air quality lookup for {lat}, {lon}")
    candidates = []
    country = None

    if aqicn_token:
        # 1. Direct lookup
        feed = fetch_geo_feed(lat, lon, aqicn_token)
        if feed is not None:
            result = build_aqicn_result(lat, lon, feed)
            if _accepted(result):
                result["country"] = get_country_from_coordinates(lat, lon)
                result["meta"] = {
                    "selection": "direct",
                    "selection_reason": "AQICN coordinate feed",
                    "candidates": [],
                }
                print(f"   ✓ Direct AQICN: {result['station_name']} AQI {result['aqi']} "
                      f"({result['distance']:.2f}km)")
                return result
            print(f"   ⚠ Direct AQICN reading rejected: {result['validation']['message']}")

        # 2. Nearest stations, in distance order
        country = get_country_from_coordinates(lat, lon)
        candidates = find_closest_stations(lat, lon, aqicn_token,
                                           max_stations=max_stations, country=country)
        for rank, station in enumerate(candidates):
            print(f"   🎯 Trying {station['name']} ({station['distance']:.2f}km)")
            feed = fetch_station_feed(station["uid"], aqicn_token)
            if feed is None:
                print(f"   ⚠ {station['name']} returned no data, trying next station")
                continue
            result = build_aqicn_result(lat, lon, feed, station=station, country=country)
            if not _accepted(result):
                print(f"   ⚠ {station['name']} rejected: {result['validation']['message']}")
                continue
            result["meta"] = {
                "selection": "primary" if rank == 0 else "fallback",
                "selection_reason": f"Closest valid station within {station['distance']:.1f}km",
                "candidates": _candidate_summary(candidates),
            }
            print(f"   ✓ {station['name']}: AQI {result['aqi']}")
            return result

        # 3. Nearest known city feed
        city = find_nearest_city_feed(lat, lon)
        if city is not None:
            print(f"   🏙 Trying city feed for {city['name']} ({city['distance']:.0f}km)")
            feed = fetch_city_feed(city["slug"], aqicn_token)
            if feed is not None:
                result = build_aqicn_result(lat, lon, feed, country=country,
                                            known_coords={"lat": city["lat"], "lon": city["lon"]})
                if _accepted(result):
                    result["meta"] = {
                        "selection": "city",
                        "selection_reason": f"AQICN city feed for {city['name']}",
                        "candidates": _candidate_summary(candidates),
                    }
                    print(f"   ✓ City feed {city['name']}: AQI {result['aqi']}")
                    return result
                print(f"   ⚠ City feed rejected: {result['validation']['message']}")

    # 4. OpenWeatherMap
    if owm_key:
        owm = parse_owm_air_pollution(fetch_owm_air_pollution(lat, lon, owm_key))
        if owm is not None and owm["aqi"] > 0:
            result = build_owm_result(lat, lon, owm,
                                      country=country or reverse_geocode_owm(lat, lon, owm_key))
            result["meta"] = {
                "selection": "openweathermap",
                "selection_reason": "No AQICN station provided valid data",
                "candidates": _candidate_summary(candidates),
            }
            print(f"   ✓ OpenWeatherMap: AQI {result['aqi']} (index {result['owm_index']})")
            return result

    # Source of the last attempt
    source = OPENWEATHERMAP_SOURCE if owm_key else AQICN_SOURCE
    if not candidates:
        print("   ❌ No monitoring stations found in acceptable range")
        return build_error_result(
            lat, lon, "No Station Available",
            "No air quality monitoring stations available for your location.",
            country=country or "Unknown", data_source=source,
        )

    print("   ❌ All nearby stations failed to provide valid data")
    return build_error_result(
        lat, lon, "Data Unavailable",
        "Air quality data temporarily unavailable. Please try again later.",
        country=candidates[0]["country"], candidates=candidates, data_source=source,
    )


def get_capital_air_quality(lat, lon, owm_key=None) -> Dict[str, Any]:
    """OpenWeatherMap reading for the reference capital nearest to the user."""
    owm_key = owm_key or air_sources.OPENWEATHERMAP_API_KEY
    if not owm_key:
        raise MissingAPIKeyError("OPENWEATHERMAP_API_KEY not configured")

    user_country = reverse_geocode_owm(lat, lon, owm_key)
    capital = find_nearest_capital_city(lat, lon)

    owm = parse_owm_air_pollution(fetch_owm_air_pollution(capital["lat"], capital["lon"], owm_key))
    if owm is None:
        raise UpstreamError("No air quality data available")

    km = round(capital["distance"])
    return {
        "location": f"{capital['name']}, {capital['country']}",
        "user_location": f"{user_country} ({km}km from {capital['name']})",
        "coordinates": {"lat": capital["lat"], "lon": capital["lon"]},
        "user_coordinates": {"lat": lat, "lon": lon},
        "aqi": owm["aqi"],
        "owm_index": owm["owm_index"],
        "pollutants": owm["pollutants"],
        "timestamp": owm["timestamp"],
        "data_source": f"AQI data from {capital['name']} ({km}km away)",
    }
