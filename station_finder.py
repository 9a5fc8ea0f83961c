"""
station_finder.py — Monitoring station discovery and ranking

Finds AQICN monitoring stations near the user (nearby search, then the
country keyword search), keeps country results in a short-lived cache and
ranks stations by great-circle distance. Also holds the reference
capital-city table used by the OpenWeatherMap lookup and the AQICN
city-feed table used as the last AQICN fallback.
"""

import time
from typing import Optional, Dict, Any, List

import numpy as np

from air_sources import (
    fetch_nearby_stations,
    get_country_from_coordinates,
    haversine_km,
    haversine_km_array,
    search_stations,
    utc_now_iso,
)

# ═════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═════════════════════════════════════════════════════════════════

MAX_STATION_DISTANCE_KM = 100
MAX_CANDIDATES = 2
STATION_CACHE_TTL = 60 * 60  # seconds
MAX_CITY_FEED_DISTANCE_KM = 1000

# Global cache of searched stations, keyed by country code
station_cache = {}

CAPITAL_CITIES = [
    # Africa
    {"name": "Nairobi", "lat": -1.2921, "lon": 36.8219, "country": "Kenya"},
    {"name": "Cairo", "lat": 30.0444, "lon": 31.2357, "country": "Egypt"},
    {"name": "Lagos", "lat": 6.5244, "lon": 3.3792, "country": "Nigeria"},
    {"name": "Johannesburg", "lat": -26.2041, "lon": 28.0473, "country": "South Africa"},
    {"name": "Casablanca", "lat": 33.5731, "lon": -7.5898, "country": "Morocco"},
    {"name": "Addis Ababa", "lat": 9.0320, "lon": 38.7489, "country": "Ethiopia"},
    {"name": "Dar es Salaam", "lat": -6.8235, "lon": 39.2695, "country": "Tanzania"},
    {"name": "Khartoum", "lat": 15.5007, "lon": 32.5599, "country": "Sudan"},
    {"name": "Algiers", "lat": 36.7538, "lon": 3.0588, "country": "Algeria"},
    {"name": "Accra", "lat": 5.5600, "lon": -0.2057, "country": "Ghana"},
    # Europe
    {"name": "London", "lat": 51.5074, "lon": -0.1278, "country": "United Kingdom"},
    {"name": "Paris", "lat": 48.8566, "lon": 2.3522, "country": "France"},
    {"name": "Berlin", "lat": 52.5200, "lon": 13.4050, "country": "Germany"},
    {"name": "Madrid", "lat": 40.4168, "lon": -3.7038, "country": "Spain"},
    {"name": "Rome", "lat": 41.9028, "lon": 12.4964, "country": "Italy"},
    {"name": "Amsterdam", "lat": 52.3676, "lon": 4.9041, "country": "Netherlands"},
    {"name": "Brussels", "lat": 50.8503, "lon": 4.3517, "country": "Belgium"},
    {"name": "Vienna", "lat": 48.2082, "lon": 16.3738, "country": "Austria"},
    {"name": "Stockholm", "lat": 59.3293, "lon": 18.0686, "country": "Sweden"},
    {"name": "Oslo", "lat": 59.9139, "lon": 10.7522, "country": "Norway"},
    # Asia
    {"name": "Tokyo", "lat": 35.6762, "lon": 139.6503, "country": "Japan"},
    {"name": "Beijing", "lat": 39.9042, "lon": 116.4074, "country": "China"},
    {"name": "Seoul", "lat": 37.5665, "lon": 126.9780, "country": "South Korea"},
    {"name": "Mumbai", "lat": 19.0760, "lon": 72.8777, "country": "India"},
    {"name": "Delhi", "lat": 28.7041, "lon": 77.1025, "country": "India"},
    {"name": "Bangkok", "lat": 13.7563, "lon": 100.5018, "country": "Thailand"},
    {"name": "Singapore", "lat": 1.3521, "lon": 103.8198, "country": "Singapore"},
    {"name": "Jakarta", "lat": -6.2088, "lon": 106.8456, "country": "Indonesia"},
    {"name": "Manila", "lat": 14.5995, "lon": 120.9842, "country": "Philippines"},
    {"name": "Ho Chi Minh City", "lat": 10.8231, "lon": 106.6297, "country": "Vietnam"},
    # North America
    {"name": "New York", "lat": 40.7128, "lon": -74.0060, "country": "United States"},
    {"name": "Los Angeles", "lat": 34.0522, "lon": -118.2437, "country": "United States"},
    {"name": "Chicago", "lat": 41.8781, "lon": -87.6298, "country": "United States"},
    {"name": "Toronto", "lat": 43.6532, "lon": -79.3832, "country": "Canada"},
    {"name": "Vancouver", "lat": 49.2827, "lon": -123.1207, "country": "Canada"},
    {"name": "Mexico City", "lat": 19.4326, "lon": -99.1332, "country": "Mexico"},
    {"name": "Montreal", "lat": 45.5017, "lon": -73.5673, "country": "Canada"},
    {"name": "San Francisco", "lat": 37.7749, "lon": -122.4194, "country": "United States"},
    {"name": "Miami", "lat": 25.7617, "lon": -80.1918, "country": "United States"},
    {"name": "Houston", "lat": 29.7604, "lon": -95.3698, "country": "United States"},
    # South America
    {"name": "São Paulo", "lat": -23.5505, "lon": -46.6333, "country": "Brazil"},
    {"name": "Rio de Janeiro", "lat": -22.9068, "lon": -43.1729, "country": "Brazil"},
    {"name": "Buenos Aires", "lat": -34.6118, "lon": -58.3960, "country": "Argentina"},
    {"name": "Lima", "lat": -12.0464, "lon": -77.0428, "country": "Peru"},
    {"name": "Bogotá", "lat": 4.7110, "lon": -74.0721, "country": "Colombia"},
    {"name": "Santiago", "lat": -33.4489, "lon": -70.6693, "country": "Chile"},
    {"name": "Caracas", "lat": 10.4806, "lon": -66.9036, "country": "Venezuela"},
    {"name": "Quito", "lat": -0.1807, "lon": -78.4678, "country": "Ecuador"},
    {"name": "Montevideo", "lat": -34.9011, "lon": -56.1645, "country": "Uruguay"},
    {"name": "Asunción", "lat": -25.2637, "lon": -57.5759, "country": "Paraguay"},
    # Oceania
    {"name": "Sydney", "lat": -33.8688, "lon": 151.2093, "country": "Australia"},
    {"name": "Melbourne", "lat": -37.8136, "lon": 144.9631, "country": "Australia"},
    {"name": "Brisbane", "lat": -27.4698, "lon": 153.0251, "country": "Australia"},
    {"name": "Perth", "lat": -31.9505, "lon": 115.8605, "country": "Australia"},
    {"name": "Adelaide", "lat": -34.9285, "lon": 138.6007, "country": "Australia"},
    {"name": "Auckland", "lat": -36.8485, "lon": 174.7633, "country": "New Zealand"},
    {"name": "Wellington", "lat": -41.2866, "lon": 174.7756, "country": "New Zealand"},
    {"name": "Honolulu", "lat": 21.3099, "lon": -157.8581, "country": "United States"},
    {"name": "Port Moresby", "lat": -9.4438, "lon": 147.1803, "country": "Papua New Guinea"},
    {"name": "Suva", "lat": -18.1416, "lon": 178.4419, "country": "Fiji"},
]

# AQICN city feeds tried when no station is usable
CITY_FEEDS = [
    {"name": "Nairobi", "slug": "nairobi", "lat": -1.2921, "lon": 36.8219},
    {"name": "New York", "slug": "newyork", "lat": 40.7128, "lon": -74.0060},
    {"name": "London", "slug": "london", "lat": 51.5074, "lon": -0.1278},
    {"name": "Delhi", "slug": "delhi", "lat": 28.6139, "lon": 77.2090},
    {"name": "Tokyo", "slug": "tokyo", "lat": 35.6762, "lon": 139.6503},
    {"name": "São Paulo", "slug": "saopaulo", "lat": -23.5505, "lon": -46.6333},
    {"name": "Beijing", "slug": "beijing", "lat": 39.9042, "lon": 116.4074},
    {"name": "Paris", "slug": "paris", "lat": 48.8566, "lon": 2.3522},
    {"name": "Los Angeles", "slug": "losangeles", "lat": 34.0522, "lon": -118.2437},
    {"name": "Cairo", "slug": "cairo", "lat": 30.0444, "lon": 31.2357},
    {"name": "Moscow", "slug": "moscow", "lat": 55.7558, "lon": 37.6173},
    {"name": "Sydney", "slug": "sydney", "lat": -33.8688, "lon": 151.2093},
    {"name": "Mexico City", "slug": "mexicocity", "lat": 19.4326, "lon": -99.1332},
    {"name": "Istanbul", "slug": "istanbul", "lat": 41.0082, "lon": 28.9784},
    {"name": "Johannesburg", "slug": "johannesburg", "lat": -26.2041, "lon": 28.0473},
    {"name": "Toronto", "slug": "toronto", "lat": 43.6532, "lon": -79.3832},
    {"name": "Bangkok", "slug": "bangkok", "lat": 13.7563, "lon": 100.5018},
    {"name": "Singapore", "slug": "singapore", "lat": 1.3521, "lon": 103.8198},
    {"name": "Lagos", "slug": "lagos", "lat": 6.5244, "lon": 3.3792},
    {"name": "Cape Town", "slug": "capetown", "lat": -33.9249, "lon": 18.4241},
    {"name": "Buenos Aires", "slug": "buenosaires", "lat": -34.6037, "lon": -58.3816},
    {"name": "Berlin", "slug": "berlin", "lat": 52.5200, "lon": 13.4050},
    {"name": "Madrid", "slug": "madrid", "lat": 40.4168, "lon": -3.7038},
    {"name": "Rome", "slug": "rome", "lat": 41.9028, "lon": 12.4964},
    {"name": "Seoul", "slug": "seoul", "lat": 37.5665, "lon": 126.9780},
    {"name": "Jakarta", "slug": "jakarta", "lat": -6.2088, "lon": 106.8456},
    {"name": "Hong Kong", "slug": "hongkong", "lat": 22.3193, "lon": 114.1694},
    {"name": "Dubai", "slug": "dubai", "lat": 25.2048, "lon": 55.2708},
    {"name": "Riyadh", "slug": "riyadh", "lat": 24.7136, "lon": 46.6753},
    {"name": "Kuala Lumpur", "slug": "kualalumpur", "lat": 3.1390, "lon": 101.6869},
]


# ═════════════════════════════════════════════════════════════════
# STATION SEARCH
# ═════════════════════════════════════════════════════════════════

def _station_time(entry):
    t = entry.get("time") or {}
    return t.get("stime") or t.get("s")


def _parse_search_entry(entry, country) -> Optional[Dict[str, Any]]:
    """Search hit -> station dict, or None when it has no usable AQI/geo."""
    try:
        aqi = float(entry.get("aqi"))
    except (TypeError, ValueError):
        return None
    if np.isnan(aqi) or aqi <= 0:
        return None

    station = entry.get("station") or {}
    geo = station.get("geo")
    if not isinstance(geo, (list, tuple)) or len(geo) != 2:
        return None
    try:
        lat, lon = float(geo[0]), float(geo[1])
    except (TypeError, ValueError):
        return None

    return {
        "uid": entry.get("uid"),
        "name": station.get("name") or f"Station {entry.get('uid')}",
        "lat": lat,
        "lon": lon,
        "aqi": aqi,
        "country": country,
        "last_update": _station_time(entry) or utc_now_iso(),
        "distance": 0.0,
    }


def search_nearby_stations(lat, lon, country=None, token=None) -> List[Dict[str, Any]]:
    print(f"   🔍 Searching AQICN stations near {lat}, {lon}")
    results = fetch_nearby_stations(lat, lon, token)
    stations = []
    for entry in results:
        station_country = (entry.get("station") or {}).get("country")
        parsed = _parse_search_entry(entry, station_country or country or "Unknown")
        if parsed is not None:
            stations.append(parsed)
    print(f"   ✓ {len(stations)} valid nearby stations ({len(results)} returned)")
    return stations


def search_stations_by_country(country, token=None) -> List[Dict[str, Any]]:
    print(f"   🔍 Searching AQICN stations in {country}")
    results = search_stations(country, token)
    stations = []
    for entry in results:
        parsed = _parse_search_entry(entry, country)
        if parsed is not None:
            stations.append(parsed)
    print(f"   ✓ {len(stations)} valid stations for {country} ({len(results)} returned)")
    return stations


# ═════════════════════════════════════════════════════════════════
# CACHE
# ═════════════════════════════════════════════════════════════════

def get_cached_stations(country, now=None):
    entry = station_cache.get(country)
    if not entry:
        return None
    now = time.time() if now is None else now
    if now - entry["timestamp"] >= STATION_CACHE_TTL:
        return None
    return entry["stations"]


def cache_stations(country, stations, now=None):
    station_cache[country] = {
        "country": country,
        "stations": stations,
        "timestamp": time.time() if now is None else now,
    }


def clear_cache():
    station_cache.clear()
    print("   ✓ Station cache cleared")


def get_cache_stats():
    return {
        "countries": len(station_cache),
        "total_stations": sum(len(e["stations"]) for e in station_cache.values()),
    }


# ═════════════════════════════════════════════════════════════════
# RANKING
# ═════════════════════════════════════════════════════════════════

def rank_stations(lat, lon, stations,
                  max_distance_km=MAX_STATION_DISTANCE_KM,
                  max_stations=MAX_CANDIDATES):
    """Closest stations first, within max_distance_km, at most max_stations."""
    if not stations or max_stations <= 0:
        return []

    dists = haversine_km_array(
        lat, lon,
        [s["lat"] for s in stations],
        [s["lon"] for s in stations],
    )
    order = np.argsort(dists, kind="stable")

    ranked = []
    for idx in order:
        if dists[idx] > max_distance_km:
            break
        ranked.append({**stations[idx], "distance": float(dists[idx])})
        if len(ranked) == max_stations:
            break
    return ranked


def _print_ranked(stations):
    for i, s in enumerate(stations, 1):
        print(f"     {i}. {s['name']} — {s['distance']:.2f}km (AQI: {s['aqi']:.0f})")


def find_closest_stations(lat, lon, token=None, max_stations=MAX_CANDIDATES, country=None):
    """Nearby search first, then the country keyword search."""
    nearby = rank_stations(lat, lon, search_nearby_stations(lat, lon, country, token),
                           max_stations=max_stations)
    if nearby:
        _print_ranked(nearby)
        return nearby

    country = country or get_country_from_coordinates(lat, lon)
    print(f"   🗺 Location resolved to country: {country}")

    stations = get_cached_stations(country)
    if stations is None:
        stations = search_stations_by_country(country, token)
        if stations:
            cache_stations(country, stations)
    else:
        print(f"   ✓ Using cached stations for {country} ({len(stations)} stations)")

    if not stations:
        print(f"   ⚠ No monitoring stations available for {country}")
        return []

    closest = rank_stations(lat, lon, stations, max_stations=max_stations)
    _print_ranked(closest)
    return closest


def find_nearest_capital_city(lat, lon):
    nearest = None
    shortest = float("inf")
    for city in CAPITAL_CITIES:
        d = haversine_km(lat, lon, city["lat"], city["lon"])
        if d < shortest:
            shortest = d
            nearest = city
    return {**nearest, "distance": shortest}


def find_nearest_city_feed(lat, lon, max_distance_km=MAX_CITY_FEED_DISTANCE_KM):
    """Closest entry of CITY_FEEDS with its distance, or None beyond max_distance_km."""
    dists = haversine_km_array(lat, lon, [c["lat"] for c in CITY_FEEDS], [c["lon"] for c in CITY_FEEDS])
    idx = int(np.argmin(dists))
    if dists[idx] > max_distance_km:
        return None
    return {**CITY_FEEDS[idx], "distance": float(dists[idx])}
