"""
main.py — FastAPI server for air quality lookup and station selection

Run:   uvicorn main:app --reload --port 8000
Docs:  http://localhost:8000/docs
"""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional, Any, List
import numpy as np

import air_sources
from air_quality import (
    MissingAPIKeyError,
    UpstreamError,
    get_air_quality_data,
    get_capital_air_quality,
)
from data_collection import (
    CityNotFoundError,
    MAJOR_CITIES,
    collect_all,
    collect_single_city,
    load_active_records,
)
from data_validator import validate_data_source
from station_finder import (
    MAX_CANDIDATES,
    clear_cache,
    find_closest_stations,
    get_cache_stats,
)

app = FastAPI(
    title="Air Quality Station Service",
    description="Current air quality for a location from the nearest valid AQICN monitoring station, with OpenWeatherMap fallback.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class LocationRequest(BaseModel):
    """Coordinates of the user. Validated by hand so bad input is a 400."""
    lat: Optional[Any] = Field(None, description="Latitude (-90..90)")
    lon: Optional[Any] = Field(None, description="Longitude (-180..180)")


class ValidationRequest(BaseModel):
    data_source: Optional[str] = None
    aqi: Optional[float] = None


class ValidationResponse(BaseModel):
    status: str
    message: str
    data_source: str
    aqi: Optional[float] = None
    is_legitimate_source: bool
    is_suspicious_aqi: bool


class StationCandidate(BaseModel):
    uid: Optional[int] = None
    name: str
    lat: float
    lon: float
    aqi: float
    country: str
    distance: float
    last_update: Optional[str] = None


class NearestStationsResponse(BaseModel):
    latitude: float
    longitude: float
    stations: List[StationCandidate]


class CollectionRequest(BaseModel):
    manual: bool = False
    scheduled: bool = False
    city: Optional[str] = None


def check_coordinates(lat, lon):
    """Return (lat, lon) as floats or raise a 400."""
    def _is_number(v):
        return isinstance(v, (int, float)) and not isinstance(v, bool) and np.isfinite(v)

    if not _is_number(lat) or not _is_number(lon):
        raise HTTPException(status_code=400, detail="Valid coordinates required.")
    if lat < -90 or lat > 90 or lon < -180 or lon > 180:
        raise HTTPException(status_code=400, detail="Invalid coordinate ranges.")
    return float(lat), float(lon)


# ═════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═════════════════════════════════════════════════════════════════

@app.get("/")
def root():
    return {
        "service": "Air Quality Station Service",
        "version": "1.0.0",
        "sources": ["AQICN", "OpenWeatherMap"],
        "max_candidates": MAX_CANDIDATES,
        "docs": "/docs",
    }


@app.get("/health")
def health():
    return {
        "status": "ok",
        "aqicn_configured": bool(air_sources.AQICN_API_KEY),
        "openweathermap_configured": bool(air_sources.OPENWEATHERMAP_API_KEY),
    }


@app.post("/air-quality")
def air_quality(request: LocationRequest):
    """Air quality from the nearest station that returns valid data."""
    lat, lon = check_coordinates(request.lat, request.lon)
    try:
        result = get_air_quality_data(lat, lon)
    except MissingAPIKeyError:
        raise HTTPException(status_code=503, detail="Service unavailable.")
    except Exception as e:
        print(f"❌ Air quality lookup error: {e}")
        raise HTTPException(status_code=500, detail="Service error.")

    if result.get("error"):
        raise HTTPException(status_code=503, detail=result["message"])
    return result


@app.post("/air-quality/capital")
def air_quality_capital(request: LocationRequest):
    """OpenWeatherMap reading for the reference capital city nearest to the user."""
    lat, lon = check_coordinates(request.lat, request.lon)
    try:
        return get_capital_air_quality(lat, lon)
    except MissingAPIKeyError:
        raise HTTPException(status_code=503, detail="OpenWeatherMap API key not configured")
    except UpstreamError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        print(f"❌ Capital air quality error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/stations/nearest", response_model=NearestStationsResponse)
def nearest_stations(lat: float, lon: float, max_stations: int = MAX_CANDIDATES):
    """Closest valid AQICN stations, nearest first."""
    lat, lon = check_coordinates(lat, lon)
    if max_stations < 1 or max_stations > 20:
        raise HTTPException(status_code=400, detail="max_stations must be between 1 and 20")
    if not air_sources.AQICN_API_KEY:
        raise HTTPException(status_code=503, detail="Service unavailable.")

    stations = find_closest_stations(lat, lon, max_stations=max_stations)
    return NearestStationsResponse(latitude=lat, longitude=lon, stations=stations)


@app.post("/validate", response_model=ValidationResponse)
def validate(request: ValidationRequest):
    """Grade a reading's data source and AQI value."""
    return validate_data_source(request.data_source, request.aqi)


@app.post("/collect")
def collect(request: CollectionRequest):
    token = air_sources.AQICN_API_KEY
    if not token:
        raise HTTPException(status_code=500, detail="AQICN API key not configured")
    owm_key = air_sources.OPENWEATHERMAP_API_KEY or None

    if request.manual and request.city:
        try:
            record = collect_single_city(request.city, token, owm_key)
        except CityNotFoundError:
            raise HTTPException(status_code=400, detail="City not found")
        if record is None:
            raise HTTPException(status_code=500, detail=f"Failed to collect data for {request.city}")
        return {"success": True, "message": f"Data collected for {request.city}", "data": record}

    execution_type = "Scheduled (Cron)" if request.scheduled else "Manual (Direct)"
    summary = collect_all(token, owm_key)
    return {
        "success": True,
        "message": f"{execution_type} environmental data collection completed",
        "execution_type": execution_type,
        **summary,
    }


@app.get("/collect/latest")
def collect_latest():
    df = load_active_records()
    # NaN is not JSON serializable
    records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
    return {
        "count": len(records),
        "cities": [c["name"] for c in MAJOR_CITIES],
        "records": records,
    }


@app.get("/cache/stats")
def cache_stats():
    return get_cache_stats()


@app.delete("/cache")
def cache_clear():
    clear_cache()
    return {"status": "cleared", **get_cache_stats()}
