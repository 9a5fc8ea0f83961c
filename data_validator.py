"""
data_validator.py — Placeholder / contaminated reading detection

Two rule sets:
  * validate_data_source() grades a single live reading as valid,
    suspicious or contaminated before it is shown or accepted.
  * is_contaminated_record() / drop_contaminated() are the stricter
    cleanup rules applied to stored readings.
"""

from typing import Dict, Any

import pandas as pd

# ═════════════════════════════════════════════════════════════════
# RULES
# ═════════════════════════════════════════════════════════════════

OPENWEATHERMAP_SOURCE = "OpenWeatherMap API"
AQICN_SOURCE = "AQICN"

LEGITIMATE_SOURCES = {
    OPENWEATHERMAP_SOURCE,
    "Integrated Weather System",
    "Manual Fetch",
    "Server-side Collection",
    AQICN_SOURCE,
}

# Values that were seeded as fake readings
PLACEHOLDER_AQI_VALUES = {65, 75}
MIN_PLAUSIBLE_AQI = 10

CONTAMINATED_SOURCES = {"Initial Data", "Legacy Data"}
CONTAMINATION_MARKERS = ("placeholder", "mock", "demo")

# Cleanup also drops the seeded AQI=1 rows
CLEANUP_AQI_VALUES = PLACEHOLDER_AQI_VALUES | {1}

STATUS_MESSAGES = {
    "valid": "Data source verified",
    "suspicious": "AQI value may be inaccurate",
    "contaminated": "Data source may be contaminated",
}


def is_legitimate_source(data_source) -> bool:
    return bool(data_source) and data_source in LEGITIMATE_SOURCES


def is_suspicious_aqi(aqi) -> bool:
    if aqi is None:
        return True
    return aqi in PLACEHOLDER_AQI_VALUES or aqi < MIN_PLAUSIBLE_AQI


def validate_data_source(data_source, aqi) -> Dict[str, Any]:
    legitimate = is_legitimate_source(data_source)
    suspicious = is_suspicious_aqi(aqi)

    if not legitimate:
        status = "contaminated"
    elif suspicious and data_source != OPENWEATHERMAP_SOURCE:
        status = "suspicious"
    else:
        status = "valid"

    return {
        "status": status,
        "message": STATUS_MESSAGES[status],
        "data_source": data_source or "Unknown",
        "aqi": aqi,
        "is_legitimate_source": legitimate,
        "is_suspicious_aqi": suspicious,
    }


def is_contaminated_record(data_source, aqi) -> bool:
    source = data_source if isinstance(data_source, str) else ""
    if source in CONTAMINATED_SOURCES:
        return True
    lowered = source.lower()
    if any(marker in lowered for marker in CONTAMINATION_MARKERS):
        return True
    if source == OPENWEATHERMAP_SOURCE or aqi is None or pd.isna(aqi):
        return False
    return aqi in CLEANUP_AQI_VALUES or aqi < MIN_PLAUSIBLE_AQI


def drop_contaminated(df: pd.DataFrame) -> pd.DataFrame:
    """Remove rows whose data_source/aqi match the cleanup rules."""
    if df.empty:
        return df.copy()

    mask = df.apply(lambda r: is_contaminated_record(r.get("data_source"), r.get("aqi")), axis=1)
    removed = int(mask.sum())
    if removed:
        print(f"   ⚠ Removed {removed} contaminated record(s)")
    return df.loc[~mask].reset_index(drop=True)
