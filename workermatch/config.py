"""Project configuration.

Loads user-defined search parameters from search_config.json when available,
falling back to sensible defaults. Keep API request shapes centralized here.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- Geometry ---

EARTH_RADIUS_MILES = 3959.0
MILES_PER_DEGREE_LAT = 69.0
# Regional approximation; only holds where cos(lat) >= 54.6 / 69.1.
MILES_PER_DEGREE_LON_FIXED = 54.6
# "latitude" scales the longitude delta by cos(center latitude); "fixed" uses
# MILES_PER_DEGREE_LON_FIXED everywhere.
BBOX_MODE = "latitude"
BBOX_MIN_COS = 0.01

# --- Search ---

DEFAULT_RADIUS_MILES = 10.0
MAX_RADIUS_MILES = 50.0
TIER_RADII_MILES: Tuple[float, ...] = (5.0, 10.0, 20.0)
PROFILE_LOCATION_LABEL = "Your Profile Location"

# --- Geocoding provider (Places API) ---

PLACES_TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
PLACES_NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
FORWARD_FIELD_MASK = "places.displayName,places.location,places.types"
REVERSE_FIELD_MASK = "places.displayName,places.types,places.addressComponents"

REGION_CODE = "GB"
LANGUAGE_CODE = "en"
REGION_BIAS_CENTER = {"lat": 51.5074, "lon": -0.1278}
REGION_BIAS_RADIUS_M = 500000.0
REVERSE_GEOCODE_RADIUS_M = 100.0

GEOCODE_TIMEOUT_SECONDS = 8
GEOCODE_MIN_INTERVAL_SECONDS = 0.1
MAX_GEOCODE_REQUESTS_PER_RUN = 500
GEOCODE_MEMO_MAX_ENTRIES = 256

# --- Device geolocation ---

DEVICE_TIMEOUT_MS = 10000
DEVICE_HIGH_ACCURACY = True

# --- Request creation endpoint ---

REQUEST_API_BASE_URL = "http://localhost:8000/api"
CREATE_REQUEST_PATH = "/customer/create-service-request"
REQUEST_TIMEOUT_SECONDS = 15
DEFAULT_BUDGET_MIN = 50.0
DEFAULT_BUDGET_MAX = 200.0

# --- Dispatch ---

DISPATCH_MAX_WORKERS = 4
DISPATCH_MAX_WORKERS_CAP = 8

# --- HTTP ---

HTTP_RETRY_MAX = 3
# Request creation is not idempotent: only a rate-limit rejection is safe to resend.
REQUEST_RETRY_STATUSES = (429,)
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Cache and outputs ---

CACHE_DB_PATH = "geocode_cache.db"
CACHE_TTL_SECONDS = 7 * 24 * 3600
CACHE_MAX_ENTRIES = 5000
DIRECTORY_DB_PATH = "workers.db"
OUTPUT_DIR = "out"

API_KEY_ENV = "GOOGLE_MAPS_API_KEY"
API_TOKEN_ENV = "WORKERMATCH_API_TOKEN"


def load_search_config(path: Optional[str] = None) -> bool:
    """Load search configuration from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "search_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    globals_ref = globals()

    radius = data.get("default_radius_miles")
    if radius is not None:
        globals_ref["DEFAULT_RADIUS_MILES"] = float(radius)

    max_radius = data.get("max_radius_miles")
    if max_radius is not None:
        globals_ref["MAX_RADIUS_MILES"] = float(max_radius)

    tiers = data.get("tier_radii_miles")
    if tiers:
        if len(tiers) != 3:
            raise ValueError("tier_radii_miles must list exactly three radii")
        globals_ref["TIER_RADII_MILES"] = tuple(sorted(float(t) for t in tiers))

    bbox_mode = data.get("bbox_mode")
    if bbox_mode:
        if bbox_mode not in {"fixed", "latitude"}:
            raise ValueError("bbox_mode must be one of: fixed, latitude")
        globals_ref["BBOX_MODE"] = bbox_mode

    region = data.get("region", {})
    if region.get("code"):
        globals_ref["REGION_CODE"] = str(region["code"])
    center = region.get("center", {})
    if center.get("lat") is not None and center.get("lon") is not None:
        globals_ref["REGION_BIAS_CENTER"] = {"lat": float(center["lat"]), "lon": float(center["lon"])}
    if region.get("radius_m") is not None:
        globals_ref["REGION_BIAS_RADIUS_M"] = float(region["radius_m"])

    geocoding = data.get("geocoding", {})
    if "min_interval_seconds" in geocoding:
        globals_ref["GEOCODE_MIN_INTERVAL_SECONDS"] = float(geocoding["min_interval_seconds"])
    if "timeout_seconds" in geocoding:
        globals_ref["GEOCODE_TIMEOUT_SECONDS"] = float(geocoding["timeout_seconds"])
    if "max_requests" in geocoding:
        globals_ref["MAX_GEOCODE_REQUESTS_PER_RUN"] = int(geocoding["max_requests"])

    cache = data.get("cache", {})
    if "ttl_seconds" in cache:
        globals_ref["CACHE_TTL_SECONDS"] = int(cache["ttl_seconds"])
    if "max_entries" in cache:
        globals_ref["CACHE_MAX_ENTRIES"] = int(cache["max_entries"])

    dispatch = data.get("dispatch", {})
    if "max_workers" in dispatch:
        globals_ref["DISPATCH_MAX_WORKERS"] = int(dispatch["max_workers"])
    if dispatch.get("base_url"):
        globals_ref["REQUEST_API_BASE_URL"] = str(dispatch["base_url"])

    return True
