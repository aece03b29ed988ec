"""Geospatial helpers."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from . import config


def haversine(lat1: float, lon1: float, lat2: float, lon2: float, radius: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return radius * c


def distance_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in miles."""
    return haversine(lat1, lon1, lat2, lon2, config.EARTH_RADIUS_MILES)


def round_miles(value: float) -> float:
    if math.isinf(value):
        return value
    return round(value, 1)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: Optional[float], lon: Optional[float]) -> bool:
        if lat is None or lon is None:
            return False
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


def degree_deltas(lat: float, radius_miles: float, mode: Optional[str] = None) -> tuple[float, float]:
    """Return (lat_delta, lon_delta) in degrees for a radius around ``lat``."""
    mode = mode or config.BBOX_MODE
    lat_delta = radius_miles / config.MILES_PER_DEGREE_LAT
    if mode == "fixed":
        lon_delta = radius_miles / config.MILES_PER_DEGREE_LON_FIXED
    elif mode == "latitude":
        c = math.cos(math.radians(lat))
        if abs(c) < config.BBOX_MIN_COS:
            c = config.BBOX_MIN_COS
        lon_delta = radius_miles / (config.MILES_PER_DEGREE_LAT * c)
    else:
        raise ValueError(f"Unknown bounding box mode: {mode}")
    return lat_delta, lon_delta


def bounding_box(lat: float, lon: float, radius_miles: float, mode: Optional[str] = None) -> BoundingBox:
    if radius_miles < 0:
        raise ValueError("radius_miles must be non-negative")
    lat_delta, lon_delta = degree_deltas(lat, radius_miles, mode)
    return BoundingBox(
        min_lat=max(-90.0, lat - lat_delta),
        max_lat=min(90.0, lat + lat_delta),
        min_lon=max(-180.0, lon - lon_delta),
        max_lon=min(180.0, lon + lon_delta),
    )
