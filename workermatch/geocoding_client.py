"""Geocoding provider client (Places API) with caching and rate limiting."""
from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from . import config
from .cache import NOT_FOUND, GeocodeCache, is_not_found, make_request_cache_key
from .errors import GeocodingFailed
from .http import HttpClient, RateLimiter, RequestBudget, RequestMetrics
from .models import Coordinates, ReverseGeocodeResult

logger = logging.getLogger(__name__)


def make_geocoding_http_client(api_key: str, timeout: Optional[float] = None) -> HttpClient:
    # Geocoding is a single unit of work; retries are left to the caller.
    return HttpClient(
        default_headers={"X-Goog-Api-Key": api_key},
        timeout=timeout if timeout is not None else config.GEOCODE_TIMEOUT_SECONDS,
        retry_max=1,
    )


class GeocodingClient:
    def __init__(
        self,
        http_client: HttpClient,
        cache: Optional[GeocodeCache] = None,
        budget: Optional[RequestBudget] = None,
        rate_limiter: Optional[RateLimiter] = None,
        no_cache: bool = False,
        metrics: Optional[RequestMetrics] = None,
        memo_max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.http = http_client
        self.cache = cache
        self.budget = budget
        self.rate_limiter = rate_limiter or RateLimiter(config.GEOCODE_MIN_INTERVAL_SECONDS)
        self.no_cache = no_cache or cache is None
        self.metrics = metrics
        self.memo_max_entries = max(
            1, int(memo_max_entries if memo_max_entries is not None else config.GEOCODE_MEMO_MAX_ENTRIES)
        )
        self.memo_ttl_seconds = cache.ttl_seconds if cache is not None else config.CACHE_TTL_SECONDS
        self._clock = clock
        self._memo: "OrderedDict[str, Tuple[float, Dict[str, Any]]]" = OrderedDict()
        self._memo_lock = threading.Lock()

    def forward_geocode(self, text: str) -> Optional[Coordinates]:
        query = " ".join((text or "").split())
        if not query:
            raise ValueError("forward_geocode requires non-empty text")
        body = build_forward_body(query)
        response = self._post(config.PLACES_TEXT_SEARCH_URL, body, config.FORWARD_FIELD_MASK)
        coords = parse_forward_response(response)
        if coords is None:
            logger.warning("No geocoding result for %r", query)
        return coords

    def geocode_postal_code(self, postal_code: str) -> Optional[Coordinates]:
        """Forward-geocode a postal code, queried with its spaces removed."""
        return self.forward_geocode(re.sub(r"\s+", "", postal_code or ""))

    def reverse_geocode(self, lat: float, lon: float) -> Optional[ReverseGeocodeResult]:
        body = build_reverse_body(lat, lon)
        response = self._post(config.PLACES_NEARBY_SEARCH_URL, body, config.REVERSE_FIELD_MASK)
        return parse_reverse_response(response)

    def _post(self, url: str, body: Dict[str, Any], field_mask: str) -> Dict[str, Any]:
        key = make_request_cache_key(url, field_mask, body)
        memoized = self._memo_get(key)
        if memoized is not None:
            if self.metrics is not None:
                self.metrics.inc_dedup_skip("geocode")
            return self._unwrap(memoized)
        if not self.no_cache:
            cached = self.cache.get(key)
            if cached is not None:
                if self.metrics is not None:
                    self.metrics.inc_cache_hit("geocode")
                self._memo_set(key, cached)
                return self._unwrap(cached)

        if self.budget is not None:
            self.budget.consume("geocode")
        self.rate_limiter.wait()
        try:
            response = self.http.post_json(url, body, extra_headers={"X-Goog-FieldMask": field_mask})
        except requests.Timeout as exc:
            raise GeocodingFailed(f"Geocoding request timed out: {url}") from exc
        except requests.RequestException as exc:
            raise GeocodingFailed(f"Geocoding request failed: {exc}") from exc
        except ValueError as exc:
            raise GeocodingFailed(f"Geocoding provider returned invalid JSON: {url}") from exc

        stored = response if response.get("places") else dict(NOT_FOUND)
        self._memo_set(key, stored)
        if not self.no_cache:
            self.cache.set(key, stored)
        return self._unwrap(stored)

    def _memo_get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._memo_lock:
            entry = self._memo.get(key)
            if entry is None:
                return None
            stored_at, payload = entry
            if self._clock() - stored_at > self.memo_ttl_seconds:
                del self._memo[key]
                return None
            self._memo.move_to_end(key)
            return payload

    def _memo_set(self, key: str, payload: Dict[str, Any]) -> None:
        with self._memo_lock:
            self._memo[key] = (self._clock(), payload)
            self._memo.move_to_end(key)
            while len(self._memo) > self.memo_max_entries:
                self._memo.popitem(last=False)

    @staticmethod
    def _unwrap(payload: Dict[str, Any]) -> Dict[str, Any]:
        if is_not_found(payload):
            return {}
        return payload


def build_forward_body(query: str) -> Dict[str, Any]:
    return {
        "textQuery": query,
        "locationBias": {
            "circle": {
                "center": {
                    "latitude": config.REGION_BIAS_CENTER["lat"],
                    "longitude": config.REGION_BIAS_CENTER["lon"],
                },
                "radius": config.REGION_BIAS_RADIUS_M,
            }
        },
        "languageCode": config.LANGUAGE_CODE,
        "regionCode": config.REGION_CODE,
    }


def build_reverse_body(lat: float, lon: float) -> Dict[str, Any]:
    return {
        "locationRestriction": {
            "circle": {
                "center": {"latitude": lat, "longitude": lon},
                "radius": config.REVERSE_GEOCODE_RADIUS_M,
            }
        },
        "languageCode": config.LANGUAGE_CODE,
        "regionCode": config.REGION_CODE,
    }


# Adapters for Places response fields

def _places(response: Dict[str, Any]) -> List[Dict[str, Any]]:
    places = response.get("places") or []
    return [p for p in places if isinstance(p, dict)]


def _display_name(place: Dict[str, Any]) -> str:
    display = place.get("displayName")
    if isinstance(display, dict):
        return str(display.get("text") or display.get("value") or "")
    return str(display or "")


def parse_forward_response(response: Dict[str, Any]) -> Optional[Coordinates]:
    for place in _places(response):
        location = place.get("location") or place.get("latLng") or {}
        lat = location.get("latitude", location.get("lat"))
        lon = location.get("longitude", location.get("lng", location.get("lon")))
        if lat is None or lon is None:
            continue
        try:
            return Coordinates(lat=float(lat), lon=float(lon))
        except (TypeError, ValueError):
            continue
    return None


def parse_reverse_response(response: Dict[str, Any]) -> Optional[ReverseGeocodeResult]:
    places = _places(response)
    if not places:
        return None
    place = places[0]
    label = _display_name(place)
    postal_code = None
    for component in place.get("addressComponents") or []:
        if "postal_code" in (component.get("types") or []):
            postal_code = component.get("longText") or component.get("shortText") or None
            break
    if not label and not postal_code:
        return None
    return ReverseGeocodeResult(label=label, postal_code=postal_code)
