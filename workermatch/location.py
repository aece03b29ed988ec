"""Service location resolution.

The requester picks a strategy explicitly; each strategy degrades on its own
terms instead of silently switching to another source.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Tuple

from . import config
from .errors import GeocodingFailed, LocationUnavailable, WorkerMatchError
from .geocoding_client import GeocodingClient
from .models import Coordinates, LocationSource, ResolvedLocation, is_finite_number

logger = logging.getLogger(__name__)


class LocationStrategy(str, Enum):
    EXPLICIT_ADDRESS = "explicit_address"
    DEVICE_GEOLOCATION = "device_geolocation"
    STORED_PROFILE = "stored_profile"


class PositionProvider(Protocol):
    def get_current_position(self, timeout_ms: int, high_accuracy: bool) -> Coordinates:
        """Return device coordinates or raise a DeviceGeolocationError subclass."""
        ...


class FixedPositionProvider:
    """Position reported by the caller's device, already obtained upstream."""

    def __init__(self, lat: float, lon: float) -> None:
        self.position = Coordinates(lat=float(lat), lon=float(lon))
        self.requests: List[Tuple[int, bool]] = []

    def get_current_position(self, timeout_ms: int, high_accuracy: bool) -> Coordinates:
        self.requests.append((timeout_ms, high_accuracy))
        return self.position


def coordinate_label(lat: float, lon: float) -> str:
    return f"({lat:.6f}, {lon:.6f})"


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


class LocationResolver:
    def __init__(
        self,
        geocoder: Optional[GeocodingClient] = None,
        device: Optional[PositionProvider] = None,
        device_timeout_ms: Optional[int] = None,
        high_accuracy: Optional[bool] = None,
    ) -> None:
        self.geocoder = geocoder
        self.device = device
        self.device_timeout_ms = device_timeout_ms if device_timeout_ms is not None else config.DEVICE_TIMEOUT_MS
        self.high_accuracy = config.DEVICE_HIGH_ACCURACY if high_accuracy is None else high_accuracy

    def resolve(self, strategy: LocationStrategy, payload: Optional[Mapping[str, Any]] = None) -> ResolvedLocation:
        strategy = LocationStrategy(strategy)
        if strategy == LocationStrategy.EXPLICIT_ADDRESS:
            return self._from_address(payload or {})
        if strategy == LocationStrategy.DEVICE_GEOLOCATION:
            return self._from_device()
        return self._from_profile(payload or {})

    def resolve_in_order(
        self, attempts: Iterable[Tuple[LocationStrategy, Optional[Mapping[str, Any]]]]
    ) -> ResolvedLocation:
        reasons: List[str] = []
        for strategy, payload in attempts:
            try:
                return self.resolve(strategy, payload)
            except WorkerMatchError as exc:
                logger.warning("Location strategy %s failed: %s", LocationStrategy(strategy).value, exc)
                reasons.append(f"{LocationStrategy(strategy).value}: {exc}")
        raise LocationUnavailable("No usable location source", reasons=reasons)

    def _from_address(self, payload: Mapping[str, Any]) -> ResolvedLocation:
        lat = _first(payload, "latitude", "lat")
        lon = _first(payload, "longitude", "lng", "lon")
        if not is_finite_number(lat) or not is_finite_number(lon):
            raise LocationUnavailable("Selected address has no usable coordinates")
        label = _first(payload, "formattedAddress", "formatted_address", "address")
        postal_code = _first(payload, "postalCode", "postal_code", "postcode")
        try:
            return ResolvedLocation(
                latitude=float(lat),
                longitude=float(lon),
                formatted_label=str(label) if label else coordinate_label(float(lat), float(lon)),
                postal_code=str(postal_code) if postal_code else None,
                source=LocationSource.EXPLICIT_ADDRESS,
            )
        except ValueError as exc:
            raise LocationUnavailable(f"Selected address is malformed: {exc}") from exc

    def _from_device(self) -> ResolvedLocation:
        if self.device is None:
            raise LocationUnavailable("Geolocation is not supported on this device")
        # DeviceGeolocationError subclasses propagate as-is for user messaging.
        position = self.device.get_current_position(self.device_timeout_ms, self.high_accuracy)
        lat, lon = float(position.lat), float(position.lon)
        logger.info("Device geolocation success (%.6f, %.6f)", lat, lon)

        label = coordinate_label(lat, lon)
        postal_code: Optional[str] = None
        if self.geocoder is None:
            logger.warning("No geocoder configured; using coordinate-only label")
        else:
            try:
                reverse = self.geocoder.reverse_geocode(lat, lon)
            except GeocodingFailed as exc:
                logger.warning("Reverse geocoding failed (%s); using coordinate-only label", exc)
                reverse = None
            if reverse is None:
                logger.warning("Reverse geocoding returned no result; using coordinate-only label")
            else:
                label = reverse.label or label
                postal_code = reverse.postal_code
        try:
            return ResolvedLocation(
                latitude=lat,
                longitude=lon,
                formatted_label=label,
                postal_code=postal_code,
                source=LocationSource.DEVICE_GEOLOCATION,
            )
        except ValueError as exc:
            raise LocationUnavailable(f"Device reported invalid coordinates: {exc}") from exc

    def _from_profile(self, profile: Mapping[str, Any]) -> ResolvedLocation:
        lat = profile.get("latitude")
        lon = profile.get("longitude")
        postal_code = _first(profile, "postcode", "postal_code", "postalCode")
        postal_code = str(postal_code).strip() if postal_code else None

        if is_finite_number(lat) and is_finite_number(lon):
            try:
                return ResolvedLocation(
                    latitude=float(lat),
                    longitude=float(lon),
                    formatted_label=config.PROFILE_LOCATION_LABEL,
                    postal_code=postal_code,
                    source=LocationSource.STORED_PROFILE,
                )
            except ValueError as exc:
                if not postal_code:
                    raise LocationUnavailable(f"Profile location is invalid: {exc}") from exc
                logger.warning("Profile coordinates invalid (%s); falling back to postal code", exc)

        if postal_code:
            logger.warning("Profile missing coordinates, using postal-code-only search (%s)", postal_code)
            return ResolvedLocation(
                latitude=0.0,
                longitude=0.0,
                formatted_label=postal_code,
                postal_code=postal_code,
                source=LocationSource.POSTAL_CODE_ONLY,
            )
        raise LocationUnavailable("Profile location not set")
