"""Error taxonomy for worker search and dispatch."""
from __future__ import annotations

from typing import Optional, Sequence


class WorkerMatchError(RuntimeError):
    pass


class LocationUnavailable(WorkerMatchError):
    def __init__(self, message: str, reasons: Optional[Sequence[str]] = None) -> None:
        super().__init__(message)
        self.reasons = list(reasons or [])


class GeocodingFailed(WorkerMatchError):
    pass


class DeviceGeolocationError(WorkerMatchError):
    user_message = "Could not get current location."


class PermissionDenied(DeviceGeolocationError):
    user_message = "Permission denied. Please allow location access."


class PositionUnavailable(DeviceGeolocationError):
    user_message = "Location unavailable. Try again later."


class GeolocationTimeout(DeviceGeolocationError):
    user_message = "Location request timed out."


class DirectoryError(WorkerMatchError):
    pass


class DispatchFailed(WorkerMatchError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
