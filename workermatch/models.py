"""Records shared by search and dispatch."""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from . import config


class LocationSource(str, Enum):
    EXPLICIT_ADDRESS = "explicit_address"
    DEVICE_GEOLOCATION = "device_geolocation"
    STORED_PROFILE = "stored_profile"
    POSTAL_CODE_ONLY = "postal_code_only"


class DispatchStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


def is_finite_number(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def normalize_postal_code(value: Optional[str]) -> str:
    return "".join((value or "").split()).upper()


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lon: float


@dataclass(frozen=True)
class ReverseGeocodeResult:
    label: str
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class ResolvedLocation:
    latitude: float
    longitude: float
    formatted_label: str
    postal_code: Optional[str]
    source: LocationSource

    def __post_init__(self) -> None:
        if not is_finite_number(self.latitude) or not -90.0 <= float(self.latitude) <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not is_finite_number(self.longitude) or not -180.0 <= float(self.longitude) <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    @property
    def is_degraded(self) -> bool:
        # (0, 0) is the placeholder sentinel for postal-code-only locations.
        return (
            self.source == LocationSource.POSTAL_CODE_ONLY
            and self.latitude == 0.0
            and self.longitude == 0.0
        )

    def with_coordinates(self, lat: float, lon: float) -> "ResolvedLocation":
        return replace(self, latitude=float(lat), longitude=float(lon))


@dataclass(frozen=True)
class WorkerCandidate:
    person_id: str
    worker_profile_id: Optional[str]
    display_name: str
    postal_code: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def has_coordinates(self) -> bool:
        return is_finite_number(self.latitude) and is_finite_number(self.longitude)


@dataclass(frozen=True)
class RankedWorker:
    candidate: WorkerCandidate
    distance_miles: float
    is_eligible_for_dispatch: bool

    @property
    def person_id(self) -> str:
        return self.candidate.person_id

    @property
    def worker_profile_id(self) -> Optional[str]:
        return self.candidate.worker_profile_id

    @property
    def display_name(self) -> str:
        return self.candidate.display_name

    @property
    def postal_code(self) -> str:
        return self.candidate.postal_code

    @property
    def latitude(self) -> Optional[float]:
        return self.candidate.latitude

    @property
    def longitude(self) -> Optional[float]:
        return self.candidate.longitude

    def to_row(self) -> Dict[str, Any]:
        return {
            "person_id": self.person_id,
            "worker_profile_id": self.worker_profile_id,
            "display_name": self.display_name,
            "postal_code": self.postal_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "distance_miles": None if math.isinf(self.distance_miles) else self.distance_miles,
            "eligible": self.is_eligible_for_dispatch,
        }


@dataclass(frozen=True)
class TierCounts:
    within_5: int
    within_10: int
    within_20: int
    total: int


@dataclass
class SearchResult:
    location: ResolvedLocation
    radius_miles: float
    ranked: List[RankedWorker]
    tier_counts: Optional[TierCounts] = None
    excluded: List[RankedWorker] = field(default_factory=list)

    @property
    def eligible(self) -> List[RankedWorker]:
        return [w for w in self.ranked if w.is_eligible_for_dispatch]


@dataclass(frozen=True)
class Service:
    service_id: str
    price_min: Optional[float] = None
    price_max: Optional[float] = None


@dataclass(frozen=True)
class Budget:
    minimum: float
    maximum: float

    def __post_init__(self) -> None:
        if self.minimum < 0 or self.maximum < 0:
            raise ValueError("budget values must be non-negative")
        if self.minimum > self.maximum:
            raise ValueError(f"budget minimum {self.minimum} exceeds maximum {self.maximum}")

    @classmethod
    def for_service(cls, service: Service) -> "Budget":
        minimum = service.price_min if service.price_min else config.DEFAULT_BUDGET_MIN
        maximum = service.price_max if service.price_max else config.DEFAULT_BUDGET_MAX
        return cls(minimum=float(minimum), maximum=float(maximum))


@dataclass(frozen=True)
class DispatchRequest:
    service_id: str
    worker_profile_id: str
    requester_location: ResolvedLocation
    message: str
    preferred_date: Optional[date]
    budget_min: float
    budget_max: float

    def to_payload(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "worker_id": self.worker_profile_id,
            "message_to_worker": self.message,
            "preferred_date": self.preferred_date.isoformat() if self.preferred_date else None,
            "location_address": self.requester_location.formatted_label,
            "location_latitude": self.requester_location.latitude,
            "location_longitude": self.requester_location.longitude,
            "budget_min": self.budget_min,
            "budget_max": self.budget_max,
        }


@dataclass(frozen=True)
class DispatchOutcome:
    person_id: str
    worker_profile_id: Optional[str]
    status: DispatchStatus
    error_detail: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class DispatchBatchResult:
    attempted: int = 0
    succeeded: int = 0
    failures: List[DispatchOutcome] = field(default_factory=list)
    outcomes: List[DispatchOutcome] = field(default_factory=list)
    skipped: List[DispatchOutcome] = field(default_factory=list)

    @property
    def selected(self) -> int:
        return self.attempted + len(self.skipped)

    @property
    def ok(self) -> bool:
        if self.attempted > 0:
            return self.succeeded > 0
        return not self.skipped

    def summary(self) -> str:
        if self.attempted > 0 and self.succeeded == 0:
            return f"Failed to send service requests to {self.attempted} worker(s)"
        return f"Service requests sent to {self.succeeded} of {self.selected} worker(s)"
