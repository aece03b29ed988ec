"""Search and dispatch entrypoints used by the caller layer."""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from . import config
from .directory import WorkerDirectory
from .dispatch import DispatchOrchestrator, Messages, RequestSender
from .eligibility import EligibilityFilter, within_radius
from .errors import GeocodingFailed
from .geocoding_client import GeocodingClient
from .http import RequestMetrics
from .models import (
    Budget,
    DispatchBatchResult,
    ResolvedLocation,
    SearchResult,
    Service,
    TierCounts,
    normalize_postal_code,
)
from .prefilter import CandidatePrefilter, CandidateSnapshot
from .ranking import rank, split_eligible, tier_counts

logger = logging.getLogger(__name__)


class WorkerSearchService:
    def __init__(
        self,
        directory: WorkerDirectory,
        geocoder: Optional[GeocodingClient] = None,
        request_client: Optional[RequestSender] = None,
        bbox_mode: Optional[str] = None,
        include_unlocated: bool = True,
        verify_profiles: bool = False,
        max_workers: Optional[int] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.directory = directory
        self.geocoder = geocoder
        self.prefilter = CandidatePrefilter(
            directory, geocoder=geocoder, bbox_mode=bbox_mode, include_unlocated=include_unlocated
        )
        self.eligibility = EligibilityFilter(profile_lookup=directory.exists_worker_profile)
        self.orchestrator: Optional[DispatchOrchestrator] = None
        if request_client is not None:
            self.orchestrator = DispatchOrchestrator(
                request_client,
                max_workers=max_workers,
                profile_lookup=directory.exists_worker_profile if verify_profiles else None,
                metrics=metrics,
            )

    def effective_location(self, location: ResolvedLocation) -> ResolvedLocation:
        if not location.is_degraded:
            return location
        if self.geocoder is None:
            raise GeocodingFailed("Postal-code-only location needs a geocoder to resolve coordinates")
        if location.postal_code:
            coords = self.geocoder.geocode_postal_code(location.postal_code)
        else:
            coords = self.geocoder.forward_geocode(location.formatted_label)
        if coords is None:
            raise GeocodingFailed(f"Could not get coordinates for postal code {location.postal_code}")
        logger.info("Resolved postal code %s to (%.6f, %.6f)", location.postal_code, coords.lat, coords.lon)
        return location.with_coordinates(coords.lat, coords.lon)

    def search(
        self,
        location: ResolvedLocation,
        radius_miles: Optional[float] = None,
        include_tiers: bool = True,
        include_ineligible: bool = False,
    ) -> SearchResult:
        radius = float(radius_miles if radius_miles is not None else config.DEFAULT_RADIUS_MILES)
        if radius <= 0 or radius > config.MAX_RADIUS_MILES:
            raise ValueError(f"radius_miles must be in (0, {config.MAX_RADIUS_MILES}]")

        try:
            center = self.effective_location(location)
        except GeocodingFailed as exc:
            logger.warning(
                "Could not resolve coordinates for %s (%s); matching workers by postal code",
                location.formatted_label,
                exc,
            )
            return self._search_same_postal_code(location, radius, include_tiers, include_ineligible)
        logger.info("Finding workers within %s miles of %s", radius, center.formatted_label)

        widest = max([radius] + (list(config.TIER_RADII_MILES) if include_tiers else []))
        snapshot = CandidateSnapshot(self.prefilter, center)
        measured = self.eligibility.filter(snapshot.candidates(widest), center)

        in_radius = rank(within_radius(measured, center, radius))
        eligible, excluded = split_eligible(in_radius)
        tiers = tier_counts(measured, center) if include_tiers else None

        logger.info(
            "Found %s eligible workers within %s miles (%s excluded)", len(eligible), radius, len(excluded)
        )
        return SearchResult(
            location=center,
            radius_miles=radius,
            ranked=in_radius if include_ineligible else eligible,
            tier_counts=tiers,
            excluded=excluded,
        )

    def _search_same_postal_code(
        self,
        location: ResolvedLocation,
        radius: float,
        include_tiers: bool,
        include_ineligible: bool,
    ) -> SearchResult:
        target = normalize_postal_code(location.postal_code or location.formatted_label)
        matches = []
        if target:
            matches = [c for c in self.directory.query_all() if normalize_postal_code(c.postal_code) == target]
        measured = self.eligibility.filter_same_postal_code(matches)
        eligible, excluded = split_eligible(measured)

        tiers = None
        if include_tiers:
            n = len(eligible)
            tiers = TierCounts(within_5=n, within_10=n, within_20=n, total=n)
        logger.info("Found %s eligible workers sharing postal code %s", len(eligible), target)
        return SearchResult(
            location=location,
            radius_miles=radius,
            ranked=measured if include_ineligible else eligible,
            tier_counts=tiers,
            excluded=excluded,
        )

    def dispatch_to_selected(
        self,
        selected_ids: Sequence[str],
        search_result: SearchResult,
        service: Service,
        messages: Messages = None,
        preferred_date: Optional[date] = None,
        budget: Optional[Budget] = None,
        default_message: str = "",
    ) -> DispatchBatchResult:
        if self.orchestrator is None:
            raise ValueError("No request client configured for dispatch")
        workers = list(search_result.ranked) + list(search_result.excluded)
        return self.orchestrator.dispatch(
            selected_ids,
            workers,
            service,
            search_result.location,
            messages=messages,
            preferred_date=preferred_date,
            budget=budget,
            default_message=default_message,
        )
