"""Bounding-box candidate prefilter.

The box only narrows the directory read; exact distance is always computed
afterwards by the eligibility pass. Workers missing coordinates are recovered
by geocoding their postal code. The full directory scan runs only when the
box query fails or a verification pass is requested.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from .directory import WorkerDirectory
from .errors import DirectoryError, GeocodingFailed
from .geo import BoundingBox, bounding_box
from .geocoding_client import GeocodingClient
from .http import BudgetExceededError
from .models import ResolvedLocation, WorkerCandidate

logger = logging.getLogger(__name__)


class CandidatePrefilter:
    def __init__(
        self,
        directory: WorkerDirectory,
        geocoder: Optional[GeocodingClient] = None,
        bbox_mode: Optional[str] = None,
        include_unlocated: bool = True,
    ) -> None:
        self.directory = directory
        self.geocoder = geocoder
        self.bbox_mode = bbox_mode
        self.include_unlocated = include_unlocated

    def bounding_box_for(self, center: ResolvedLocation, radius_miles: float) -> BoundingBox:
        return bounding_box(center.latitude, center.longitude, radius_miles, self.bbox_mode)

    def find_candidates_near(
        self,
        center: ResolvedLocation,
        radius_miles: float,
        verify: bool = False,
    ) -> List[WorkerCandidate]:
        box = self.bounding_box_for(center, radius_miles)
        logger.info(
            "Bounding box: lat %.5f..%.5f lon %.5f..%.5f",
            box.min_lat,
            box.max_lat,
            box.min_lon,
            box.max_lon,
        )

        everyone: Optional[List[WorkerCandidate]] = None
        try:
            in_box = self.directory.query_by_bounding_box(
                box.min_lat, box.max_lat, box.min_lon, box.max_lon
            )
        except DirectoryError as exc:
            logger.warning("Bounding box query failed (%s); falling back to full directory scan", exc)
            everyone = self.directory.query_all()
            in_box = [c for c in everyone if c.has_coordinates and box.contains(c.latitude, c.longitude)]
        logger.info("Found %s workers in bounding box", len(in_box))

        merged: Dict[str, WorkerCandidate] = {}
        for cand in in_box:
            merged.setdefault(cand.person_id, cand)

        if verify:
            if everyone is None:
                everyone = self.directory.query_all()
            for cand in everyone:
                if cand.has_coordinates and box.contains(cand.latitude, cand.longitude):
                    if cand.person_id not in merged:
                        logger.info("Verification pass recovered worker %s", cand.person_id)
                        merged[cand.person_id] = cand

        if self.include_unlocated:
            if everyone is not None:
                unlocated = [c for c in everyone if not c.has_coordinates]
            else:
                try:
                    unlocated = self.directory.workers_missing_coordinates()
                except DirectoryError as exc:
                    logger.warning("Could not list workers missing coordinates (%s); skipping them", exc)
                    unlocated = []
            for cand in self._recover_unlocated(unlocated, box, merged):
                merged[cand.person_id] = cand

        return list(merged.values())

    def _recover_unlocated(
        self,
        unlocated: List[WorkerCandidate],
        box: BoundingBox,
        seen: Dict[str, WorkerCandidate],
    ) -> List[WorkerCandidate]:
        unlocated = [c for c in unlocated if c.postal_code and c.person_id not in seen]
        if not unlocated:
            return []
        if self.geocoder is None:
            logger.warning(
                "%s workers have no coordinates and no geocoder is configured; skipping them",
                len(unlocated),
            )
            return []

        recovered: List[WorkerCandidate] = []
        for cand in unlocated:
            logger.info(
                "Worker %s missing coordinates, geocoding postal code %s", cand.person_id, cand.postal_code
            )
            try:
                coords = self.geocoder.geocode_postal_code(cand.postal_code)
            except BudgetExceededError:
                logger.warning("Geocoding budget exhausted; %s workers left unresolved", len(unlocated) - len(recovered))
                break
            except GeocodingFailed as exc:
                logger.warning("Could not geocode postal code %s for worker %s: %s", cand.postal_code, cand.person_id, exc)
                continue
            if coords is None:
                logger.warning("Could not get coordinates for worker postal code %s", cand.postal_code)
                continue
            if box.contains(coords.lat, coords.lon):
                recovered.append(replace(cand, latitude=coords.lat, longitude=coords.lon))
        return recovered


@dataclass
class CandidateSnapshot:
    """Candidates for the widest radius, reused for narrower ones."""

    prefilter: CandidatePrefilter
    center: ResolvedLocation
    _radius: float = 0.0
    _candidates: List[WorkerCandidate] = field(default_factory=list)
    _loaded: bool = False

    def candidates(self, radius_miles: float) -> List[WorkerCandidate]:
        if not self._loaded or radius_miles > self._radius:
            self._candidates = self.prefilter.find_candidates_near(self.center, radius_miles)
            self._radius = radius_miles
            self._loaded = True
        return list(self._candidates)
