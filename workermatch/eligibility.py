"""Exact distance and dispatch eligibility for prefiltered candidates."""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from .errors import DirectoryError
from .geo import distance_miles, round_miles
from .models import RankedWorker, ResolvedLocation, WorkerCandidate

logger = logging.getLogger(__name__)

WORKER_INELIGIBLE_NO_PROFILE = "missing_worker_profile"
WORKER_INELIGIBLE_NO_COORDINATES = "missing_coordinates"
PROFILE_REMEDIATION = "worker must complete profile setup"

ProfileLookup = Callable[[str], Optional[str]]


def exact_distance(candidate: WorkerCandidate, center: ResolvedLocation) -> float:
    if not candidate.has_coordinates:
        return math.inf
    return distance_miles(
        center.latitude,
        center.longitude,
        float(candidate.latitude),
        float(candidate.longitude),
    )


def measure(candidate: WorkerCandidate, center: ResolvedLocation) -> RankedWorker:
    distance = exact_distance(candidate, center)
    eligible = candidate.worker_profile_id is not None and candidate.has_coordinates
    return RankedWorker(
        candidate=candidate,
        distance_miles=round_miles(distance),
        is_eligible_for_dispatch=eligible,
    )


def ineligibility_reason(worker: RankedWorker) -> Optional[str]:
    if worker.worker_profile_id is None:
        return WORKER_INELIGIBLE_NO_PROFILE
    if not worker.candidate.has_coordinates:
        return WORKER_INELIGIBLE_NO_COORDINATES
    return None


class EligibilityFilter:
    def __init__(self, profile_lookup: Optional[ProfileLookup] = None) -> None:
        self.profile_lookup = profile_lookup

    def filter(self, candidates: Iterable[WorkerCandidate], center: ResolvedLocation) -> List[RankedWorker]:
        """Measure every candidate, marking ineligible ones rather than dropping them."""
        out: List[RankedWorker] = []
        for cand in candidates:
            if cand.worker_profile_id is None and self.profile_lookup is not None:
                cand = self._attach_profile(cand)
            ranked = measure(cand, center)
            self._log_ineligible(ranked)
            out.append(ranked)
        return out

    def filter_same_postal_code(self, candidates: Iterable[WorkerCandidate]) -> List[RankedWorker]:
        """Mark workers matched by postal code alone; their distance is taken as zero."""
        out: List[RankedWorker] = []
        for cand in candidates:
            if cand.worker_profile_id is None and self.profile_lookup is not None:
                cand = self._attach_profile(cand)
            ranked = RankedWorker(
                candidate=cand,
                distance_miles=0.0,
                is_eligible_for_dispatch=cand.worker_profile_id is not None,
            )
            self._log_ineligible(ranked)
            out.append(ranked)
        return out

    def _log_ineligible(self, worker: RankedWorker) -> None:
        if worker.is_eligible_for_dispatch:
            return
        reason = ineligibility_reason(worker)
        if reason == WORKER_INELIGIBLE_NO_PROFILE:
            logger.warning(
                "Worker %s has no worker profile (%s); %s",
                worker.person_id,
                reason,
                PROFILE_REMEDIATION,
            )
        elif reason == WORKER_INELIGIBLE_NO_COORDINATES:
            logger.warning("Worker %s has no usable coordinates (%s)", worker.person_id, reason)

    def _attach_profile(self, cand: WorkerCandidate) -> WorkerCandidate:
        try:
            profile_id = self.profile_lookup(cand.person_id)
        except DirectoryError as exc:
            logger.error("Error checking worker profile for %s: %s", cand.person_id, exc)
            return cand
        if profile_id is None:
            return cand
        return replace(cand, worker_profile_id=profile_id)


def within_radius(
    workers: Iterable[RankedWorker], center: ResolvedLocation, radius_miles: float
) -> List[RankedWorker]:
    # Compare unrounded distances so 10.04 miles is not admitted into a 10 mile radius.
    return [w for w in workers if exact_distance(w.candidate, center) <= radius_miles]
