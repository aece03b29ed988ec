"""Distance ranking and tier summaries."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from . import config
from .eligibility import within_radius
from .models import RankedWorker, ResolvedLocation, TierCounts


def rank(workers: Iterable[RankedWorker]) -> List[RankedWorker]:
    """Sort ascending by distance.

    ``sorted`` is stable, so workers at the same rounded distance keep the
    order in which the directory returned them.
    """
    return sorted(workers, key=lambda w: w.distance_miles)


def split_eligible(workers: Iterable[RankedWorker]) -> Tuple[List[RankedWorker], List[RankedWorker]]:
    eligible: List[RankedWorker] = []
    excluded: List[RankedWorker] = []
    for w in workers:
        (eligible if w.is_eligible_for_dispatch else excluded).append(w)
    return eligible, excluded


def tier_counts(
    workers: Iterable[RankedWorker],
    center: ResolvedLocation,
    tiers: Optional[Sequence[float]] = None,
) -> TierCounts:
    radii = sorted(tiers if tiers is not None else config.TIER_RADII_MILES)
    if len(radii) != 3:
        raise ValueError("tier_counts expects exactly three tier radii")
    eligible = [w for w in workers if w.is_eligible_for_dispatch]
    counts = [len(within_radius(eligible, center, r)) for r in radii]
    return TierCounts(
        within_5=counts[0],
        within_10=counts[1],
        within_20=counts[2],
        total=counts[2],
    )
