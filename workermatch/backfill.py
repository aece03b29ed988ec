"""Populate missing worker coordinates from postal codes."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .directory import SqliteWorkerDirectory
from .errors import DirectoryError, GeocodingFailed
from .geocoding_client import GeocodingClient
from .http import BudgetExceededError

logger = logging.getLogger(__name__)


@dataclass
class BackfillSummary:
    candidates: int = 0
    updated: int = 0
    not_found: int = 0
    errors: int = 0


def backfill_worker_coordinates(
    directory: SqliteWorkerDirectory,
    geocoder: GeocodingClient,
) -> BackfillSummary:
    workers = directory.workers_missing_coordinates()
    summary = BackfillSummary(candidates=len(workers))
    if not workers:
        logger.info("No workers found without coordinates")
        return summary

    logger.info("Found %s workers without coordinates", len(workers))
    for worker in workers:
        try:
            coords = geocoder.geocode_postal_code(worker.postal_code)
        except BudgetExceededError as exc:
            logger.warning("Stopping backfill: %s", exc)
            summary.errors += 1
            break
        except GeocodingFailed as exc:
            logger.error("Error geocoding worker %s: %s", worker.person_id, exc)
            summary.errors += 1
            continue
        if coords is None:
            summary.not_found += 1
            continue
        try:
            directory.update_coordinates(worker.person_id, coords.lat, coords.lon)
        except DirectoryError as exc:
            logger.error("Error updating coordinates for worker %s: %s", worker.person_id, exc)
            summary.errors += 1
            continue
        summary.updated += 1
        logger.info("Updated coordinates for worker %s: (%.6f, %.6f)", worker.person_id, coords.lat, coords.lon)

    logger.info("Successfully updated coordinates for %s workers", summary.updated)
    return summary
