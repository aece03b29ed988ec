#!/usr/bin/env python3
"""
Geocode postal codes of workers that have no stored coordinates.
Calls are spaced out by the geocoding rate limiter to respect API quotas.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

# Add repo root to path
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv
load_dotenv()

from workermatch import config
from workermatch.backfill import backfill_worker_coordinates
from workermatch.cache import GeocodeCache
from workermatch.directory import SqliteWorkerDirectory
from workermatch.geocoding_client import GeocodingClient, make_geocoding_http_client
from workermatch.http import RateLimiter, RequestBudget


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--directory", default=config.DIRECTORY_DB_PATH)
    parser.add_argument("--cache-path", default=config.CACHE_DB_PATH)
    parser.add_argument("--delay", type=float, default=config.GEOCODE_MIN_INTERVAL_SECONDS)
    parser.add_argument("--max-geocode", type=int, default=config.MAX_GEOCODE_REQUESTS_PER_RUN)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    api_key = (os.environ.get(config.API_KEY_ENV) or "").strip()
    if not api_key:
        print(f"Missing {config.API_KEY_ENV} in environment", file=sys.stderr)
        return 1

    directory = SqliteWorkerDirectory(args.directory)
    cache = GeocodeCache(args.cache_path)
    geocoder = GeocodingClient(
        make_geocoding_http_client(api_key),
        cache=cache,
        budget=RequestBudget(max_geocode=args.max_geocode),
        rate_limiter=RateLimiter(args.delay),
    )
    try:
        summary = backfill_worker_coordinates(directory, geocoder)
    finally:
        cache.close()
        directory.close()

    print(f"Updated {summary.updated} of {summary.candidates} workers "
          f"({summary.not_found} not found, {summary.errors} errors)")
    return 0 if summary.errors == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
