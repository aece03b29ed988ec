"""CLI entrypoint."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv as _load_dotenv

from workermatch import config
from workermatch.backfill import backfill_worker_coordinates
from workermatch.cache import GeocodeCache
from workermatch.directory import SqliteWorkerDirectory
from workermatch.errors import DeviceGeolocationError, WorkerMatchError
from workermatch.geocoding_client import GeocodingClient, make_geocoding_http_client
from workermatch.http import RateLimiter, RequestBudget, RequestMetrics
from workermatch.location import FixedPositionProvider, LocationResolver, LocationStrategy
from workermatch.models import Budget, Service
from workermatch.reporting import (
    ensure_dir,
    render_dispatch_summary,
    render_search_summary,
    write_dispatch_log_jsonl,
    write_ranked_csv,
    write_ranked_json,
)
from workermatch.request_client import RequestCreationClient, make_request_http_client
from workermatch.service import WorkerSearchService

logger = logging.getLogger("workermatch.cli")

STRATEGIES = {
    "address": LocationStrategy.EXPLICIT_ADDRESS,
    "device": LocationStrategy.DEVICE_GEOLOCATION,
    "profile": LocationStrategy.STORED_PROFILE,
}


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def _env_len(name: str) -> int:
    return len((os.environ.get(name) or "").strip())


def run_preflight(directory_path: str) -> int:
    print("Preflight (redacted):")
    print(f"- {config.API_KEY_ENV} length: {_env_len(config.API_KEY_ENV)}")
    print(f"- {config.API_TOKEN_ENV} length: {_env_len(config.API_TOKEN_ENV)}")
    path = Path(directory_path)
    print(f"- directory: {path} (exists={path.exists()})")
    print(f"- request endpoint: {config.REQUEST_API_BASE_URL.rstrip('/')}{config.CREATE_REQUEST_PATH}")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find nearby workers and send them service requests")
    parser.add_argument("--preflight", action="store_true", help="Print configuration checks and exit")
    parser.add_argument("--directory", type=str, default=config.DIRECTORY_DB_PATH, help="Worker directory SQLite path")
    parser.add_argument("--seed", type=str, default=None, help="JSON file of people to load into the directory")
    parser.add_argument(
        "--backfill-coordinates",
        action="store_true",
        help="Geocode postal codes of workers missing coordinates and exit",
    )

    parser.add_argument("--strategy", choices=sorted(STRATEGIES), default="address")
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lon", type=float, default=None)
    parser.add_argument("--label", type=str, default="", help="Formatted address label")
    parser.add_argument("--postcode", type=str, default="")
    parser.add_argument("--radius", type=float, default=config.DEFAULT_RADIUS_MILES, help="Search radius in miles")
    parser.add_argument("--include-ineligible", action="store_true", help="Show workers who cannot be dispatched")
    parser.add_argument("--bbox-mode", choices=["fixed", "latitude"], default=None)
    parser.add_argument("--no-tiers", action="store_true", help="Skip 5/10/20 mile tier counts")

    parser.add_argument("--no-cache", action="store_true")
    parser.add_argument("--cache-path", type=str, default=config.CACHE_DB_PATH)
    parser.add_argument("--max-geocode", type=int, default=config.MAX_GEOCODE_REQUESTS_PER_RUN)
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR)

    parser.add_argument("--dispatch", action="store_true", help="Send requests to the selected workers")
    parser.add_argument("--select", type=str, default="", help="Comma-separated person ids to send to")
    parser.add_argument("--service-id", type=str, default="")
    parser.add_argument("--message", type=str, default="", help="Message sent to every selected worker")
    parser.add_argument(
        "--messages-json",
        type=str,
        default=None,
        help="JSON file mapping person id to a personalized message",
    )
    parser.add_argument("--preferred-date", type=str, default=None, help="YYYY-MM-DD (default: tomorrow)")
    parser.add_argument("--budget-min", type=float, default=None)
    parser.add_argument("--budget-max", type=float, default=None)
    parser.add_argument("--max-workers", type=int, default=config.DISPATCH_MAX_WORKERS)
    parser.add_argument("--verify-profiles", action="store_true", help="Re-check worker profiles before sending")
    parser.add_argument("--endpoint", type=str, default=None, help="Request API base URL")
    return parser.parse_args(argv)


def build_geocoder(args: argparse.Namespace, metrics: RequestMetrics) -> Tuple[Optional[GeocodingClient], Optional[GeocodeCache]]:
    api_key = (os.environ.get(config.API_KEY_ENV) or "").strip()
    if not api_key:
        logger.warning("%s not set; geocoding disabled", config.API_KEY_ENV)
        return None, None
    cache = None if args.no_cache else GeocodeCache(args.cache_path)
    client = GeocodingClient(
        make_geocoding_http_client(api_key),
        cache=cache,
        budget=RequestBudget(max_geocode=args.max_geocode, metrics=metrics),
        rate_limiter=RateLimiter(config.GEOCODE_MIN_INTERVAL_SECONDS),
        no_cache=args.no_cache,
        metrics=metrics,
    )
    return client, cache


def location_payload(args: argparse.Namespace) -> Dict[str, Any]:
    if args.strategy == "address":
        return {
            "formattedAddress": args.label,
            "latitude": args.lat,
            "longitude": args.lon,
            "postalCode": args.postcode or None,
        }
    return {"latitude": args.lat, "longitude": args.lon, "postcode": args.postcode}


def parse_preferred_date(raw: Optional[str]) -> date:
    if not raw:
        return date.today() + timedelta(days=1)
    return date.fromisoformat(raw)


def load_messages(path: Optional[str]) -> Dict[str, str]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError("--messages-json must contain an object of person id to message")
    return {str(k): str(v) for k, v in data.items()}


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    config.load_search_config()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.preflight:
        return run_preflight(args.directory)

    metrics = RequestMetrics()
    directory = SqliteWorkerDirectory(args.directory)
    geocoder, cache = build_geocoder(args, metrics)
    try:
        if args.seed:
            loaded = directory.load_json(args.seed)
            print(f"Loaded {loaded} people from {args.seed}")

        if args.backfill_coordinates:
            if geocoder is None:
                print(f"Missing {config.API_KEY_ENV} in environment", file=sys.stderr)
                return 1
            summary = backfill_worker_coordinates(directory, geocoder)
            print("Backfill summary:")
            print(f"- candidates: {summary.candidates}")
            print(f"- updated: {summary.updated}")
            print(f"- not_found: {summary.not_found}")
            print(f"- errors: {summary.errors}")
            return 0 if summary.errors == 0 else 1

        device = None
        if args.strategy == "device" and args.lat is not None and args.lon is not None:
            device = FixedPositionProvider(args.lat, args.lon)
        resolver = LocationResolver(geocoder=geocoder, device=device)

        request_client = None
        if args.dispatch:
            request_client = RequestCreationClient(
                make_request_http_client(os.environ.get(config.API_TOKEN_ENV)),
                base_url=args.endpoint,
            )
        service = WorkerSearchService(
            directory,
            geocoder=geocoder,
            request_client=request_client,
            bbox_mode=args.bbox_mode,
            verify_profiles=args.verify_profiles,
            max_workers=args.max_workers,
            metrics=metrics,
        )

        try:
            location = resolver.resolve(STRATEGIES[args.strategy], location_payload(args))
            result = service.search(
                location,
                radius_miles=args.radius,
                include_tiers=not args.no_tiers,
                include_ineligible=args.include_ineligible,
            )
        except DeviceGeolocationError as exc:
            print(f"Error: {exc.user_message}", file=sys.stderr)
            return 1
        except (WorkerMatchError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

        ensure_dir(args.out)
        write_ranked_csv(os.path.join(args.out, "workers.csv"), result.ranked)
        write_ranked_json(os.path.join(args.out, "workers.json"), result)
        for line in render_search_summary(result):
            print(line)

        if not args.dispatch:
            return 0

        selected = [s.strip() for s in args.select.split(",") if s.strip()]
        if not selected:
            print("No workers selected. Use --select to choose at least one worker.", file=sys.stderr)
            return 1
        try:
            budget = None
            if args.budget_min is not None or args.budget_max is not None:
                budget = Budget(
                    minimum=args.budget_min if args.budget_min is not None else config.DEFAULT_BUDGET_MIN,
                    maximum=args.budget_max if args.budget_max is not None else config.DEFAULT_BUDGET_MAX,
                )
            batch = service.dispatch_to_selected(
                selected,
                result,
                Service(service_id=args.service_id),
                messages=load_messages(args.messages_json),
                preferred_date=parse_preferred_date(args.preferred_date),
                budget=budget,
                default_message=args.message,
            )
        except (WorkerMatchError, ValueError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

        write_dispatch_log_jsonl(os.path.join(args.out, "dispatch_log.jsonl"), batch)
        for line in render_dispatch_summary(batch):
            print(line)
        return 0 if batch.ok else 1
    finally:
        if cache is not None:
            cache.close()
        directory.close()


if __name__ == "__main__":
    raise SystemExit(main())
