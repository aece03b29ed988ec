"""HTTP client with retry/backoff, request budgeting and rate limiting."""
from __future__ import annotations

import json
import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

import requests

from .errors import GeocodingFailed

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class BudgetExceededError(GeocodingFailed):
    pass


@dataclass
class RequestMetrics:
    network_geocode: int = 0
    cache_hits_geocode: int = 0
    dedup_skips_geocode: int = 0
    dispatch_sent: int = 0
    dispatch_failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def geocode_count(self) -> int:
        return self.network_geocode

    def inc_network(self, kind: str) -> None:
        if kind != "geocode":
            raise ValueError(f"Unknown request kind: {kind}")
        with self._lock:
            self.network_geocode += 1

    def inc_cache_hit(self, kind: str) -> None:
        if kind != "geocode":
            raise ValueError(f"Unknown request kind: {kind}")
        with self._lock:
            self.cache_hits_geocode += 1

    def inc_dedup_skip(self, kind: str) -> None:
        if kind != "geocode":
            raise ValueError(f"Unknown request kind: {kind}")
        with self._lock:
            self.dedup_skips_geocode += 1

    def inc_dispatch(self, sent: bool) -> None:
        with self._lock:
            if sent:
                self.dispatch_sent += 1
            else:
                self.dispatch_failed += 1


class RequestBudget:
    def __init__(
        self,
        max_geocode: int,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.max_geocode = max_geocode
        self.metrics = metrics
        self._geocode_count = 0

    @property
    def geocode_count(self) -> int:
        if self.metrics is not None:
            return int(self.metrics.network_geocode)
        return self._geocode_count

    def consume(self, kind: str) -> None:
        if kind != "geocode":
            raise ValueError(f"Unknown budget kind: {kind}")
        if self.geocode_count >= self.max_geocode:
            raise BudgetExceededError(
                f"Geocoding request budget exceeded: {self.geocode_count} >= {self.max_geocode}"
            )
        if self.metrics is not None:
            self.metrics.inc_network("geocode")
        else:
            self._geocode_count += 1


class RateLimiter:
    """Enforce a minimum delay between successive calls."""

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, float(min_interval_seconds))
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval_seconds - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last_call = now


class HttpClient:
    def __init__(
        self,
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = 20,
        retry_max: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        retry_statuses: Sequence[int] = RETRYABLE_STATUSES,
        retry_transport_errors: bool = True,
    ) -> None:
        self.default_headers = dict(default_headers or {})
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.retry_statuses = tuple(retry_statuses)
        self.retry_transport_errors = retry_transport_errors
        self.session = requests.Session()

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self.default_headers)
        if extra_headers:
            headers.update(extra_headers)

        payload = json.dumps(body)
        for attempt in range(1, self.retry_max + 1):
            try:
                resp = self.session.post(url, data=payload, headers=headers, timeout=self.timeout)
            except requests.RequestException:
                if attempt >= self.retry_max or not self.retry_transport_errors:
                    raise
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                if not resp.content:
                    return {}
                try:
                    return resp.json()
                except ValueError:
                    logger.error("Non-JSON response from %s", url)
                    raise

            if status in self.retry_statuses:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    resp.raise_for_status()
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            resp.raise_for_status()

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True
