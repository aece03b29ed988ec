"""Multi-recipient request dispatch.

Each selected worker gets one independent request. A failure is recorded
against that recipient and the batch carries on; nothing is rolled back.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

from . import config
from .errors import DirectoryError, LocationUnavailable
from .http import RequestMetrics
from .models import (
    Budget,
    DispatchBatchResult,
    DispatchOutcome,
    DispatchRequest,
    DispatchStatus,
    RankedWorker,
    ResolvedLocation,
    Service,
)

logger = logging.getLogger(__name__)

MISSING_PROFILE_ID = "missing profile id"
CANCELLED = "cancelled"

Messages = Union[str, Mapping[str, str], None]


class RequestSender(Protocol):
    def create(self, request: DispatchRequest) -> str:
        ...


def message_for(person_id: str, messages: Messages, default_message: str = "") -> str:
    if isinstance(messages, str):
        return messages
    if messages:
        return messages.get(person_id) or default_message
    return default_message


class DispatchOrchestrator:
    def __init__(
        self,
        request_client: RequestSender,
        max_workers: Optional[int] = None,
        profile_lookup: Optional[Callable[[str], Optional[str]]] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        workers = max_workers if max_workers is not None else config.DISPATCH_MAX_WORKERS
        self.request_client = request_client
        self.max_workers = max(1, min(int(workers), config.DISPATCH_MAX_WORKERS_CAP))
        self.profile_lookup = profile_lookup
        self.metrics = metrics

    def dispatch(
        self,
        selected_ids: Sequence[str],
        workers: Iterable[RankedWorker],
        service: Service,
        location: ResolvedLocation,
        messages: Messages = None,
        preferred_date: Optional[date] = None,
        budget: Optional[Budget] = None,
        default_message: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> DispatchBatchResult:
        if not service.service_id:
            raise ValueError("A service must be selected before sending requests")
        if location.is_degraded:
            raise LocationUnavailable("A service location with coordinates is required before sending requests")
        budget = budget or Budget.for_service(service)

        by_person: Dict[str, RankedWorker] = {w.person_id: w for w in workers}
        result = DispatchBatchResult()

        requests_by_person: Dict[str, DispatchRequest] = {}
        order: List[str] = []
        for person_id in dict.fromkeys(selected_ids):
            profile_id = self._profile_id(by_person.get(person_id), person_id)
            if profile_id is None:
                logger.warning("Worker %s not found or missing worker profile id; skipping", person_id)
                result.skipped.append(
                    DispatchOutcome(
                        person_id=person_id,
                        worker_profile_id=None,
                        status=DispatchStatus.FAILED,
                        error_detail=MISSING_PROFILE_ID,
                    )
                )
                continue
            requests_by_person[person_id] = DispatchRequest(
                service_id=service.service_id,
                worker_profile_id=profile_id,
                requester_location=location,
                message=message_for(person_id, messages, default_message),
                preferred_date=preferred_date,
                budget_min=budget.minimum,
                budget_max=budget.maximum,
            )
            order.append(person_id)

        logger.info("Dispatching %s request(s) with up to %s concurrent sends", len(order), self.max_workers)
        if self.max_workers == 1 or len(order) <= 1:
            outcomes = [self._send_one(pid, requests_by_person[pid], cancel_event) for pid in order]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="dispatch") as executor:
                futures = [
                    executor.submit(self._send_one, pid, requests_by_person[pid], cancel_event) for pid in order
                ]
                outcomes = [f.result() for f in futures]

        for outcome in outcomes:
            if outcome.error_detail == CANCELLED:
                result.skipped.append(outcome)
                continue
            result.attempted += 1
            result.outcomes.append(outcome)
            if outcome.status == DispatchStatus.SENT:
                result.succeeded += 1
            else:
                result.failures.append(outcome)

        logger.info("Dispatch complete: %s", result.summary())
        return result

    def _profile_id(self, worker: Optional[RankedWorker], person_id: str) -> Optional[str]:
        if worker is None or not worker.is_eligible_for_dispatch or not worker.worker_profile_id:
            return None
        if self.profile_lookup is None:
            return worker.worker_profile_id
        # Re-check: the profile may have been removed since the search.
        try:
            current = self.profile_lookup(person_id)
        except DirectoryError as exc:
            logger.error("Error checking worker profile for %s: %s", person_id, exc)
            return None
        return current

    def _send_one(
        self,
        person_id: str,
        request: DispatchRequest,
        cancel_event: Optional[threading.Event],
    ) -> DispatchOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return DispatchOutcome(
                person_id=person_id,
                worker_profile_id=request.worker_profile_id,
                status=DispatchStatus.FAILED,
                error_detail=CANCELLED,
            )
        try:
            request_id = self.request_client.create(request)
        except Exception as exc:
            logger.error("Error creating service request for worker %s: %s", person_id, exc)
            if self.metrics is not None:
                self.metrics.inc_dispatch(sent=False)
            return DispatchOutcome(
                person_id=person_id,
                worker_profile_id=request.worker_profile_id,
                status=DispatchStatus.FAILED,
                error_detail=str(exc) or exc.__class__.__name__,
            )
        if self.metrics is not None:
            self.metrics.inc_dispatch(sent=True)
        return DispatchOutcome(
            person_id=person_id,
            worker_profile_id=request.worker_profile_id,
            status=DispatchStatus.SENT,
            request_id=request_id or None,
        )
