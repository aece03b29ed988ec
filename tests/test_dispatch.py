import threading
from datetime import date

import pytest

from workermatch.dispatch import CANCELLED, MISSING_PROFILE_ID, DispatchOrchestrator, message_for
from workermatch.errors import DispatchFailed, LocationUnavailable
from workermatch.http import RequestMetrics
from workermatch.models import (
    Budget,
    DispatchStatus,
    LocationSource,
    RankedWorker,
    ResolvedLocation,
    Service,
    WorkerCandidate,
)

LOCATION = ResolvedLocation(
    latitude=51.5074,
    longitude=-0.1278,
    formatted_label="Trafalgar Square, London",
    postal_code="WC2N 5DU",
    source=LocationSource.EXPLICIT_ADDRESS,
)
SERVICE = Service(service_id="svc-plumbing")


def ranked(person_id, profile_id="auto", distance=1.0):
    if profile_id == "auto":
        profile_id = f"wp-{person_id}"
    cand = WorkerCandidate(
        person_id=person_id,
        worker_profile_id=profile_id,
        display_name=person_id,
        postal_code="E1 6AN",
        latitude=51.5,
        longitude=-0.1,
    )
    return RankedWorker(candidate=cand, distance_miles=distance, is_eligible_for_dispatch=profile_id is not None)


class RecordingSender:
    def __init__(self, fail_for=(), gate=None):
        self.fail_for = set(fail_for)
        self.gate = gate
        self.requests = []
        self._lock = threading.Lock()

    def create(self, request):
        if self.gate is not None:
            self.gate.wait(timeout=5)
        with self._lock:
            self.requests.append(request)
        if request.worker_profile_id in self.fail_for:
            raise DispatchFailed("Failed to create service request: worker unavailable", status_code=422)
        return f"req-{request.worker_profile_id}"


def test_one_failure_does_not_stop_the_batch():
    sender = RecordingSender(fail_for={"wp-b"})
    workers = [ranked("a"), ranked("b"), ranked("c")]
    result = DispatchOrchestrator(sender, max_workers=1).dispatch(["a", "b", "c"], workers, SERVICE, LOCATION)

    assert result.attempted == 3
    assert result.succeeded == 2
    assert [o.person_id for o in result.failures] == ["b"]
    assert "worker unavailable" in result.failures[0].error_detail
    assert [o.status for o in result.outcomes] == [DispatchStatus.SENT, DispatchStatus.FAILED, DispatchStatus.SENT]
    assert result.ok
    assert result.summary() == "Service requests sent to 2 of 3 worker(s)"


def test_worker_without_profile_is_never_sent():
    sender = RecordingSender()
    workers = [ranked("a"), ranked("b", profile_id=None)]
    result = DispatchOrchestrator(sender).dispatch(["a", "b", "ghost"], workers, SERVICE, LOCATION)

    assert [r.worker_profile_id for r in sender.requests] == ["wp-a"]
    assert result.attempted == 1
    assert result.succeeded == 1
    assert [(s.person_id, s.error_detail) for s in result.skipped] == [
        ("b", MISSING_PROFILE_ID),
        ("ghost", MISSING_PROFILE_ID),
    ]
    assert result.summary() == "Service requests sent to 1 of 3 worker(s)"


def test_only_ineligible_selection_is_not_ok():
    result = DispatchOrchestrator(RecordingSender()).dispatch(
        ["b"], [ranked("b", profile_id=None)], SERVICE, LOCATION
    )
    assert result.attempted == 0
    assert not result.ok


def test_all_failures_report_failure_summary():
    sender = RecordingSender(fail_for={"wp-a", "wp-b"})
    result = DispatchOrchestrator(sender).dispatch(["a", "b"], [ranked("a"), ranked("b")], SERVICE, LOCATION)
    assert result.attempted == 2
    assert result.succeeded == 0
    assert not result.ok
    assert result.summary() == "Failed to send service requests to 2 worker(s)"


def test_parallel_dispatch_keeps_selection_order():
    gate = threading.Event()
    sender = RecordingSender(gate=gate)
    ids = [f"w{i}" for i in range(6)]
    orchestrator = DispatchOrchestrator(sender, max_workers=4)

    timer = threading.Timer(0.05, gate.set)
    timer.start()
    result = orchestrator.dispatch(ids, [ranked(i) for i in ids], SERVICE, LOCATION)
    timer.join()

    assert [o.person_id for o in result.outcomes] == ids
    assert [o.request_id for o in result.outcomes] == [f"req-wp-{i}" for i in ids]
    assert result.succeeded == 6


def test_duplicate_selection_is_sent_once():
    sender = RecordingSender()
    result = DispatchOrchestrator(sender).dispatch(["a", "a", "b"], [ranked("a"), ranked("b")], SERVICE, LOCATION)
    assert result.attempted == 2
    assert len(sender.requests) == 2


def test_request_payload_carries_location_budget_and_message():
    sender = RecordingSender()
    DispatchOrchestrator(sender).dispatch(
        ["a", "b"],
        [ranked("a"), ranked("b")],
        SERVICE,
        LOCATION,
        messages={"a": "Hi A, can you help?"},
        preferred_date=date(2026, 11, 2),
        budget=Budget(minimum=80, maximum=120),
        default_message="Can you help?",
    )
    by_worker = {r.worker_profile_id: r.to_payload() for r in sender.requests}
    payload = by_worker["wp-a"]
    assert payload["message_to_worker"] == "Hi A, can you help?"
    assert by_worker["wp-b"]["message_to_worker"] == "Can you help?"
    assert payload["service_id"] == "svc-plumbing"
    assert payload["preferred_date"] == "2026-11-02"
    assert payload["location_address"] == "Trafalgar Square, London"
    assert (payload["location_latitude"], payload["location_longitude"]) == (51.5074, -0.1278)
    assert (payload["budget_min"], payload["budget_max"]) == (80, 120)


def test_default_budget_comes_from_service_price_range():
    sender = RecordingSender()
    service = Service(service_id="svc", price_min=30.0, price_max=None)
    DispatchOrchestrator(sender).dispatch(["a"], [ranked("a")], service, LOCATION)
    assert (sender.requests[0].budget_min, sender.requests[0].budget_max) == (30.0, 200.0)


def test_cancelled_batch_marks_remaining_as_skipped():
    cancel = threading.Event()
    cancel.set()
    sender = RecordingSender()
    result = DispatchOrchestrator(sender, max_workers=1).dispatch(
        ["a", "b"], [ranked("a"), ranked("b")], SERVICE, LOCATION, cancel_event=cancel
    )
    assert sender.requests == []
    assert result.attempted == 0
    assert [s.error_detail for s in result.skipped] == [CANCELLED, CANCELLED]


def test_profile_recheck_skips_removed_profiles():
    sender = RecordingSender()
    current = {"a": "wp-a"}
    orchestrator = DispatchOrchestrator(sender, profile_lookup=current.get)
    result = orchestrator.dispatch(["a", "b"], [ranked("a"), ranked("b")], SERVICE, LOCATION)
    assert [r.worker_profile_id for r in sender.requests] == ["wp-a"]
    assert [s.person_id for s in result.skipped] == ["b"]


def test_metrics_count_sent_and_failed():
    metrics = RequestMetrics()
    sender = RecordingSender(fail_for={"wp-b"})
    DispatchOrchestrator(sender, metrics=metrics).dispatch(["a", "b"], [ranked("a"), ranked("b")], SERVICE, LOCATION)
    assert (metrics.dispatch_sent, metrics.dispatch_failed) == (1, 1)


def test_dispatch_requires_service_and_coordinates():
    orchestrator = DispatchOrchestrator(RecordingSender())
    with pytest.raises(ValueError):
        orchestrator.dispatch(["a"], [ranked("a")], Service(service_id=""), LOCATION)
    degraded = ResolvedLocation(0.0, 0.0, "N1 9GU", "N1 9GU", LocationSource.POSTAL_CODE_ONLY)
    with pytest.raises(LocationUnavailable):
        orchestrator.dispatch(["a"], [ranked("a")], SERVICE, degraded)


def test_max_workers_is_clamped():
    assert DispatchOrchestrator(RecordingSender(), max_workers=0).max_workers == 1
    assert DispatchOrchestrator(RecordingSender(), max_workers=64).max_workers == 8


def test_message_for_prefers_personal_message():
    assert message_for("a", {"a": "personal"}, "default") == "personal"
    assert message_for("b", {"a": "personal"}, "default") == "default"
    assert message_for("b", "shared", "default") == "shared"
    assert message_for("b", None) == ""
