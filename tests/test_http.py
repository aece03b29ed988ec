import pytest
import requests

from workermatch import http as http_module
from workermatch.http import (
    BudgetExceededError,
    HttpClient,
    RateLimiter,
    RequestBudget,
    RequestMetrics,
)


class FakeResponse:
    def __init__(self, status_code, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.content = b"{}" if payload is not None else b""

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class ScriptedSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_client(responses, retry_max=3, headers=None):
    client = HttpClient(default_headers=headers, timeout=1, retry_max=retry_max, backoff_base=0.0, backoff_max=0.0)
    client.session = ScriptedSession(responses)
    return client


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(http_module.time, "sleep", lambda _s: None)


def test_post_json_retries_on_503_then_succeeds():
    client = make_client([FakeResponse(503), FakeResponse(200, {"ok": True})])
    assert client.post_json("http://x", {"a": 1}) == {"ok": True}
    assert len(client.session.calls) == 2


def test_post_json_raises_on_non_retryable_status():
    client = make_client([FakeResponse(422, {"message": "bad"})])
    with pytest.raises(requests.HTTPError):
        client.post_json("http://x", {})
    assert len(client.session.calls) == 1


def test_post_json_single_attempt_does_not_retry_timeouts():
    client = make_client([requests.Timeout("slow"), FakeResponse(200, {})], retry_max=1)
    with pytest.raises(requests.Timeout):
        client.post_json("http://x", {})
    assert len(client.session.calls) == 1


def test_post_json_merges_headers():
    client = make_client([FakeResponse(200, {})], headers={"Authorization": "Bearer t"})
    client.post_json("http://x", {}, extra_headers={"X-Goog-FieldMask": "places.id"})
    headers = client.session.calls[0]["headers"]
    assert headers["Authorization"] == "Bearer t"
    assert headers["X-Goog-FieldMask"] == "places.id"
    assert headers["Content-Type"] == "application/json"


def test_post_json_empty_body_returns_empty_dict():
    client = make_client([FakeResponse(204)])
    assert client.post_json("http://x", {}) == {}


def test_budget_guard_stops_requests():
    metrics = RequestMetrics()
    budget = RequestBudget(max_geocode=2, metrics=metrics)
    budget.consume("geocode")
    budget.consume("geocode")
    with pytest.raises(BudgetExceededError):
        budget.consume("geocode")
    assert metrics.network_geocode == 2


def test_budget_rejects_unknown_kind():
    with pytest.raises(ValueError):
        RequestBudget(max_geocode=1).consume("routes")


def test_rate_limiter_sleeps_between_calls():
    state = {"now": 100.0, "slept": []}

    def clock():
        return state["now"]

    def sleep(seconds):
        state["slept"].append(seconds)
        state["now"] += seconds

    limiter = RateLimiter(0.1, clock=clock, sleep=sleep)
    limiter.wait()
    limiter.wait()
    state["now"] += 0.5
    limiter.wait()

    assert state["slept"] == [pytest.approx(0.1)]


def test_metrics_count_dispatch_outcomes():
    metrics = RequestMetrics()
    metrics.inc_dispatch(sent=True)
    metrics.inc_dispatch(sent=False)
    metrics.inc_dispatch(sent=True)
    assert metrics.dispatch_sent == 2
    assert metrics.dispatch_failed == 1


def test_request_creation_policy_resends_only_rate_limited_posts():
    client = HttpClient(timeout=1, retry_max=3, backoff_base=0.0, backoff_max=0.0,
                        retry_statuses=(429,), retry_transport_errors=False)

    client.session = ScriptedSession([FakeResponse(502), FakeResponse(201, {"id": 1})])
    with pytest.raises(requests.HTTPError):
        client.post_json("http://x", {})
    assert len(client.session.calls) == 1

    client.session = ScriptedSession([requests.ConnectionError("reset"), FakeResponse(201, {"id": 1})])
    with pytest.raises(requests.ConnectionError):
        client.post_json("http://x", {})
    assert len(client.session.calls) == 1

    client.session = ScriptedSession([FakeResponse(429, headers={"Retry-After": "0"}), FakeResponse(201, {"id": 1})])
    assert client.post_json("http://x", {}) == {"id": 1}
    assert len(client.session.calls) == 2
