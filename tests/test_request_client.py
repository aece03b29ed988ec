import pytest
import requests

from workermatch import config
from workermatch import http as http_module
from workermatch.dispatch import DispatchOrchestrator
from workermatch.errors import DispatchFailed
from workermatch.models import (
    DispatchRequest,
    DispatchStatus,
    LocationSource,
    RankedWorker,
    ResolvedLocation,
    Service,
    WorkerCandidate,
)
from workermatch.request_client import RequestCreationClient, make_request_http_client

LOCATION = ResolvedLocation(51.5074, -0.1278, "Trafalgar Square", "WC2N 5DU", LocationSource.EXPLICIT_ADDRESS)


def make_request(worker_profile_id="wp-1", service_id="svc-1"):
    return DispatchRequest(
        service_id=service_id,
        worker_profile_id=worker_profile_id,
        requester_location=LOCATION,
        message="Can you fix a leaking tap?",
        preferred_date=None,
        budget_min=50.0,
        budget_max=200.0,
    )


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload


class FakeHttp:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def post_json(self, url, body, extra_headers=None):
        self.calls.append((url, body))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def test_create_posts_payload_and_returns_nested_id():
    http = FakeHttp({"success": True, "data": {"id": 42}})
    client = RequestCreationClient(http, base_url="https://api.example.test/api/")
    assert client.create(make_request()) == "42"

    url, body = http.calls[0]
    assert url == "https://api.example.test/api/customer/create-service-request"
    assert body["worker_id"] == "wp-1"
    assert body["service_id"] == "svc-1"
    assert body["preferred_date"] is None


def test_create_reads_top_level_id():
    assert RequestCreationClient(FakeHttp({"id": "abc"})).create(make_request()) == "abc"


@pytest.mark.parametrize("kwargs", [{"worker_profile_id": ""}, {"service_id": ""}])
def test_create_rejects_incomplete_request_without_network(kwargs):
    http = FakeHttp({"id": 1})
    with pytest.raises(DispatchFailed):
        RequestCreationClient(http).create(make_request(**kwargs))
    assert http.calls == []


def test_http_error_carries_status_and_server_message():
    resp = FakeResponse(422, {"message": "Validation failed", "errors": {"worker_id": ["invalid"]}})
    http = FakeHttp(requests.HTTPError("422", response=resp))
    with pytest.raises(DispatchFailed) as excinfo:
        RequestCreationClient(http).create(make_request())
    assert excinfo.value.status_code == 422
    assert "Validation failed (worker_id)" in str(excinfo.value)


def test_connection_error_becomes_dispatch_failed():
    http = FakeHttp(requests.ConnectionError("refused"))
    with pytest.raises(DispatchFailed) as excinfo:
        RequestCreationClient(http).create(make_request())
    assert excinfo.value.status_code is None


def test_unsuccessful_body_is_a_failure():
    http = FakeHttp({"success": False, "message": "Worker not accepting requests"})
    with pytest.raises(DispatchFailed, match="Worker not accepting requests"):
        RequestCreationClient(http).create(make_request())


def test_request_http_client_sends_bearer_token():
    client = make_request_http_client("secret")
    assert client.default_headers["Authorization"] == "Bearer secret"
    assert client.timeout == config.REQUEST_TIMEOUT_SECONDS
    assert "Authorization" not in make_request_http_client(None).default_headers


class WireResponse:
    def __init__(self, status_code, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}
        self.content = b"{}"

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class ScriptedSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.posts = 0

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def scripted_client(responses):
    http = make_request_http_client("secret")
    http.session = ScriptedSession(responses)
    return RequestCreationClient(http), http.session


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(http_module.time, "sleep", lambda _s: None)


def test_bad_gateway_is_not_resent(no_sleep):
    client, session = scripted_client([WireResponse(502), WireResponse(201, {"data": {"id": 7}})])
    with pytest.raises(DispatchFailed) as excinfo:
        client.create(make_request())
    assert excinfo.value.status_code == 502
    assert session.posts == 1


@pytest.mark.parametrize("error", [requests.ConnectionError("reset"), requests.ReadTimeout("slow")])
def test_transport_error_is_not_resent(no_sleep, error):
    client, session = scripted_client([error, WireResponse(201, {"data": {"id": 7}})])
    with pytest.raises(DispatchFailed):
        client.create(make_request())
    assert session.posts == 1


def test_rate_limited_create_is_resent(no_sleep):
    client, session = scripted_client([WireResponse(429), WireResponse(201, {"data": {"id": 7}})])
    assert client.create(make_request()) == "7"
    assert session.posts == 2


def test_dispatch_reports_failure_after_single_post_on_bad_gateway(no_sleep):
    client, session = scripted_client([WireResponse(502), WireResponse(201, {"data": {"id": 7}})])
    worker = RankedWorker(
        candidate=WorkerCandidate(
            person_id="p1",
            worker_profile_id="wp-1",
            display_name="P1",
            postal_code="E1 6AN",
            latitude=51.5,
            longitude=-0.1,
        ),
        distance_miles=1.0,
        is_eligible_for_dispatch=True,
    )
    result = DispatchOrchestrator(client).dispatch(["p1"], [worker], Service(service_id="svc-1"), LOCATION)

    assert result.succeeded == 0
    assert [o.status for o in result.failures] == [DispatchStatus.FAILED]
    assert session.posts == 1
