"""Client for the booking subsystem's request-creation endpoint."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from . import config
from .errors import DispatchFailed
from .http import HttpClient
from .models import DispatchRequest

logger = logging.getLogger(__name__)


def make_request_http_client(api_token: Optional[str] = None) -> HttpClient:
    headers: Dict[str, str] = {}
    if api_token:
        headers["Authorization"] = f"Bearer {api_token}"
    return HttpClient(
        default_headers=headers,
        timeout=config.REQUEST_TIMEOUT_SECONDS,
        retry_max=config.HTTP_RETRY_MAX,
        backoff_base=config.HTTP_BACKOFF_BASE,
        backoff_max=config.HTTP_BACKOFF_MAX,
        retry_statuses=config.REQUEST_RETRY_STATUSES,
        retry_transport_errors=False,
    )


class RequestCreationClient:
    def __init__(
        self,
        http_client: HttpClient,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        self.http = http_client
        self.base_url = (base_url or config.REQUEST_API_BASE_URL).rstrip("/")
        self.path = path or config.CREATE_REQUEST_PATH

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.path.lstrip('/')}"

    def create(self, request: DispatchRequest) -> str:
        """Create one service request; returns the new request id."""
        if not request.worker_profile_id:
            raise DispatchFailed("Request rejected: worker profile id is required")
        if not request.service_id:
            raise DispatchFailed("Request rejected: service id is required")

        try:
            data = self.http.post_json(self.url, request.to_payload())
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            detail = _error_message(exc.response) or str(exc)
            raise DispatchFailed(f"Failed to create service request: {detail}", status_code=status) from exc
        except requests.RequestException as exc:
            raise DispatchFailed(f"Failed to create service request: {exc}") from exc
        except ValueError as exc:
            raise DispatchFailed("Failed to create service request: invalid response body") from exc

        if isinstance(data, dict) and data.get("success") is False:
            raise DispatchFailed(f"Failed to create service request: {data.get('message') or 'Unknown error'}")
        return _request_id(data)


def _request_id(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    inner = data.get("data")
    if isinstance(inner, dict) and inner.get("id") is not None:
        return str(inner["id"])
    if data.get("id") is not None:
        return str(data["id"])
    return ""


def _error_message(resp: Optional[requests.Response]) -> str:
    if resp is None:
        return ""
    try:
        body = resp.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    message = body.get("message") or body.get("error") or ""
    errors = body.get("errors")
    if isinstance(errors, dict) and errors:
        fields = ", ".join(sorted(errors.keys()))
        message = f"{message} ({fields})" if message else fields
    return str(message)
