"""HTTP reporting backend speaking the ReportPortal v2 API."""

from __future__ import annotations

import json
import logging
from typing import Any

import requests
from requests.adapters import HTTPAdapter, Retry

from bddportal.client.messages import Attachment
from bddportal.client.service import ReportingServiceError
from bddportal.constants import HTTP_RETRIES, HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

RETRY_STATUSES = (429, 500, 502, 503, 504)


class HttpReportingService:
    """Send reporting requests over HTTP.

    Parameters
    ----------
    endpoint : str
        Base URL of the reporting server
    project : str
        Project name the launch belongs to
    api_key : str
        Access token sent as a bearer token
    timeout : float
        Per-request timeout in seconds
    retries : int
        Transport retries for connection errors and retryable statuses
    session : requests.Session | None
        Pre-configured session, mainly for tests
    """

    def __init__(
        self,
        endpoint: str,
        project: str,
        api_key: str,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        retries: int = HTTP_RETRIES,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = f"{endpoint.rstrip('/')}/api/v2/{project}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}"})

        if session is None:
            adapter = HTTPAdapter(
                max_retries=Retry(
                    total=retries,
                    backoff_factor=0.5,
                    status_forcelist=RETRY_STATUSES,
                    allowed_methods=None,
                    raise_on_status=False,
                )
            )
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ReportingServiceError(f"{method} {url} failed: {e}") from e

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ReportingServiceError(f"{method} {url} returned invalid JSON: {e}") from e

    @staticmethod
    def _id_from(data: Any, operation: str) -> str:
        if isinstance(data, dict) and data.get("id"):
            return str(data["id"])
        raise ReportingServiceError(f"{operation} response has no id: {data!r}")

    def start_launch(self, payload: dict[str, Any]) -> str:
        data = self._request("POST", "launch", json=payload)
        launch_id = self._id_from(data, "start launch")
        logger.info("Launch '%s' started: %s", payload.get("name"), launch_id)
        return launch_id

    def finish_launch(self, launch_id: str, payload: dict[str, Any]) -> None:
        self._request("PUT", f"launch/{launch_id}/finish", json=payload)
        logger.info("Launch %s finished", launch_id)

    def start_item(self, parent_id: str | None, payload: dict[str, Any]) -> str:
        path = "item" if parent_id is None else f"item/{parent_id}"
        data = self._request("POST", path, json=payload)
        return self._id_from(data, "start item")

    def finish_item(self, item_id: str, payload: dict[str, Any]) -> None:
        self._request("PUT", f"item/{item_id}", json=payload)

    def log(self, payload: dict[str, Any], attachment: Attachment | None = None) -> None:
        if attachment is None:
            self._request("POST", "log", json=payload)
            return

        files = [
            ("json_request_part", (None, json.dumps([payload]), "application/json")),
            ("file", (attachment.name, attachment.data, attachment.mime_type)),
        ]
        self._request("POST", "log", files=files)

    def close(self) -> None:
        self.session.close()
