# tourmap/api/services/backend_client.py
"""HTTP clients the orchestrator uses to reach the tour backend."""

import logging
from typing import Any, Dict, Optional

import requests

from tourmap.api.config import Settings
from tourmap.api.errors import BackendUnavailableError, ExtractionError, TourMapError
from tourmap.api.models import TourDraft

logger = logging.getLogger(__name__)


class BackendClient:
    """Shared POST-and-unwrap logic for the backend's JSON endpoints."""

    error_class = TourMapError
    default_error = "Backend request failed"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.settings = settings
        self.base_url = settings.backend_url.rstrip("/")
        self.session = session or requests.Session()
        # Allow for the backend's own upstream timeout plus model latency.
        self.timeout = timeout or settings.fetch_timeout_seconds + 90

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Cannot reach backend at %s: %s", url, exc)
            raise BackendUnavailableError(
                f"Cannot connect to backend server. Make sure the backend is running on {self.base_url}"
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            message = None
            if isinstance(body, dict):
                message = body.get("error")
            message = message or response.reason or self.default_error
            logger.warning("Backend %s answered %s: %s", path, response.status_code, message)
            raise self.error_class(message, status_code=response.status_code)

        if not isinstance(body, dict):
            raise self.error_class(self.default_error)
        return body


class PageFetchClient(BackendClient):
    default_error = "Failed to fetch URL"

    def fetch(self, url: str) -> str:
        """Return the raw HTML of ``url`` through the backend proxy."""
        body = self._post("/api/fetch-url", {"url": url})
        content = body.get("content")
        if not content:
            raise self.error_class("Fetched page was empty")
        return content


class ExtractionClient(BackendClient):
    error_class = ExtractionError
    default_error = "Failed to extract tour data"

    def __init__(self, settings: Settings, provider: Optional[str] = None, **kwargs):
        super().__init__(settings, **kwargs)
        self.provider = provider

    def extract(self, html_content: str, source_url: str) -> TourDraft:
        """Ask the backend's model endpoint for a coordinate-free tour."""
        payload = {
            "htmlContent": html_content[: self.settings.max_html_chars],
            "url": source_url,
        }
        if self.provider:
            payload["provider"] = self.provider

        body = self._post("/api/extract-tour", payload)
        data = body.get("data")
        if not isinstance(data, dict):
            raise ExtractionError(self.default_error)
        return TourDraft.from_dict(data)


__all__ = ["BackendClient", "PageFetchClient", "ExtractionClient"]
