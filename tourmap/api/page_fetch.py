# tourmap/api/page_fetch.py
"""Server-side page retrieval so the browser can read cross-origin tour pages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests

from tourmap.api.errors import UpstreamError, UpstreamUnavailableError, ValidationError

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


@dataclass
class FetchedPage:
    content: str
    url: str
    content_type: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "content": self.content,
            "url": self.url,
            "contentType": self.content_type,
        }


def validate_page_url(url: Optional[str]) -> str:
    """Return the stripped URL or raise :class:`ValidationError`."""
    if not url or not isinstance(url, str) or not url.strip():
        raise ValidationError("URL is required")

    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise ValidationError("Invalid URL format") from exc

    if not parsed.scheme or not parsed.netloc:
        raise ValidationError("Invalid URL format")
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValidationError("Only HTTP and HTTPS protocols are allowed")
    return url


def fetch_page(url: str, timeout: float = 30.0, user_agent: str = "",
               session: Optional[requests.Session] = None) -> FetchedPage:
    """Fetch ``url`` and return its HTML.

    Raises:
        ValidationError: bad URL, or the page is not HTML
        UpstreamError: the remote site answered with a non-2xx status
        UpstreamUnavailableError: timeout or connection failure
    """
    url = validate_page_url(url)
    http = session or requests

    logger.info("Fetching URL: %s", url)
    headers = {"Accept": ACCEPT_HEADER}
    if user_agent:
        headers["User-Agent"] = user_agent

    try:
        response = http.get(url, headers=headers, timeout=timeout)
    except requests.Timeout as exc:
        logger.warning("Timed out fetching %s", url)
        raise UpstreamUnavailableError(
            "Request timed out while fetching the webpage. The URL may be slow to respond."
        ) from exc
    except requests.RequestException as exc:
        logger.warning("Network error fetching %s: %s", url, exc)
        raise UpstreamError(
            "Network error while fetching the webpage. Please check the URL and try again."
        ) from exc

    if not response.ok:
        logger.warning("Upstream %s answered %s", url, response.status_code)
        raise UpstreamError(
            f"Failed to fetch URL: {response.reason or response.status_code}",
            status_code=response.status_code,
        )

    content_type = response.headers.get("Content-Type", "")
    if not any(kind in content_type.lower() for kind in HTML_CONTENT_TYPES):
        raise ValidationError("URL must return HTML content")

    content = response.text
    if not content:
        raise UpstreamError("Webpage returned empty content")

    logger.debug("Fetched %d characters from %s", len(content), url)
    return FetchedPage(content=content, url=url, content_type=content_type)


__all__ = ["FetchedPage", "fetch_page", "validate_page_url"]
