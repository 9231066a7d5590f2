import json
from datetime import date

import pytest

from tourmap.api.config import Settings
from tourmap.api.models import GeocodeResult, TourDraft, Venue


class FakeResponse:
    """Just enough of ``requests.Response`` for the code under test."""

    def __init__(self, status_code=200, payload=None, text=None, headers=None, reason="OK"):
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self.reason = reason
        self.headers = headers or {}
        self._payload = payload
        self.text = text if text is not None else (json.dumps(payload) if payload is not None else "")

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeSession:
    """Records calls and replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)


class FakePageClient:
    def __init__(self, html="<html>tour</html>", error=None):
        self.html = html
        self.error = error
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        if self.error:
            raise self.error
        return self.html


class FakeExtractionClient:
    def __init__(self, draft=None, error=None):
        self.draft = draft
        self.error = error
        self.calls = []

    def extract(self, html, url):
        self.calls.append((html, url))
        if self.error:
            raise self.error
        return self.draft


class FakeGeocoder:
    """Answers from a dict of address → (lat, lng); anything else has no match."""

    def __init__(self, known=None, error_kind="no_results"):
        self.known = known or {}
        self.error_kind = error_kind
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        if address in self.known:
            lat, lng = self.known[address]
            return GeocodeResult(success=True, latitude=lat, longitude=lng,
                                 formatted_address=address, provider="fake")
        return GeocodeResult(success=False, error="No results found",
                             error_kind=self.error_kind, provider="fake")


def make_venue(index, name, city, start, end, country="UK", address="", lat=0.0, lng=0.0):
    start_date = date.fromisoformat(start)
    end_date = date.fromisoformat(end)
    return Venue(
        id=f"venue-{index}",
        name=name,
        city=city,
        country=country,
        address=address,
        latitude=lat,
        longitude=lng,
        start_date=start_date,
        end_date=end_date,
        duration_days=(end_date - start_date).days,
    )


@pytest.fixture
def settings():
    return Settings(
        openai_api_key="sk-test",
        geocode_delay_seconds=1.0,
        backend_url="http://backend.test",
        secret_key="test-secret",
    )


@pytest.fixture
def three_venue_draft():
    return TourDraft(
        name="Spring Tour",
        description="A short run",
        venues=[
            make_venue(0, "Grand Opera House", "Belfast", "2024-03-01", "2024-03-05",
                       address="2 Great Victoria St"),
            make_venue(1, "Theatre Royal", "Glasgow", "2024-01-01", "2024-01-06",
                       address="282 Hope St"),
            make_venue(2, "Lowry", "Salford", "2024-02-01", "2024-02-04",
                       address="Pier 8"),
        ],
    )
