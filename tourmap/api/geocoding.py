# tourmap/api/geocoding.py
"""Address → coordinates through one of several interchangeable providers.

``GeocodingClient.geocode`` never raises: every outcome, including transport
faults, comes back as a :class:`GeocodeResult`. Failures carry an
``error_kind`` so callers can tell "nothing matched" from "the provider is
down" from "the key is wrong".
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Type

import googlemaps
import requests

from tourmap.api.config import GEOCODING_PROVIDERS, Settings
from tourmap.api.errors import ValidationError
from tourmap.api.models import GeocodeResult

logger = logging.getLogger(__name__)

# Failure kinds
NO_RESULTS = "no_results"
CONFIGURATION = "configuration"
UNAUTHORIZED = "unauthorized"
RATE_LIMITED = "rate_limited"
UNAVAILABLE = "unavailable"
PROVIDER_ERROR = "provider_error"

# Kinds where asking again with another query cannot help.
PERMANENT_KINDS = frozenset({CONFIGURATION, UNAUTHORIZED})

DEFAULT_TIMEOUT = 10


class GeocodingFailure(Exception):
    """Raised inside providers; converted to a failed result by the client."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


def _kind_for_status(status_code: int) -> str:
    if status_code in (401, 403):
        return UNAUTHORIZED
    if status_code in (402, 429):
        return RATE_LIMITED
    if status_code in (502, 503, 504):
        return UNAVAILABLE
    return PROVIDER_ERROR


class GeocodingProvider:
    """Base class: one subclass per external geocoding service."""

    name = "base"
    requires_key = False

    def __init__(self, api_key: Optional[str] = None, user_agent: str = "",
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.user_agent = user_agent
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, address: str) -> GeocodeResult:
        """Resolve ``address`` or raise :class:`GeocodingFailure`."""
        raise NotImplementedError

    def _get_json(self, url: str, params: dict, label: str):
        headers = {"User-Agent": self.user_agent} if self.user_agent else {}
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise GeocodingFailure(UNAVAILABLE, f"{label} request timed out") from exc
        except requests.RequestException as exc:
            raise GeocodingFailure(UNAVAILABLE, f"{label} request failed: {exc}") from exc

        if not response.ok:
            raise GeocodingFailure(
                _kind_for_status(response.status_code),
                f"{label} API request failed ({response.status_code})",
            )

        try:
            return response.json()
        except ValueError as exc:
            raise GeocodingFailure(PROVIDER_ERROR, f"{label} returned invalid JSON") from exc

    @staticmethod
    def _unexpected(label: str) -> GeocodingFailure:
        return GeocodingFailure(PROVIDER_ERROR, f"{label} returned an unexpected response")

    def _success(self, lat, lng, formatted: Optional[str]) -> GeocodeResult:
        return GeocodeResult(
            success=True,
            latitude=float(lat),
            longitude=float(lng),
            formatted_address=formatted,
            provider=self.name,
        )


class NominatimProvider(GeocodingProvider):
    """OpenStreetMap Nominatim. Free, limited to one request per second."""

    name = "nominatim"
    url = "https://nominatim.openstreetmap.org/search"

    def lookup(self, address: str) -> GeocodeResult:
        data = self._get_json(
            self.url,
            {"q": address, "format": "json", "limit": 1},
            "Nominatim",
        )
        if not isinstance(data, list):
            raise self._unexpected("Nominatim")
        if not data:
            raise GeocodingFailure(NO_RESULTS, "No results found")

        try:
            top = data[0]
            return self._success(top["lat"], top["lon"], top.get("display_name"))
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise self._unexpected("Nominatim") from exc


class OpenCageProvider(GeocodingProvider):
    name = "opencage"
    requires_key = True
    url = "https://api.opencagedata.com/geocode/v1/json"

    def lookup(self, address: str) -> GeocodeResult:
        if not self.api_key:
            raise GeocodingFailure(CONFIGURATION, "OpenCage API key required")

        data = self._get_json(
            self.url,
            {"q": address, "key": self.api_key, "limit": 1},
            "OpenCage",
        )
        if not isinstance(data, dict) or not isinstance(data.get("results") or [], list):
            raise self._unexpected("OpenCage")
        results = data.get("results") or []
        if not results:
            raise GeocodingFailure(NO_RESULTS, "No results found")

        try:
            top = results[0]
            geometry = top["geometry"]
            return self._success(geometry["lat"], geometry["lng"], top.get("formatted"))
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise self._unexpected("OpenCage") from exc


class GoogleProvider(GeocodingProvider):
    """Google Geocoding through the ``googlemaps`` client library."""

    name = "google"
    requires_key = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._gmaps: Optional[googlemaps.Client] = None

    def _get_client(self) -> googlemaps.Client:
        """Return a cached googlemaps.Client instance."""
        if self._gmaps is None:
            if not self.api_key:
                raise GeocodingFailure(CONFIGURATION, "Google Maps API key required")
            try:
                self._gmaps = googlemaps.Client(
                    key=self.api_key,
                    timeout=self.timeout,
                    # One HTTP call per lookup; the caller owns any retry.
                    retry_timeout=0,
                    retry_over_query_limit=False,
                    requests_session=self.session,
                )
            except ValueError as exc:
                raise GeocodingFailure(UNAUTHORIZED, str(exc)) from exc
        return self._gmaps

    def lookup(self, address: str) -> GeocodeResult:
        client = self._get_client()
        try:
            results = client.geocode(address, language="en")
        except googlemaps.exceptions.ApiError as exc:
            if exc.status == "REQUEST_DENIED":
                kind = UNAUTHORIZED
            elif exc.status == "OVER_QUERY_LIMIT":
                kind = RATE_LIMITED
            else:
                kind = PROVIDER_ERROR
            raise GeocodingFailure(kind, exc.message or exc.status) from exc
        except googlemaps.exceptions.Timeout as exc:
            raise GeocodingFailure(UNAVAILABLE, "Google Maps request timed out") from exc
        except googlemaps.exceptions.HTTPError as exc:
            raise GeocodingFailure(
                _kind_for_status(exc.status_code), "Google Maps API request failed"
            ) from exc
        except googlemaps.exceptions.TransportError as exc:
            raise GeocodingFailure(UNAVAILABLE, f"Google Maps request failed: {exc}") from exc
        except ValueError as exc:
            raise self._unexpected("Google Maps") from exc

        if results and not isinstance(results, list):
            raise self._unexpected("Google Maps")
        if not results:
            raise GeocodingFailure(NO_RESULTS, "No results found")

        try:
            top = results[0]
            loc = top["geometry"]["location"]
            return self._success(loc["lat"], loc["lng"], top.get("formatted_address"))
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            raise self._unexpected("Google Maps") from exc


PROVIDERS: Dict[str, Type[GeocodingProvider]] = {
    NominatimProvider.name: NominatimProvider,
    OpenCageProvider.name: OpenCageProvider,
    GoogleProvider.name: GoogleProvider,
}


def create_provider(name: str, settings: Settings,
                    session: Optional[requests.Session] = None) -> GeocodingProvider:
    """Instantiate the provider called ``name`` from settings."""
    name = (name or settings.geocoding_provider).lower()
    if name not in PROVIDERS:
        raise ValidationError(
            f"Invalid geocoding provider. Must be one of: {', '.join(GEOCODING_PROVIDERS)}"
        )
    return PROVIDERS[name](
        api_key=settings.geocoding_api_key(name),
        user_agent=settings.user_agent,
        session=session,
    )


class GeocodingClient:
    """Resolves free-text addresses with the provider chosen at construction."""

    def __init__(self, settings: Settings, provider: Optional[GeocodingProvider] = None):
        self.settings = settings
        self.provider = provider or create_provider(settings.geocoding_provider, settings)

    @property
    def provider_name(self) -> str:
        return self.provider.name

    def geocode(self, address: str) -> GeocodeResult:
        address = (address or "").strip()
        if not address:
            return GeocodeResult(
                success=False,
                error="Address is required",
                error_kind=NO_RESULTS,
                provider=self.provider.name,
            )

        logger.debug("Geocoding '%s' with %s", address, self.provider.name)
        try:
            result = self.provider.lookup(address)
        except GeocodingFailure as exc:
            if exc.kind == NO_RESULTS:
                logger.info("No geocoding results for '%s'", address)
            else:
                logger.warning("Geocoding error for '%s' (%s): %s", address, exc.kind, exc.message)
            return GeocodeResult(
                success=False,
                error=exc.message,
                error_kind=exc.kind,
                provider=self.provider.name,
            )

        logger.debug("Geocoded '%s' to %s, %s", address, result.latitude, result.longitude)
        return result


__all__ = [
    "GeocodingClient",
    "GeocodingProvider",
    "NominatimProvider",
    "OpenCageProvider",
    "GoogleProvider",
    "create_provider",
    "PERMANENT_KINDS",
]
