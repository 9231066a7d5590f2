# tourmap/api/errors.py
"""Exception hierarchy shared by the backend routes and the tour pipeline.

Every error carries the HTTP status the blueprint should answer with, so the
route handlers never have to guess.
"""


class TourMapError(Exception):
    """Base class for all expected, user-facing failures."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(TourMapError):
    """Bad input caught before any network call."""

    status_code = 400


class ConfigurationError(TourMapError):
    """A required key or setting is missing."""

    status_code = 500


class UpstreamError(TourMapError):
    """A remote page, model or geocoding provider answered with a failure."""

    status_code = 502


class UpstreamUnavailableError(UpstreamError):
    """A remote service timed out or could not be reached."""

    status_code = 503


class ExtractionError(TourMapError):
    """The model reply could not be turned into tour data."""

    status_code = 500


class BackendUnavailableError(TourMapError):
    """The tour backend itself could not be reached by a client."""

    status_code = 503


class TourPipelineError(TourMapError):
    """A run finished its calls but produced nothing usable."""

    status_code = 422


__all__ = [
    "TourMapError",
    "ValidationError",
    "ConfigurationError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "ExtractionError",
    "BackendUnavailableError",
    "TourPipelineError",
]
