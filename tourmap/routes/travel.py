# tourmap/routes/travel.py
"""Backend HTTP routes and blueprint configuration."""

import logging
import math
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from tourmap.api import geocoding
from tourmap.api.distance import routes_from_venues, total_distance
from tourmap.api.errors import TourMapError, ValidationError
from tourmap.api.geocoding import GeocodingClient, create_provider
from tourmap.api.llm import extract_tour_data
from tourmap.api.models import Venue
from tourmap.api.page_fetch import fetch_page
from tourmap.api.services.map_service import MapService

logger = logging.getLogger(__name__)

SERVICE_NAME = "TourMap Backend API"

# Geocoding failure kind → HTTP status
GEOCODE_STATUS = {
    geocoding.NO_RESULTS: 400,
    geocoding.CONFIGURATION: 400,
    geocoding.UNAUTHORIZED: 401,
    geocoding.RATE_LIMITED: 429,
    geocoding.UNAVAILABLE: 503,
    geocoding.PROVIDER_ERROR: 502,
}


def _settings():
    return current_app.config["TOURMAP_SETTINGS"]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _validate_route_venues(venues) -> None:
    if venues is None:
        raise ValidationError("Missing required parameter: venues")
    if not isinstance(venues, list):
        raise ValidationError("Venues must be an array")
    if not venues:
        raise ValidationError("Venues array cannot be empty")
    if len(venues) < 2:
        raise ValidationError("At least 2 venues are required to calculate routes")

    for i, venue in enumerate(venues):
        if not isinstance(venue, dict):
            raise ValidationError(f"Venue at index {i} is null or undefined")
        label = venue.get("name") or "unnamed"
        for key in ("latitude", "longitude"):
            value = venue.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                raise ValidationError(f"Venue at index {i} ({label}) has invalid {key}")
        if not MapService.validate_coordinates(venue["latitude"], venue["longitude"]):
            raise ValidationError(
                f"Venue at index {i} ({label}) has coordinates out of valid range"
            )


def create_travel_blueprint():
    """Create and configure the tour backend blueprint.

    The app must carry a ``Settings`` instance under
    ``app.config["TOURMAP_SETTINGS"]``.

    Returns:
        Configured Flask Blueprint
    """
    travel_bp = Blueprint("travel", __name__)

    @travel_bp.errorhandler(TourMapError)
    def handle_tourmap_error(error):
        logger.warning("%s %s failed: %s", request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.status_code

    @travel_bp.errorhandler(Exception)
    def handle_unexpected_error(error):
        if isinstance(error, HTTPException):
            return jsonify({"success": False, "error": error.description}), error.code
        logger.exception("Unhandled error in %s %s", request.method, request.path)
        return jsonify({"success": False, "error": "Internal server error"}), 500

    @travel_bp.route("/health")
    def health():
        """Health check endpoint."""
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
        })

    @travel_bp.route("/api/fetch-url", methods=["POST"])
    def api_fetch_url():
        """Fetch a remote HTML page on behalf of the browser."""
        data = _json_body()
        settings = _settings()
        page = fetch_page(
            data.get("url"),
            timeout=settings.fetch_timeout_seconds,
            user_agent=settings.user_agent,
        )
        return jsonify(page.to_dict())

    @travel_bp.route("/api/extract-tour", methods=["POST"])
    def api_extract_tour():
        """Extract tour data from page HTML with the configured model."""
        data = _json_body()
        html_content = data.get("htmlContent")
        if not html_content or not isinstance(html_content, str):
            raise ValidationError("HTML content is required")

        tour, provider = extract_tour_data(
            html_content,
            data.get("url") or "",
            _settings(),
            preferred=data.get("provider"),
        )
        return jsonify({"success": True, "data": tour, "provider": provider})

    @travel_bp.route("/api/geocode", methods=["POST"])
    def api_geocode():
        """Geocode one address with the requested or default provider."""
        data = _json_body()
        address = data.get("address")
        if not address or not isinstance(address, str) or not address.strip():
            raise ValidationError("Address is required")

        settings = _settings()
        provider = create_provider(data.get("provider") or settings.geocoding_provider, settings)
        logger.info("Geocoding address using %s: %s", provider.name, address)

        result = GeocodingClient(settings, provider=provider).geocode(address)
        if not result.success:
            status = GEOCODE_STATUS.get(result.error_kind, 502)
            return jsonify(result.to_dict()), status
        return jsonify(result.to_dict())

    @travel_bp.route("/api/calculate-route", methods=["POST"])
    def api_calculate_route():
        """Routes and total distance for already-geocoded venues, in the given order."""
        venues_data = _json_body().get("venues")
        _validate_route_venues(venues_data)

        venues = [Venue.from_dict(item, index) for index, item in enumerate(venues_data)]
        routes = routes_from_venues(venues)
        return jsonify({
            "success": True,
            "routes": [route.to_dict() for route in routes],
            "totalDistance": total_distance(routes),
        })

    return travel_bp


__all__ = ['create_travel_blueprint']
