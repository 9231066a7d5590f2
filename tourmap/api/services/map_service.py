# tourmap/api/services/map_service.py
"""Service layer for map-related presentation data."""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from tourmap.api.models import Tour

logger = logging.getLogger(__name__)

# Marker colours cycle by venue position; the legend shows the same palette.
MARKER_COLORS = [
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#FFA07A",
    "#98D8C8",
    "#F7DC6F",
    "#BB8FCE",
    "#85C1E2",
    "#F8B88B",
    "#52B788",
]

ROUTE_START_RGB = (0, 102, 255)   # blue
ROUTE_END_RGB = (255, 0, 0)       # red
LEGEND_VISIBLE_COLORS = 6


class MapService:
    """Turns an assembled tour into what the map front-end draws."""

    @staticmethod
    def validate_coordinates(lat: float, lng: float) -> bool:
        """Validate that coordinates are within valid ranges.

        Args:
            lat: Latitude
            lng: Longitude

        Returns:
            True if valid, False otherwise
        """
        return -90 <= lat <= 90 and -180 <= lng <= 180

    @staticmethod
    def marker_color(index: int) -> str:
        return MARKER_COLORS[index % len(MARKER_COLORS)]

    @staticmethod
    def route_color(progress: float) -> str:
        """Linear blue → red gradient for a progress value in [0, 1]."""
        progress = max(0.0, min(1.0, progress))
        channels = [
            round(start + (end - start) * progress)
            for start, end in zip(ROUTE_START_RGB, ROUTE_END_RGB)
        ]
        return "#{:02X}{:02X}{:02X}".format(*channels)

    @staticmethod
    def format_date(value: Union[str, date, None]) -> str:
        """Format a date as e.g. "Jan 15, 2024"; unparseable input is returned as-is.

        Args:
            value: ISO date string or date

        Returns:
            Formatted date string
        """
        if value is None:
            return ""
        if isinstance(value, datetime):
            value = value.date()
        if not isinstance(value, date):
            try:
                value = date.fromisoformat(str(value)[:10])
            except ValueError:
                return str(value)
        return f"{value.strftime('%b')} {value.day}, {value.year}"

    @staticmethod
    def format_distance(distance_km: float, distance_miles: float) -> str:
        return f"{distance_km} km ({distance_miles} mi)"

    @staticmethod
    def calculate_bounds(tour: Optional[Tour]) -> Dict[str, float]:
        """Calculate bounding box for all venues in a tour.

        Returns:
            Dictionary with north, south, east, west bounds
        """
        if not tour or not tour.venues:
            return {}

        points = [
            (venue.latitude, venue.longitude)
            for venue in tour.venues
            if MapService.validate_coordinates(venue.latitude, venue.longitude)
        ]
        if not points:
            return {}

        lats = [lat for lat, _ in points]
        lngs = [lng for _, lng in points]
        return {
            "north": max(lats),
            "south": min(lats),
            "east": max(lngs),
            "west": min(lngs),
        }

    @staticmethod
    def build_legend() -> Dict[str, Any]:
        """The marker palette: the first few colours plus a count of the rest."""
        return {
            "venues": [
                {"name": f"Venue {i + 1}", "color": color}
                for i, color in enumerate(MARKER_COLORS[:LEGEND_VISIBLE_COLORS])
            ],
            "more": max(0, len(MARKER_COLORS) - LEGEND_VISIBLE_COLORS),
            "routeStart": MapService.route_color(0.0),
            "routeEnd": MapService.route_color(1.0),
        }

    @staticmethod
    def build_map_payload(tour: Optional[Tour]) -> Dict[str, Any]:
        """Markers, coloured route lines, legend and bounds for ``tour``."""
        if not tour:
            return {}

        markers: List[Dict[str, Any]] = []
        for index, venue in enumerate(tour.venues):
            markers.append({
                "id": venue.id,
                "number": index + 1,
                "name": venue.name,
                "lat": venue.latitude,
                "lng": venue.longitude,
                "color": MapService.marker_color(index),
                "city": venue.city,
                "dates": (
                    f"{MapService.format_date(venue.start_date)} - "
                    f"{MapService.format_date(venue.end_date)}"
                ),
                "durationDays": venue.duration_days,
            })

        lines: List[Dict[str, Any]] = []
        span = max(1, len(tour.routes) - 1)
        for index, route in enumerate(tour.routes):
            lines.append({
                "from": route.from_venue.id,
                "to": route.to_venue.id,
                "path": [
                    [route.from_venue.latitude, route.from_venue.longitude],
                    [route.to_venue.latitude, route.to_venue.longitude],
                ],
                "color": MapService.route_color(index / span),
                "tooltip": MapService.format_distance(route.distance_km, route.distance_miles),
            })

        logger.debug("Built map payload: %d markers, %d routes", len(markers), len(lines))
        return {
            "markers": markers,
            "routes": lines,
            "legend": MapService.build_legend(),
            "bounds": MapService.calculate_bounds(tour),
            "totalDistance": dict(tour.total_distance),
        }


__all__ = ['MapService']
