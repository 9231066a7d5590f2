"""Shared data structures for tour mapping.

Venues, routes and tours are plain dataclasses. ``to_dict`` produces the
camelCase wire format the browser and the HTTP surface speak.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO calendar date (``YYYY-MM-DD``); ``None`` if unusable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def compute_duration_days(start: Optional[date], end: Optional[date]) -> int:
    """Whole days between two dates, rounded up and never negative."""
    if start is None or end is None:
        return 0
    days = math.ceil((end - start) / timedelta(days=1))
    if days < 0:
        logger.warning("End date %s is before start date %s; duration clamped to 0", end, start)
        return 0
    return days


def _text(value: Any) -> str:
    """Model output is loosely typed; coerce anything but None to a string."""
    if value is None:
        return ""
    return str(value).strip()


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Venue:
    """A single stop on a tour."""

    id: str
    name: str
    city: str
    country: str = ""
    address: str = ""
    state: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration_days: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> "Venue":
        start = parse_date(data.get("startDate"))
        end = parse_date(data.get("endDate"))
        duration = data.get("durationDays")
        if not isinstance(duration, int) or duration < 0:
            duration = compute_duration_days(start, end)

        return cls(
            id=str(data.get("id") or f"venue-{index}"),
            name=_text(data.get("name")),
            city=_text(data.get("city")),
            country=_text(data.get("country")),
            address=_text(data.get("address")),
            state=_text(data.get("state")) or None,
            latitude=float(data.get("latitude") or 0.0),
            longitude=float(data.get("longitude") or 0.0),
            start_date=start,
            end_date=end,
            duration_days=duration,
        )

    def full_address(self) -> str:
        """Street-level query: address, city, state, country."""
        parts = [self.address, self.city, self.state, self.country]
        seen = []
        for part in parts:
            if part and part not in seen:
                seen.append(part)
        return ", ".join(seen)

    def reduced_address(self) -> str:
        """Fallback query that drops street-level detail."""
        return ", ".join(part for part in (self.city, self.country) if part)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "durationDays": self.duration_days,
        }


@dataclass(frozen=True)
class Route:
    """Directed edge between two chronologically consecutive venues."""

    from_venue: Venue
    to_venue: Venue
    distance_km: float
    distance_miles: float

    def to_dict(self) -> dict:
        return {
            "from": self.from_venue.to_dict(),
            "to": self.to_venue.to_dict(),
            "distanceKm": self.distance_km,
            "distanceMiles": self.distance_miles,
        }


@dataclass
class TourDraft:
    """What extraction yields: a tour without coordinates or routes."""

    name: str
    description: Optional[str] = None
    venues: List[Venue] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TourDraft":
        raw_venues = data.get("venues") or []
        venues = [
            Venue.from_dict(item, index)
            for index, item in enumerate(raw_venues)
            if isinstance(item, dict)
        ]
        return cls(
            name=_text(data.get("name")) or "Untitled Tour",
            description=_text(data.get("description")) or None,
            venues=venues,
        )


@dataclass
class Tour:
    """The complete result of one extraction run."""

    id: str
    name: str
    venues: List[Venue]
    routes: List[Route]
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_duration_days: int = 0
    total_distance: Dict[str, float] = field(default_factory=lambda: {"km": 0.0, "miles": 0.0})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "venues": [venue.to_dict() for venue in self.venues],
            "routes": [route.to_dict() for route in self.routes],
            "startDate": _iso(self.start_date),
            "endDate": _iso(self.end_date),
            "totalDurationDays": self.total_duration_days,
            "totalDistance": dict(self.total_distance),
        }


@dataclass
class GeocodeResult:
    """Normalised answer from any geocoding provider."""

    success: bool
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    formatted_address: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    provider: Optional[str] = None

    def to_dict(self) -> dict:
        if self.success:
            return {
                "success": True,
                "latitude": self.latitude,
                "longitude": self.longitude,
                "formattedAddress": self.formatted_address,
                "provider": self.provider,
            }
        return {
            "success": False,
            "error": self.error,
            "errorKind": self.error_kind,
            "provider": self.provider,
        }
