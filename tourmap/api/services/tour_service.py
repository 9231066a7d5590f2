# tourmap/api/services/tour_service.py
"""Tour orchestration: fetch → extract → geocode → route.

The orchestrator owns the user-visible state of one browser session. A run
moves through ``idle → fetching_page → extracting → geocoding → routing →
ready`` and any step may land in ``failed``. Every transition updates a
human-readable message and notifies the registered listener.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from tourmap.api.config import Settings
from tourmap.api.distance import routes_from_venues, total_distance
from tourmap.api.errors import TourMapError, TourPipelineError, ValidationError
from tourmap.api.geocoding import PERMANENT_KINDS, GeocodingClient
from tourmap.api.models import GeocodeResult, Tour, TourDraft, Venue, compute_duration_days
from tourmap.api.page_fetch import validate_page_url
from tourmap.api.services.backend_client import ExtractionClient, PageFetchClient

logger = logging.getLogger(__name__)

IDLE = "idle"
FETCHING_PAGE = "fetching_page"
EXTRACTING = "extracting"
GEOCODING = "geocoding"
ROUTING = "routing"
READY = "ready"
FAILED = "failed"

IN_FLIGHT = frozenset({FETCHING_PAGE, EXTRACTING, GEOCODING, ROUTING})

NO_VENUES_MESSAGE = "No venues found in the extracted tour data"
NO_GEOCODES_MESSAGE = "Failed to geocode any venues"
UNEXPECTED_MESSAGE = "An unexpected error occurred while mapping the tour"


@dataclass
class TourState:
    """Snapshot-able application state for one session."""

    status: str = IDLE
    message: str = ""
    error: Optional[str] = None
    tour: Optional[Tour] = None
    skipped: List[str] = field(default_factory=list)
    current: int = 0
    total: int = 0

    @property
    def loading(self) -> bool:
        return self.status in IN_FLIGHT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "loading": self.loading,
            "message": self.message,
            "error": self.error,
            "skipped": list(self.skipped),
            "progress": {"current": self.current, "total": self.total},
            "tour": self.tour.to_dict() if self.tour else None,
        }


class _Abandoned(Exception):
    """A reset happened while this run was still going."""


class TourOrchestrator:
    """Sequences one tour-mapping run at a time for a single session."""

    def __init__(self, settings: Settings,
                 page_client: Optional[PageFetchClient] = None,
                 extraction_client: Optional[ExtractionClient] = None,
                 geocoder: Optional[GeocodingClient] = None,
                 on_change: Optional[Callable[[TourState], None]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.page_client = page_client or PageFetchClient(settings)
        self.extraction_client = extraction_client or ExtractionClient(settings)
        self.geocoder = geocoder or GeocodingClient(settings)
        self.on_change = on_change
        self.sleep = sleep
        self.delay_seconds = settings.geocode_delay_seconds

        self.state = TourState()
        self._run_id = 0
        self._geocode_calls = 0
        self._executor: Optional[ThreadPoolExecutor] = None
        # Reentrant: a listener may call reset() from inside a notification.
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def validate_url(url: str) -> str:
        """Reject anything that is not an absolute http(s) URL."""
        try:
            return validate_page_url(url)
        except ValidationError as exc:
            raise ValidationError(f"Please enter a valid http(s) URL: {exc.message}") from exc

    def start(self, url: str) -> Future:
        """Validate ``url`` and run the pipeline on a background worker.

        Raises:
            ValidationError: before any state change if the URL is unusable
        """
        url = self.validate_url(url)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tour-run")
        run_id = self._begin()
        return self._executor.submit(self._run, url, run_id)

    def run(self, url: str) -> Optional[Tour]:
        """Run the whole pipeline in the calling thread."""
        url = self.validate_url(url)
        return self._run(url, self._begin())

    def reset(self) -> None:
        """Return to idle, dropping the tour, error and skipped list."""
        with self._lock:
            self._run_id += 1
            self.state = TourState()
            logger.info("Tour state reset")
            self._notify()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _begin(self) -> int:
        with self._lock:
            self._run_id += 1
            self._geocode_calls = 0
            return self._run_id

    def _run(self, url: str, run_id: int) -> Optional[Tour]:
        try:
            self._transition(run_id, FETCHING_PAGE, "Fetching tour page...",
                             tour=None, error=None, skipped=[], current=0, total=0)
            html = self.page_client.fetch(url)

            self._transition(run_id, EXTRACTING, "Extracting tour data with AI...")
            draft = self.extraction_client.extract(html, url)
            if not draft.venues:
                raise TourPipelineError(NO_VENUES_MESSAGE)

            geocoded, skipped = self._geocode_venues(draft.venues, run_id)
            if not geocoded:
                raise TourPipelineError(NO_GEOCODES_MESSAGE)

            self._transition(run_id, ROUTING, "Calculating routes...")
            tour = self._assemble(draft, geocoded)

            if skipped:
                message = f"Mapped {len(geocoded)} venues ({len(skipped)} skipped)"
            else:
                message = f"Mapped {len(geocoded)} venues"
            self._transition(run_id, READY, message, tour=tour)
            logger.info("Tour '%s' ready: %d venues, %d routes, %.1f km",
                        tour.name, len(tour.venues), len(tour.routes), tour.total_distance["km"])
            return tour

        except _Abandoned:
            logger.info("Run %d abandoned after reset", run_id)
            return None
        except TourMapError as exc:
            logger.warning("Tour run failed for %s: %s", url, exc.message)
            self._fail(run_id, exc.message)
            return None
        except Exception:
            logger.exception("Unexpected error while mapping %s", url)
            self._fail(run_id, UNEXPECTED_MESSAGE)
            return None

    def _geocode_venues(self, venues: List[Venue], run_id: int) -> Tuple[List[Venue], List[str]]:
        geocoded: List[Venue] = []
        skipped: List[str] = []
        total = len(venues)

        for index, venue in enumerate(venues, 1):
            self._transition(run_id, GEOCODING,
                             f"Geocoding venue {index} of {total}: {venue.name or venue.id}...",
                             current=index, total=total)

            if not venue.name or not venue.city:
                logger.warning("Skipping venue %s: missing name or city", venue.id)
                skipped.append(venue.name or venue.id)
                self._set_skipped(run_id, skipped)
                continue

            result = self._geocode(venue.full_address())
            if not result.success and result.error_kind not in PERMANENT_KINDS:
                fallback = venue.reduced_address()
                logger.info("Retrying %s with reduced address '%s'", venue.name, fallback)
                self._transition(run_id, GEOCODING,
                                 f"Retrying venue {index} of {total}: {venue.name} ({fallback})...")
                result = self._geocode(fallback)

            if not result.success:
                logger.warning("Could not geocode %s: %s", venue.name, result.error)
                skipped.append(venue.name)
                self._set_skipped(run_id, skipped)
                continue

            venue.latitude = result.latitude
            venue.longitude = result.longitude
            geocoded.append(venue)

        logger.info("Geocoded %d/%d venues", len(geocoded), total)
        return geocoded, skipped

    def _geocode(self, address: str) -> GeocodeResult:
        # The default provider allows one request per second.
        if self._geocode_calls and self.delay_seconds:
            self.sleep(self.delay_seconds)
        self._geocode_calls += 1
        return self.geocoder.geocode(address)

    def _assemble(self, draft: TourDraft, venues: List[Venue]) -> Tour:
        ordered = sorted(venues, key=lambda v: (v.start_date is None, v.start_date or date.min))
        routes = routes_from_venues(ordered)

        starts = [v.start_date for v in ordered if v.start_date]
        ends = [v.end_date for v in ordered if v.end_date]
        start = min(starts) if starts else None
        end = max(ends) if ends else None

        return Tour(
            id=f"tour-{int(time.time() * 1000)}",
            name=draft.name,
            description=draft.description,
            venues=ordered,
            routes=routes,
            start_date=start,
            end_date=end,
            total_duration_days=compute_duration_days(start, end),
            total_distance=total_distance(routes),
        )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _check(self, run_id: int) -> None:
        if run_id != self._run_id:
            raise _Abandoned()

    def _transition(self, run_id: int, status: str, message: str, **changes) -> None:
        # Write only to the state object that passed the run-id check.
        with self._lock:
            state = self.state
            self._check(run_id)
            state.status = status
            state.message = message
            for key, value in changes.items():
                setattr(state, key, value)
            logger.debug("[%s] %s", status, message)
            self._notify(state)

    def _set_skipped(self, run_id: int, skipped: List[str]) -> None:
        with self._lock:
            state = self.state
            self._check(run_id)
            state.skipped = list(skipped)

    def _fail(self, run_id: int, reason: str) -> None:
        with self._lock:
            state = self.state
            if run_id != self._run_id:
                return
            state.status = FAILED
            state.message = reason
            state.error = reason
            state.tour = None
            self._notify(state)

    def _notify(self, state: Optional[TourState] = None) -> None:
        if self.on_change is None:
            return
        state = state or self.state
        if state is not self.state:
            return
        try:
            self.on_change(state)
        except Exception:
            logger.exception("State listener failed")


__all__ = ["TourOrchestrator", "TourState", "IDLE", "FETCHING_PAGE", "EXTRACTING",
           "GEOCODING", "ROUTING", "READY", "FAILED"]
