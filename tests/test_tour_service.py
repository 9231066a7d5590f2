import pytest

from tourmap.api.errors import UpstreamError, ValidationError
from tourmap.api.geocoding import GeocodingClient, NominatimProvider
from tourmap.api.models import TourDraft
from tourmap.api.services import tour_service
from tourmap.api.services.tour_service import TourOrchestrator

from conftest import (
    FakeExtractionClient,
    FakeGeocoder,
    FakePageClient,
    FakeResponse,
    FakeSession,
    make_venue,
)

BELFAST = "2 Great Victoria St, Belfast, UK"
GLASGOW = "282 Hope St, Glasgow, UK"
SALFORD = "Pier 8, Salford, UK"

ALL_KNOWN = {
    BELFAST: (54.5946, -5.9339),
    GLASGOW: (55.8642, -4.2518),
    SALFORD: (53.4723, -2.2935),
}


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


def _orchestrator(settings, draft, geocoder, page_client=None, **kwargs):
    return TourOrchestrator(
        settings,
        page_client=page_client or FakePageClient(),
        extraction_client=FakeExtractionClient(draft=draft),
        geocoder=geocoder,
        sleep=kwargs.pop("sleep", RecordingSleep()),
        **kwargs,
    )


def test_venues_are_ordered_chronologically(settings, three_venue_draft):
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN))
    tour = orchestrator.run("https://example.com/tour")

    assert [v.city for v in tour.venues] == ["Glasgow", "Salford", "Belfast"]
    assert len(tour.routes) == 2
    assert tour.routes[0].from_venue.city == "Glasgow"
    assert tour.routes[1].to_venue.city == "Belfast"
    assert str(tour.start_date) == "2024-01-01"
    assert str(tour.end_date) == "2024-03-05"
    assert tour.total_duration_days == 64
    assert tour.total_distance["km"] == round(sum(r.distance_km for r in tour.routes), 1)

    state = orchestrator.state
    assert state.status == tour_service.READY
    assert not state.loading
    assert state.skipped == []
    assert state.tour is tour


def test_no_venues_fails_without_geocoding(settings):
    geocoder = FakeGeocoder(ALL_KNOWN)
    orchestrator = _orchestrator(settings, TourDraft(name="Empty"), geocoder)

    assert orchestrator.run("https://example.com/tour") is None
    assert orchestrator.state.status == tour_service.FAILED
    assert orchestrator.state.error == "No venues found in the extracted tour data"
    assert geocoder.calls == []


def test_partial_geocoding_skips_failed_venue(settings, three_venue_draft):
    known = {BELFAST: ALL_KNOWN[BELFAST], SALFORD: ALL_KNOWN[SALFORD]}
    geocoder = FakeGeocoder(known)
    orchestrator = _orchestrator(settings, three_venue_draft, geocoder)

    tour = orchestrator.run("https://example.com/tour")

    assert [v.name for v in tour.venues] == ["Lowry", "Grand Opera House"]
    assert len(tour.routes) == 1
    assert orchestrator.state.skipped == ["Theatre Royal"]
    assert orchestrator.state.status == tour_service.READY
    # The failed venue is retried with just city and country.
    assert geocoder.calls == [BELFAST, GLASGOW, "Glasgow, UK", SALFORD]


def test_reduced_address_fallback_succeeds(settings, three_venue_draft):
    known = dict(ALL_KNOWN)
    del known[GLASGOW]
    known["Glasgow, UK"] = (55.86, -4.25)
    tour = _orchestrator(settings, three_venue_draft, FakeGeocoder(known)).run("https://example.com")

    assert len(tour.venues) == 3
    assert tour.venues[0].latitude == 55.86


def test_nothing_geocoded_fails(settings, three_venue_draft):
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder({}))
    assert orchestrator.run("https://example.com/tour") is None
    assert orchestrator.state.status == tour_service.FAILED
    assert orchestrator.state.error == "Failed to geocode any venues"
    assert orchestrator.state.tour is None


def test_geocode_requests_are_spaced(settings, three_venue_draft):
    sleep = RecordingSleep()
    geocoder = FakeGeocoder(ALL_KNOWN)
    _orchestrator(settings, three_venue_draft, geocoder, sleep=sleep).run("https://example.com")

    assert len(geocoder.calls) == 3
    assert sleep.calls == [1.0, 1.0]


def test_retries_are_spaced_too(settings, three_venue_draft):
    sleep = RecordingSleep()
    geocoder = FakeGeocoder({})
    _orchestrator(settings, three_venue_draft, geocoder, sleep=sleep).run("https://example.com")

    assert len(geocoder.calls) == 6
    assert len(sleep.calls) == 5


def test_permanent_failures_are_not_retried(settings, three_venue_draft):
    geocoder = FakeGeocoder({}, error_kind="unauthorized")
    orchestrator = _orchestrator(settings, three_venue_draft, geocoder)
    orchestrator.run("https://example.com")

    assert geocoder.calls == [BELFAST, GLASGOW, SALFORD]
    assert orchestrator.state.status == tour_service.FAILED


def test_venue_missing_city_is_skipped(settings):
    draft = TourDraft(name="Tour", venues=[
        make_venue(0, "Apollo", "London", "2024-01-01", "2024-01-02", address="31 Shaftesbury Ave"),
        make_venue(1, "Mystery Hall", "", "2024-01-05", "2024-01-06"),
    ])
    geocoder = FakeGeocoder({"31 Shaftesbury Ave, London, UK": (51.51, -0.13)})
    orchestrator = _orchestrator(settings, draft, geocoder)

    tour = orchestrator.run("https://example.com")
    assert len(tour.venues) == 1
    assert tour.routes == []
    assert orchestrator.state.skipped == ["Mystery Hall"]
    assert geocoder.calls == ["31 Shaftesbury Ave, London, UK"]


def test_upstream_failure_is_reported(settings, three_venue_draft):
    page_client = FakePageClient(error=UpstreamError("Failed to fetch URL: Not Found", status_code=404))
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN),
                                 page_client=page_client)

    assert orchestrator.run("https://example.com/missing") is None
    assert orchestrator.state.status == tour_service.FAILED
    assert orchestrator.state.message == "Failed to fetch URL: Not Found"


def test_unexpected_exception_becomes_generic_failure(settings, three_venue_draft):
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN),
                                 page_client=FakePageClient(error=RuntimeError("boom")))
    orchestrator.run("https://example.com")

    assert orchestrator.state.status == tour_service.FAILED
    assert orchestrator.state.error == tour_service.UNEXPECTED_MESSAGE


def test_invalid_url_leaves_state_untouched(settings, three_venue_draft):
    page_client = FakePageClient()
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN),
                                 page_client=page_client)

    with pytest.raises(ValidationError):
        orchestrator.run("ftp://example.com/tour")
    with pytest.raises(ValidationError):
        orchestrator.start("not a url")

    assert orchestrator.state.status == tour_service.IDLE
    assert page_client.calls == []


def test_state_transitions_are_reported(settings, three_venue_draft):
    seen = []
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN),
                                 on_change=lambda state: seen.append(state.status))
    orchestrator.run("https://example.com")

    assert seen[0] == tour_service.FETCHING_PAGE
    assert seen[1] == tour_service.EXTRACTING
    assert tour_service.GEOCODING in seen
    assert seen[-2:] == [tour_service.ROUTING, tour_service.READY]


def test_broken_listener_does_not_break_the_run(settings, three_venue_draft):
    def listener(state):
        raise RuntimeError("socket gone")

    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN),
                                 on_change=listener)
    assert orchestrator.run("https://example.com") is not None


def test_reset_abandons_running_pipeline(settings, three_venue_draft):
    geocoder = FakeGeocoder(ALL_KNOWN)
    orchestrator = None

    class ResettingPageClient(FakePageClient):
        def fetch(self, url):
            html = super().fetch(url)
            orchestrator.reset()
            return html

    orchestrator = _orchestrator(settings, three_venue_draft, geocoder,
                                 page_client=ResettingPageClient())

    assert orchestrator.run("https://example.com") is None
    assert orchestrator.state.status == tour_service.IDLE
    assert orchestrator.state.tour is None
    assert geocoder.calls == []


def test_reset_clears_previous_tour(settings, three_venue_draft):
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN))
    orchestrator.run("https://example.com")
    orchestrator.reset()

    state = orchestrator.state.to_dict()
    assert state["status"] == "idle"
    assert state["tour"] is None
    assert state["error"] is None
    assert state["skipped"] == []


def test_start_runs_in_background(settings, three_venue_draft):
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN))
    try:
        tour = orchestrator.start("https://example.com").result(timeout=5)
    finally:
        orchestrator.close()

    assert tour is not None
    assert orchestrator.state.status == tour_service.READY


def test_state_dict_shape(settings, three_venue_draft):
    orchestrator = _orchestrator(settings, three_venue_draft, FakeGeocoder(ALL_KNOWN))
    orchestrator.run("https://example.com")
    state = orchestrator.state.to_dict()

    assert state["loading"] is False
    assert state["progress"] == {"current": 3, "total": 3}
    assert state["tour"]["venues"][0]["city"] == "Glasgow"
    assert set(state["tour"]["totalDistance"]) == {"km", "miles"}


def test_malformed_geocoder_reply_skips_only_that_venue(settings):
    draft = TourDraft(name="Tour", venues=[
        make_venue(0, "Apollo", "London", "2024-01-01", "2024-01-02", address="31 Shaftesbury Ave"),
        make_venue(1, "Lowry", "Salford", "2024-02-01", "2024-02-03", address="Pier 8"),
    ])
    session = FakeSession(
        FakeResponse(payload={"error": "Unable to geocode"}),
        FakeResponse(payload=[]),
        FakeResponse(payload=[{"lat": "53.47", "lon": "-2.29", "display_name": "Lowry"}]),
    )
    geocoder = GeocodingClient(settings, provider=NominatimProvider(session=session))
    orchestrator = _orchestrator(settings, draft, geocoder)

    tour = orchestrator.run("https://example.com/tour")

    assert tour is not None
    assert [v.name for v in tour.venues] == ["Lowry"]
    assert orchestrator.state.status == tour_service.READY
    assert orchestrator.state.skipped == ["Apollo"]
    assert len(session.calls) == 3


def test_reset_between_check_and_update_keeps_fresh_state(settings, three_venue_draft):
    seen = []

    class ResetAfterCheck(TourOrchestrator):
        armed = True

        def _check(self, run_id):
            super()._check(run_id)
            if self.armed and self.state.status == tour_service.FETCHING_PAGE:
                self.armed = False
                self.reset()

    orchestrator = ResetAfterCheck(
        settings,
        page_client=FakePageClient(),
        extraction_client=FakeExtractionClient(draft=three_venue_draft),
        geocoder=FakeGeocoder(ALL_KNOWN),
        on_change=lambda state: seen.append(state.status),
        sleep=RecordingSleep(),
    )

    assert orchestrator.run("https://example.com/tour") is None
    assert orchestrator.state.status == tour_service.IDLE
    assert not orchestrator.state.loading
    assert seen == [tour_service.FETCHING_PAGE, tour_service.IDLE]
