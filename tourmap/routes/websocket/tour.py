# tourmap/routes/websocket/tour.py
"""WebSocket handlers that drive a tour run and stream its progress."""

import logging
from typing import Callable, Dict, Optional

from flask import request
from flask_socketio import emit

from tourmap.api.config import Settings
from tourmap.api.errors import ValidationError
from tourmap.api.services.map_service import MapService
from tourmap.api.services.tour_service import READY, TourOrchestrator, TourState

logger = logging.getLogger(__name__)

NAMESPACE = "/tour/ws"


class TourHandler:
    """One orchestrator per connected browser, keyed by Socket.IO sid."""

    def __init__(self, socketio, settings: Settings, namespace: str = NAMESPACE,
                 orchestrator_factory: Optional[Callable[..., TourOrchestrator]] = None):
        self.socketio = socketio
        self.settings = settings
        self.namespace = namespace
        self.orchestrator_factory = orchestrator_factory or TourOrchestrator
        self.orchestrators: Dict[str, TourOrchestrator] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def emit_to_client(self, event, data, room=None):
        """Emit to ``room`` from any thread, or to the current client."""
        try:
            if room:
                self.socketio.emit(event, data, room=room, namespace=self.namespace)
            else:
                emit(event, data, namespace=self.namespace)
        except Exception as e:
            logger.error(f"Failed to emit {event}: {e}")

    def handle_error(self, error, event_name=""):
        logger.error(f"[WS] Error in {event_name} - Client: {request.sid}, Error: {error}")
        self.emit_to_client('error', {'message': str(error), 'event': event_name})

    @staticmethod
    def serialize_state(state: TourState) -> dict:
        payload = state.to_dict()
        if state.status == READY and state.tour is not None:
            payload["map"] = MapService.build_map_payload(state.tour)
        return payload

    def _orchestrator_for(self, sid: str) -> TourOrchestrator:
        orchestrator = self.orchestrators.get(sid)
        if orchestrator is None:
            def _publish(state: TourState) -> None:
                self.emit_to_client("tour_state", self.serialize_state(state), room=sid)

            orchestrator = self.orchestrator_factory(self.settings, on_change=_publish)
            self.orchestrators[sid] = orchestrator
        return orchestrator

    # ------------------------------------------------------------------
    # Event registration
    # ------------------------------------------------------------------

    def register_handlers(self):
        """Register tour-related event handlers."""

        @self.socketio.on("connect", namespace=self.namespace)
        def handle_connect(auth=None):
            sid = request.sid
            logger.info(f"[WS] connect - Client: {sid}, Origin: {request.headers.get('Origin', 'unknown')}")
            orchestrator = self._orchestrator_for(sid)
            self.emit_to_client("connected", {"sid": sid, "status": "connected"})
            self.emit_to_client("tour_state", self.serialize_state(orchestrator.state))

        @self.socketio.on("disconnect", namespace=self.namespace)
        def handle_disconnect(*args):
            orchestrator = self.orchestrators.pop(request.sid, None)
            if orchestrator is not None:
                orchestrator.close()
            logger.info(f"[WS] disconnect - Client: {request.sid}")

        @self.socketio.on("extract_tour", namespace=self.namespace)
        def handle_extract_tour(data=None):
            url = (data or {}).get("url") if isinstance(data, dict) else None
            logger.info(f"[WS] extract_tour - Client: {request.sid}, URL: {url}")
            orchestrator = self._orchestrator_for(request.sid)

            if orchestrator.state.loading:
                self.emit_to_client("error", {
                    "message": "A tour is already being mapped. Please wait for it to finish.",
                    "event": "extract_tour",
                })
                return

            try:
                orchestrator.start(url)
            except ValidationError as exc:
                self.emit_to_client("validation_error", {"message": exc.message})
            except Exception as exc:
                self.handle_error(exc, "extract_tour")

        @self.socketio.on("reset", namespace=self.namespace)
        def handle_reset(data=None):
            logger.info(f"[WS] reset - Client: {request.sid}")
            self._orchestrator_for(request.sid).reset()

        @self.socketio.on("get_state", namespace=self.namespace)
        def handle_get_state(data=None):
            orchestrator = self._orchestrator_for(request.sid)
            self.emit_to_client("tour_state", self.serialize_state(orchestrator.state))
