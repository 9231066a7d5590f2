"""
TourMap application factory

* Flask app exposing the JSON backend (page proxy, model extraction, geocoding,
  route calculation) under a single blueprint.
* Socket.IO namespace `/tour/ws` that runs a tour for the connected browser
  and streams every state change back to it.
* Runs in `threading` async mode, so no eventlet/gevent is required.
"""

import logging
from typing import Optional, Tuple

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from tourmap.api.config import Settings, load_settings
from tourmap.routes.travel import create_travel_blueprint
from tourmap.routes.websocket import register_websocket_handlers

logger = logging.getLogger(__name__)


def _log_key_status(settings: Settings) -> None:
    status = settings.key_status()
    logger.info(
        "API keys: OpenAI=%s Anthropic=%s OpenCage=%s GoogleMaps=%s",
        *("configured" if status[name] else "not configured"
          for name in ("openai", "anthropic", "opencage", "google")),
    )
    if not status["openai"] and not status["anthropic"]:
        logger.warning(
            "No AI API key configured! Add OPENAI_API_KEY or ANTHROPIC_API_KEY to your .env file"
        )
    logger.info("Geocoding provider: %s", settings.geocoding_provider)


def create_app(settings: Optional[Settings] = None) -> Tuple[Flask, SocketIO]:
    """Build the Flask app and its Socket.IO server."""
    settings = settings or load_settings()

    app = Flask(__name__)
    app.secret_key = settings.secret_key or "dev"
    app.config.update(
        TOURMAP_SETTINGS=settings,
        # Tour pages are posted back as JSON for extraction.
        MAX_CONTENT_LENGTH=10 * 1024 * 1024,
    )

    CORS(app, origins=settings.allowed_origins, supports_credentials=True)

    socketio = SocketIO(
        app,
        cors_allowed_origins=settings.allowed_origins,
        async_mode="threading",
        logger=False,
        engineio_logger=False,
    )
    logger.info("Socket.IO initialised (async_mode=threading)")

    app.register_blueprint(create_travel_blueprint())
    app.extensions["tourmap_ws"] = register_websocket_handlers(socketio, settings)

    _log_key_status(settings)
    return app, socketio


__all__ = ["create_app"]
