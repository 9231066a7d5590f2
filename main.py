"""
TourMap – main application entry point

Loads settings from the environment (and `.env`), configures logging and
serves the Flask backend plus its Socket.IO progress channel.
"""

import logging

from dotenv import load_dotenv

# --------------------------------------------------------------------------- #
# Environment & logging
# --------------------------------------------------------------------------- #
load_dotenv()

from tourmap.api.config import load_settings  # noqa: E402
from tourmap.app import create_app  # noqa: E402

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app, socketio = create_app(settings)

# --------------------------------------------------------------------------- #
# Local development runner ( `python main.py` )
# --------------------------------------------------------------------------- #
if __name__ == "__main__":
    logger.info("Starting TourMap backend on http://localhost:%d", settings.port)
    logger.info("Endpoints: GET /health, POST /api/fetch-url, /api/extract-tour, "
                "/api/geocode, /api/calculate-route; Socket.IO /tour/ws")
    socketio.run(app, host="0.0.0.0", port=settings.port, debug=False, allow_unsafe_werkzeug=True)

__all__ = ["app", "socketio"]
