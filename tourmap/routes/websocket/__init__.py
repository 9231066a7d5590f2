# tourmap/routes/websocket/__init__.py
"""WebSocket route handlers initialization."""

import logging

from .tour import NAMESPACE, TourHandler

logger = logging.getLogger(__name__)


def register_websocket_handlers(socketio, settings):
    """Register all WebSocket event handlers with SocketIO.

    Args:
        socketio: Flask-SocketIO instance
        settings: application Settings passed on to each session's orchestrator

    Returns:
        The TourHandler, which keeps the per-client orchestrators
    """
    logger.info(f"Registering tour handler for namespace: {NAMESPACE}")
    handler = TourHandler(socketio, settings, NAMESPACE)
    handler.register_handlers()
    return handler


__all__ = ['register_websocket_handlers', 'NAMESPACE', 'TourHandler']
