# tourmap/api/config.py
"""Configuration management for the tour mapping backend.

Everything is read from the environment (and an optional ``.env`` file) once,
at process start, into a :class:`Settings` object that is passed explicitly to
the app factory, the orchestrator and the service clients.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from tourmap.api.errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

GEOCODING_PROVIDERS = ("nominatim", "opencage", "google")
MODEL_PROVIDERS = ("openai", "anthropic")

DEFAULT_ALLOWED_ORIGINS = "http://localhost:5173,http://localhost:3000"
DEFAULT_USER_AGENT = "TourMap Tour Mapping App"


def get_openai_api_key() -> Optional[str]:
    """Get OpenAI API key from environment."""
    return os.getenv("OPENAI_API_KEY") or None


def get_anthropic_api_key() -> Optional[str]:
    """Get Anthropic API key from environment."""
    return os.getenv("ANTHROPIC_API_KEY") or None


def get_geocoding_config() -> dict:
    """Get geocoding provider configuration."""
    return {
        "provider": os.getenv("GEOCODING_PROVIDER", "nominatim").lower(),
        "opencage_api_key": os.getenv("OPENCAGE_API_KEY") or None,
        "google_maps_api_key": os.getenv("GOOGLE_MAPS_API_KEY") or None,
        "delay_seconds": float(os.getenv("GEOCODE_DELAY_SECONDS", "1.0")),
    }


def get_port() -> int:
    """Get port configuration."""
    return int(os.getenv("PORT", 3001))


def get_allowed_origins() -> List[str]:
    raw = os.getenv("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    """Process-wide settings, built once by :func:`load_settings`."""

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4-turbo-preview"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-5-sonnet-20241022"

    geocoding_provider: str = "nominatim"
    opencage_api_key: Optional[str] = None
    google_maps_api_key: Optional[str] = None
    geocode_delay_seconds: float = 1.0

    fetch_timeout_seconds: float = 30.0
    max_html_chars: int = 10000
    user_agent: str = DEFAULT_USER_AGENT

    allowed_origins: List[str] = field(
        default_factory=lambda: DEFAULT_ALLOWED_ORIGINS.split(",")
    )
    port: int = 3001
    backend_url: str = "http://localhost:3001"
    secret_key: Optional[str] = None
    log_level: str = "INFO"

    def key_status(self) -> dict:
        """Which optional keys are configured, without exposing them."""
        return {
            "openai": bool(self.openai_api_key),
            "anthropic": bool(self.anthropic_api_key),
            "opencage": bool(self.opencage_api_key),
            "google": bool(self.google_maps_api_key),
        }

    def geocoding_api_key(self, provider: str) -> Optional[str]:
        if provider == "opencage":
            return self.opencage_api_key
        if provider == "google":
            return self.google_maps_api_key
        return None


def load_settings() -> Settings:
    """Build :class:`Settings` from the environment."""
    geocoding = get_geocoding_config()
    port = get_port()

    secret_key = os.getenv("FLASK_SECRET_KEY")
    if not secret_key:
        logger.warning("No FLASK_SECRET_KEY found. Generated a temporary key.")
        secret_key = os.urandom(32).hex()

    settings = Settings(
        openai_api_key=get_openai_api_key(),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview"),
        anthropic_api_key=get_anthropic_api_key(),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022"),
        geocoding_provider=geocoding["provider"],
        opencage_api_key=geocoding["opencage_api_key"],
        google_maps_api_key=geocoding["google_maps_api_key"],
        geocode_delay_seconds=geocoding["delay_seconds"],
        fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", "30")),
        allowed_origins=get_allowed_origins(),
        port=port,
        backend_url=os.getenv("BACKEND_URL", f"http://localhost:{port}").rstrip("/"),
        secret_key=secret_key,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    validate_settings(settings)
    return settings


def validate_settings(settings: Settings) -> bool:
    """Validate settings that would otherwise fail on the first request."""
    if settings.geocoding_provider not in GEOCODING_PROVIDERS:
        raise ConfigurationError(
            f"Invalid geocoding provider. Must be one of: {', '.join(GEOCODING_PROVIDERS)}"
        )

    if settings.geocoding_provider != "nominatim" and not settings.geocoding_api_key(
        settings.geocoding_provider
    ):
        raise ConfigurationError(
            f"Geocoding provider '{settings.geocoding_provider}' requires an API key"
        )

    if settings.geocode_delay_seconds < 0:
        raise ConfigurationError("GEOCODE_DELAY_SECONDS must not be negative")

    if settings.fetch_timeout_seconds <= 0:
        raise ConfigurationError("FETCH_TIMEOUT_SECONDS must be positive")

    return True
