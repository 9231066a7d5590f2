"""LLM helper functions for TourMap.

Extracts structured tour data (name, description, venues with dates) from raw
page HTML via OpenAI Chat Completions or the Anthropic Messages API. The model
is asked for strict JSON; we still strip Markdown fences before parsing, then
stamp each venue with a positional id, a duration and placeholder coordinates.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

import anthropic
import openai

from tourmap.api.config import MODEL_PROVIDERS, Settings
from tourmap.api.errors import (
    ConfigurationError,
    ExtractionError,
    UpstreamError,
    UpstreamUnavailableError,
    ValidationError,
)
from tourmap.api.models import compute_duration_days, parse_date

logger = logging.getLogger(__name__)

PARSE_FAILURE_MESSAGE = "Failed to parse tour data from AI response"

# ---------------------------------------------------------------------------
# Prompt construction helpers
# ---------------------------------------------------------------------------

def build_prompt(html_content: str, url: str, max_chars: int = 10000) -> str:
    return f"""Extract tour information from the following webpage content.

URL: {url}

Content:
{html_content[:max_chars]}

Please extract and return a JSON object with the following structure:
{{
  "name": "Tour name",
  "description": "Brief description",
  "venues": [
    {{
      "name": "Venue name",
      "address": "Full address if available, or city/state",
      "city": "City name",
      "state": "State/Province (if applicable)",
      "country": "Country",
      "startDate": "YYYY-MM-DD",
      "endDate": "YYYY-MM-DD"
    }}
  ]
}}

Important: Return ONLY valid JSON, no markdown formatting or explanations."""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` wrapper if the model added one."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_tour_response(content: str) -> Dict[str, Any]:
    """Turn the model's raw reply into the tour payload returned to clients."""
    try:
        payload = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response: %s", exc)
        raise ExtractionError(PARSE_FAILURE_MESSAGE) from exc

    if not isinstance(payload, dict):
        logger.error("LLM response is not a JSON object: %r", type(payload).__name__)
        raise ExtractionError(PARSE_FAILURE_MESSAGE)

    venues = payload.get("venues")
    if isinstance(venues, list):
        stamped = []
        for index, venue in enumerate(venues):
            if not isinstance(venue, dict):
                logger.warning("Dropping non-object venue at index %d", index)
                continue
            start = parse_date(venue.get("startDate"))
            end = parse_date(venue.get("endDate"))
            stamped.append({
                **venue,
                "id": f"venue-{index}",
                "durationDays": compute_duration_days(start, end),
                "latitude": 0,
                "longitude": 0,
            })
        payload["venues"] = stamped

    return payload


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

def _translate_sdk_error(label: str, exc: Exception, sdk) -> Exception:
    """Map an OpenAI/Anthropic SDK exception onto our error taxonomy."""
    if isinstance(exc, sdk.AuthenticationError):
        return UpstreamError(f"{label} API error: API key was rejected", status_code=401)
    if isinstance(exc, sdk.RateLimitError):
        return UpstreamError(f"{label} API error: rate limit exceeded", status_code=429)
    if isinstance(exc, sdk.APIConnectionError):
        return UpstreamUnavailableError(f"{label} API is unavailable: {exc}")
    return UpstreamError(f"{label} API error: {exc}")


class ModelProvider:
    """One large-language-model backend."""

    name = "base"

    def complete(self, prompt: str) -> str:
        raise NotImplementedError


class OpenAIProvider(ModelProvider):
    name = "openai"

    def __init__(self, api_key: str, model: str, client: Optional[openai.OpenAI] = None):
        self.model = model
        self.client = client or openai.OpenAI(api_key=api_key)

    def complete(self, prompt: str) -> str:
        logger.debug("Calling OpenAI ChatCompletion: model=%s", self.model)
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.1,
            )
        except openai.APIError as exc:
            raise _translate_sdk_error("OpenAI", exc, openai) from exc
        return response.choices[0].message.content or ""


class AnthropicProvider(ModelProvider):
    name = "anthropic"

    def __init__(self, api_key: str, model: str, client: Optional[anthropic.Anthropic] = None):
        self.model = model
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def complete(self, prompt: str) -> str:
        logger.debug("Calling Anthropic Messages: model=%s", self.model)
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=4096,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            raise _translate_sdk_error("Anthropic", exc, anthropic) from exc

        for block in message.content:
            text = getattr(block, "text", None)
            if text:
                return text
        return ""


def select_provider(settings: Settings, preferred: Optional[str] = None) -> ModelProvider:
    """Pick the requested provider, else whichever has a key (OpenAI first)."""
    if not settings.openai_api_key and not settings.anthropic_api_key:
        raise ConfigurationError(
            "No AI API key configured. Please add OPENAI_API_KEY or "
            "ANTHROPIC_API_KEY to the backend .env file"
        )

    if preferred and preferred not in MODEL_PROVIDERS:
        raise ValidationError(
            f"Invalid provider. Must be one of: {', '.join(MODEL_PROVIDERS)}"
        )

    use_provider = preferred or ("openai" if settings.openai_api_key else "anthropic")

    if use_provider == "openai" and settings.openai_api_key:
        return OpenAIProvider(settings.openai_api_key, settings.openai_model)
    if use_provider == "anthropic" and settings.anthropic_api_key:
        return AnthropicProvider(settings.anthropic_api_key, settings.anthropic_model)

    raise ValidationError(f"Provider {use_provider} not available or API key not configured")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_tour_data(html_content: str, url: str, settings: Settings,
                      provider: Optional[ModelProvider] = None,
                      preferred: Optional[str] = None) -> Tuple[Dict[str, Any], str]:
    """Return ``(tour_payload, provider_name)`` for a page's HTML."""
    if not html_content:
        raise ValidationError("HTML content is required")

    model = provider or select_provider(settings, preferred)
    logger.info("Extracting tour data using %s for URL: %s", model.name, url)

    raw_content = model.complete(build_prompt(html_content, url, settings.max_html_chars))
    tour = parse_tour_response(raw_content)

    logger.info(
        "Extracted %d venues from %s",
        len(tour.get("venues") or []),
        url,
    )
    return tour, model.name


__all__ = [
    "build_prompt",
    "strip_code_fences",
    "parse_tour_response",
    "select_provider",
    "extract_tour_data",
    "ModelProvider",
    "OpenAIProvider",
    "AnthropicProvider",
]
