"""
core/ai_config.py -- Loader for the optional AI-configuration service.

This is the default initializer ConfigSandbox runs. It is deliberately thin:
the AI feature's business logic lives elsewhere; this module only answers
"is there a usable configuration?" by raising or returning a dict.

Failure classes let the sandbox record a reason code without inspecting
exception text:
  AIConfigMissingError   -- no API key configured
  requests.RequestException -- service unreachable or HTTP error
  AIConfigMalformedError -- service answered with an unexpected shape
"""

import logging
from typing import Any

import requests

from core.config import Settings

logger = logging.getLogger("authguard.ai_config")

# Module-level session shared across probes for connection pooling.
# The AI service is a known endpoint; 3 redirects is generous.
_session = requests.Session()
_session.max_redirects = 3


class AIConfigMissingError(RuntimeError):
    """No credentials are configured for the AI service."""


class AIConfigMalformedError(ValueError):
    """The AI service returned a configuration the feature cannot use."""


def load_ai_config(settings: Settings) -> dict[str, Any]:
    """Probe the AI service and return the configuration the feature needs.

    GET <ai_base_url>/models with the bearer key. The configured model must be
    listed, otherwise the configuration is considered malformed.
    """
    if not settings.ai_api_key:
        raise AIConfigMissingError("AI_API_KEY is not set")
    base_url = settings.ai_base_url.rstrip("/")
    if not base_url.startswith(("https://", "http://")):
        raise AIConfigMalformedError("AI_BASE_URL must be an http(s) URL")

    resp = _session.get(
        f"{base_url}/models",
        headers={"Authorization": f"Bearer {settings.ai_api_key}"},
        timeout=settings.ai_timeout_seconds,
    )
    resp.raise_for_status()
    try:
        body = resp.json()
    except ValueError as exc:
        raise AIConfigMalformedError("models endpoint did not return JSON") from exc

    models = body.get("data") if isinstance(body, dict) else None
    if not isinstance(models, list):
        raise AIConfigMalformedError("models endpoint returned an unexpected shape")
    model_ids = [m.get("id") for m in models if isinstance(m, dict)]
    if settings.ai_model not in model_ids:
        raise AIConfigMalformedError("configured model is not offered by the service")

    logger.info("AI service reachable (%d models)", len(model_ids))
    return {"base_url": base_url, "model": settings.ai_model}
