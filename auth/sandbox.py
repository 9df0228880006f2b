"""
auth/sandbox.py -- Isolated initialization of the optional AI feature.

ConfigSandbox runs an opaque initializer and turns the outcome into a
FeatureAvailability value. Nothing the initializer raises ever reaches a
caller of initialize() or retry(): the return value alone says whether the
feature is on.

Concurrency:
  initialize() and retry() share one lock, so at most one initialization is
  in flight. The current FeatureAvailability is a frozen object swapped in by
  reference; readers of `availability` never take the lock.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from auth.models import AuthError, FeatureAvailability
from auth.reporter import ErrorReporter
from core.ai_config import AIConfigMalformedError, AIConfigMissingError

logger = logging.getLogger("authguard.sandbox")

_NOT_ATTEMPTED = FeatureAvailability(ai_enabled=False, reason="not_attempted")


def _classify(exc: Exception) -> str:
    if isinstance(exc, AIConfigMissingError):
        return "not_configured"
    if isinstance(exc, requests.RequestException):
        return "unreachable"
    if isinstance(exc, (AIConfigMalformedError, ValueError, TypeError, KeyError)):
        return "malformed_config"
    return "initializer_failed"


class ConfigSandbox:
    """Failure boundary around the AI-configuration dependency.

    Usage:
        sandbox = ConfigSandbox(reporter, initializer=lambda: load_ai_config(settings))
        sandbox.initialize()          # FeatureAvailability
        sandbox.availability.ai_enabled
        sandbox.retry()               # operator-triggered recovery
    """

    def __init__(self, reporter: ErrorReporter, initializer: Callable[[], Mapping[str, Any]]) -> None:
        self._reporter = reporter
        self._initializer = initializer
        self._lock = threading.Lock()
        self._availability: FeatureAvailability = _NOT_ATTEMPTED
        self._config: dict[str, Any] | None = None

    @property
    def availability(self) -> FeatureAvailability:
        return self._availability

    @property
    def config(self) -> dict[str, Any] | None:
        """The usable configuration while the feature is enabled, else None."""
        return self._config if self._availability.ai_enabled else None

    def initialize(self) -> FeatureAvailability:
        """Run the initializer once. Later calls return the existing value."""
        with self._lock:
            if self._availability.attempt > 0:
                return self._availability
            return self._attempt_locked()

    def retry(self) -> FeatureAvailability:
        """Re-run the initializer and supersede the current value."""
        with self._lock:
            return self._attempt_locked()

    def force_disabled(self, reason: str = "forced_off") -> FeatureAvailability:
        """Operator kill-switch: disable the feature without running the initializer."""
        with self._lock:
            self._config = None
            self._availability = FeatureAvailability(
                ai_enabled=False,
                reason=reason,
                checked_at=datetime.now(timezone.utc).isoformat(),
                attempt=self._availability.attempt,
            )
            logger.warning("AI feature disabled by operator (%s)", reason)
            return self._availability

    def _attempt_locked(self) -> FeatureAvailability:
        attempt = self._availability.attempt + 1
        checked_at = datetime.now(timezone.utc).isoformat()
        try:
            config = self._initializer()
            if not isinstance(config, Mapping) or not config:
                raise AIConfigMalformedError("initializer returned no usable configuration")
        except Exception as exc:  # noqa: BLE001 -- this is the isolation boundary
            reason = _classify(exc)
            logger.warning("AI feature initialization failed (%s: %s)", reason, type(exc).__name__)
            self._config = None
            self._availability = FeatureAvailability(
                ai_enabled=False, reason=reason, checked_at=checked_at, attempt=attempt
            )
            self._reporter.report(
                AuthError.of("config_unavailable", fallback_available=True),
                {"reason": reason, "attempt": attempt},
            )
            return self._availability

        self._config = dict(config)
        self._availability = FeatureAvailability(ai_enabled=True, reason="ok", checked_at=checked_at, attempt=attempt)
        logger.info("AI feature enabled (attempt %d)", attempt)
        return self._availability
