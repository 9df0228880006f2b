"""
core/style_guard.py -- Styling-service detection and inline fallback CSS.

The styling service is an external stylesheet (a utility-class CSS build on a
CDN). The login page links it, but when the CDN is slow or down the form
renders unstyled and, in the original incident, unusable.

StyleGuard answers one question per page lifecycle: did the stylesheet load
and does it define the probe rule? If not, the caller activates the fallback
and the web layer inlines FALLBACK_CSS, which is enough for a legible,
operable authentication form on its own.

The authenticator never reads StyleGuard state. Detection runs off the request
path (the API lifespan starts it in a worker thread) and is bounded by an
explicit timeout.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Callable

import requests

from auth.models import AuthError

logger = logging.getLogger("authguard.styling")

FALLBACK_CSS = """
body { margin: 0; background: #000; color: #fff;
       font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif; }
.auth-shell { min-height: 100vh; display: flex; align-items: center; justify-content: center; padding: 16px; }
.auth-card { width: 100%; max-width: 400px; background: #111; border: 1px solid #333;
             border-radius: 8px; padding: 24px; box-sizing: border-box; }
.auth-card h1 { font-size: 1.5rem; margin: 0 0 16px; }
.auth-card label { display: block; margin: 12px 0 4px; font-size: 0.9rem; color: #ccc; }
.auth-card input { width: 100%; padding: 10px; border: 1px solid #444; border-radius: 4px;
                   background: #000; color: #fff; font-size: 1rem; box-sizing: border-box; }
.auth-card input:focus { outline: 2px solid #fff; }
.auth-card button { width: 100%; margin-top: 20px; padding: 12px; border: 0; border-radius: 4px;
                    background: #fff; color: #000; font-weight: 600; font-size: 1rem; cursor: pointer; }
.auth-error { margin-top: 12px; padding: 10px; border: 1px solid #f87171; color: #fca5a5; border-radius: 4px; }
.auth-notice { margin-top: 12px; font-size: 0.85rem; color: #aaa; }
.auth-card a { color: #fff; }
""".strip()

# A fetcher takes (url, timeout_seconds) and returns the stylesheet text.
Fetcher = Callable[[str, float], str]


def _http_fetch(url: str, timeout: float) -> str:
    resp = requests.get(url, timeout=timeout)
    resp.raise_for_status()
    return resp.text


class StyleGuard:
    """Detect the external stylesheet once; activate fallback CSS on demand.

    Usage:
        guard = StyleGuard(reporter, "https://cdn.example/app.css")
        if not guard.detect(timeout_ms=2000):
            guard.activate_fallback()
        guard.fallback_active   # True
    """

    def __init__(
        self,
        reporter,
        stylesheet_url: str,
        probe_selector: str = ".bg-black",
        probe_property: str = "background-color",
        fetcher: Fetcher | None = None,
    ) -> None:
        self._reporter = reporter
        self.stylesheet_url = stylesheet_url
        self._fetch = fetcher or _http_fetch
        self._probe_re = re.compile(
            re.escape(probe_selector) + r"\s*(?:,[^{]*)?\{[^}]*" + re.escape(probe_property) + r"\s*:",
        )
        self._lock = threading.Lock()
        self._detected: bool | None = None
        self._fallback_active = False

    @property
    def detected(self) -> bool | None:
        """Result of the single detection attempt, or None before it ran."""
        return self._detected

    @property
    def fallback_active(self) -> bool:
        return self._fallback_active

    def detect(self, timeout_ms: int) -> bool:
        """Return whether the styling service is applying its classes.

        Single attempt per page lifecycle: the first answer is kept and
        returned by every later call until reset().
        """
        with self._lock:
            if self._detected is not None:
                return self._detected
            self._detected = self._probe(timeout_ms)
            if not self._detected:
                self._reporter.report(
                    AuthError.of("styling_unavailable", fallback_available=True),
                    {"timeout_ms": timeout_ms},
                )
            return self._detected

    def _probe(self, timeout_ms: int) -> bool:
        if not self.stylesheet_url:
            logger.info("No stylesheet configured; styling fallback required")
            return False
        try:
            css = self._fetch(self.stylesheet_url, timeout_ms / 1000)
        except requests.RequestException as exc:
            logger.warning("Stylesheet fetch failed: %s", type(exc).__name__)
            return False
        if not self._probe_re.search(css or ""):
            logger.warning("Stylesheet loaded but probe rule is missing")
            return False
        return True

    def activate_fallback(self) -> str:
        """Turn on the inline fallback style set. Idempotent. Returns the CSS."""
        with self._lock:
            if not self._fallback_active:
                self._fallback_active = True
                logger.warning("Styling fallback activated")
        return FALLBACK_CSS

    def reset(self) -> None:
        """Start a new page lifecycle: forget the detection result and fallback state."""
        with self._lock:
            self._detected = None
            self._fallback_active = False
