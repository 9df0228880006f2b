"""
auth/reporter.py -- Sanitized diagnostic sink shared by every component.

One ErrorReporter is owned by the AuthContext and injected into the crypto
provider, registry gateway, config sandbox and style guard. There is no module
level instance: each context (and each test) gets its own log.

Sanitization rules for the context dict attached to a report:
  - keys that name secret material are dropped entirely
  - exceptions are reduced to their class name
  - filesystem paths inside strings are masked
  - strings are truncated to _MAX_VALUE_LEN

Forwarded reports (forwarded=True) are an upstream caller re-recording an
error a component already reported, with its own context attached. They are
kept in the log but left out of the counters, so one failure counts once.

report() never raises. A failure inside the reporter is logged and swallowed
because the caller is already on an error path and must not be derailed.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter, deque
from dataclasses import asdict, dataclass, field

from auth.models import AuthError

logger = logging.getLogger("authguard.diagnostics")

_SENSITIVE_KEY_PARTS = ("password", "secret", "digest", "hash", "salt", "token", "key", "credential")
_PATH_RE = re.compile(r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}")
_MAX_VALUE_LEN = 120


@dataclass(frozen=True)
class DiagnosticRecord:
    category: str
    code: str
    message: str
    fallback_available: bool
    created_at: str
    context: dict = field(default_factory=dict)
    forwarded: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _sanitize_value(value):
    if isinstance(value, BaseException):
        return type(value).__name__
    if isinstance(value, (bool, int, float)) or value is None:
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_sanitize_value(v) for v in list(value)[:20]]
    text = _PATH_RE.sub("<path>", str(value))
    return text[:_MAX_VALUE_LEN]


def sanitize_context(context: dict | None) -> dict:
    if not context:
        return {}
    clean: dict = {}
    for key, value in context.items():
        name = str(key)
        if any(part in name.lower() for part in _SENSITIVE_KEY_PARTS):
            continue
        clean[name] = _sanitize_value(value)
    return clean


class ErrorReporter:
    """Append-only, bounded, thread-safe diagnostic log.

    Usage:
        reporter = ErrorReporter(capacity=1000)
        reporter.report(AuthError.of("config_unavailable", fallback_available=True), {"reason": "unreachable"})
        reporter.recent_errors(10)
        reporter.count_by_category()   # {"CONFIG": 1}
    """

    def __init__(self, capacity: int = 1000) -> None:
        self._records: deque[DiagnosticRecord] = deque(maxlen=capacity)
        # Totals survive eviction from the bounded deque.
        self._by_category: Counter = Counter()
        self._by_code: Counter = Counter()
        self._lock = threading.Lock()

    def report(self, error: AuthError, context: dict | None = None, forwarded: bool = False) -> None:
        try:
            record = DiagnosticRecord(
                category=error.category.value,
                code=error.code,
                message=error.message,
                fallback_available=error.fallback_available,
                created_at=error.created_at,
                context=sanitize_context(context),
                forwarded=forwarded,
            )
            with self._lock:
                self._records.append(record)
                if not forwarded:
                    self._by_category[record.category] += 1
                    self._by_code[record.code] += 1
            logger.warning(
                "%s %s fallback=%s forwarded=%s %s",
                record.category,
                record.code,
                record.fallback_available,
                forwarded,
                record.context,
            )
        except Exception:  # noqa: BLE001 -- see module docstring
            logger.exception("Diagnostic report could not be recorded")

    def recent_errors(self, n: int = 50) -> list[DiagnosticRecord]:
        """Return up to n most recent records, newest first."""
        if n <= 0:
            return []
        with self._lock:
            items = list(self._records)
        return list(reversed(items[-n:]))

    def count_by_category(self) -> dict[str, int]:
        with self._lock:
            return dict(self._by_category)

    def count_by_code(self) -> dict[str, int]:
        with self._lock:
            return dict(self._by_code)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._by_category.clear()
            self._by_code.clear()
