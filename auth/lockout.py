"""
auth/lockout.py -- Per-identifier failed-login lockout.

After max_failures consecutive failed logins an identifier is locked for
lockout_seconds. A successful login clears its count; an expired lock starts
a fresh count.

Identifiers are tracked whether or not an account exists, so a lock is never
evidence that the account is real. The Authenticator answers a locked login
with the ordinary invalid_credentials payload.

State is in memory and per process. The table is bounded: once it reaches
capacity, entries that are not currently locked are dropped first.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger("authguard.lockout")


@dataclass
class _Attempts:
    failures: int = 0
    locked_until: float = 0.0


class LoginLockout:
    """Usage:
    lockout = LoginLockout(max_failures=3, lockout_seconds=60)
    lockout.record_failure("alice")   # (1, False)
    lockout.is_locked("alice")        # (False, 0)
    """

    def __init__(
        self,
        max_failures: int = 3,
        lockout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        capacity: int = 10_000,
    ) -> None:
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")
        self.max_failures = max_failures
        self.lockout_seconds = lockout_seconds
        self._clock = clock
        self._capacity = capacity
        self._entries: dict[str, _Attempts] = {}
        self._lock = threading.Lock()

    def is_locked(self, identifier: str) -> tuple[bool, int]:
        """Return (locked, remaining_seconds)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None or not entry.locked_until:
                return False, 0
            if entry.locked_until > now:
                return True, int(entry.locked_until - now) + 1
            # Lock expired
            del self._entries[identifier]
            return False, 0

    def record_failure(self, identifier: str) -> tuple[int, bool]:
        """Count a failed attempt. Returns (failures, locked_now)."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None:
                self._make_room(now)
                entry = self._entries[identifier] = _Attempts()
            entry.failures += 1
            if entry.failures >= self.max_failures and entry.locked_until <= now:
                entry.locked_until = now + self.lockout_seconds
                logger.warning(
                    "Locking %s for %ss after %d failed logins", identifier, self.lockout_seconds, entry.failures
                )
                return entry.failures, True
            return entry.failures, False

    def record_success(self, identifier: str) -> None:
        with self._lock:
            self._entries.pop(identifier, None)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _make_room(self, now: float) -> None:
        if len(self._entries) < self._capacity:
            return
        for key in [k for k, v in self._entries.items() if v.locked_until <= now]:
            del self._entries[key]
        while len(self._entries) >= self._capacity:
            del self._entries[next(iter(self._entries))]
