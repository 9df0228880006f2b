"""
auth/crypto.py -- Credential hashing with a secure fallback path.

Security design decisions:
  Preferred: bcrypt, called directly (no passlib wrapper). Its cost factor
       makes brute force expensive for low-entropy secrets.

  Fallback: PBKDF2-HMAC-SHA256 with a 16-byte salt from the OS CSPRNG and a
       configurable iteration count (floor in core.config). Used when the bcrypt
       self-test fails, and always for secrets longer than 72 bytes -- bcrypt
       either truncates (4.x) or rejects (5.x) them.

  Randomness: the only hard requirement. Without os.urandom neither bcrypt
       salts nor PBKDF2 salts can be produced, so hash() fails with
       crypto_unavailable instead of degrading to a predictable salt.

  Support is probed on every call, not cached. The probe is side-effect free.

  verify() dispatches on the tag stored in the digest. A bcrypt digest is
       never checked with PBKDF2 or the other way round.

Layer rule: no imports from api/ or web/. core.config is allowed for the
strength floors.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable

import bcrypt

from auth.models import (
    ALGORITHM_BCRYPT,
    ALGORITHM_PBKDF2,
    KNOWN_ALGORITHMS,
    AuthError,
    CredentialDigest,
    MalformedDigestError,
    Result,
)
from auth.reporter import ErrorReporter
from core.config import MIN_BCRYPT_ROUNDS, MIN_FALLBACK_ITERATIONS

logger = logging.getLogger("authguard.crypto")

_BCRYPT_MAX_BYTES = 72
_BCRYPT_PREFIXES = (b"$2a$", b"$2b$", b"$2y$")
_BCRYPT_HASH_LEN = 60
_SALT_BYTES = 16
_PBKDF2_DIGEST_LEN = 32
_PROBE_SECRET = b"authguard-probe"
_DUMMY_SECRET = "authguard_timing_dummy"


@dataclass(frozen=True)
class CryptoSupport:
    strong_hash: bool
    secure_random: bool


def bcrypt_self_test() -> bool:
    """Return True if bcrypt can hash and check a value in this process.

    Uses the minimum cost (4) so the probe stays in the low milliseconds.
    """
    try:
        return bcrypt.checkpw(_PROBE_SECRET, bcrypt.hashpw(_PROBE_SECRET, bcrypt.gensalt(rounds=4)))
    except Exception:  # noqa: BLE001 -- any failure means "not available"
        return False


class CryptoProvider:
    """Hash and verify secrets, choosing the strongest primitive per call.

    Usage:
        crypto = CryptoProvider(reporter)
        result = crypto.hash("correct-horse")
        if result.ok:
            crypto.verify("correct-horse", result.value)   # True

    strong_probe and random_source are injectable so tests can simulate a
    host without bcrypt or without a CSPRNG.
    """

    def __init__(
        self,
        reporter: ErrorReporter,
        bcrypt_rounds: int = 12,
        fallback_iterations: int = 600_000,
        strong_probe: Callable[[], bool] | None = None,
        random_source: Callable[[int], bytes] = os.urandom,
    ) -> None:
        if bcrypt_rounds < MIN_BCRYPT_ROUNDS:
            raise ValueError(f"bcrypt_rounds must be at least {MIN_BCRYPT_ROUNDS}")
        if fallback_iterations < MIN_FALLBACK_ITERATIONS:
            raise ValueError(f"fallback_iterations must be at least {MIN_FALLBACK_ITERATIONS}")
        self.bcrypt_rounds = bcrypt_rounds
        self.fallback_iterations = fallback_iterations
        self._reporter = reporter
        self._strong_probe = strong_probe or bcrypt_self_test
        self._random_source = random_source
        self._dummy: CredentialDigest | None = None
        self._dummy_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    def probe(self) -> CryptoSupport:
        return CryptoSupport(strong_hash=self._strong_probe(), secure_random=self._random_available())

    def _random_available(self) -> bool:
        try:
            self._random_source(1)
        except (NotImplementedError, OSError):
            return False
        return True

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def hash(self, secret: str, salt: bytes | None = None) -> Result[CredentialDigest]:
        """Hash a secret and return an algorithm-tagged digest.

        An explicit salt (>= 16 bytes) selects the PBKDF2 derivation, which is
        the only primitive that accepts a caller-supplied salt.
        """
        if salt is not None and len(salt) < _SALT_BYTES:
            raise ValueError(f"salt must be at least {_SALT_BYTES} bytes")
        support = self.probe()
        if not support.secure_random:
            error = AuthError.of("crypto_unavailable")
            self._reporter.report(error, {"reason": "no_secure_random"})
            return Result.failure(error)

        digest, fallback_reason = self._derive(secret, salt, support)
        if fallback_reason is not None:
            self._reporter.report(AuthError.of("crypto_fallback", fallback_available=True), {"reason": fallback_reason})
        return Result.success(digest)

    def _derive(self, secret: str, salt: bytes | None, support: CryptoSupport) -> tuple[CredentialDigest, str | None]:
        """Return (digest, fallback_reason). fallback_reason is None when no degradation happened."""
        secret_bytes = secret.encode("utf-8")
        if salt is not None:
            return self._pbkdf2(secret_bytes, salt), None

        if len(secret_bytes) > _BCRYPT_MAX_BYTES:
            reason = "secret_exceeds_bcrypt_limit"
        elif not support.strong_hash:
            reason = "strong_hash_unavailable"
        else:
            try:
                hashed = bcrypt.hashpw(secret_bytes, bcrypt.gensalt(rounds=self.bcrypt_rounds))
                return CredentialDigest(algorithm=ALGORITHM_BCRYPT, digest=hashed, iterations=self.bcrypt_rounds), None
            except (ValueError, RuntimeError) as exc:
                logger.warning("bcrypt hashing failed (%s); using PBKDF2 fallback", type(exc).__name__)
                reason = "strong_hash_failed"

        return self._pbkdf2(secret_bytes, self._random_source(_SALT_BYTES)), reason

    def _pbkdf2(self, secret_bytes: bytes, salt: bytes) -> CredentialDigest:
        derived = hashlib.pbkdf2_hmac("sha256", secret_bytes, salt, self.fallback_iterations)
        return CredentialDigest(
            algorithm=ALGORITHM_PBKDF2,
            digest=derived,
            salt=salt,
            iterations=self.fallback_iterations,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, secret: str, digest: CredentialDigest) -> bool:
        """Return True if secret matches digest.

        Raises MalformedDigestError only when the digest structure is unusable.
        A plain mismatch is False.
        """
        check_digest_structure(digest)
        secret_bytes = secret.encode("utf-8")

        if digest.algorithm == ALGORITHM_BCRYPT:
            if not self._strong_probe():
                self._reporter.report(AuthError.of("crypto_verify_unavailable"), {"algorithm": digest.algorithm})
                return False
            try:
                return bcrypt.checkpw(secret_bytes, digest.digest)
            except ValueError:
                # Secrets over 72 bytes are never bcrypt-hashed here, so they cannot match.
                return False

        derived = hashlib.pbkdf2_hmac("sha256", secret_bytes, digest.salt, digest.iterations)
        return hmac.compare_digest(derived, digest.digest)

    def dummy_digest(self) -> CredentialDigest | None:
        """Return a cached digest used to equalize timing for unknown identifiers.

        Computed once, on first use. Returns None when no digest can be built
        (no CSPRNG); the caller then skips the equalization step.
        """
        with self._dummy_lock:
            if self._dummy is None:
                support = self.probe()
                if not support.secure_random:
                    return None
                self._dummy, _ = self._derive(_DUMMY_SECRET, None, support)
            return self._dummy


def check_digest_structure(digest: CredentialDigest) -> None:
    """Raise MalformedDigestError unless digest can be verified."""
    if not isinstance(digest, CredentialDigest):
        raise MalformedDigestError("not a CredentialDigest")
    if digest.algorithm not in KNOWN_ALGORITHMS:
        raise MalformedDigestError("unknown algorithm tag")
    if not isinstance(digest.digest, bytes) or not digest.digest:
        raise MalformedDigestError("empty digest")
    if digest.algorithm == ALGORITHM_BCRYPT:
        if len(digest.digest) != _BCRYPT_HASH_LEN or not digest.digest.startswith(_BCRYPT_PREFIXES):
            raise MalformedDigestError("bcrypt digest has the wrong shape")
        return
    if len(digest.salt) < _SALT_BYTES or digest.iterations < 1 or len(digest.digest) != _PBKDF2_DIGEST_LEN:
        raise MalformedDigestError("pbkdf2 digest parameters are invalid")
