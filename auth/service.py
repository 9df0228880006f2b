"""
auth/service.py -- Registration and login flows.

Each call runs a small request-scoped state machine:

  Registration: IDLE -> VALIDATING -> HASHING -> PERSISTING -> SUCCEEDED | FAILED
  Login:        IDLE -> LOOKING_UP -> VERIFYING -> SUCCEEDED | FAILED

The Authenticator holds no per-request state. Shared state lives only in the
RegistryGateway, the ErrorReporter and the optional LoginLockout it is given.

Security:
  - An absent identifier and a wrong secret produce the same AuthError code,
    message and category. The absent path still verifies against a dummy
    digest so the two paths cost roughly the same.
  - Callers receive UserPublicView, never a CredentialDigest.
  - Every AuthError from a sub-call is forwarded to the ErrorReporter before
    the flow fails. Rejections decided here (invalid_input,
    invalid_credentials) are reported directly.
  - With a LoginLockout, repeated failures lock an identifier. A locked login
    still returns invalid_credentials, for registered and unknown identifiers
    alike.

Layer rule: no imports from api/ or web/. No dependency on StyleGuard.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from auth.crypto import CryptoProvider
from auth.lockout import LoginLockout
from auth.models import (
    AuthError,
    MalformedDigestError,
    RegistrationInput,
    Result,
    User,
    UserPublicView,
)
from auth.registry import RegistryGateway
from auth.reporter import ErrorReporter

logger = logging.getLogger("authguard.auth")

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@-]{2,63}$")
MIN_SECRET_LENGTH = 8
MAX_SECRET_LENGTH = 1024


class RegistrationState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    HASHING = "HASHING"
    PERSISTING = "PERSISTING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class LoginState(str, Enum):
    IDLE = "IDLE"
    LOOKING_UP = "LOOKING_UP"
    VERIFYING = "VERIFYING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def validate_registration(data: object) -> RegistrationInput | None:
    """Return a normalized RegistrationInput, or None if the shape is invalid."""
    if isinstance(data, RegistrationInput):
        identifier, secret = data.identifier, data.secret
    elif isinstance(data, Mapping):
        identifier, secret = data.get("identifier"), data.get("secret")
    else:
        return None
    if not isinstance(identifier, str) or not isinstance(secret, str):
        return None
    identifier = identifier.strip()
    if not IDENTIFIER_PATTERN.match(identifier):
        return None
    if not MIN_SECRET_LENGTH <= len(secret) <= MAX_SECRET_LENGTH:
        return None
    return RegistrationInput(identifier=identifier, secret=secret)


class Authenticator:
    """Login and registration over a CryptoProvider and a RegistryGateway.

    Usage:
        auth = Authenticator(crypto, gateway, reporter)
        auth.register({"identifier": "alice", "secret": "correct-horse"})
        result = auth.login("alice", "correct-horse")
        result.ok, result.value.identifier   # True, "alice"

    on_registered, if given, is called with the new UserPublicView after a
    successful registration. Exceptions it raises are logged and ignored:
    the account already exists at that point.

    lockout, if given, refuses logins for an identifier after repeated
    failures. A refused login returns the ordinary invalid_credentials error.
    """

    def __init__(
        self,
        crypto: CryptoProvider,
        gateway: RegistryGateway,
        reporter: ErrorReporter,
        on_registered: Callable[[UserPublicView], None] | None = None,
        lockout: LoginLockout | None = None,
    ) -> None:
        self._crypto = crypto
        self._gateway = gateway
        self._reporter = reporter
        self._on_registered = on_registered
        self._lockout = lockout

    def _fail(self, error: AuthError, flow: str, state: Enum) -> Result:
        logger.info("%s failed in %s: %s", flow, state.value, error.code)
        return Result.failure(error)

    def _reject(self, error: AuthError, flow: str, state: Enum) -> Result:
        """Report a failure this class decided on, then fail."""
        self._reporter.report(error, {"flow": flow, "state": state.value})
        return self._fail(error, flow, state)

    def _forward(self, error: AuthError, flow: str, state: Enum) -> Result:
        """Forward a sub-call's AuthError, then fail.

        The component has already reported it; the forwarded record adds the
        flow and state and is not counted a second time.
        """
        self._reporter.report(error, {"flow": flow, "state": state.value}, forwarded=True)
        return self._fail(error, flow, state)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, data: RegistrationInput | Mapping) -> Result[UserPublicView]:
        state = RegistrationState.VALIDATING
        valid = validate_registration(data)
        if valid is None:
            return self._reject(AuthError.of("invalid_input"), "register", state)

        state = RegistrationState.HASHING
        hashed = self._crypto.hash(valid.secret)
        if not hashed.ok:
            return self._forward(hashed.error, "register", state)

        state = RegistrationState.PERSISTING
        user = User(
            identifier=valid.identifier,
            credential=hashed.value,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        saved = self._gateway.save_user(user, create_only=True)
        if not saved.ok:
            return self._forward(saved.error, "register", state)

        view = saved.value.public_view()
        logger.info("Registered user %s (%s)", view.identifier, hashed.value.algorithm)
        if self._on_registered is not None:
            try:
                self._on_registered(view)
            except Exception:  # noqa: BLE001 -- listener failures never undo a registration
                logger.exception("on_registered listener failed for %s", view.identifier)
        return Result.success(view)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, identifier: str, secret: str) -> Result[UserPublicView]:
        invalid = AuthError.of("invalid_credentials")
        if not isinstance(identifier, str) or not isinstance(secret, str):
            return self._reject(invalid, "login", LoginState.IDLE)
        identifier = identifier.strip()

        state = LoginState.LOOKING_UP
        if not IDENTIFIER_PATTERN.match(identifier):
            self._equalize(secret)
            return self._reject(invalid, "login", state)

        if self._lockout is not None:
            locked, remaining = self._lockout.is_locked(identifier)
            if locked:
                self._equalize(secret)
                self._reporter.report(
                    AuthError.of("login_locked"),
                    {"flow": "login", "identifier": identifier, "remaining_seconds": remaining},
                )
                return self._fail(invalid, "login", state)

        found = self._gateway.get_user(identifier)
        if not found.ok:
            return self._forward(found.error, "login", state)
        user = found.value
        if user is None:
            self._equalize(secret)
            return self._deny(identifier, state)

        state = LoginState.VERIFYING
        try:
            matched = self._crypto.verify(secret, user.credential)
        except MalformedDigestError:
            self._reporter.report(
                AuthError.of("crypto_digest_malformed"),
                {"flow": "login", "state": state.value, "identifier": identifier},
            )
            return self._deny(identifier, state)
        if not matched:
            return self._deny(identifier, state)

        if self._lockout is not None:
            self._lockout.record_success(identifier)
        logger.info("Login succeeded for %s", identifier)
        return Result.success(user.public_view())

    def _deny(self, identifier: str, state: Enum) -> Result:
        """invalid_credentials for a well-formed identifier; counts toward the lockout."""
        if self._lockout is not None:
            self._lockout.record_failure(identifier)
        return self._reject(AuthError.of("invalid_credentials"), "login", state)

    def _equalize(self, secret: str) -> None:
        dummy = self._crypto.dummy_digest()
        if dummy is not None:
            self._crypto.verify(secret, dummy)
