"""
auth/models.py -- Domain dataclasses for the authentication resilience core.

Pattern: Data class (pure data containers, minimal logic). Stores, providers
and the authenticator do the work; these types own the domain shape.

AuthError messages come from _ERROR_TABLE only. Nothing in this package ever
builds a user-facing message from exception text, so a raw dependency error
cannot reach an end user by construction.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")

SUBSTRUCTURES: tuple[str, ...] = ("contacts", "transactions", "incidents", "solved_blocks", "owned_assets")

ALGORITHM_BCRYPT = "bcrypt"
ALGORITHM_PBKDF2 = "pbkdf2_sha256"
KNOWN_ALGORITHMS = frozenset({ALGORITHM_BCRYPT, ALGORITHM_PBKDF2})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorCategory(str, Enum):
    STYLING = "STYLING"
    CONFIG = "CONFIG"
    REGISTRY = "REGISTRY"
    CRYPTO = "CRYPTO"
    VALIDATION = "VALIDATION"
    CREDENTIALS = "CREDENTIALS"


# code -> (category, human-safe message). The only source of AuthError text.
_ERROR_TABLE: dict[str, tuple[ErrorCategory, str]] = {
    "styling_unavailable": (ErrorCategory.STYLING, "Display styling is running in fallback mode."),
    "config_unavailable": (ErrorCategory.CONFIG, "AI features are temporarily unavailable."),
    "registry_unavailable": (
        ErrorCategory.REGISTRY,
        "Account storage is temporarily unavailable. Please try again later.",
    ),
    "registry_record_repaired": (ErrorCategory.REGISTRY, "An account record was repaired automatically."),
    "registry_record_corrupt": (
        ErrorCategory.REGISTRY,
        "Account storage is temporarily unavailable. Please try again later.",
    ),
    "registry_write_rejected": (ErrorCategory.REGISTRY, "Account data was incomplete and was not saved."),
    "crypto_fallback": (ErrorCategory.CRYPTO, "Secure fallback hashing is in use."),
    "crypto_unavailable": (ErrorCategory.CRYPTO, "Secure account creation is unavailable on this system."),
    "crypto_digest_malformed": (ErrorCategory.CRYPTO, "A stored credential could not be checked."),
    "crypto_verify_unavailable": (ErrorCategory.CRYPTO, "A stored credential could not be checked."),
    "invalid_input": (ErrorCategory.VALIDATION, "Registration details are invalid."),
    "identifier_taken": (ErrorCategory.VALIDATION, "That identifier is not available."),
    "invalid_credentials": (ErrorCategory.CREDENTIALS, "Invalid identifier or secret."),
    "login_locked": (ErrorCategory.CREDENTIALS, "Too many failed sign-in attempts."),
}


@dataclass(frozen=True)
class AuthError:
    """Structured, sanitized failure descriptor.

    Build through AuthError.of(code) so the message always comes from the
    fixed table. created_at is excluded from public_payload() so two failures
    with the same code serialize to identical bytes.
    """

    category: ErrorCategory
    code: str
    message: str
    fallback_available: bool = False
    created_at: str = field(default_factory=_now_iso)

    @classmethod
    def of(cls, code: str, fallback_available: bool = False) -> AuthError:
        category, message = _ERROR_TABLE[code]
        return cls(category=category, code=code, message=message, fallback_available=fallback_available)

    def public_payload(self) -> dict:
        return {"category": self.category.value, "code": self.code, "message": self.message}


class MalformedDigestError(ValueError):
    """Raised when a CredentialDigest's structure is unusable for verification."""


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Result(Generic[T]):
    """Value-or-AuthError returned across component boundaries."""

    value: T | None = None
    error: AuthError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: AuthError) -> Result[T]:
        return cls(error=error)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialDigest:
    """Algorithm-tagged hash of a secret.

    For bcrypt the salt and cost live inside `digest` (modular crypt format);
    `salt` stays empty and `iterations` records the cost for reporting only.
    For pbkdf2_sha256 `salt` and `iterations` are required to re-derive.
    """

    algorithm: str
    digest: bytes
    salt: bytes = b""
    iterations: int = 0

    def to_dict(self) -> dict:
        return {
            "algorithm": self.algorithm,
            "digest": self.digest.hex(),
            "salt": self.salt.hex(),
            "iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data: dict) -> CredentialDigest:
        try:
            return cls(
                algorithm=str(data["algorithm"]),
                digest=bytes.fromhex(data["digest"]),
                salt=bytes.fromhex(data.get("salt") or ""),
                iterations=int(data.get("iterations") or 0),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedDigestError("credential digest is malformed") from exc


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@dataclass
class UserPublicView:
    """What callers outside the core may see of a User. Never carries the digest."""

    identifier: str
    created_at: str | None = None
    contacts: list[dict] = field(default_factory=list)
    transactions: list[dict] = field(default_factory=list)
    incidents: list[dict] = field(default_factory=list)
    solved_blocks: list[dict] = field(default_factory=list)
    owned_assets: list[dict] = field(default_factory=list)


@dataclass
class User:
    """Identity record held in the user registry.

    The substructure lists default to empty. RegistryGateway guarantees every
    User it returns has all of them present, so callers never null-check.
    """

    identifier: str
    credential: CredentialDigest | None
    created_at: str | None = None
    contacts: list[dict] = field(default_factory=list)
    transactions: list[dict] = field(default_factory=list)
    incidents: list[dict] = field(default_factory=list)
    solved_blocks: list[dict] = field(default_factory=list)
    owned_assets: list[dict] = field(default_factory=list)

    def public_view(self) -> UserPublicView:
        return UserPublicView(
            identifier=self.identifier,
            created_at=self.created_at,
            contacts=list(self.contacts),
            transactions=list(self.transactions),
            incidents=list(self.incidents),
            solved_blocks=list(self.solved_blocks),
            owned_assets=list(self.owned_assets),
        )

    def to_record(self) -> dict:
        """Serialize to the registry's JSON document shape."""
        record = {
            "identifier": self.identifier,
            "credential": self.credential.to_dict() if self.credential is not None else None,
            "created_at": self.created_at,
        }
        for name in SUBSTRUCTURES:
            record[name] = list(getattr(self, name))
        return record


@dataclass(frozen=True)
class RegistrationInput:
    identifier: str
    secret: str


# ---------------------------------------------------------------------------
# Feature availability
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeatureAvailability:
    """Snapshot of the optional AI feature's state.

    Frozen: ConfigSandbox swaps the whole object on each attempt, so readers
    always see a consistent value without locking.
    """

    ai_enabled: bool
    reason: str  # "ok", "not_attempted", "not_configured", "unreachable", "malformed_config", ...
    checked_at: str | None = None
    attempt: int = 0

    def to_dict(self) -> dict:
        return {
            "ai_enabled": self.ai_enabled,
            "reason": self.reason,
            "checked_at": self.checked_at,
            "attempt": self.attempt,
        }
