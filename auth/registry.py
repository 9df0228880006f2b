"""
auth/registry.py -- SQLAlchemy Core user registry and its self-healing gateway.

Pattern: Repository + Data Mapper.
  RegistryStorage is the raw key-value repository: one row per identifier,
      the User serialized as a JSON document. It exposes get/put/exists/list
      and nothing else.
  RegistryGateway is the only component the authenticator talks to. It
      validates records at the deserialization boundary (_StoredUser, a
      pydantic model with a discriminated credential union), repairs
      incomplete records in place, and serializes writes per identifier.

Invariants:
  - Every User returned by the gateway has all SUBSTRUCTURES present.
  - A record is written in one transaction or not at all.
  - save_user and the repair step of get_user hold the identifier's lock, so
    two writers for the same identifier never interleave. Different
    identifiers do not contend.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import json
import logging
import threading
import weakref
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from auth.models import (
    ALGORITHM_BCRYPT,
    ALGORITHM_PBKDF2,
    SUBSTRUCTURES,
    AuthError,
    CredentialDigest,
    Result,
    User,
)
from auth.reporter import ErrorReporter

logger = logging.getLogger("authguard.registry")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_registry = Table(
    "user_registry",
    _metadata,
    Column("identifier", String(255), primary_key=True),
    Column("record", Text, nullable=False),  # JSON document
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Deserialization boundary
# ---------------------------------------------------------------------------

_HEX = r"^(?:[0-9a-fA-F]{2})+$"
_HEX_OR_EMPTY = r"^(?:[0-9a-fA-F]{2})*$"


class _StoredBcrypt(BaseModel):
    algorithm: Literal["bcrypt"]
    digest: str = Field(min_length=2, pattern=_HEX)
    salt: str = Field(default="", pattern=_HEX_OR_EMPTY)
    iterations: int = 0


class _StoredPbkdf2(BaseModel):
    algorithm: Literal["pbkdf2_sha256"]
    digest: str = Field(min_length=2, pattern=_HEX)
    salt: str = Field(min_length=2, pattern=_HEX)
    iterations: int = Field(ge=1)


_StoredCredential = Annotated[Union[_StoredBcrypt, _StoredPbkdf2], Field(discriminator="algorithm")]


class _StoredIdentity(BaseModel):
    """Required identity fields. Anything failing here is corrupt, not repairable."""

    model_config = ConfigDict(extra="ignore")

    identifier: str = Field(min_length=1, max_length=255)
    credential: _StoredCredential
    created_at: str | None = None


class _StoredUser(_StoredIdentity):
    """A complete record: identity plus every substructure as a list of objects."""

    contacts: list[dict]
    transactions: list[dict]
    incidents: list[dict]
    solved_blocks: list[dict]
    owned_assets: list[dict]


def _to_user(stored: _StoredUser) -> User:
    cred = stored.credential
    credential = CredentialDigest.from_dict(cred.model_dump())
    return User(
        identifier=stored.identifier,
        credential=credential,
        created_at=stored.created_at,
        contacts=stored.contacts,
        transactions=stored.transactions,
        incidents=stored.incidents,
        solved_blocks=stored.solved_blocks,
        owned_assets=stored.owned_assets,
    )


def _claims_key(raw: object, identifier: str) -> bool:
    """True when the stored document names the key it was read under."""
    return isinstance(raw, Mapping) and raw.get("identifier") == identifier


def _repair(raw: Mapping) -> tuple[dict, list[str]]:
    """Return (repaired copy, fixed field names). Never mutates raw."""
    repaired = dict(raw)
    fixed: list[str] = []
    for name in SUBSTRUCTURES:
        value = repaired.get(name)
        if not isinstance(value, list):
            repaired[name] = []
            fixed.append(name)
            continue
        kept = [item for item in value if isinstance(item, dict)]
        if len(kept) != len(value):
            repaired[name] = kept
            fixed.append(f"{name}[invalid entries removed]")
    return repaired, fixed


# ---------------------------------------------------------------------------
# Storage (raw key-value repository)
# ---------------------------------------------------------------------------


class RegistryStorage:
    """Key-value store of JSON user documents keyed by identifier.

    Usage:
        storage = RegistryStorage("sqlite:///data/registry.db")
        storage.initialize()
        storage.put("alice", {...})
        storage.get("alice")   # dict or None

    Raises sqlalchemy.exc.SQLAlchemyError when the database is unreachable;
    RegistryGateway converts that into a REGISTRY AuthError.
    """

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    def initialize(self) -> None:
        """Create the database directory and table if missing. Idempotent."""
        url = make_url(self.db_url)
        database = url.database
        on_disk = bool(database) and database != ":memory:" and not database.startswith("file:")
        if url.get_backend_name() == "sqlite" and on_disk:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        _metadata.create_all(self.engine)

    def get(self, identifier: str) -> dict | None:
        """Return the decoded document, or None if absent.

        A row whose JSON cannot be decoded comes back as an empty dict so the
        gateway classifies it as corrupt rather than absent.
        """
        with self.engine.connect() as conn:
            row = conn.execute(select(_registry.c.record).where(_registry.c.identifier == identifier)).fetchone()
        if row is None:
            return None
        try:
            decoded = json.loads(row.record)
        except (TypeError, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}

    def put(self, identifier: str, document: dict) -> None:
        """Insert or replace the whole document in a single transaction."""
        payload = json.dumps(document, separators=(",", ":"))
        with self.engine.begin() as conn:
            result = conn.execute(
                _registry.update()
                .where(_registry.c.identifier == identifier)
                .values(record=payload, updated_at=_now_iso())
            )
            if result.rowcount == 0:
                conn.execute(_registry.insert().values(identifier=identifier, record=payload, updated_at=_now_iso()))

    def exists(self, identifier: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_registry.c.identifier).where(_registry.c.identifier == identifier)).fetchone()
        return row is not None

    def list_identifiers(self) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_registry.c.identifier).order_by(_registry.c.identifier)).fetchall()
        return [r.identifier for r in rows]

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


@dataclass
class IntegrityReport:
    total: int = 0
    valid: int = 0
    repairable: list[str] = field(default_factory=list)
    corrupt: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "valid": self.valid,
            "repairable": list(self.repairable),
            "corrupt": list(self.corrupt),
        }


class RegistryGateway:
    """Null-safe, self-healing access to the user registry.

    Usage:
        gateway = RegistryGateway(RegistryStorage(url), reporter)
        gateway.ensure_storage_initialized()
        result = gateway.get_user("alice")   # Result[User | None]
    """

    def __init__(self, storage: RegistryStorage, reporter: ErrorReporter) -> None:
        self.storage = storage
        self._reporter = reporter
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, identifier: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(identifier)
            if lock is None:
                lock = threading.Lock()
                self._locks[identifier] = lock
            return lock

    def _unavailable(self, exc: Exception, operation: str) -> Result:
        error = AuthError.of("registry_unavailable")
        logger.error("Registry %s failed: %s", operation, type(exc).__name__)
        self._reporter.report(error, {"operation": operation, "error": exc})
        return Result.failure(error)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def ensure_storage_initialized(self) -> Result[None]:
        """Create missing storage structures. Safe to call on every startup."""
        try:
            self.storage.initialize()
        except (SQLAlchemyError, OSError) as exc:
            return self._unavailable(exc, "initialize")
        return Result.success(None)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_structure(candidate: object) -> bool:
        """Return True if candidate is a complete, well-formed user record.

        Accepts a User or a raw mapping as read from storage. Pure: never
        mutates candidate.
        """
        if isinstance(candidate, User):
            if not isinstance(candidate.identifier, str) or not candidate.identifier.strip():
                return False
            if not isinstance(candidate.credential, CredentialDigest):
                return False
            if candidate.credential.algorithm not in (ALGORITHM_BCRYPT, ALGORITHM_PBKDF2):
                return False
            return all(
                isinstance(getattr(candidate, name), list)
                and all(isinstance(item, dict) for item in getattr(candidate, name))
                for name in SUBSTRUCTURES
            )
        if not isinstance(candidate, Mapping):
            return False
        try:
            _StoredUser.model_validate(dict(candidate))
        except ValidationError:
            return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_user(self, identifier: str) -> Result[User | None]:
        """Return the user for identifier, repairing an incomplete record first.

        Result.value is None when no record exists.
        """
        try:
            raw = self.storage.get(identifier)
        except SQLAlchemyError as exc:
            return self._unavailable(exc, "get")
        if raw is None:
            return Result.success(None)
        if not _claims_key(raw, identifier):
            return self._corrupt(identifier, "identifier_mismatch")
        if self.validate_structure(raw):
            return Result.success(_to_user(_StoredUser.model_validate(raw)))

        # Re-read under the lock so a concurrent reader that already repaired
        # this record is observed and the repair is reported once.
        with self._lock_for(identifier):
            try:
                raw = self.storage.get(identifier)
            except SQLAlchemyError as exc:
                return self._unavailable(exc, "get")
            if raw is None:
                return Result.success(None)
            if not _claims_key(raw, identifier):
                return self._corrupt(identifier, "identifier_mismatch")
            if self.validate_structure(raw):
                return Result.success(_to_user(_StoredUser.model_validate(raw)))
            return self._repair_locked(identifier, raw)

    def _corrupt(self, identifier: str, reason: str) -> Result:
        error = AuthError.of("registry_record_corrupt")
        logger.error("Registry record %s is corrupt (%s)", identifier, reason)
        self._reporter.report(error, {"identifier": identifier, "reason": reason})
        return Result.failure(error)

    def _repair_locked(self, identifier: str, raw: dict) -> Result[User | None]:
        if not _claims_key(raw, identifier):
            return self._corrupt(identifier, "identifier_mismatch")
        try:
            _StoredIdentity.model_validate(raw)
        except ValidationError:
            return self._corrupt(identifier, "identity_unreadable")

        repaired, fixed = _repair(raw)
        try:
            self.storage.put(identifier, repaired)
        except SQLAlchemyError as exc:
            return self._unavailable(exc, "repair")

        logger.info("Repaired registry record %s (%s)", identifier, ", ".join(fixed))
        self._reporter.report(
            AuthError.of("registry_record_repaired", fallback_available=True),
            {"identifier": identifier, "fixed_fields": fixed},
        )
        return Result.success(_to_user(_StoredUser.model_validate(repaired)))

    def exists(self, identifier: str) -> Result[bool]:
        try:
            return Result.success(self.storage.exists(identifier))
        except SQLAlchemyError as exc:
            return self._unavailable(exc, "exists")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_user(self, user: User, create_only: bool = False) -> Result[User]:
        """Validate and persist the full record atomically.

        create_only=True fails with identifier_taken if a record already
        exists; the check runs inside the identifier's critical section.
        """
        if not self.validate_structure(user):
            error = AuthError.of("registry_write_rejected")
            self._reporter.report(error, {"identifier": getattr(user, "identifier", None)})
            return Result.failure(error)

        with self._lock_for(user.identifier):
            try:
                if create_only and self.storage.exists(user.identifier):
                    error = AuthError.of("identifier_taken")
                    self._reporter.report(error, {"identifier": user.identifier})
                    return Result.failure(error)
                self.storage.put(user.identifier, user.to_record())
            except SQLAlchemyError as exc:
                return self._unavailable(exc, "save")
        return Result.success(user)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def integrity_report(self) -> Result[IntegrityReport]:
        """Scan every record without modifying anything."""
        report = IntegrityReport()
        try:
            for identifier in self.storage.list_identifiers():
                raw = self.storage.get(identifier)
                if raw is None:
                    continue
                report.total += 1
                if not _claims_key(raw, identifier):
                    report.corrupt.append(identifier)
                    continue
                if self.validate_structure(raw):
                    report.valid += 1
                    continue
                try:
                    _StoredIdentity.model_validate(raw)
                except ValidationError:
                    report.corrupt.append(identifier)
                else:
                    report.repairable.append(identifier)
        except SQLAlchemyError as exc:
            return self._unavailable(exc, "integrity_report")
        return Result.success(report)

    def repair_all(self) -> Result[int]:
        """Repair every repairable record. Returns the number repaired."""
        scan = self.integrity_report()
        if not scan.ok:
            return Result.failure(scan.error)
        repaired = 0
        for identifier in scan.value.repairable:
            with self._lock_for(identifier):
                try:
                    raw = self.storage.get(identifier)
                except SQLAlchemyError as exc:
                    return self._unavailable(exc, "repair_all")
                if raw is None or self.validate_structure(raw):
                    continue
                if self._repair_locked(identifier, raw).ok:
                    repaired += 1
        return Result.success(repaired)
