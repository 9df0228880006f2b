"""
tests/test_authenticator.py -- Registration and login flows through AuthContext.

Covers:
  - register then login succeeds; the public view never carries the digest
  - absent identifier and wrong secret give byte-identical error payloads
  - strong hashing unavailable: alice / "correct-horse" end to end
  - AI-config initializer throws: feature disabled, auth unaffected
  - input validation and duplicate registration
  - crypto and registry failures are forwarded, never leaked
  - every failure reaches the ErrorReporter, forwarded ones counted once
  - repeated failures lock an identifier without revealing whether it exists
"""

from __future__ import annotations

import json
from dataclasses import asdict, fields

import pytest

from auth.crypto import CryptoProvider
from auth.lockout import LoginLockout
from auth.models import ALGORITHM_PBKDF2, ErrorCategory, RegistrationInput, UserPublicView
from auth.reporter import ErrorReporter
from auth.service import validate_registration


def _payload(result) -> bytes:
    return json.dumps(result.error.public_payload(), sort_keys=True).encode()


class TestRegisterLogin:
    @pytest.mark.parametrize(
        "identifier, secret",
        [
            ("alice", "correct-horse"),
            ("bob.smith@example.com", "s3cret-but-long"),
            ("c_3", "x" * 200),
            ("Dmitri-9", "pässwörd-ünïcode"),
        ],
    )
    def test_register_then_login(self, context, identifier, secret):
        registered = context.register({"identifier": identifier, "secret": secret})
        assert registered.ok, registered.error
        assert isinstance(registered.value, UserPublicView)

        logged_in = context.login(identifier, secret)
        assert logged_in.ok
        assert logged_in.value.identifier == identifier

        view_fields = {f.name for f in fields(UserPublicView)}
        assert "credential" not in view_fields
        dumped = json.dumps(asdict(logged_in.value))
        assert "bcrypt" not in dumped
        assert "pbkdf2" not in dumped

    def test_accepts_registration_input(self, context):
        assert context.register(RegistrationInput("alice", "correct-horse")).ok

    def test_new_user_has_empty_substructures(self, context):
        view = context.register({"identifier": "alice", "secret": "correct-horse"}).value
        assert view.contacts == view.transactions == view.incidents == []
        assert view.solved_blocks == view.owned_assets == []
        assert view.created_at

    def test_on_registered_listener(self, context_factory, registry_url):
        seen = []
        ctx = context_factory(registry_url, on_registered=seen.append)
        ctx.start()
        ctx.register({"identifier": "alice", "secret": "correct-horse"})
        assert [v.identifier for v in seen] == ["alice"]

    def test_failing_listener_does_not_undo_registration(self, context_factory, registry_url):
        def listener(view):
            raise RuntimeError("listener down")

        ctx = context_factory(registry_url, on_registered=listener)
        ctx.start()
        assert ctx.register({"identifier": "alice", "secret": "correct-horse"}).ok
        assert ctx.login("alice", "correct-horse").ok


class TestInvalidCredentials:
    def test_absent_and_wrong_secret_are_identical(self, context):
        context.register({"identifier": "alice", "secret": "correct-horse"})
        absent = context.login("mallory", "correct-horse")
        wrong = context.login("alice", "wrong-secret")

        assert not absent.ok and not wrong.ok
        assert _payload(absent) == _payload(wrong)
        assert absent.error.category is ErrorCategory.CREDENTIALS
        assert absent.error.code == "invalid_credentials"
        assert "not found" not in absent.error.message.lower()

    def test_malformed_identifier_looks_like_wrong_secret(self, context):
        context.register({"identifier": "alice", "secret": "correct-horse"})
        assert _payload(context.login("a", "whatever-secret")) == _payload(context.login("alice", "nope-nope"))

    def test_absent_identifier_runs_dummy_verification(self, context, monkeypatch):
        calls = []
        original = context.crypto.verify

        def spy(secret, digest):
            calls.append(digest)
            return original(secret, digest)

        monkeypatch.setattr(context.crypto, "verify", spy)
        context.login("nobody-here", "correct-horse")
        assert calls == [context.crypto.dummy_digest()]

    def test_malformed_stored_digest(self, context):
        context.register({"identifier": "alice", "secret": "correct-horse"})
        raw = context.gateway.storage.get("alice")
        raw["credential"]["digest"] = raw["credential"]["digest"][:20]
        context.gateway.storage.put("alice", raw)

        result = context.login("alice", "correct-horse")
        assert result.error.code == "invalid_credentials"
        assert context.reporter.count_by_code()["crypto_digest_malformed"] == 1


class TestValidation:
    @pytest.mark.parametrize(
        "data",
        [
            {"identifier": "al", "secret": "correct-horse"},
            {"identifier": "-alice", "secret": "correct-horse"},
            {"identifier": "alice smith", "secret": "correct-horse"},
            {"identifier": "a" * 65, "secret": "correct-horse"},
            {"identifier": "alice", "secret": "short"},
            {"identifier": "alice", "secret": "x" * 1025},
            {"identifier": "alice"},
            {"identifier": None, "secret": "correct-horse"},
            "alice:correct-horse",
        ],
    )
    def test_invalid_input_rejected(self, context, data):
        result = context.register(data)
        assert not result.ok
        assert result.error.code == "invalid_input"
        assert result.error.category is ErrorCategory.VALIDATION
        assert context.gateway.storage.list_identifiers() == []

    def test_identifier_is_trimmed(self):
        assert validate_registration({"identifier": "  alice ", "secret": "correct-horse"}).identifier == "alice"

    def test_duplicate_registration(self, context):
        assert context.register({"identifier": "alice", "secret": "correct-horse"}).ok
        again = context.register({"identifier": "alice", "secret": "other-secret"})
        assert again.error.code == "identifier_taken"
        assert context.login("alice", "correct-horse").ok
        assert not context.login("alice", "other-secret").ok


class TestDegradedDependencies:
    def test_alice_with_strong_crypto_unavailable(self, context_factory, registry_url):
        """Strong hashing down: registration still works via the fallback."""
        reporter = ErrorReporter()
        crypto = CryptoProvider(reporter, bcrypt_rounds=10, fallback_iterations=100_000, strong_probe=lambda: False)
        ctx = context_factory(registry_url, reporter=reporter, crypto=crypto)
        ctx.start()

        registered = ctx.register({"identifier": "alice", "secret": "correct-horse"})
        assert registered.ok

        stored = ctx.gateway.get_user("alice").value
        assert stored.credential.algorithm == ALGORITHM_PBKDF2

        counts = ctx.reporter.count_by_code()
        assert counts["crypto_fallback"] >= 1
        assert counts["config_unavailable"] == 1
        fallback_records = [r for r in ctx.reporter.recent_errors(50) if r.code == "crypto_fallback"]
        assert all(r.fallback_available for r in fallback_records)

        assert ctx.login("alice", "correct-horse").ok
        wrong = ctx.login("alice", "wrong")
        assert wrong.error.code == "invalid_credentials"
        assert wrong.error.message == "Invalid identifier or secret."

    def test_config_sandbox_throws(self, context_factory, registry_url):
        def initializer():
            raise RuntimeError("AI service exploded at /opt/ai/config.json")

        ctx = context_factory(registry_url, initializer=initializer)
        ctx.start()

        availability = ctx.get_feature_availability()
        assert availability.ai_enabled is False
        assert ctx.reporter.count_by_category().get("CONFIG") == 1

        assert ctx.register({"identifier": "alice", "secret": "correct-horse"}).ok
        assert ctx.login("alice", "correct-horse").ok

    def test_styling_down_does_not_affect_auth(self, context_factory, registry_url):
        ctx = context_factory(registry_url, stylesheet=None)
        ctx.start()
        assert ctx.check_styling() is True
        assert ctx.get_style_fallback_active() is True
        assert ctx.register({"identifier": "alice", "secret": "correct-horse"}).ok
        assert ctx.login("alice", "correct-horse").ok

    def test_no_secure_random_blocks_registration(self, context_factory, registry_url):
        def no_random(n):
            raise NotImplementedError

        reporter = ErrorReporter()
        crypto = CryptoProvider(reporter, bcrypt_rounds=10, fallback_iterations=100_000, random_source=no_random)
        ctx = context_factory(registry_url, reporter=reporter, crypto=crypto)
        ctx.start()

        result = ctx.register({"identifier": "alice", "secret": "correct-horse"})
        assert result.error.code == "crypto_unavailable"
        assert ctx.gateway.storage.list_identifiers() == []

    def test_registry_outage_is_forwarded(self, context, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("unable to open database file /data/registry.db"))

        monkeypatch.setattr(context.gateway.storage, "exists", boom)
        result = context.register({"identifier": "alice", "secret": "correct-horse"})
        assert result.error.code == "registry_unavailable"
        assert "/data" not in json.dumps(result.error.public_payload())
        flows = [r.context.get("flow") for r in context.reporter.recent_errors(10)]
        assert "register" in flows

    def test_storage_init_failure_surfaces_on_login(self, context_factory, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        ctx = context_factory(f"sqlite:///{blocker / 'registry.db'}")
        ctx.start()
        assert ctx.storage_ready is False
        result = ctx.login("alice", "correct-horse")
        assert result.error.category is ErrorCategory.REGISTRY


class TestDiagnostics:
    def test_duplicate_registration_is_reported_once(self, context):
        context.register({"identifier": "alice", "secret": "correct-horse"})
        context.register({"identifier": "alice", "secret": "other-secret"})

        assert context.reporter.count_by_code()["identifier_taken"] == 1
        records = [r for r in context.reporter.recent_errors(50) if r.code == "identifier_taken"]
        assert [r.forwarded for r in records] == [True, False]
        assert records[0].context == {"flow": "register", "state": "PERSISTING"}

    def test_rejections_are_reported(self, context):
        context.register({"identifier": "al", "secret": "correct-horse"})
        context.login("nobody-here", "correct-horse")

        counts = context.reporter.count_by_code()
        assert counts["invalid_input"] == 1
        assert counts["invalid_credentials"] == 1
        latest = context.reporter.recent_errors(1)[0]
        assert latest.context == {"flow": "login", "state": "LOOKING_UP"}

    def test_forwarded_outage_counts_once(self, context, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def boom(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(context.gateway.storage, "get", boom)
        assert context.login("alice", "correct-horse").error.code == "registry_unavailable"

        assert context.reporter.count_by_category().get("REGISTRY") == 1
        records = [r for r in context.reporter.recent_errors(50) if r.code == "registry_unavailable"]
        assert len(records) == 2
        assert sum(r.forwarded for r in records) == 1


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestLockout:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def locked_ctx(self, context_factory, registry_url, clock):
        ctx = context_factory(registry_url, lockout=LoginLockout(max_failures=3, lockout_seconds=60, clock=clock))
        ctx.start()
        ctx.register({"identifier": "alice", "secret": "correct-horse"})
        return ctx

    def test_three_failures_lock_the_identifier(self, locked_ctx, clock):
        wrong = [locked_ctx.login("alice", "wrong-secret") for _ in range(3)]
        refused = locked_ctx.login("alice", "correct-horse")

        assert not refused.ok
        assert _payload(refused) == _payload(wrong[0])
        assert locked_ctx.reporter.count_by_code()["login_locked"] == 1

        clock.now += 61
        assert locked_ctx.login("alice", "correct-horse").ok

    def test_unknown_identifier_locks_the_same_way(self, locked_ctx):
        for _ in range(3):
            locked_ctx.login("ghost-user", "whatever-secret")
            locked_ctx.login("alice", "whatever-secret")
        ghost = locked_ctx.login("ghost-user", "whatever-secret")
        alice = locked_ctx.login("alice", "correct-horse")
        assert _payload(ghost) == _payload(alice)
        assert ghost.error.code == "invalid_credentials"
        assert locked_ctx.reporter.count_by_code()["login_locked"] == 2

    def test_success_clears_the_count(self, locked_ctx):
        for _ in range(2):
            locked_ctx.login("alice", "wrong-secret")
        assert locked_ctx.login("alice", "correct-horse").ok
        for _ in range(2):
            locked_ctx.login("alice", "wrong-secret")
        assert locked_ctx.login("alice", "correct-horse").ok

    def test_locked_login_still_verifies_against_dummy(self, locked_ctx, monkeypatch):
        for _ in range(3):
            locked_ctx.login("alice", "wrong-secret")
        calls = []
        original = locked_ctx.crypto.verify

        def spy(secret, digest):
            calls.append(digest)
            return original(secret, digest)

        monkeypatch.setattr(locked_ctx.crypto, "verify", spy)
        locked_ctx.login("alice", "correct-horse")
        assert calls == [locked_ctx.crypto.dummy_digest()]

    def test_malformed_identifiers_are_not_tracked(self, locked_ctx):
        for _ in range(5):
            locked_ctx.login("a", "whatever-secret")
        assert len(locked_ctx.lockout) == 0


def test_identity_mismatch_does_not_log_in_as_another_user(context):
    context.register({"identifier": "bob", "secret": "bob-secret-1"})
    context.gateway.storage.put("alice", context.gateway.storage.get("bob"))

    result = context.login("alice", "bob-secret-1")
    assert not result.ok
    assert result.error.code == "registry_record_corrupt"
    assert context.login("bob", "bob-secret-1").value.identifier == "bob"
