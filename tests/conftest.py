"""
tests/conftest.py -- Shared test fixtures for authguard.

This module provides:
  - make_settings(): Settings with the lowest allowed hashing cost
  - make_context(): an AuthContext over an isolated SQLite registry, with
    network-free defaults for the AI-config initializer and the stylesheet fetch
  - reporter / crypto / gateway: unit-level component fixtures
  - api_client / web_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
TestClient fixtures because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit fixtures use a file under tmp_path instead, which also
lets the concurrency tests write from several threads.

DEBUG must be set before any auth/core import so get_settings() can
auto-generate SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("BCRYPT_ROUNDS", "10")
os.environ.setdefault("FALLBACK_HASH_ITERATIONS", "100000")

import pytest
import requests
from fastapi.testclient import TestClient

from asgi import app
from auth.context import AuthContext
from auth.crypto import CryptoProvider
from auth.registry import RegistryGateway, RegistryStorage
from auth.reporter import ErrorReporter
from core.ai_config import AIConfigMissingError
from core.config import Settings
from core.style_guard import StyleGuard

OPERATOR_KEY = "test-operator-key"
PROBE_CSS = ".bg-black{background-color:#000}"

_db_counter = itertools.count()


def memory_db_url(name: str) -> str:
    """Unique named shared-memory SQLite URL."""
    return f"sqlite:///file:test_{name}_{next(_db_counter)}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "bcrypt_rounds": 10,
        "fallback_hash_iterations": 100_000,
        "operator_key": OPERATOR_KEY,
        "stylesheet_url": "https://cdn.example.test/app.css",
        "style_detect_timeout_ms": 200,
    }
    values.update(overrides)
    return Settings(**values)


def _no_ai_config():
    raise AIConfigMissingError("AI_API_KEY is not set")


def make_context(db_url: str, stylesheet: str | None = PROBE_CSS, **overrides) -> AuthContext:
    """Build an AuthContext with no network access.

    stylesheet=None simulates an unreachable styling service.
    """
    settings = overrides.pop("settings", None) or make_settings(registry_db_url=db_url)
    reporter = overrides.pop("reporter", None) or ErrorReporter(capacity=settings.error_log_capacity)

    def fetch(url: str, timeout: float) -> str:
        if stylesheet is None:
            raise requests.ConnectionError("styling service down")
        return stylesheet

    overrides.setdefault("initializer", _no_ai_config)
    overrides.setdefault(
        "style_guard",
        StyleGuard(reporter, settings.stylesheet_url, fetcher=fetch),
    )
    return AuthContext.from_settings(settings, reporter=reporter, **overrides)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def context_factory():
    """Build contexts that are closed at teardown."""
    built: list[AuthContext] = []

    def factory(db_url: str, **kwargs) -> AuthContext:
        ctx = make_context(db_url, **kwargs)
        built.append(ctx)
        return ctx

    yield factory
    for ctx in built:
        ctx.close()


@pytest.fixture
def operator_headers() -> dict[str, str]:
    return {"X-Operator-Key": OPERATOR_KEY}


@pytest.fixture
def reporter() -> ErrorReporter:
    return ErrorReporter(capacity=100)


@pytest.fixture
def crypto(reporter: ErrorReporter) -> CryptoProvider:
    return CryptoProvider(reporter, bcrypt_rounds=10, fallback_iterations=100_000)


@pytest.fixture
def registry_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'registry.db'}"


@pytest.fixture
def gateway(registry_url: str, reporter: ErrorReporter) -> Generator[RegistryGateway, None, None]:
    gw = RegistryGateway(RegistryStorage(registry_url), reporter)
    assert gw.ensure_storage_initialized().ok
    yield gw
    gw.storage.close()


@pytest.fixture
def context(registry_url: str) -> Generator[AuthContext, None, None]:
    ctx = make_context(registry_url)
    ctx.start()
    yield ctx
    ctx.close()


# ---------------------------------------------------------------------------
# TestClient fixtures -- one client per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(context: AuthContext):
    """Return a lifespan that wires a pre-built AuthContext into app.state.

    Styling detection runs synchronously here so tests see a settled state.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        context.start()
        context.check_styling()
        app.state.auth = context
        app.state.style_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.style_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthContext], None, None]:
    """Yield (client, context) for API integration tests.

    base_url uses localhost because TrustedHostMiddleware rejects the
    TestClient default host.
    """
    ctx = make_context(memory_db_url("api"))
    app.router.lifespan_context = _patch_lifespan(ctx)
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, ctx
    ctx.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, AuthContext], None, None]:
    """Yield (client, context) for web route tests.

    follow_redirects=False: tests assert on redirect locations, which are
    invisible once the client follows them. The styling service is down for
    this client, so every page is served with the inline fallback CSS.
    """
    ctx = make_context(memory_db_url("web"), stylesheet=None)
    app.router.lifespan_context = _patch_lifespan(ctx)
    with TestClient(app, base_url="http://localhost", follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, ctx
    ctx.close()
