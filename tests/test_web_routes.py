"""
tests/test_web_routes.py -- Web UI routes with the styling service down.

The web_client fixture's StyleGuard cannot reach the stylesheet, so every
page must carry the inline fallback CSS and still work end to end.
"""

from __future__ import annotations

from core.config import get_settings
from core.style_guard import FALLBACK_CSS


def _register(client, identifier: str, secret: str = "correct-horse", confirm: str | None = None):
    return client.post(
        "/register",
        data={"identifier": identifier, "secret": secret, "confirm_secret": confirm or secret},
    )


class TestFallbackStyling:
    def test_login_page_inlines_fallback_css(self, web_client):
        client, ctx = web_client
        assert ctx.get_style_fallback_active() is True
        resp = client.get("/login")
        assert resp.status_code == 200
        assert 'id="auth-fallback-css"' in resp.text
        assert FALLBACK_CSS.strip().splitlines()[0] in resp.text
        assert 'name="identifier"' in resp.text
        assert 'name="secret"' in resp.text

    def test_register_page_inlines_fallback_css(self, web_client):
        client, _ = web_client
        assert 'id="auth-fallback-css"' in client.get("/register").text


class TestWebFlow:
    def test_register_then_login_then_home(self, web_client):
        client, _ = web_client
        client.cookies.clear()
        resp = _register(client, "web-alice")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?notice=registered"

        notice = client.get("/login?notice=registered")
        assert "Account created" in notice.text

        resp = client.post("/login", data={"identifier": "web-alice", "secret": "correct-horse"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert resp.headers["cache-control"] == "no-store"

        home = client.get("/")
        assert home.status_code == 200
        assert "web-alice" in home.text
        assert "AI features are temporarily unavailable." in home.text

    def test_home_redirects_when_signed_out(self, web_client):
        client, _ = web_client
        client.cookies.clear()
        resp = client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/"

    def test_bad_login_rerenders_with_generic_message(self, web_client):
        client, _ = web_client
        client.cookies.clear()
        _register(client, "web-bob")
        wrong = client.post("/login", data={"identifier": "web-bob", "secret": "wrong-secret"})
        unknown = client.post("/login", data={"identifier": "web-nobody", "secret": "wrong-secret"})
        assert wrong.status_code == unknown.status_code == 401
        assert "Invalid identifier or secret." in wrong.text
        assert "Invalid identifier or secret." in unknown.text

    def test_next_param_is_relative_only(self, web_client):
        client, _ = web_client
        client.cookies.clear()
        _register(client, "web-carol")
        resp = client.post(
            "/login?next=//evil.example/phish",
            data={"identifier": "web-carol", "secret": "correct-horse"},
        )
        assert resp.headers["location"] == "/"

    def test_unknown_notice_is_not_reflected(self, web_client):
        client, _ = web_client
        client.cookies.clear()
        resp = client.get("/login?notice=<script>alert(1)</script>")
        assert "<script>alert(1)</script>" not in resp.text

    def test_register_mismatch_and_duplicate(self, web_client):
        client, _ = web_client
        mismatch = _register(client, "web-dave", confirm="something-else")
        assert mismatch.status_code == 400
        assert "Secrets do not match." in mismatch.text

        assert _register(client, "web-dave").status_code == 302
        duplicate = _register(client, "web-dave")
        assert duplicate.status_code == 409
        assert "That identifier is not available." in duplicate.text

    def test_logout(self, web_client):
        client, _ = web_client
        _register(client, "web-erin")
        client.post("/login", data={"identifier": "web-erin", "secret": "correct-horse"})
        resp = client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?notice=logged_out"
        assert client.get("/").status_code == 302

    def test_health_reports_style_fallback(self, web_client):
        client, _ = web_client
        data = client.get("/api/v1/health").json()
        assert data["status"] == "healthy"
        assert data["components"]["styling"] == "fallback"


class TestLoginThrottling:
    def test_repeated_failures_lock_the_account(self, web_client):
        client, _ = web_client
        client.cookies.clear()
        _register(client, "web-gina")
        for _ in range(3):
            assert client.post("/login", data={"identifier": "web-gina", "secret": "wrong-secret"}).status_code == 401
        locked = client.post("/login", data={"identifier": "web-gina", "secret": "correct-horse"})
        assert locked.status_code == 401
        assert "Invalid identifier or secret." in locked.text

    def test_login_form_is_rate_limited(self, web_client, monkeypatch):
        client, _ = web_client
        client.cookies.clear()
        _register(client, "web-hank")
        monkeypatch.setattr(get_settings(), "login_rate_limit", "3/minute")
        statuses = [
            client.post("/login", data={"identifier": "web-hank", "secret": "correct-horse"}).status_code
            for _ in range(4)
        ]
        client.cookies.clear()
        assert statuses == [302, 302, 302, 429]
