"""
web/routes.py -- Jinja2 template routes for the authguard login pages.

These routes serve server-rendered HTML. They share app.state.auth with the
API routes but return HTML instead of JSON.

Every page goes through _render(), which decides how the page is styled:
  - the external stylesheet is always linked (it costs nothing when it loads)
  - when the style fallback is active, FALLBACK_CSS is inlined in <head>,
    so the form stays legible and operable without the styling service.

Routes:
  GET  /          -- signed-in landing page (auth required)
  GET  /login     -- login form
  POST /login     -- handle login (rate-limited per IP, LOGIN_RATE_LIMIT)
  GET  /register  -- registration form
  POST /register  -- handle registration, redirect to /login?notice=registered
  POST /logout    -- clear cookie, redirect /login
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.context import AuthContext
from auth.dependencies import try_get_current_user
from auth.models import ErrorCategory
from auth.tokens import clear_auth_cookie, create_access_token, set_auth_cookie
from core.limiter import limiter, login_rate_limit
from core.style_guard import FALLBACK_CSS

logger = logging.getLogger("authguard.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?notice= query params on /login.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted query strings.
_NOTICES: dict[str, str] = {
    "registered": "Account created. You can sign in now.",
    "logged_out": "You have been signed out.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Rejects absolute URLs and protocol-relative URLs ("//host") so a crafted
    ?next= cannot redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _render(request: Request, template: str, status_code: int = 200, **ctx) -> HTMLResponse:
    context: AuthContext = request.app.state.auth
    fallback_active = context.get_style_fallback_active()
    return templates.TemplateResponse(
        request,
        template,
        {
            "stylesheet_url": context.settings.stylesheet_url,
            "fallback_css": FALLBACK_CSS if fallback_active else None,
            "ai_enabled": context.get_feature_availability().ai_enabled,
            **ctx,
        },
        status_code=status_code,
    )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    user = try_get_current_user(request)
    if user is None:
        return RedirectResponse(f"/login?next={request.url.path}", status_code=302)
    return _render(request, "home.html", user=user)


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    """Render the login page."""
    if try_get_current_user(request) is not None:
        return RedirectResponse("/", status_code=302)
    notice = _NOTICES.get(request.query_params.get("notice", ""))
    return _render(request, "login.html", notice=notice, next_url=_safe_next(request.query_params.get("next")))


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    identifier: str = Form(...),
    secret: str = Form(...),
) -> HTMLResponse:
    """Handle login form submission.

    Failures re-render the form with the AuthError's fixed message, so an
    unknown identifier and a wrong secret look the same here too.
    """
    context: AuthContext = request.app.state.auth
    result = context.login(identifier, secret)
    next_url = _safe_next(request.query_params.get("next"))
    if not result.ok:
        status = 401 if result.error.code == "invalid_credentials" else 503
        return _render(
            request,
            "login.html",
            status_code=status,
            error_msg=result.error.message,
            identifier=identifier,
            next_url=next_url,
        )

    token = create_access_token(result.value.identifier)
    resp = RedirectResponse(next_url, status_code=302)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/register", response_class=HTMLResponse)
def register_form(request: Request) -> HTMLResponse:
    return _render(request, "register.html")


@router.post("/register", response_class=HTMLResponse)
def register_post(
    request: Request,
    identifier: str = Form(...),
    secret: str = Form(...),
    confirm_secret: str = Form(...),
) -> HTMLResponse:
    """Create an account, then send the user to the login page."""
    if secret != confirm_secret:
        return _render(
            request,
            "register.html",
            status_code=400,
            error_msg="Secrets do not match.",
            identifier=identifier,
        )

    context: AuthContext = request.app.state.auth
    result = context.register({"identifier": identifier, "secret": secret})
    if not result.ok:
        if result.error.code == "identifier_taken":
            status = 409
        elif result.error.category is ErrorCategory.VALIDATION:
            status = 400
        else:
            status = 503
        return _render(
            request,
            "register.html",
            status_code=status,
            error_msg=result.error.message,
            identifier=identifier,
        )
    return RedirectResponse("/login?notice=registered", status_code=302)


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the JWT cookie and redirect to the login page."""
    resp = RedirectResponse("/login?notice=logged_out", status_code=302)
    clear_auth_cookie(resp)
    return resp
