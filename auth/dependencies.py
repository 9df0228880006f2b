"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Session auth is checked in priority order:
  1. JWT cookie ("access_token") -- set by the web UI and API login.
  2. Authorization: Bearer <token> header -- API clients using JWTs.

Both converge on a UserPublicView loaded through the RegistryGateway, so a
repaired record is returned the same way it is on login.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_operator() guards operational endpoints with the X-Operator-Key header.

Layer rule: no imports from web/ or api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from auth.context import AuthContext
from auth.models import UserPublicView
from auth.tokens import COOKIE_NAME, decode_access_token


def get_auth_context(request: Request) -> AuthContext:
    return request.app.state.auth


def try_get_current_user(request: Request) -> UserPublicView | None:
    """Attempt to authenticate the request via cookie or Bearer token.

    Returns the user's public view on success, None on any failure
    (including a registry outage). Never raises.
    """
    token: str | None = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None
    context = getattr(request.app.state, "auth", None)
    if context is None:
        return None
    found = context.gateway.get_user(payload["sub"])
    if not found.ok or found.value is None:
        return None
    return found.value.public_view()


def get_current_user(request: Request) -> UserPublicView:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: UserPublicView = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_operator(request: Request) -> None:
    """Require the operator key. Raises HTTP 404 when no key is configured, 403 on mismatch.

    A 404 keeps the operational surface invisible on deployments that never
    set OPERATOR_KEY.
    """
    expected = get_auth_context(request).settings.operator_key
    if not expected:
        raise HTTPException(status_code=404)
    supplied = request.headers.get("X-Operator-Key", "")
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Operator access required."},
        )
