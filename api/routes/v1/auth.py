"""
api/routes/v1/auth.py -- Registration and session REST endpoints.

Routes:
  POST /api/v1/auth/register           -- create an account
  POST /api/v1/auth/login              -- verify credentials; sets JWT cookie
  POST /api/v1/auth/logout             -- clears cookie; 200
  GET  /api/v1/auth/me                 -- current user (requires auth)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  An unknown identifier and a wrong secret return byte-identical 401 bodies.
  Cache-Control: no-store on register and login responses.

Handlers are plain `def`: hashing is CPU-bound and FastAPI runs sync handlers
in its thread pool, off the event loop.
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.errors import auth_error_response
from api.models import LoginRequest, LoginResponse, RegisterRequest, UserResponse
from auth.context import AuthContext
from auth.dependencies import get_auth_context, get_current_user
from auth.models import UserPublicView
from auth.tokens import clear_auth_cookie, create_access_token, set_auth_cookie
from core.config import get_settings
from core.limiter import limiter, login_rate_limit

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:   public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:       requires auth (get_current_user)
router = APIRouter()


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, context: AuthContext = Depends(get_auth_context)) -> JSONResponse:
    """Create an account. The response is the public view of the new user."""
    result = context.register({"identifier": body.identifier, "secret": body.secret})
    if not result.ok:
        return auth_error_response(result.error)
    resp = JSONResponse(status_code=201, content=UserResponse(**asdict(result.value)).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Verify credentials; set the JWT cookie and return the token.

    Absent identifier and wrong secret produce the same 401 payload.
    """
    context: AuthContext = get_auth_context(request)
    result = context.login(body.identifier, body.secret)
    if not result.ok:
        return auth_error_response(result.error)

    expires_in = get_settings().token_expire_seconds
    token = create_access_token(result.value.identifier, expire_seconds=expires_in)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=expires_in,
            user=UserResponse(**asdict(result.value)),
        ).model_dump(),
    )
    set_auth_cookie(resp, token, expire_seconds=expires_in)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: UserPublicView = Depends(get_current_user)) -> UserResponse:
    """Return the public view of the currently authenticated user."""
    return UserResponse(**asdict(current_user))
