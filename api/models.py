"""
API request and response models for authguard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only bound sizes. Identifier and secret rules are enforced by
the Authenticator so the CLI, the web UI and the API share one definition.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    identifier: str = Field(min_length=1, max_length=255)
    secret: str = Field(min_length=1, max_length=4096)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    identifier: str = Field(min_length=1, max_length=255)
    secret: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a registered user. Never carries the credential digest."""

    identifier: str
    created_at: Optional[str] = None
    contacts: list[dict] = Field(default_factory=list)
    transactions: list[dict] = Field(default_factory=list)
    incidents: list[dict] = Field(default_factory=list)
    solved_blocks: list[dict] = Field(default_factory=list)
    owned_assets: list[dict] = Field(default_factory=list)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class FeatureStatusResponse(BaseModel):
    """Response for GET /api/v1/status/features."""

    ai_enabled: bool
    reason: str
    checked_at: Optional[str] = None
    attempt: int = 0


class StylingStatusResponse(BaseModel):
    """Response for GET /api/v1/status/styling.

    detected is None while detection has not finished.
    """

    detected: Optional[bool] = None
    fallback_active: bool


class DiagnosticRow(BaseModel):
    category: str
    code: str
    message: str
    fallback_available: bool
    created_at: str
    context: dict = Field(default_factory=dict)
    forwarded: bool = False


class ErrorCountsResponse(BaseModel):
    by_category: dict[str, int]
    by_code: dict[str, int]


class IntegrityResponse(BaseModel):
    total: int
    valid: int
    repairable: list[str]
    corrupt: list[str]


class RepairResponse(BaseModel):
    repaired: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    category is set for failures that originate in the authentication core.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    category: Optional[str] = None
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
