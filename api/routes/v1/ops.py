"""
api/routes/v1/ops.py -- Dependency status and operator endpoints.

Routes:
  GET  /api/v1/status/features         -- AI feature availability (public)
  GET  /api/v1/status/styling          -- styling detection / fallback state (public)
  GET  /api/v1/ops/errors              -- recent sanitized diagnostics (operator)
  GET  /api/v1/ops/error-counts        -- diagnostic counts by category and code (operator)
  POST /api/v1/ops/config/retry        -- re-run the AI-config sandbox (operator)
  GET  /api/v1/ops/registry/integrity  -- read-only registry scan (operator)
  POST /api/v1/ops/registry/repair     -- repair every repairable record (operator)

Operator routes require the X-Operator-Key header (see require_operator).
Diagnostic records are already sanitized by ErrorReporter; nothing here adds
detail to them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.errors import auth_error_response
from api.models import (
    DiagnosticRow,
    ErrorCountsResponse,
    FeatureStatusResponse,
    IntegrityResponse,
    RepairResponse,
    StylingStatusResponse,
)
from auth.context import AuthContext
from auth.dependencies import get_auth_context, require_operator

router = APIRouter()

# ---------------------------------------------------------------------------
# Public status
# ---------------------------------------------------------------------------


@router.get("/status/features", response_model=FeatureStatusResponse)
async def feature_status(context: AuthContext = Depends(get_auth_context)) -> FeatureStatusResponse:
    return FeatureStatusResponse(**context.get_feature_availability().to_dict())


@router.get("/status/styling", response_model=StylingStatusResponse)
async def styling_status(context: AuthContext = Depends(get_auth_context)) -> StylingStatusResponse:
    return StylingStatusResponse(
        detected=context.style_guard.detected,
        fallback_active=context.get_style_fallback_active(),
    )


# ---------------------------------------------------------------------------
# Operator endpoints
# ---------------------------------------------------------------------------


@router.get("/ops/errors", response_model=list[DiagnosticRow], dependencies=[Depends(require_operator)])
async def recent_errors(
    limit: int = Query(50, ge=1, le=1000),
    context: AuthContext = Depends(get_auth_context),
) -> list[DiagnosticRow]:
    """Newest first."""
    return [DiagnosticRow(**record.to_dict()) for record in context.reporter.recent_errors(limit)]


@router.get("/ops/error-counts", response_model=ErrorCountsResponse, dependencies=[Depends(require_operator)])
async def error_counts(context: AuthContext = Depends(get_auth_context)) -> ErrorCountsResponse:
    return ErrorCountsResponse(
        by_category=context.reporter.count_by_category(),
        by_code=context.reporter.count_by_code(),
    )


@router.post("/ops/config/retry", response_model=FeatureStatusResponse, dependencies=[Depends(require_operator)])
def retry_config(context: AuthContext = Depends(get_auth_context)) -> FeatureStatusResponse:
    """Re-run the AI-config initializer. Blocks for at most AI_TIMEOUT_SECONDS."""
    return FeatureStatusResponse(**context.sandbox.retry().to_dict())


@router.get("/ops/registry/integrity", response_model=IntegrityResponse, dependencies=[Depends(require_operator)])
def registry_integrity(context: AuthContext = Depends(get_auth_context)):
    result = context.gateway.integrity_report()
    if not result.ok:
        return auth_error_response(result.error)
    return IntegrityResponse(**result.value.to_dict())


@router.post("/ops/registry/repair", response_model=RepairResponse, dependencies=[Depends(require_operator)])
def registry_repair(context: AuthContext = Depends(get_auth_context)):
    result = context.gateway.repair_all()
    if not result.ok:
        return auth_error_response(result.error)
    return RepairResponse(repaired=result.value)
