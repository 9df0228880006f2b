"""
api/errors.py -- AuthError to HTTP response mapping.

Route handlers never build error bodies from exceptions. A failed Result
carries an AuthError whose public payload is already sanitized; this module
only picks the status code and wraps it in the ErrorResponse envelope.
"""

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.models import AuthError, ErrorCategory

_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CREDENTIALS: 401,
    ErrorCategory.REGISTRY: 503,
    ErrorCategory.CRYPTO: 503,
    ErrorCategory.CONFIG: 503,
    ErrorCategory.STYLING: 503,
}

_STATUS_BY_CODE: dict[str, int] = {
    "identifier_taken": 409,
}


def status_for(error: AuthError) -> int:
    return _STATUS_BY_CODE.get(error.code, _STATUS_BY_CATEGORY[error.category])


def auth_error_response(error: AuthError) -> JSONResponse:
    payload = error.public_payload()
    resp = JSONResponse(
        status_code=status_for(error),
        content=ErrorResponse(
            error=ErrorDetail(code=payload["code"], message=payload["message"], category=payload["category"])
        ).model_dump(exclude_none=True),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
