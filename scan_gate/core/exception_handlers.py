"""Exception handlers mapping gate and domain errors to HTTP responses.

Two body shapes are used:

- admission denials (PolicyDenyError) use the flat client contract that mobile
  and web clients switch on::

      {"error": "...", "code": "RATE_LIMIT_EXCEEDED", "retryAfter": 120,
       "upgrade": true, "request_id": "..."}

- every other error is nested under ``error`` with a machine-readable code::

      {"error": {"code": "...", "message": "...", "request_id": "...", "details": {...}}}

Status mapping for AppError: ValidationAppError 400, AuthenticationAppError
403, DependencyError 503 (operator endpoints only; admission degrades instead
of raising). Anything unexpected is a generic 500 with no internals leaked.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scan_gate.core.errors import AppError, AuthenticationAppError, DependencyError, PolicyDenyError
from scan_gate.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, AuthenticationAppError):
        return 403
    if isinstance(exc, DependencyError):
        return 503
    return 400


async def policy_deny_handler(request: Request, exc: PolicyDenyError) -> JSONResponse:
    details = exc.details or {}
    content: dict = {
        "error": exc.message,
        "code": exc.code,
        "request_id": get_request_id(),
    }
    if "retry_after" in details:
        content["retryAfter"] = details["retry_after"]
    if "upgrade" in details:
        content["upgrade"] = details["upgrade"]

    logger.info(
        "policy_deny_handled",
        extra={"error_code": exc.code, "status_code": exc.status_code, "route": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "route": request.url.path,
        },
    )

    error: dict = {"code": exc.code, "message": exc.message, "request_id": get_request_id()}
    if exc.details:
        error["details"] = exc.details
    return JSONResponse(status_code=status_code, content={"error": error})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Safety net: log the failure, return a generic 500 with no internals."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register handlers; Starlette dispatches on the closest class in the MRO."""
    app.exception_handler(PolicyDenyError)(policy_deny_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
