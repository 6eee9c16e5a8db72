"""Exception handlers rendering the API error envelope."""

from typing import Any

import structlog
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from admission.core.exceptions import AppException

logger = structlog.get_logger()


def _error_body(request: Request, error: str, message: Any, **extra: Any) -> dict[str, Any]:
    return {"error": error, "message": message, "path": str(request.url), **extra}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Render application exceptions.

    Every body carries ``retryable`` so clients can tell a stale version or
    an unknown outcome (refresh, then retry) from a rule violation (do not
    retry). Lifecycle errors also carry ``details``: appointment id, current
    and requested status, or the stale version.

    Args:
        request: Request object
        exc: Application exception

    Returns:
        JSON error response
    """
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_rejected",
        error=exc.__class__.__name__,
        status_code=exc.status_code,
        retryable=exc.retryable,
        details=exc.details,
    )

    content = _error_body(request, exc.__class__.__name__, exc.message, retryable=exc.retryable)
    if exc.details:
        content["details"] = exc.details

    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Render HTTP exceptions raised by FastAPI and the auth dependencies."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, "HTTPException", exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Render request validation errors.

    Args:
        request: Request object
        exc: Validation exception

    Returns:
        JSON error response with validation details
    """
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            request,
            "ValidationError",
            "Request validation failed",
            details=jsonable_encoder(exc.errors()),
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected exceptions and hide their details from the client."""
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "InternalServerError", "An unexpected error occurred"),
    )
