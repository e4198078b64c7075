from datetime import datetime

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from ridepromo.core.config import settings
from ridepromo.core.exceptions import APIError

logger = structlog.get_logger(__name__)


def error_envelope(status_code: int, message: str, errors=None) -> JSONResponse:
    """Failure counterpart of ``utils.response.success``."""
    body = {
        "success": False,
        "message": message,
        "data": None,
        "errors": errors or [],
        "timestamp": f"{datetime.utcnow().isoformat()}Z",
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _split_http_detail(detail):
    if isinstance(detail, str):
        return detail, []
    if isinstance(detail, list):
        return "Request failed", detail
    if isinstance(detail, dict):
        return detail.get("message", "Request failed"), detail.get("errors", [])
    return "Request failed", []


async def on_api_error(request: Request, exc: APIError):
    return error_envelope(exc.status_code, exc.message, exc.errors)


async def on_http_exception(request: Request, exc: HTTPException):
    message, errors = _split_http_detail(exc.detail)
    return error_envelope(exc.status_code, message, errors)


async def on_validation_error(request: Request, exc: RequestValidationError):
    return error_envelope(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        exc.errors(),
    )


async def on_rate_limited(request: Request, exc: RateLimitExceeded):
    return error_envelope(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many coupon requests. Please try again later.",
    )


async def on_unhandled(request: Request, exc: Exception):
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
    )

    # Internals are only echoed back on local debug runs.
    if settings.DEBUG and settings.ENVIRONMENT != "production":
        return error_envelope(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Internal server error: {exc}",
            [{"type": type(exc).__name__}],
        )
    return error_envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, on_api_error)
    app.add_exception_handler(HTTPException, on_http_exception)
    app.add_exception_handler(RequestValidationError, on_validation_error)
    app.add_exception_handler(RateLimitExceeded, on_rate_limited)
    app.add_exception_handler(Exception, on_unhandled)
