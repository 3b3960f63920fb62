"""Custom exception hierarchy and handlers."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    status_code = 400
    code = "app_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnauthorizedException(AppException):
    """Raised when caller has no valid session or is not allowed to touch the resource."""

    status_code = 401
    code = "unauthorized"


class ForbiddenException(AppException):
    """Raised when an authenticated user has the wrong role for an operation."""

    status_code = 403
    code = "forbidden"


class NotFoundException(AppException):
    """Raised when entity is not found."""

    status_code = 404
    code = "not_found"


class ConflictException(AppException):
    """Raised when entity changed concurrently and the write lost the race."""

    status_code = 409
    code = "conflict"


class BusinessRuleException(AppException):
    """Raised when business rule validation fails."""

    status_code = 400
    code = "business_rule_violation"


class WebhookSignatureException(AppException):
    """Raised when a gateway webhook fails signature verification."""

    status_code = 400
    code = "invalid_signature"


class PaymentGatewayException(AppException):
    """Raised when a payment gateway call fails or returns garbage."""

    status_code = 502
    code = "gateway_error"


class GatewayUnavailableException(AppException):
    """Raised when a payment gateway is not configured."""

    status_code = 503
    code = "gateway_unavailable"


async def app_exception_handler(_: Request, exc: AppException) -> JSONResponse:
    """Handle custom domain exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions in unified shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
    )


async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Report missing or malformed request fields as 400."""
    errors = exc.errors()
    fields = [".".join(str(part) for part in error.get("loc", ()) if part != "body") for error in errors]
    message = "Invalid request: " + ", ".join(field for field in fields if field) if fields else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "validation_error", "message": message}},
    )


async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error"}},
    )


def register_exception_handlers(app) -> None:
    """Register global exception handlers."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
