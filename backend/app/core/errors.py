"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors (5xx bodies carry no details)
    • Request context in error responses (non-production)

Usage:
    from backend.app.core.errors import (
        HealthAPIError,
        NotFoundError,
        ValidationError,
        PermissionDeniedError,
        register_error_handlers,
    )

    raise NotFoundError("Alert", id="6f1c...")

Taxonomy:

    Bucket              Class                     HTTP
    ──────────────      ──────────────────────    ────
    validation          ValidationError            400
    record schema       RecordValidationError      400
    duplicate           ConflictError              400
    malformed id        InvalidIdentifierError     400
    credentials         AuthenticationError        401
    role / ownership    PermissionDeniedError      403
    not found           NotFoundError              404
    backend             StorageError               500
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class HealthAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(HealthAPIError):
    """Missing or invalid input (400)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=400,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class ConflictError(HealthAPIError):
    """Record already exists (400, kept on the validation status)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=400,
            error_code="DUPLICATE",
            details=details,
        )


class InvalidIdentifierError(HealthAPIError):
    """Identifier does not parse as a record reference (400)."""

    def __init__(self, resource: str, value: str):
        super().__init__(
            message=f"Invalid {resource} ID format",
            status_code=400,
            error_code="INVALID_ID",
            details={"resource": resource, "id": value},
        )


class AuthenticationError(HealthAPIError):
    """Missing, invalid or expired credential (401)."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            status_code=401,
            error_code="UNAUTHORIZED",
        )


class PermissionDeniedError(HealthAPIError):
    """Authenticated but not allowed (403)."""

    def __init__(self, message: str = "Access denied", **details: Any):
        super().__init__(
            message=message,
            status_code=403,
            error_code="FORBIDDEN",
            details=details,
        )


class NotFoundError(HealthAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, message: Optional[str] = None, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=message or f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class StorageError(HealthAPIError):
    """Persistence backend failed (500)."""

    def __init__(self, entity: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Storage failure on '{entity}': {message}",
            status_code=500,
            error_code="STORAGE_ERROR",
            details={"entity": entity, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _field_names(exc: RequestValidationError) -> list:
    names = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        if loc:
            names.append(".".join(loc))
    return names


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(HealthAPIError)
    async def handle_api_error(request: Request, exc: HealthAPIError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        headers = (
            {"WWW-Authenticate": "Bearer"}
            if isinstance(exc, AuthenticationError) else None
        )
        message, details = exc.message, exc.details
        if exc.status_code >= 500:
            # paths and driver messages stay in the log
            details = None
            if not settings.DEBUG:
                message = "Internal server error"
        return _build_error_response(
            exc.status_code, exc.error_code, message,
            details, request, headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = _field_names(exc)
        message = (
            f"Invalid or missing fields: {', '.join(fields)}"
            if fields else "Invalid request"
        )
        logger.warning("Request validation failed: %s", fields)
        return _build_error_response(
            400, "VALIDATION_ERROR", message,
            {"fields": fields}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )
