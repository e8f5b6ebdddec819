"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for capture, location and search
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Capture taxonomy
================
    PermissionDeniedError     the user (or platform policy) refused access
    DeviceUnavailableError    hardware missing, busy, or held by another owner
    CaptureUnavailableError   no frame available from a live stream
    PositionUnavailableError  the platform could not produce a fix
    LocationTimeoutError      the position request exceeded its deadline
    SearchUnavailableError    every safe-place category query failed
    InvalidStateError         operation called from an unsupported state

None of these are fatal: every controller returns to Idle and may retry.

Usage:
    from backend.app.core.errors import InvalidStateError

    raise InvalidStateError("stop", state="idle", allowed=["active"])
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class SafetyAPIError(Exception):
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


class NotFoundError(SafetyAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ExternalServiceError(SafetyAPIError):
    """External API call failed (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, **details},
        )


# ── Capture / location / search taxonomy ──

class CaptureError(SafetyAPIError):
    """Recoverable failure local to one capture, position or search request."""


class PermissionDeniedError(CaptureError):
    """Access to a device or the position was refused (403)."""

    def __init__(self, resource: str, message: str = "", **details: Any):
        super().__init__(
            message=message or f"Permission denied for {resource}",
            status_code=403,
            error_code="PERMISSION_DENIED",
            details={"resource": resource, **details},
        )


class DeviceUnavailableError(CaptureError):
    """Device missing, failed, or held by another consumer (409)."""

    def __init__(self, device: str, message: str = "", **details: Any):
        super().__init__(
            message=message or f"Device '{device}' is unavailable",
            status_code=409,
            error_code="DEVICE_UNAVAILABLE",
            details={"device": device, **details},
        )


class CaptureUnavailableError(CaptureError):
    """No frame could be read from the live stream (409)."""

    def __init__(self, message: str = "No frame available from the camera stream"):
        super().__init__(
            message=message,
            status_code=409,
            error_code="CAPTURE_UNAVAILABLE",
        )


class PositionUnavailableError(CaptureError):
    """The platform could not determine a position (503)."""

    def __init__(self, message: str = "Position unavailable", **details: Any):
        super().__init__(
            message=message,
            status_code=503,
            error_code="POSITION_UNAVAILABLE",
            details=details,
        )


class LocationTimeoutError(CaptureError):
    """Position request exceeded its deadline (504)."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message=f"Position request timed out after {timeout_seconds:.1f}s",
            status_code=504,
            error_code="TIMEOUT",
            details={"timeout_seconds": timeout_seconds},
        )


class SearchUnavailableError(CaptureError):
    """Every safe-place category query failed (502)."""

    def __init__(self, failed_categories: Iterable[str]):
        failed = sorted(failed_categories)
        super().__init__(
            message="Safe place search unavailable: all category queries failed",
            status_code=502,
            error_code="SEARCH_UNAVAILABLE",
            details={"failed_categories": failed},
        )


class InvalidStateError(CaptureError):
    """Operation called from a state that does not support it (409)."""

    def __init__(self, operation: str, *, state: str, allowed: Iterable[str] = ()):
        super().__init__(
            message=f"Cannot {operation} while {state}",
            status_code=409,
            error_code="INVALID_STATE",
            details={"operation": operation, "state": state, "allowed": list(allowed)},
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

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(InvalidStateError)
    async def handle_invalid_state(request: Request, exc: InvalidStateError):
        # Programmer error: the UI should never have offered this action.
        logger.error(
            "Invalid state transition [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(SafetyAPIError)
    async def handle_safety_error(request: Request, exc: SafetyAPIError):
        level = logging.WARNING if isinstance(exc, CaptureError) else logging.ERROR
        logger.log(
            level,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
