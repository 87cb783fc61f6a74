"""API error envelope and exception handlers.

Every error response shares one JSON shape:

    {"success": false, "error": "...", "code": "...", "timestamp": "...", ...}

Registry errors are mapped to HTTP status codes here so route handlers
and the health probe agree on the mapping.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nidservice.registry.exceptions import (
    AuthenticationError,
    RegistryError,
    ServiceUnavailableError,
    VerificationFailedError,
)

log = logging.getLogger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ApiError(Exception):
    """Raised by dependencies and handlers to produce an error envelope."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Optional[list] = None,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def error_body(
    code: str,
    message: str,
    *,
    request_id: Optional[str] = None,
    system: Optional[str] = None,
    details: Optional[list] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details is not None:
        body["details"] = details
    if request_id is not None:
        body["requestId"] = request_id
    body["timestamp"] = utc_timestamp()
    if system is not None:
        body["system"] = system
    return body


def registry_error_status(error: RegistryError) -> tuple[int, str]:
    """HTTP status and public error code for a registry failure."""
    if isinstance(error, (AuthenticationError, ServiceUnavailableError)):
        return 503, "SERVICE_UNAVAILABLE"
    if isinstance(error, VerificationFailedError):
        return 400, "VERIFICATION_FAILED"
    return 500, "INTERNAL_ERROR"


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error envelope for API, 404 and unhandled errors."""

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.message, details=exc.details),
        )

    @app.exception_handler(404)
    async def _not_found(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=error_body("ENDPOINT_NOT_FOUND", "Endpoint not found"),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body("INTERNAL_ERROR", "Internal server error"),
        )
