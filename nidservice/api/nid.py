"""NID verification endpoints.

All routes require an allowlisted caller. Every call to ``/verify`` that
passes the allowlist produces exactly one audit record, whichever path
it leaves by (validation failure, registry failure, unexpected error or
success).
"""
import json
import logging
import time
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from nidservice.api.allowlist import ClientSystem, require_allowed_client
from nidservice.api.errors import error_body, registry_error_status, utc_timestamp
from nidservice.api.schemas import VerifyRequestBody, VerifyResponse, validation_details
from nidservice.audit import AuditContext, AuditOutcome
from nidservice.config import SERVICE_NAME
from nidservice.db.repository import request_log_statistics
from nidservice.db.session import check_database
from nidservice.registry.client import mask_identifier
from nidservice.registry.exceptions import RegistryError

log = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/nid",
    tags=["nid"],
    dependencies=[Depends(require_allowed_client)],
)


def _request_snapshot(request: Request, payload: Any) -> dict:
    body = payload if isinstance(payload, dict) else {}
    return {
        "nid": body.get("nid"),
        "dateOfBirth": body.get("dateOfBirth"),
        "nameEn": body.get("nameEn"),
        "method": request.method,
        "path": request.url.path,
        "userAgent": request.headers.get("user-agent"),
    }


def _audit(
    request: Request,
    context: AuditContext,
    snapshot: dict,
    response: dict,
    outcome: AuditOutcome,
    error_detail: Optional[str] = None,
) -> None:
    sink = request.app.state.audit_sink
    sink.record(
        snapshot,
        response,
        outcome,
        context.elapsed_ms(),
        context,
        error_detail=error_detail,
    )


@router.post("/verify")
async def verify_nid(
    request: Request,
    client: ClientSystem = Depends(require_allowed_client),
):
    """Verify an NID against the registry.

    The body is parsed here rather than by a typed parameter so that
    malformed input still yields an audit record and the service's own
    error envelope.
    """
    context = AuditContext(
        client_ip=client.ip,
        system_name=client.system_name,
        received_at=getattr(request.state, "received_at", time.monotonic()),
    )

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    snapshot = _request_snapshot(request, payload)

    try:
        body = VerifyRequestBody.model_validate(payload if payload is not None else {})
    except ValidationError as e:
        details = validation_details(e)
        content = error_body(
            "VALIDATION_ERROR",
            "Validation failed",
            request_id=context.request_id,
            system=client.system_name,
            details=details,
        )
        _audit(request, context, snapshot, content, AuditOutcome.ERROR, "Validation failed")
        return JSONResponse(status_code=400, content=content)

    verification = body.to_verification_request()
    log.info(
        f"NID verification request - ID: {context.request_id}, "
        f"NID: {mask_identifier(verification.id)}, System: {client.system_name}"
    )

    try:
        result = await request.app.state.verification_client.verify(verification)
    except RegistryError as e:
        status_code, code = registry_error_status(e)
        log.error(f"NID verification failed - ID: {context.request_id}, Error: {e}")
        content = error_body(
            code, str(e), request_id=context.request_id, system=client.system_name
        )
        _audit(request, context, snapshot, content, AuditOutcome.ERROR, str(e))
        return JSONResponse(status_code=status_code, content=content)
    except Exception as e:
        log.exception(f"Unexpected verification error - ID: {context.request_id}")
        content = error_body(
            "INTERNAL_ERROR",
            "Internal server error",
            request_id=context.request_id,
            system=client.system_name,
        )
        _audit(request, context, snapshot, content, AuditOutcome.ERROR, str(e))
        return JSONResponse(status_code=500, content=content)

    response = VerifyResponse.from_result(
        verification,
        result,
        request_id=context.request_id,
        timestamp=utc_timestamp(),
        system=client.system_name,
    )
    content = response.model_dump()
    if content["message"] is None:
        del content["message"]
    _audit(request, context, snapshot, content, AuditOutcome.SUCCESS)
    log.info(
        f"NID verification completed - ID: {context.request_id}, "
        f"Verified: {result.verified}"
    )
    return content


@router.get("/health")
async def health(request: Request):
    """200 when a registry credential can be obtained, else 503."""
    client = request.app.state.verification_client
    failure: Optional[RegistryError] = None
    try:
        await client.check_connectivity()
    except RegistryError as e:
        log.error(f"Health check failed: {e}")
        failure = e

    body = {
        "service": SERVICE_NAME,
        "timestamp": utc_timestamp(),
        "database": "connected" if check_database() else "unavailable",
        "credentials": client.credentials.stats(),
    }
    if failure is not None:
        body.update(
            success=False,
            status="unhealthy",
            error=str(failure),
            externalService="disconnected",
        )
        return JSONResponse(status_code=503, content=body)

    body.update(success=True, status="healthy", externalService="connected")
    return body


@router.get("/status")
def status(request: Request):
    """Aggregate request statistics from the audit log."""
    try:
        stats = request_log_statistics()
    except Exception as e:
        log.error(f"Status check failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(e), "timestamp": utc_timestamp()},
        )

    total = stats["total_requests"]
    avg = stats["average_processing_time_ms"]
    return {
        "success": True,
        "status": "operational",
        "timestamp": utc_timestamp(),
        "statistics": {
            "totalRequests": total,
            "successRequests": stats["success_requests"],
            "errorRequests": stats["error_requests"],
            "successRate": f"{stats['success_rate']:.2f}%" if total else "0%",
            "averageProcessingTime": f"{avg}ms" if avg is not None else "N/A",
            "audit": request.app.state.audit_sink.stats(),
        },
    }
