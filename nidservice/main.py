# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""FastAPI application for the NID Verification Service.

**HTTP Endpoints**

* ``GET /`` - service banner with the endpoint list.
* ``POST /api/nid/verify`` - verify an NID against the registry.
* ``GET /api/nid/health`` - registry connectivity probe.
* ``GET /api/nid/status`` - request statistics from the audit log.

All ``/api/nid`` routes require the caller's IP to be allowlisted.

Architecture
------------
The async lifespan context manager handles ordered startup and shutdown:

1. Configure logging.
2. Create tables and seed the default allowlist.
3. Build the shared HTTP client and verification client.
4. Start the audit sink.
5. Yield (application serves requests).
6. Stop the audit sink (drains queued records).
7. Close the shared HTTP client.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request

from nidservice.api.errors import register_exception_handlers, utc_timestamp
from nidservice.api.nid import router as nid_router
from nidservice.audit import AuditSink
from nidservice.config import (
    AUDIT_QUEUE_MAX,
    DEFAULT_ALLOWED_IPS,
    HTTP_HOST,
    HTTP_PORT,
    LOG_FORMAT,
    LOG_LEVEL,
    NID_SERVICE_BASE_URL,
    SERVICE_NAME,
    SERVICE_VERSION,
)
from nidservice.db.repository import insert_request_log, seed_allowed_ips
from nidservice.db.session import init_database
from nidservice.registry.client import build_verification_client
from nidservice.registry.http_client import close_shared_client, get_shared_client


# ======================================================================
# Structured JSON logging
# ======================================================================


class _JSONFormatter(logging.Formatter):
    """One JSON object per log line.

    Fields: ``timestamp``, ``level``, ``logger``, ``message``, ``module``,
    ``funcName`` and, when present, ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _configure_logging() -> None:
    """Reconfigure the root logger with a single stdout handler.

    ``LOG_FORMAT=text`` switches to a plain line format for local use.
    Existing handlers are removed first so uvicorn's own setup does not
    produce duplicate lines.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT.lower() == "text":
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
    else:
        handler.setFormatter(_JSONFormatter())

    root.addHandler(handler)
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

    # Suppress noisy third-party loggers.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ======================================================================
# Application lifespan
# ======================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("nid.main")

    # --- Startup ---
    _configure_logging()
    logger.info(
        "%s %s starting: HTTP=%s:%d, registry=%s, log_level=%s",
        SERVICE_NAME, SERVICE_VERSION, HTTP_HOST, HTTP_PORT,
        NID_SERVICE_BASE_URL, LOG_LEVEL,
    )

    init_database()
    seed_allowed_ips(DEFAULT_ALLOWED_IPS)

    http = get_shared_client()
    app.state.verification_client = build_verification_client(http)

    audit_sink = AuditSink(insert_request_log, max_queue=AUDIT_QUEUE_MAX)
    await audit_sink.start()
    app.state.audit_sink = audit_sink

    yield

    # --- Shutdown ---
    logger.info("%s shutting down", SERVICE_NAME)

    await audit_sink.stop()
    await close_shared_client()

    logger.info("%s shutdown complete", SERVICE_NAME)


# ======================================================================
# FastAPI application
# ======================================================================

app = FastAPI(
    title=SERVICE_NAME,
    description="Verifies national identity numbers against the NID registry.",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

register_exception_handlers(app)
app.include_router(nid_router)

logger = logging.getLogger("nid.main")


@app.middleware("http")
async def _stamp_received_at(request: Request, call_next):
    """Record arrival time so processing time covers the whole request."""
    request.state.received_at = time.monotonic()
    return await call_next(request)


@app.get("/")
async def root():
    return {
        "success": True,
        "message": f"{SERVICE_NAME} API",
        "version": SERVICE_VERSION,
        "timestamp": utc_timestamp(),
        "endpoints": {
            "verify": "POST /api/nid/verify",
            "health": "GET /api/nid/health",
            "status": "GET /api/nid/status",
        },
    }


# ======================================================================
# Application runner (for direct invocation)
# ======================================================================


def main() -> None:
    """Run the service using uvicorn.

    For production deployments, use uvicorn directly::

        uvicorn nidservice.main:app --host 0.0.0.0 --port 3000
    """
    import uvicorn

    _configure_logging()
    logger.info("Starting %s: HTTP=%s:%d", SERVICE_NAME, HTTP_HOST, HTTP_PORT)

    uvicorn.run(
        "nidservice.main:app",
        host=HTTP_HOST,
        port=HTTP_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
