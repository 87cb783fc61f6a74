"""Shared httpx.AsyncClient for registry calls and photo fetches.

One pooled client serves the login exchange, the verification call and
photo inlining, so concurrent verifications reuse TCP/TLS connections
instead of opening a fresh client per call.

Usage:
    from nidservice.registry.http_client import get_shared_client

    client = get_shared_client()
    response = await client.post(url, json=payload, timeout=30.0)
"""

import logging
from typing import Optional

import httpx

from nidservice.config import REGISTRY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

# Pool limits: max 20 keepalive connections, 100 total
_DEFAULT_POOL_LIMITS = httpx.Limits(
    max_connections=100,
    max_keepalive_connections=20,
    keepalive_expiry=30.0,
)

_shared_client: Optional[httpx.AsyncClient] = None


def get_shared_client() -> httpx.AsyncClient:
    """Get or create the shared httpx.AsyncClient.

    The client is created lazily on first use and reused for all subsequent
    calls. Every request is bounded by ``REGISTRY_TIMEOUT_SECONDS`` unless a
    caller passes its own timeout.
    """
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            limits=_DEFAULT_POOL_LIMITS,
            timeout=httpx.Timeout(REGISTRY_TIMEOUT_SECONDS, connect=10.0),
            follow_redirects=True,
        )
        logger.info("Created shared httpx.AsyncClient with connection pooling")
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared client. Call on application shutdown."""
    global _shared_client
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
        logger.info("Closed shared httpx.AsyncClient")
    _shared_client = None

