# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.

"""Registry credential cache with single-flight refresh.

Holds the bearer token issued by the registry's login endpoint and the
expiry we assume for it.  The registry never reports a lifetime, so the
cache assumes ``ttl_seconds`` (default one hour) and refreshes
``refresh_margin_seconds`` before that window closes.  A 401 from the
registry is always authoritative: the client calls :meth:`invalidate`
and the next caller re-authenticates.

Concurrency
-----------
The cache is the only shared mutable state in the verification path.
Reads and writes happen under an ``asyncio.Lock``.  When the credential
is absent or stale, the first caller starts a login task; every caller
arriving while that task is running awaits the *same* task and sees the
same outcome (the new credential or the same ``AuthenticationError``).
At most one login exchange is outstanding at any time.

The login task is shielded, so a waiter that gets cancelled does not
abort the refresh for everyone else.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from nidservice.config import LOGIN_PATH, REGISTRY_STATUS_OK
from nidservice.registry.exceptions import AuthenticationError
from nidservice.registry.models import Credential

logger = logging.getLogger("nid.credentials")

__all__ = [
    "CredentialCache",
    "CredentialMetrics",
    "RegistryAuthenticator",
]


# ======================================================================
# Login exchange
# ======================================================================


class RegistryAuthenticator:
    """Performs one login exchange against ``POST {base_url}/auth/login``.

    Returns the raw access token.  Never retries; the caller decides.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 30.0,
    ) -> None:
        self._http = http
        self._url = base_url.rstrip("/") + LOGIN_PATH
        self._username = username
        self._password = password
        self._timeout = timeout

    async def __call__(self) -> str:
        try:
            response = await self._http.post(
                self._url,
                json={"username": self._username, "password": self._password},
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise AuthenticationError.unreachable(f"login timed out: {e}") from e
        except httpx.HTTPError as e:
            raise AuthenticationError.unreachable(f"login request failed: {e}") from e

        if response.status_code != 200:
            raise AuthenticationError.rejected(response.status_code, response.text)

        try:
            body = response.json()
        except ValueError:
            raise AuthenticationError.malformed(response.status_code, response.text)

        token = None
        if isinstance(body, dict) and body.get("status") == REGISTRY_STATUS_OK:
            token = ((body.get("success") or {}).get("data") or {}).get("access_token")
        if not token or not isinstance(token, str):
            raise AuthenticationError.malformed(response.status_code, response.text)
        return token


# ======================================================================
# Metrics
# ======================================================================


@dataclass
class CredentialMetrics:
    """Monotonic counters for the lifetime of the cache instance."""

    hits: int = 0
    logins: int = 0
    login_failures: int = 0
    invalidations: int = 0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "logins": self.logins,
            "login_failures": self.login_failures,
            "invalidations": self.invalidations,
        }


# ======================================================================
# CredentialCache
# ======================================================================


class CredentialCache:
    """Process-wide holder of the current registry credential.

    Parameters
    ----------
    authenticate : callable
        Zero-argument coroutine function returning a fresh access token
        (normally a :class:`RegistryAuthenticator`).
    ttl_seconds : float
        Assumed validity window for each issued token.
    refresh_margin_seconds : float
        Refresh this many seconds before the assumed expiry.
    clock : callable
        Returns the current epoch time; injectable for tests.
    """

    def __init__(
        self,
        authenticate: Callable[[], Awaitable[str]],
        ttl_seconds: float = 3600.0,
        refresh_margin_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authenticate = authenticate
        self._ttl_seconds = ttl_seconds
        self._refresh_margin = min(refresh_margin_seconds, ttl_seconds / 2)
        self._clock = clock

        self._credential: Optional[Credential] = None
        self._inflight: Optional[asyncio.Task[Credential]] = None
        self._lock = asyncio.Lock()
        self._metrics = CredentialMetrics()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_valid_credential(self) -> Credential:
        """Return a usable credential, authenticating at most once.

        Raises
        ------
        AuthenticationError
            If the shared login exchange fails.  Every caller waiting
            on that exchange receives the same error.
        """
        async with self._lock:
            credential = self._credential
            if credential is not None and credential.is_valid(
                self._clock(), self._refresh_margin
            ):
                self._metrics.hits += 1
                return credential

            if self._inflight is None:
                self._inflight = asyncio.create_task(self._refresh())
            inflight = self._inflight

        return await asyncio.shield(inflight)

    def invalidate(self, stale: Optional[Credential] = None) -> None:
        """Drop the cached credential immediately.

        When *stale* is given, the cache is only cleared if it still holds
        that credential, so a late 401 for an old token cannot discard a
        token another request has just obtained.
        """
        if stale is not None and self._credential is not stale:
            return
        if self._credential is not None:
            self._metrics.invalidations += 1
            logger.info("Registry credential invalidated")
        self._credential = None

    @property
    def current(self) -> Optional[Credential]:
        return self._credential

    def stats(self) -> dict:
        d = self._metrics.to_dict()
        d["cached"] = self._credential is not None
        d["refreshing"] = self._inflight is not None
        return d

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _refresh(self) -> Credential:
        """Run one login exchange and publish the result."""
        try:
            self._metrics.logins += 1
            token = await self._authenticate()
            credential = Credential(
                token=token,
                expires_at=self._clock() + self._ttl_seconds,
            )
            self._credential = credential
            logger.info(
                "Authenticated with NID registry (valid for %.0fs)",
                self._ttl_seconds,
            )
            return credential
        except AuthenticationError as e:
            self._metrics.login_failures += 1
            logger.error("Registry authentication failed: %s", e)
            raise
        finally:
            self._inflight = None
