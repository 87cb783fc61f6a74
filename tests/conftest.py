"""Shared fixtures for the NID Verification Service test suite.

The database URL is pinned to in-memory SQLite before any service module
is imported, so the engine built at import time never touches disk.
A fake registry transport stands in for the NID partner API and its
photo host.
"""

from __future__ import annotations

import json
import os
from typing import Optional

os.environ["NID_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["NID_SERVICE_BASE_URL"] = "https://registry.test/rest"
os.environ["NID_SERVICE_USERNAME"] = "partner"
os.environ["NID_SERVICE_PASSWORD"] = "secret"
os.environ["NID_DEFAULT_ALLOWED_IPS"] = "127.0.0.1"

import httpx
import pytest

from nidservice.db.models import Base
from nidservice.db.session import engine

REGISTRY_BASE = "https://registry.test/rest"
LOGIN_URL = f"{REGISTRY_BASE}/auth/login"
VERIFY_URL = f"{REGISTRY_BASE}/voter/demographic/verification"
PHOTO_URL = "https://assets.registry.test/photos/1234567890.jpg"
PHOTO_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


def json_response(status_code: int, data) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(data).encode(),
        headers={"content-type": "application/json"},
    )


def login_ok(token: str = "tok-1") -> httpx.Response:
    return json_response(200, {"status": "OK", "success": {"data": {"access_token": token}}})


def verify_ok(
    verified: bool = True,
    name_en: bool = True,
    date_of_birth: bool = True,
    details: Optional[dict] = None,
) -> httpx.Response:
    return json_response(
        200,
        {
            "status": "OK",
            "statusCode": "SUCCESS",
            "success": {
                "verified": verified,
                "fieldVerificationResult": {"nameEn": name_en, "dateOfBirth": date_of_birth},
                "data": details if details is not None else {"nameEn": "John Doe"},
            },
        },
    )


def _copy(response: httpx.Response) -> httpx.Response:
    """Fresh response object so a repeated entry can be served again."""
    return httpx.Response(
        response.status_code, content=response.content, headers=response.headers
    )


class FakeRegistry(httpx.AsyncBaseTransport):
    """Routes requests by URL to queued responses.

    Login and verification responses are consumed in order; the last
    entry of a queue repeats. Queued exceptions are raised. Other URLs
    are served from ``assets`` or answered with 404.
    """

    def __init__(self):
        self.login_responses: list[httpx.Response] = [login_ok()]
        self.verify_responses: list[httpx.Response] = [verify_ok()]
        self.assets: dict[str, httpx.Response] = {}
        self.requests: list[httpx.Request] = []

    def _next(self, queue: list) -> httpx.Response:
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return _copy(item)

    def count(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    @property
    def logins(self) -> int:
        return self.count(LOGIN_URL)

    @property
    def verifications(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == VERIFY_URL]

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == LOGIN_URL:
            return self._next(self.login_responses)
        if url == VERIFY_URL:
            return self._next(self.verify_responses)
        if url in self.assets:
            return _copy(self.assets[url])
        return httpx.Response(404, content=b"not found")


class TimeoutTransport(httpx.AsyncBaseTransport):
    """Transport that always times out."""

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("Mock timeout")


class ConnectErrorTransport(httpx.AsyncBaseTransport):
    """Transport that always fails to connect."""

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused")


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate every table so each test starts from an empty database."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
