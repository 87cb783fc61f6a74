"""End-to-end tests for the HTTP API.

The application runs with its real lifespan (in-memory database, audit
sink) and a verification client wired to the fake registry transport.
TestClient connects from the host ``testclient``, which each test
allowlists explicitly.
"""
import httpx
import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import select

from nidservice.api.allowlist import is_trusted_proxy, resolve_client_ip
from nidservice.db.models import RequestLog
from nidservice.db.repository import add_allowed_ip
from nidservice.db.session import get_db_session
from nidservice.main import app
from nidservice.registry.assets import AssetInliner
from nidservice.registry.client import VerificationClient
from nidservice.registry.credentials import CredentialCache, RegistryAuthenticator
from tests.conftest import (
    PHOTO_BYTES,
    PHOTO_URL,
    REGISTRY_BASE,
    FakeRegistry,
    json_response,
    verify_ok,
)

VALID_BODY = {"nid": "1234567890", "dateOfBirth": "1990-01-15", "nameEn": "John Doe"}


def _wire(registry: FakeRegistry) -> VerificationClient:
    http = httpx.AsyncClient(transport=registry)
    credentials = CredentialCache(
        RegistryAuthenticator(http, REGISTRY_BASE, "partner", "secret", timeout=5.0)
    )
    return VerificationClient(
        http,
        credentials,
        inliner=AssetInliner(http, timeout=5.0),
        base_url=REGISTRY_BASE,
        timeout=5.0,
    )


def _audit_rows() -> list[dict]:
    with get_db_session() as db:
        return [
            {
                "request_id": row.request_id,
                "status": row.status,
                "nid": row.nid,
                "client_ip": row.client_ip,
                "system_name": row.system_name,
                "request_data": row.request_data,
                "response_data": row.response_data,
                "error_message": row.error_message,
                "processing_time_ms": row.processing_time_ms,
            }
            for row in db.scalars(select(RequestLog).order_by(RequestLog.id))
        ]


@pytest.fixture
def registry() -> FakeRegistry:
    registry = FakeRegistry()
    registry.verify_responses = [
        verify_ok(details={"nameEn": "John Doe", "fatherName": "Richard Doe", "photo": PHOTO_URL})
    ]
    registry.assets[PHOTO_URL] = httpx.Response(
        200, content=PHOTO_BYTES, headers={"content-type": "image/jpeg"}
    )
    return registry


@pytest.fixture
def allowlisted():
    add_allowed_ip("testclient", "Test Harness")


def _run(registry: FakeRegistry, fn):
    """Run *fn(client)* against a live app, then return it with the audit rows.

    Leaving the TestClient context stops the audit sink, which drains
    every queued record before the rows are read back.
    """
    with TestClient(app) as client:
        app.state.verification_client = _wire(registry)
        result = fn(client)
    return result, _audit_rows()


# =============================================================================
# Verify
# =============================================================================


class TestVerifyEndpoint:
    def test_verified_request_end_to_end(self, registry, allowlisted):
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=VALID_BODY))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["system"] == "Test Harness"
        assert body["data"]["nid"] == "1234567890"
        assert body["data"]["nidType"] == "10-digit"
        assert body["data"]["verified"] is True
        assert body["data"]["verificationDetails"] == {"nameEn": True, "dateOfBirth": True}
        assert body["data"]["personDetails"]["photo"].startswith("data:image/jpeg;base64,")
        assert "message" not in body

        assert len(rows) == 1
        row = rows[0]
        assert row["request_id"] == body["requestId"]
        assert row["status"] == "SUCCESS"
        assert row["nid"] == "1234567890"
        assert row["client_ip"] == "testclient"
        assert row["system_name"] == "Test Harness"
        assert row["response_data"]["data"]["personDetails"]["photo"] == (
            "[PHOTO_DATA_REMOVED_FOR_STORAGE]"
        )
        assert "base64" not in str(row["response_data"])
        assert row["processing_time_ms"] >= 0

    def test_seventeen_digit_nid(self, registry, allowlisted):
        body = dict(VALID_BODY, nid="1990 1234 5678 90123")
        response, _ = _run(registry, lambda c: c.post("/api/nid/verify", json=body))
        assert response.status_code == 200
        assert response.json()["data"]["nidType"] == "17-digit"
        assert response.json()["data"]["nid"] == "19901234567890123"

    def test_full_match_scenario(self, registry, allowlisted):
        registry.verify_responses = [verify_ok(details={"nameEn": "Jane Doe"})]
        body = {"nid": "12345678901234567", "dateOfBirth": "1990-01-01", "nameEn": "Jane Doe"}
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=body))

        data = response.json()["data"]
        assert data["verified"] is True
        assert data["verificationDetails"] == {"nameEn": True, "dateOfBirth": True}
        assert data["personDetails"] == {"nameEn": "Jane Doe"}
        assert [r["status"] for r in rows] == ["SUCCESS"]
        assert rows[0]["request_data"]["nid"] == "12345678901234567"

    def test_mismatch_is_200_with_message(self, registry, allowlisted):
        registry.verify_responses = [verify_ok(verified=False, name_en=False)]
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=VALID_BODY))

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["verified"] is False
        assert body["data"]["verificationDetails"]["nameEn"] is False
        assert "nameEn" in body["message"]
        assert rows[0]["status"] == "SUCCESS"

    def test_validation_error_is_audited(self, registry, allowlisted):
        bad = dict(VALID_BODY, nid="12345")
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=bad))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"] == [
            {"field": "nid", "message": "NID must be either 10 or 17 digits"}
        ]
        assert registry.requests == []

        assert len(rows) == 1
        assert rows[0]["status"] == "ERROR"
        assert rows[0]["request_id"] == body["requestId"]
        assert rows[0]["error_message"] == "Validation failed"

    def test_malformed_json_is_validation_error(self, registry, allowlisted):
        response, rows = _run(
            registry,
            lambda c: c.post(
                "/api/nid/verify",
                content=b"{not json",
                headers={"content-type": "application/json"},
            ),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert rows[0]["nid"] == "N/A"

    def test_repeated_401_is_service_unavailable(self, registry, allowlisted):
        registry.verify_responses = [httpx.Response(401, content=b"expired")]
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=VALID_BODY))

        assert response.status_code == 503
        assert response.json()["code"] == "SERVICE_UNAVAILABLE"
        assert registry.logins == 2
        assert rows[0]["status"] == "ERROR"

    def test_login_failure_is_service_unavailable(self, registry, allowlisted):
        registry.login_responses = [json_response(403, {"error": "denied"})]
        response, _ = _run(registry, lambda c: c.post("/api/nid/verify", json=VALID_BODY))
        assert response.status_code == 503
        assert response.json()["code"] == "SERVICE_UNAVAILABLE"

    def test_registry_rejection_is_verification_failed(self, registry, allowlisted):
        registry.verify_responses = [json_response(500, {"error": "internal"})]
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=VALID_BODY))

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VERIFICATION_FAILED"
        assert body["requestId"] == rows[0]["request_id"]

    def test_every_call_produces_one_audit_row(self, registry, allowlisted):
        def calls(client):
            client.post("/api/nid/verify", json=VALID_BODY)
            client.post("/api/nid/verify", json=dict(VALID_BODY, nameEn="X"))
            client.post("/api/nid/verify", json=VALID_BODY)

        _, rows = _run(registry, calls)
        assert [r["status"] for r in rows] == ["SUCCESS", "ERROR", "SUCCESS"]
        assert len({r["request_id"] for r in rows}) == 3


# =============================================================================
# Access control
# =============================================================================


class TestAllowlist:
    def test_unknown_ip_is_forbidden(self, registry):
        response, rows = _run(registry, lambda c: c.post("/api/nid/verify", json=VALID_BODY))
        assert response.status_code == 403
        assert response.json()["code"] == "IP_NOT_AUTHORIZED"
        assert registry.requests == []
        assert rows == []

    def test_forwarded_for_ignored_from_untrusted_peer(self, registry):
        add_allowed_ip("203.0.113.7", "Spoofed")
        response, _ = _run(
            registry,
            lambda c: c.get("/api/nid/status", headers={"X-Forwarded-For": "203.0.113.7"}),
        )
        assert response.status_code == 403

    def test_forwarded_for_honored_from_trusted_proxy(self):
        request = Request(
            {
                "type": "http",
                "client": ("10.0.0.1", 52000),
                "headers": [(b"x-forwarded-for", b"203.0.113.7, 10.0.0.1")],
            }
        )
        assert resolve_client_ip(request) == "203.0.113.7"

    def test_peer_address_used_without_proxy(self):
        request = Request(
            {
                "type": "http",
                "client": ("198.51.100.4", 52000),
                "headers": [(b"x-forwarded-for", b"203.0.113.7")],
            }
        )
        assert resolve_client_ip(request) == "198.51.100.4"

    def test_non_ip_peer_is_not_trusted(self):
        assert not is_trusted_proxy("testclient")
        assert is_trusted_proxy("192.168.1.10")


# =============================================================================
# Health, status, root
# =============================================================================


class TestOperationalEndpoints:
    def test_health_ok(self, registry, allowlisted):
        response, _ = _run(registry, lambda c: c.get("/api/nid/health"))
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["externalService"] == "connected"
        assert body["database"] == "connected"
        assert body["credentials"]["logins"] == 1

    def test_health_unavailable(self, registry, allowlisted):
        registry.login_responses = [httpx.ConnectError("Connection refused")]
        response, _ = _run(registry, lambda c: c.get("/api/nid/health"))
        assert response.status_code == 503
        body = response.json()
        assert body["success"] is False
        assert body["externalService"] == "disconnected"

    def test_status_statistics(self, registry, allowlisted):
        def calls(client):
            client.post("/api/nid/verify", json=VALID_BODY)
            client.post("/api/nid/verify", json=dict(VALID_BODY, nid="1"))

        _run(registry, calls)
        response, _ = _run(registry, lambda c: c.get("/api/nid/status"))

        assert response.status_code == 200
        stats = response.json()["statistics"]
        assert stats["totalRequests"] == 2
        assert stats["successRequests"] == 1
        assert stats["errorRequests"] == 1
        assert stats["successRate"] == "50.00%"
        assert stats["averageProcessingTime"].endswith("ms")

    def test_status_empty(self, registry, allowlisted):
        response, _ = _run(registry, lambda c: c.get("/api/nid/status"))
        stats = response.json()["statistics"]
        assert stats["totalRequests"] == 0
        assert stats["successRate"] == "0%"
        assert stats["averageProcessingTime"] == "N/A"

    def test_root_lists_endpoints(self, registry):
        response, _ = _run(registry, lambda c: c.get("/"))
        assert response.status_code == 200
        assert response.json()["endpoints"]["verify"] == "POST /api/nid/verify"

    def test_unknown_route_is_json_404(self, registry):
        response, _ = _run(registry, lambda c: c.get("/nope"))
        assert response.status_code == 404
        assert response.json()["code"] == "ENDPOINT_NOT_FOUND"
