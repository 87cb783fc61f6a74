"""Tests for the nid-service command line."""
import json

import httpx
import pytest
from typer.testing import CliRunner

from nidservice.cli import main as cli
from nidservice.db.repository import find_allowed_ip, insert_request_log
from tests.conftest import FakeRegistry, json_response, verify_ok

runner = CliRunner()


@pytest.fixture
def registry(monkeypatch) -> FakeRegistry:
    registry = FakeRegistry()
    monkeypatch.setattr(cli, "_transport", registry)
    return registry


class TestAllowIp:
    def test_add_then_list(self):
        result = runner.invoke(cli.app, ["allow-ip", "add", "10.0.0.5", "Billing", "-d", "billing"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["ip_address"] == "10.0.0.5"

        result = runner.invoke(cli.app, ["allow-ip", "list"])
        assert result.exit_code == 0
        entries = json.loads(result.stdout)
        assert [e["ip_address"] for e in entries] == ["10.0.0.5"]

    def test_list_as_table(self):
        runner.invoke(cli.app, ["allow-ip", "add", "10.0.0.5", "Billing"])
        result = runner.invoke(cli.app, ["allow-ip", "list", "--format", "table"])
        assert result.exit_code == 0
        assert "10.0.0.5" in result.stdout

    def test_remove(self):
        runner.invoke(cli.app, ["allow-ip", "add", "10.0.0.5", "Billing"])
        result = runner.invoke(cli.app, ["allow-ip", "remove", "10.0.0.5"])
        assert result.exit_code == 0
        assert find_allowed_ip("10.0.0.5") is None

    def test_remove_unknown_fails(self):
        result = runner.invoke(cli.app, ["allow-ip", "remove", "10.0.0.77"])
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestInitDbAndStats:
    def test_init_db_seeds_defaults(self):
        result = runner.invoke(cli.app, ["init-db"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"initialized": True, "seeded": 1}
        assert find_allowed_ip("127.0.0.1") is not None

    def test_stats(self):
        insert_request_log(
            {
                "request_id": "r-1",
                "client_ip": "127.0.0.1",
                "nid": "1234567890",
                "request_data": {},
                "status": "SUCCESS",
                "processing_time_ms": 25,
            }
        )
        result = runner.invoke(cli.app, ["stats"])
        assert result.exit_code == 0
        stats = json.loads(result.stdout)
        assert stats["total_requests"] == 1
        assert stats["average_processing_time_ms"] == 25


class TestVerifyCommand:
    def test_verified(self, registry):
        result = runner.invoke(cli.app, ["verify", "1234567890", "1990-01-15", "John Doe"])
        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["verified"] is True
        assert body["nidType"] == "10-digit"
        assert registry.logins == 1

    def test_invalid_input_makes_no_request(self, registry):
        result = runner.invoke(cli.app, ["verify", "123", "1990-01-15", "John Doe"])
        assert result.exit_code == 1
        assert "VALIDATION_ERROR" in result.output
        assert registry.requests == []

    def test_registry_failure(self, registry):
        registry.verify_responses = [json_response(500, {"error": "boom"})]
        result = runner.invoke(cli.app, ["verify", "1234567890", "1990-01-15", "John Doe"])
        assert result.exit_code == 2
        assert "VERIFICATION_FAILED" in result.output

    def test_unreachable_registry(self, registry):
        registry.login_responses = [httpx.ConnectError("Connection refused")]
        result = runner.invoke(cli.app, ["verify", "1234567890", "1990-01-15", "John Doe"])
        assert result.exit_code == 2
        assert "SERVICE_UNAVAILABLE" in result.output

    def test_mismatch(self, registry):
        registry.verify_responses = [verify_ok(verified=False, date_of_birth=False)]
        result = runner.invoke(cli.app, ["verify", "1234567890", "1990-01-15", "John Doe"])
        assert result.exit_code == 0
        body = json.loads(result.stdout)
        assert body["verified"] is False
        assert "dateOfBirth" in body["message"]


def test_version():
    result = runner.invoke(cli.app, ["--version"])
    assert result.exit_code == 0
    assert "1.0.0" in result.stdout
