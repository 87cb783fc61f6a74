"""Tests for allowlist and request-log persistence (in-memory SQLite)."""
import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from nidservice.db import session
from nidservice.db.models import Base
from nidservice.db.repository import (
    add_allowed_ip,
    deactivate_allowed_ip,
    find_allowed_ip,
    insert_request_log,
    list_allowed_ips,
    request_log_statistics,
    seed_allowed_ips,
)
from nidservice.db.session import engine_options, init_database


def _row(request_id: str, status: str = "SUCCESS", ms: int | None = 10) -> dict:
    return {
        "request_id": request_id,
        "client_ip": "127.0.0.1",
        "system_name": "Local",
        "nid": "1234567890",
        "request_data": {"nid": "1234567890"},
        "response_data": {"success": status == "SUCCESS"},
        "status": status,
        "processing_time_ms": ms,
    }


class TestAllowlist:
    def test_add_and_find(self):
        add_allowed_ip("10.0.0.5", "Billing", "billing backend")
        entry = find_allowed_ip("10.0.0.5")
        assert entry["system_name"] == "Billing"
        assert entry["description"] == "billing backend"
        assert entry["is_active"] is True

    def test_unknown_ip_is_none(self):
        assert find_allowed_ip("10.9.9.9") is None

    def test_deactivated_entry_is_not_found(self):
        add_allowed_ip("10.0.0.5", "Billing")
        assert deactivate_allowed_ip("10.0.0.5") is True
        assert find_allowed_ip("10.0.0.5") is None
        assert list_allowed_ips() == []
        assert len(list_allowed_ips(include_inactive=True)) == 1

    def test_deactivate_missing_returns_false(self):
        assert deactivate_allowed_ip("10.0.0.99") is False

    def test_add_reactivates_existing(self):
        add_allowed_ip("10.0.0.5", "Billing")
        deactivate_allowed_ip("10.0.0.5")
        add_allowed_ip("10.0.0.5", "Billing v2")
        entry = find_allowed_ip("10.0.0.5")
        assert entry["system_name"] == "Billing v2"
        assert len(list_allowed_ips(include_inactive=True)) == 1

    def test_seed_is_idempotent(self):
        assert seed_allowed_ips(["127.0.0.1", "::1"]) == 2
        assert seed_allowed_ips(["127.0.0.1", "::1"]) == 0
        assert [e["ip_address"] for e in list_allowed_ips()] == ["127.0.0.1", "::1"]


class TestRequestLog:
    def test_statistics_on_empty_table(self):
        stats = request_log_statistics()
        assert stats == {
            "total_requests": 0,
            "success_requests": 0,
            "error_requests": 0,
            "success_rate": 0.0,
            "average_processing_time_ms": None,
        }

    def test_statistics(self):
        insert_request_log(_row("a", "SUCCESS", 10))
        insert_request_log(_row("b", "SUCCESS", 20))
        insert_request_log(_row("c", "ERROR", None))

        stats = request_log_statistics()
        assert stats["total_requests"] == 3
        assert stats["success_requests"] == 2
        assert stats["error_requests"] == 1
        assert stats["success_rate"] == 66.67
        assert stats["average_processing_time_ms"] == 15

    def test_unknown_column_is_rejected(self):
        row = _row("a")
        row["photo"] = "data:..."
        with pytest.raises(ValueError, match="photo"):
            insert_request_log(row)


class TestSession:
    def test_sqlite_shares_one_connection(self):
        options = engine_options("sqlite:///:memory:")
        assert options["poolclass"] is StaticPool
        assert options["connect_args"]["check_same_thread"] is False
        assert "pool_size" not in options

    def test_mysql_gets_a_sized_pool(self):
        options = engine_options("mysql+pymysql://nid:pw@db/nid")
        assert options["pool_size"] == 10
        assert options["pool_recycle"] == 3600
        assert "poolclass" not in options

    def test_init_database_retries_locked_database(self, monkeypatch):
        attempts = []
        delays = []

        def create_all(bind):
            attempts.append(bind)
            if len(attempts) < 3:
                raise OperationalError("CREATE TABLE", {}, Exception("database is locked"))

        monkeypatch.setattr(Base.metadata, "create_all", create_all)
        monkeypatch.setattr(session.time, "sleep", delays.append)

        init_database(max_retries=5, base_delay=0.5)
        assert len(attempts) == 3
        assert delays == [0.5, 1.0]

    def test_init_database_raises_other_errors_at_once(self, monkeypatch):
        delays = []

        def create_all(bind):
            raise OperationalError("CREATE TABLE", {}, Exception("syntax error"))

        monkeypatch.setattr(Base.metadata, "create_all", create_all)
        monkeypatch.setattr(session.time, "sleep", delays.append)

        with pytest.raises(OperationalError):
            init_database(max_retries=5, base_delay=0.5)
        assert delays == []
