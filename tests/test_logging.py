"""Tests for structured log output."""
import json
import logging
import sys

from nidservice.main import _JSONFormatter


def _record(msg: str, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name="nid.test",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    def test_fields(self):
        line = _JSONFormatter().format(_record("hello"))
        entry = json.loads(line)
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "nid.test"
        assert entry["message"] == "hello"
        assert "timestamp" in entry
        assert "exception" not in entry

    def test_exception_is_serialized(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            line = _JSONFormatter().format(_record("failed", exc_info=sys.exc_info()))
        entry = json.loads(line)
        assert "RuntimeError: boom" in entry["exception"]
