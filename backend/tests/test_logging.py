# backend/tests/test_logging.py
from __future__ import annotations

import json
import logging

from fastapi.testclient import TestClient

from letlog.domain.errors import ErrorKind
from letlog.logging_config import JsonFormatter
from letlog.main import app
from letlog.middleware.request_id import accept_request_id, bind_request_id, get_request_id

client = TestClient(app)


def _record(**extra) -> logging.LogRecord:
    rec = logging.LogRecord("letlog.policy", logging.INFO, __file__, 1, "policy denied", None, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_json_line_carries_request_id_and_plain_kind():
    fmt = JsonFormatter(policy_version="test.v1", env="test")
    with bind_request_id("req-123"):
        line = json.loads(fmt.format(_record(kind=ErrorKind.FORBIDDEN, user_id=7, tenancy_id=None)))

    assert line["request_id"] == "req-123"
    assert line["kind"] == "forbidden"
    assert line["user_id"] == 7
    assert "tenancy_id" not in line
    assert line["policy_version"] == "test.v1"
    assert line["message"] == "policy denied"


def test_bound_request_id_is_scoped():
    assert get_request_id() is None
    with bind_request_id() as rid:
        assert get_request_id() == rid
    assert get_request_id() is None


def test_unsafe_incoming_request_ids_are_replaced():
    assert accept_request_id("abc-123.x") == "abc-123.x"
    assert accept_request_id("a" * 300) != "a" * 300
    assert accept_request_id("bad id\n{}") != "bad id\n{}"
    assert len(accept_request_id(None)) == 32


def test_middleware_echoes_a_safe_request_id():
    r = client.get("/api/health", headers={"X-Request-ID": "trace-42"})
    assert r.headers["X-Request-ID"] == "trace-42"

    r = client.get("/api/health", headers={"X-Request-ID": "x" * 200})
    assert r.headers["X-Request-ID"] != "x" * 200
