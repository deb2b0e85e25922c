"""
Tests for the ambient middleware: request timing headers, JSON log
formatting, the rate-limit key and configuration.
"""

import json
import logging

import pytest

from portfolio.config import ProductionConfig, TestingConfig
from portfolio.middleware.logging_config import JSONFormatter, ReadableFormatter
from portfolio.middleware.rate_limiter import actor_or_remote_address
from portfolio.utils.errors import E, api_error


def test_request_id_echoed(client):
    res = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
    assert res.status_code == 200
    assert res.headers["X-Request-ID"] == "req-123"
    assert "X-Request-Duration-Ms" in res.headers


def test_request_id_generated(client):
    res = client.get("/api/v1/health")
    assert len(res.headers["X-Request-ID"]) == 12


def test_json_formatter_includes_closure_fields():
    record = logging.LogRecord("portfolio.test", logging.INFO, __file__, 10, "Closure %s done", ("submit",), None)
    record.project_id = 7
    record.event_type = "closure.submit_closure"
    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Closure submit done"
    assert entry["project_id"] == 7
    assert entry["event_type"] == "closure.submit_closure"
    assert "actor" not in entry


def test_readable_formatter_shows_event():
    record = logging.LogRecord("portfolio.test", logging.INFO, __file__, 10, "Project %s reactivated", (7,), None)
    record.event_type = "closure.reactivate"
    line = ReadableFormatter().format(record)
    assert line.endswith("Project 7 reactivated (closure.reactivate)")


def test_api_error_statuses(app):
    with app.test_request_context("/"):
        res, status = api_error(E.DATABASE, "write failed", details={"step": "confirmation"})
        assert status == 503
        assert res.get_json() == {
            "error": "write failed", "code": "ERR_DATABASE", "details": {"step": "confirmation"},
        }
        assert api_error("ERR_SOMETHING_ELSE", "x")[1] == 400
        assert api_error(E.NOT_FOUND, "x", status=410)[1] == 410


def test_rate_limit_key_prefers_actor(app):
    with app.test_request_context("/", headers={"X-User": "pm-1"}):
        assert actor_or_remote_address() == "actor:pm-1"
    with app.test_request_context("/", environ_base={"REMOTE_ADDR": "10.0.0.5"}):
        assert actor_or_remote_address() == "10.0.0.5"


def test_testing_config():
    assert TestingConfig.TESTING is True
    assert TestingConfig.RATELIMIT_ENABLED is False


def test_unknown_route_returns_json(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.get_json()["path"] == "/api/v1/nowhere"


def test_production_config_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        ProductionConfig()
