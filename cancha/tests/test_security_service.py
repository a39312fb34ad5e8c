"""
Tests for request security helpers: client identification, CSRF checks,
security headers and auth-event logging.
"""

import json
import logging

import pytest
from starlette.requests import Request

from cancha.services import security_service
from cancha.services.security_service import RequestContext


def make_request(headers=None, method="GET", path="/api/auth/login") -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": raw_headers,
        "query_string": b"",
        "client": ("10.0.0.1", 1234),
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


class TestClientIp:
    def test_first_forwarded_for_entry(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        assert security_service.get_client_ip(request) == "203.0.113.7"

    def test_real_ip(self):
        request = make_request({"X-Real-IP": "198.51.100.4"})
        assert security_service.get_client_ip(request) == "198.51.100.4"

    def test_forwarded_header(self):
        request = make_request({"Forwarded": 'for="198.51.100.9";proto=https'})
        assert security_service.get_client_ip(request) == "198.51.100.9"

    def test_fallback(self):
        assert security_service.get_client_ip(make_request()) == "127.0.0.1"

    def test_client_identifier_uses_user_agent_prefix(self):
        request = make_request(
            {"X-Forwarded-For": "203.0.113.7", "User-Agent": "Mozilla/5.0 (X11; Linux x86_64)"}
        )
        assert security_service.get_client_identifier(request) == "203.0.113.7:Mozilla/5.0"


class TestCsrf:
    def test_safe_methods_pass(self):
        assert security_service.verify_csrf_token(make_request(method="GET"))

    def test_missing_token_fails(self):
        assert not security_service.verify_csrf_token(make_request(method="POST"))

    def test_matching_header_and_cookie(self):
        token = security_service.generate_csrf_token()
        request = make_request(
            {"x-csrf-token": token, "cookie": f"cancha-csrf-token={token}"}, method="POST"
        )
        assert security_service.verify_csrf_token(request)

    def test_mismatch_fails(self):
        request = make_request(
            {"x-csrf-token": "a" * 64, "cookie": f"cancha-csrf-token={'b' * 64}"}, method="DELETE"
        )
        assert not security_service.verify_csrf_token(request)

    def test_state_changing_methods(self):
        assert security_service.requires_csrf_protection("patch")
        assert not security_service.requires_csrf_protection("HEAD")


def test_security_headers_outside_production():
    headers = security_service.get_security_headers()
    assert headers["X-Frame-Options"] == "DENY"
    assert "frame-ancestors 'none'" in headers["Content-Security-Policy"]
    assert "Strict-Transport-Security" not in headers


def test_redact_headers():
    redacted = security_service.redact_headers(
        {"Cookie": "session=secret", "Authorization": "Bearer x", "User-Agent": "pytest"}
    )
    assert redacted["Cookie"] == "[REDACTED]"
    assert redacted["Authorization"] == "[REDACTED]"
    assert redacted["User-Agent"] == "pytest"


def test_log_auth_event_writes_json(caplog):
    context = RequestContext(ip_address="203.0.113.7", user_agent="pytest", path="/api/auth/login", method="POST")

    with caplog.at_level(logging.INFO, logger="cancha.auth"):
        security_service.log_auth_event("login_failure", context, identifier="santiago")

    record = next(r for r in caplog.records if r.name == "cancha.auth")
    assert record.levelno == logging.WARNING
    entry = json.loads(record.getMessage().split("AUTH_EVENT ", 1)[1])
    assert entry["event"] == "login_failure"
    assert entry["ip_address"] == "203.0.113.7"
    assert entry["identifier"] == "santiago"


def test_log_auth_event_never_raises():
    context = RequestContext(ip_address="203.0.113.7", user_agent="pytest", path="/", method="GET")
    # Unserializable details fall back to str()
    security_service.log_auth_event("logout", context, payload=object())


@pytest.mark.parametrize("event,level", [("login_success", logging.INFO), ("csrf_violation", logging.WARNING)])
def test_log_levels(caplog, event, level):
    context = RequestContext(ip_address="203.0.113.7", user_agent="pytest", path="/", method="POST")
    with caplog.at_level(logging.INFO, logger="cancha.auth"):
        security_service.log_auth_event(event, context)
    assert caplog.records[-1].levelno == level
