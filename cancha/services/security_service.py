"""
Request security helpers: client identification, CSRF tokens, security
response headers and structured auth-event logging.
"""

import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from fastapi import Request, Response

from cancha.utils.constants import (
    IS_PRODUCTION,
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    CSRF_TOKEN_MAX_AGE_SECONDS,
    SENSITIVE_HEADERS,
)
from cancha.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)
auth_logger = logging.getLogger("cancha.auth")

DEFAULT_CLIENT_IP = "127.0.0.1"
STATE_CHANGING_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: https:",
        "font-src 'self'",
        "connect-src 'self'",
        "frame-ancestors 'none'",
        "base-uri 'self'",
        "form-action 'self'",
    ]
)


@dataclass(frozen=True)
class RequestContext:
    """Client metadata captured once per request and passed to handlers."""

    ip_address: str
    user_agent: str
    path: str
    method: str
    origin: Optional[str] = None
    referer: Optional[str] = None


def get_client_ip(request: Request) -> str:
    """
    Resolve the client IP from proxy headers.

    Order: first x-forwarded-for entry, x-real-ip, the for= element of the
    Forwarded header, then a loopback placeholder.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    forwarded = request.headers.get("forwarded")
    if forwarded:
        for element in forwarded.split(";"):
            for part in element.split(","):
                key, _, value = part.strip().partition("=")
                if key.lower() == "for" and value:
                    return value.strip('"').strip("[]")

    return DEFAULT_CLIENT_IP


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        path=request.url.path,
        method=request.method,
        origin=request.headers.get("origin"),
        referer=request.headers.get("referer"),
    )


def get_client_identifier(request: Request) -> str:
    """Rate limit key for public endpoints: IP plus the leading user-agent token."""
    user_agent = get_user_agent(request)
    simplified = user_agent.split(" ")[0] if user_agent else "unknown"
    return f"{get_client_ip(request)}:{simplified}"


# ---------------------------------------------------------------------------
# CSRF (double submit cookie)
# ---------------------------------------------------------------------------


def generate_csrf_token() -> str:
    return secrets.token_hex(32)


def set_csrf_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=CSRF_COOKIE_NAME,
        value=token,
        max_age=CSRF_TOKEN_MAX_AGE_SECONDS,
        path="/",
        secure=IS_PRODUCTION,
        httponly=False,  # read by the frontend and echoed in the header
        samesite="strict",
    )


def requires_csrf_protection(method: str) -> bool:
    return method.upper() in STATE_CHANGING_METHODS


def verify_csrf_token(request: Request) -> bool:
    """
    Check that the CSRF header matches the CSRF cookie.

    Safe methods always pass.
    """
    if not requires_csrf_protection(request.method):
        return True

    header_token = request.headers.get(CSRF_HEADER_NAME)
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    if not header_token or not cookie_token:
        return False
    return hmac.compare_digest(header_token, cookie_token)


# ---------------------------------------------------------------------------
# Security headers
# ---------------------------------------------------------------------------


def get_security_headers() -> Dict[str, str]:
    headers = {
        "Content-Security-Policy": CONTENT_SECURITY_POLICY,
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": (
            "geolocation=(), microphone=(), camera=(), payment=(), "
            "usb=(), serial=(), bluetooth=()"
        ),
        "X-XSS-Protection": "1; mode=block",
    }
    if IS_PRODUCTION:
        headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains; preload"
    return headers


def apply_security_headers(response: Response) -> Response:
    for name, value in get_security_headers().items():
        response.headers[name] = value
    return response


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of headers safe to log."""
    return {
        name: "[REDACTED]" if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def log_auth_event(event_type: str, context: RequestContext, **details) -> None:
    """
    Emit a structured audit line for an authentication event.

    Never raises; a logging failure must not change the response.
    """
    try:
        entry = {
            "event": event_type,
            "timestamp": utcnow().isoformat(),
            "ip_address": context.ip_address,
            "user_agent": context.user_agent,
            "origin": context.origin,
            "referer": context.referer,
            "path": context.path,
            "method": context.method,
            **details,
        }
        level = logging.INFO if event_type in ("login_success", "logout") else logging.WARNING
        auth_logger.log(level, f"AUTH_EVENT {json.dumps(entry, default=str)}")
    except Exception as e:
        logger.error(f"Failed to log auth event {event_type}: {e}")
