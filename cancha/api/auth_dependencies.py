"""
Authentication and request-security dependencies for FastAPI routes.

`public_security` and `require_auth` build dependencies that run the rate
limit and CSRF checks and hand the route an explicit context object.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.db import get_db_session
from cancha.database.models import AdminRole, RateLimitAction
from cancha.services import rate_limiting_service, session_service
from cancha.services.security_service import (
    RequestContext,
    get_request_context,
    verify_csrf_token,
    log_auth_event,
)
from cancha.utils.errors import (
    ErrorCode,
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
)


@dataclass(frozen=True)
class AuthContext:
    """Authenticated request: the admin, their session and the request metadata."""

    user: Dict
    session: Dict
    payload: Dict
    request: RequestContext


async def enforce_rate_limit(
    session: AsyncSession, context: RequestContext, action_type: str
) -> None:
    """
    Reject the request with 429 if the client is over the limit for action_type.

    Blocked requests are recorded as failed attempts so repeat offenders
    keep escalating their backoff.

    Raises:
        RateLimitError: With retry_after seconds
    """
    result = await rate_limiting_service.check_rate_limit(session, context.ip_address, action_type)
    if not result.allowed:
        await rate_limiting_service.record_attempt(context, None, False, action_type)
        log_auth_event(
            "rate_limited", context, action_type=action_type, retry_after=result.retry_after
        )
        code = (
            ErrorCode.RATE_LIMITED
            if action_type == RateLimitAction.LOGIN.value
            else ErrorCode.RATE_LIMIT_EXCEEDED
        )
        raise RateLimitError(result.retry_after, code=code)

    if rate_limiting_service.get_rate_limit_config(action_type).record_requests:
        await rate_limiting_service.record_attempt(context, None, True, action_type)


def enforce_csrf(request: Request, context: RequestContext) -> None:
    """Raise 403 unless a state-changing request carries a matching CSRF token."""
    if not verify_csrf_token(request):
        log_auth_event("csrf_violation", context)
        raise AuthorizationError(code=ErrorCode.CSRF_TOKEN_INVALID)


def public_security(
    rate_limit: bool = True,
    rate_limit_type: str = RateLimitAction.GENERAL.value,
    csrf_protection: bool = True,
):
    """Dependency factory for routes that do not require a session."""

    async def _dep(
        request: Request,
        session: AsyncSession = Depends(get_db_session),
    ) -> RequestContext:
        context = get_request_context(request)
        if rate_limit:
            await enforce_rate_limit(session, context, rate_limit_type)
        if csrf_protection:
            enforce_csrf(request, context)
        return context

    return _dep


def require_auth(
    required_role: Optional[str] = None,
    rate_limit: bool = True,
    csrf_protection: bool = True,
):
    """
    Dependency factory for routes that require an admin session.

    Raises 401 SESSION_REQUIRED without a session cookie, 401 INVALID_SESSION
    when the session does not validate, and 403 INSUFFICIENT_PERMISSIONS when
    the user's role differs from required_role.
    """

    async def _dep(
        request: Request,
        session: AsyncSession = Depends(get_db_session),
    ) -> AuthContext:
        context = get_request_context(request)
        if rate_limit:
            await enforce_rate_limit(session, context, RateLimitAction.GENERAL.value)
        if csrf_protection:
            enforce_csrf(request, context)

        token = session_service.get_session_token(request)
        if not token:
            log_auth_event("unauthorized_access", context, reason="missing_session")
            raise AuthenticationError(code=ErrorCode.SESSION_REQUIRED)

        validated = await session_service.validate_session(session, token)
        if validated is None:
            log_auth_event("unauthorized_access", context, reason="invalid_session")
            raise AuthenticationError(code=ErrorCode.INVALID_SESSION)

        user = validated["user"]
        if required_role and user["role"] != required_role:
            log_auth_event(
                "unauthorized_access",
                context,
                reason="insufficient_permissions",
                user_id=user["id"],
                required_role=required_role,
            )
            raise AuthorizationError(code=ErrorCode.INSUFFICIENT_PERMISSIONS)

        return AuthContext(
            user=user,
            session=validated["session"],
            payload=validated["payload"],
            request=context,
        )

    return _dep


require_admin = require_auth(required_role=AdminRole.ADMIN.value)
