"""Authentication route handlers."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.api.routes import api_response
from cancha.api.auth_dependencies import AuthContext, public_security, require_admin
from cancha.database.db import get_db_session
from cancha.database.models import RateLimitAction
from cancha.models.schemas import LoginRequest
from cancha.services import password_service, rate_limiting_service, session_service, user_service
from cancha.services.security_service import (
    RequestContext,
    generate_csrf_token,
    set_csrf_cookie,
    log_auth_event,
)
from cancha.utils.constants import APP_URL, LOGIN_PAGE_PATH
from cancha.utils.datetime_utils import to_iso
from cancha.utils.errors import (
    AppError,
    AuthenticationError,
    ErrorCode,
    ServerError,
)

logger = logging.getLogger(__name__)
router = APIRouter()

_PUBLIC_USER_FIELDS = ("id", "username", "email", "name", "role")


def _public_user(user: dict) -> dict:
    return {field: user.get(field) for field in _PUBLIC_USER_FIELDS}


def _public_session(session_data: dict) -> dict:
    return {
        "expires_at": session_data["expires_at"],
        "remember_me": session_data["remember_me"],
        "created_at": session_data.get("created_at"),
    }


@router.get("/api/auth/login")
async def issue_csrf_token(response: Response):
    """Issue a CSRF token (cookie + body) for the login form."""
    token = generate_csrf_token()
    set_csrf_cookie(response, token)
    return api_response("Token CSRF generado", csrf_token=token)


@router.post("/api/auth/login")
async def login(
    body: LoginRequest,
    response: Response,
    context: RequestContext = Depends(
        public_security(rate_limit_type=RateLimitAction.LOGIN.value)
    ),
    session: AsyncSession = Depends(get_db_session),
):
    """Log in with username (or email) and password; sets the session cookie."""
    try:
        user = await user_service.get_admin_for_login(session, body.username)
        # bcrypt runs for unknown usernames too
        password_hash = user["password_hash"] if user else password_service.get_dummy_hash()
        password_ok = password_service.verify_password(body.password, password_hash)

        # Disabled accounts get the same answer as a wrong password
        if not user or not password_ok or not user["is_active"]:
            if not user or not password_ok:
                reason = "invalid_credentials"
            else:
                reason = "account_disabled"
            await rate_limiting_service.record_attempt(context, body.username, False)
            log_auth_event("login_failure", context, identifier=body.username, reason=reason)
            raise AuthenticationError(code=ErrorCode.INVALID_CREDENTIALS)

        token, session_data = await session_service.create_session(
            session, user, body.remember_me, context
        )
        await user_service.update_last_login(session, user["id"])
        await session.commit()
        await rate_limiting_service.record_attempt(context, body.username, True)

        session_service.set_session_cookie(response, token, body.remember_me)
        log_auth_event("login_success", context, user_id=user["id"], remember_me=body.remember_me)
        return api_response(
            "Inicio de sesión exitoso",
            user=_public_user(user),
            session=_public_session(session_data),
        )
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error during login: {e}", exc_info=True)
        raise ServerError()


async def _end_session(request: Request, session: AsyncSession, context: RequestContext) -> None:
    token = session_service.get_session_token(request)
    if not token:
        return
    validated = await session_service.validate_session(session, token)
    if validated is None:
        return
    await session_service.destroy_session(session, validated["session"]["id"])
    log_auth_event("logout", context, user_id=validated["user"]["id"])


@router.post("/api/auth/logout")
async def logout(
    request: Request,
    response: Response,
    context: RequestContext = Depends(public_security(rate_limit=False)),
    session: AsyncSession = Depends(get_db_session),
):
    """Destroy the current session and clear the cookie."""
    try:
        await _end_session(request, session, context)
    except Exception as e:
        logger.error(f"Error destroying session on logout: {e}", exc_info=True)
    session_service.clear_session_cookie(response)
    return api_response("Sesión cerrada exitosamente")


@router.get("/api/auth/logout")
async def logout_redirect(
    request: Request,
    context: RequestContext = Depends(public_security(rate_limit=False, csrf_protection=False)),
    session: AsyncSession = Depends(get_db_session),
):
    """Logout link: always ends on the login page."""
    try:
        await _end_session(request, session, context)
    except Exception as e:
        logger.error(f"Error destroying session on logout: {e}", exc_info=True)
    redirect = RedirectResponse(url=f"{APP_URL}{LOGIN_PAGE_PATH}", status_code=303)
    session_service.clear_session_cookie(redirect)
    return redirect


async def _validate(
    request: Request,
    response: Response,
    session: AsyncSession,
    context: RequestContext,
    force_refresh: bool,
) -> dict:
    token = session_service.get_session_token(request)
    validated = await session_service.validate_session(session, token)
    if validated is None:
        if token:
            log_auth_event("session_expired", context)
        raise AuthenticationError(code=ErrorCode.INVALID_SESSION, extra={"valid": False})

    session_data = validated["session"]
    refreshed = False
    if force_refresh or session_service.should_refresh(session_data):
        expires_at = await session_service.refresh_session(
            session, session_data["id"], session_data["remember_me"]
        )
        if expires_at is not None:
            new_token = session_service.reissue_session_token(validated["payload"], expires_at)
            session_service.set_session_cookie(response, new_token, session_data["remember_me"])
            session_data = {**session_data, "expires_at": to_iso(expires_at)}
            refreshed = True

    return {
        "success": True,
        "valid": True,
        "message": "Sesión válida",
        "data": {
            "user": _public_user(validated["user"]),
            "session": _public_session(session_data),
            "refreshed": refreshed,
        },
    }


@router.get("/api/auth/validate")
async def validate(
    request: Request,
    response: Response,
    context: RequestContext = Depends(public_security(rate_limit=False, csrf_protection=False)),
    session: AsyncSession = Depends(get_db_session),
):
    """Validate the session cookie, refreshing it when close to expiry."""
    try:
        return await _validate(request, response, session, context, force_refresh=False)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error validating session: {e}", exc_info=True)
        raise ServerError()


@router.post("/api/auth/validate")
async def validate_and_refresh(
    request: Request,
    response: Response,
    context: RequestContext = Depends(public_security(rate_limit=False, csrf_protection=False)),
    session: AsyncSession = Depends(get_db_session),
):
    """Validate the session cookie and always extend it."""
    try:
        return await _validate(request, response, session, context, force_refresh=True)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error refreshing session: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/auth/sessions")
async def list_sessions(
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """List the current admin's active sessions."""
    sessions = await session_service.get_user_sessions(session, auth.user["id"])
    current_id = auth.session["id"]
    return api_response(
        "Sesiones activas",
        sessions=[
            {**_public_session(s), "ip_address": s["ip_address"], "current": s["id"] == current_id}
            for s in sessions
        ],
    )
