"""
Admin session management.

A session is a row in admin_sessions plus a signed JWT delivered in an
HttpOnly cookie. The JWT carries the session id and a random nonce stored on
the row; both must match for the session to validate, so deleting the row
revokes the cookie immediately and a reused row id never accepts an old token.
"""

import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import jwt
from fastapi import Request, Response
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database import db
from cancha.database.models import AdminSession, AdminUser
from cancha.services.security_service import RequestContext
from cancha.utils.constants import (
    IS_PRODUCTION,
    JWT_SECRET,
    JWT_ALGORITHM,
    JWT_ISSUER,
    JWT_AUDIENCE,
    SESSION_DURATION_HOURS,
    SESSION_REMEMBER_DURATION_HOURS,
    SESSION_REFRESH_THRESHOLD_HOURS,
    SESSION_REMEMBER_REFRESH_THRESHOLD_HOURS,
    SESSION_COOKIE_NAME,
)
from cancha.utils.datetime_utils import utcnow, ensure_utc, to_iso

logger = logging.getLogger(__name__)


def get_session_duration(remember_me: bool) -> timedelta:
    hours = SESSION_REMEMBER_DURATION_HOURS if remember_me else SESSION_DURATION_HOURS
    return timedelta(hours=hours)


def generate_session_nonce() -> str:
    return secrets.token_hex(32)


def _session_to_dict(row: AdminSession) -> Dict:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "expires_at": to_iso(row.expires_at),
        "remember_me": row.remember_me,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "created_at": to_iso(row.created_at),
    }


def _user_to_session_user(user: AdminUser) -> Dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "is_active": user.is_active,
    }


def encode_session_token(payload: Dict, expires_at: datetime) -> str:
    """Sign a session JWT expiring together with the server-side record."""
    claims = {
        **payload,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": int(utcnow().timestamp()),
        "exp": int(ensure_utc(expires_at).timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_session_token(token: str) -> Optional[Dict]:
    """
    Verify signature, issuer, audience and expiry of a session JWT.

    Returns:
        Decoded claims, or None if the token is not acceptable
    """
    try:
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Session token expired")
        return None
    except jwt.PyJWTError as e:
        logger.debug(f"Invalid session token: {e}")
        return None


_REGISTERED_CLAIMS = ("iss", "aud", "iat", "exp")


def reissue_session_token(payload: Dict, expires_at: datetime) -> str:
    """Sign a new token with the claims of an existing one and a later expiry."""
    claims = {key: value for key, value in payload.items() if key not in _REGISTERED_CLAIMS}
    return encode_session_token(claims, expires_at)


async def create_session(
    session: AsyncSession, user: Dict, remember_me: bool, context: RequestContext
) -> Tuple[str, Dict]:
    """
    Create a server-side session for a user and sign its token.

    Args:
        session: Database session
        user: Admin user dictionary (id, username, name, role)
        remember_me: Use the extended lifetime
        context: Request metadata recorded for auditing

    Returns:
        Tuple of (signed token for the cookie, session dictionary)
    """
    nonce = generate_session_nonce()
    now = utcnow()
    expires_at = now + get_session_duration(remember_me)

    row = AdminSession(
        user_id=user["id"],
        session_nonce=nonce,
        expires_at=expires_at,
        remember_me=remember_me,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    await session.flush()
    session_data = _session_to_dict(row)
    await session.commit()

    token = encode_session_token(
        {
            "sub": str(user["id"]),
            "username": user["username"],
            "name": user["name"],
            "role": user["role"],
            "session_id": row.id,
            "nonce": nonce,
            "remember_me": remember_me,
        },
        expires_at,
    )
    logger.info(f"Created session {row.id} for admin user {user['id']}")
    return token, session_data


async def validate_session(session: AsyncSession, token: Optional[str]) -> Optional[Dict]:
    """
    Resolve a session token to its user and session.

    Returns None (never raises) for a missing, forged or expired token, a
    revoked or expired session row, or an inactive user. Database errors
    propagate to the caller.

    Args:
        session: Database session
        token: Raw cookie value

    Returns:
        Dict with "user", "session" and "payload", or None
    """
    if not token:
        return None

    payload = decode_session_token(token)
    if payload is None:
        return None

    session_id = payload.get("session_id")
    nonce = payload.get("nonce")
    if not isinstance(session_id, int) or not isinstance(nonce, str):
        return None

    result = await session.execute(
        select(AdminSession)
        .where(AdminSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return None

    if not hmac.compare_digest(row.session_nonce, nonce):
        logger.warning(f"Session nonce mismatch for session {session_id}")
        return None

    if ensure_utc(row.expires_at) <= utcnow():
        await destroy_session(session, session_id)
        return None

    if str(row.user_id) != str(payload.get("sub")):
        return None

    user_result = await session.execute(
        select(AdminUser)
        .where(AdminUser.id == row.user_id)
        .execution_options(populate_existing=True)
    )
    user = user_result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None

    return {
        "user": _user_to_session_user(user),
        "session": _session_to_dict(row),
        "payload": payload,
    }


async def refresh_session(
    session: AsyncSession, session_id: int, remember_me: bool
) -> Optional[datetime]:
    """
    Extend a session using the same duration rule as creation.

    Returns:
        New expiry, or None if the session no longer exists
    """
    now = utcnow()
    expires_at = now + get_session_duration(remember_me)
    result = await session.execute(
        update(AdminSession)
        .where(AdminSession.id == session_id)
        .values(expires_at=expires_at, updated_at=now)
    )
    await session.commit()
    if result.rowcount == 0:
        return None
    return expires_at


def should_refresh(session_data: Dict, now: Optional[datetime] = None) -> bool:
    """True when a live session is inside its refresh-on-read threshold."""
    now = now or utcnow()
    expires_at = ensure_utc(datetime.fromisoformat(session_data["expires_at"]))
    remaining_hours = (expires_at - now).total_seconds() / 3600
    threshold = (
        SESSION_REMEMBER_REFRESH_THRESHOLD_HOURS
        if session_data.get("remember_me")
        else SESSION_REFRESH_THRESHOLD_HOURS
    )
    return 0 < remaining_hours < threshold


async def destroy_session(session: AsyncSession, session_id: int) -> bool:
    result = await session.execute(delete(AdminSession).where(AdminSession.id == session_id))
    await session.commit()
    return result.rowcount > 0


async def destroy_all_user_sessions(session: AsyncSession, user_id: int) -> int:
    """Delete every session of a user. Returns the number removed."""
    result = await session.execute(delete(AdminSession).where(AdminSession.user_id == user_id))
    await session.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info(f"Destroyed {removed} session(s) for admin user {user_id}")
    return removed


async def get_user_sessions(session: AsyncSession, user_id: int) -> List[Dict]:
    """List a user's unexpired sessions, newest first."""
    result = await session.execute(
        select(AdminSession)
        .where(AdminSession.user_id == user_id, AdminSession.expires_at > utcnow())
        .order_by(AdminSession.created_at.desc())
    )
    return [_session_to_dict(row) for row in result.scalars().all()]


async def cleanup_expired_sessions() -> int:
    """
    Delete expired sessions using a dedicated database session.

    Returns:
        Number of sessions removed
    """
    async with db.AsyncSessionLocal() as session:
        result = await session.execute(
            delete(AdminSession).where(AdminSession.expires_at <= utcnow())
        )
        await session.commit()
        removed = result.rowcount or 0
    if removed:
        logger.info(f"Removed {removed} expired admin session(s)")
    return removed


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------


def get_session_token(request: Request) -> Optional[str]:
    return request.cookies.get(SESSION_COOKIE_NAME)


def set_session_cookie(response: Response, token: str, remember_me: bool) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=int(get_session_duration(remember_me).total_seconds()),
        path="/",
        secure=IS_PRODUCTION,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        path="/",
        secure=IS_PRODUCTION,
        httponly=True,
        samesite="lax",
    )
