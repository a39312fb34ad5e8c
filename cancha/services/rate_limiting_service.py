"""
Persisted rate limiting backed by the login_attempts table.

Sliding window per (ip_address, action_type). The limiter is deliberately
fail-open: storage errors are logged and the request is allowed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database import db
from cancha.database.models import LoginAttempt, RateLimitAction
from cancha.services.security_service import RequestContext
from cancha.utils.constants import (
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_WINDOW_MINUTES,
    RATE_LIMIT_BASE_DELAY_SECONDS,
    RATE_LIMIT_MAX_MULTIPLIER,
    GENERAL_RATE_LIMIT_MAX_REQUESTS,
    GENERAL_RATE_LIMIT_WINDOW_MINUTES,
    LOGIN_ATTEMPT_RETENTION_HOURS,
)
from cancha.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    max_attempts: int
    window_minutes: int
    progressive: bool
    # Only failed attempts count toward the limit
    failures_only: bool
    # The request guard records every allowed request
    record_requests: bool


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: datetime
    retry_after: Optional[int] = None


RATE_LIMIT_CONFIGS = {
    RateLimitAction.LOGIN.value: RateLimitConfig(
        max_attempts=RATE_LIMIT_MAX_ATTEMPTS,
        window_minutes=RATE_LIMIT_WINDOW_MINUTES,
        progressive=True,
        failures_only=True,
        record_requests=False,
    ),
    RateLimitAction.GENERAL.value: RateLimitConfig(
        max_attempts=GENERAL_RATE_LIMIT_MAX_REQUESTS,
        window_minutes=GENERAL_RATE_LIMIT_WINDOW_MINUTES,
        progressive=False,
        failures_only=False,
        record_requests=True,
    ),
}


def get_rate_limit_config(action_type: str) -> RateLimitConfig:
    """Config for an action type; unknown types use the general limits."""
    return RATE_LIMIT_CONFIGS.get(action_type, RATE_LIMIT_CONFIGS[RateLimitAction.GENERAL.value])


def calculate_retry_after(config: RateLimitConfig, attempt_count: int) -> int:
    """
    Seconds a blocked caller should wait.

    Progressive configs double a base delay for every attempt over the limit,
    with the step count capped at RATE_LIMIT_MAX_MULTIPLIER. The result is never
    shorter than the window itself and never decreases as attempts pile up.

    Args:
        config: Limits for the action type
        attempt_count: Attempts currently inside the window

    Returns:
        Retry delay in seconds
    """
    window_seconds = config.window_minutes * 60
    if not config.progressive:
        return window_seconds

    multiplier = min(max(attempt_count - config.max_attempts + 1, 1), RATE_LIMIT_MAX_MULTIPLIER)
    progressive_delay = RATE_LIMIT_BASE_DELAY_SECONDS * (2 ** (multiplier - 1))
    return max(progressive_delay, window_seconds)


async def check_rate_limit(
    session: AsyncSession, ip_address: str, action_type: str = RateLimitAction.LOGIN.value
) -> RateLimitResult:
    """
    Check whether a client may perform an action.

    Args:
        session: Database session
        ip_address: Client IP (see security_service.get_client_ip)
        action_type: Rate limit bucket, e.g. "login" or "general"

    Returns:
        RateLimitResult; allowed=True if the attempt count could not be read
    """
    config = get_rate_limit_config(action_type)
    now = utcnow()
    window_start = now - timedelta(minutes=config.window_minutes)

    try:
        query = select(func.count()).select_from(LoginAttempt).where(
            LoginAttempt.ip_address == ip_address,
            LoginAttempt.action_type == action_type,
            LoginAttempt.attempted_at >= window_start,
        )
        if config.failures_only:
            query = query.where(LoginAttempt.success == False)  # noqa: E712
        result = await session.execute(query)
        attempt_count = result.scalar() or 0
    except Exception as e:
        logger.error(f"Rate limit check failed for {ip_address} ({action_type}), allowing: {e}")
        return RateLimitResult(
            allowed=True,
            remaining=config.max_attempts,
            reset_time=now + timedelta(minutes=config.window_minutes),
        )

    if attempt_count >= config.max_attempts:
        retry_after = calculate_retry_after(config, attempt_count)
        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=now + timedelta(seconds=retry_after),
            retry_after=retry_after,
        )

    return RateLimitResult(
        allowed=True,
        remaining=config.max_attempts - attempt_count,
        reset_time=now + timedelta(minutes=config.window_minutes),
    )


async def record_attempt(
    context: RequestContext,
    identifier: Optional[str],
    success: bool,
    action_type: str = RateLimitAction.LOGIN.value,
) -> None:
    """
    Append an attempt to the log in its own transaction.

    Storage errors are logged and swallowed.
    """
    try:
        async with db.AsyncSessionLocal() as session:
            session.add(
                LoginAttempt(
                    ip_address=context.ip_address,
                    action_type=action_type,
                    identifier=identifier,
                    success=success,
                    user_agent=context.user_agent,
                    attempted_at=utcnow(),
                )
            )
            await session.commit()
    except Exception as e:
        logger.error(f"Failed to record {action_type} attempt from {context.ip_address}: {e}")


async def cleanup_old_attempts() -> int:
    """
    Delete attempts older than the retention window.

    Returns:
        Number of rows removed, 0 on error
    """
    cutoff = utcnow() - timedelta(hours=LOGIN_ATTEMPT_RETENTION_HOURS)
    try:
        async with db.AsyncSessionLocal() as session:
            result = await session.execute(
                delete(LoginAttempt).where(LoginAttempt.attempted_at < cutoff)
            )
            await session.commit()
            removed = result.rowcount or 0
    except Exception as e:
        logger.error(f"Failed to clean up old login attempts: {e}")
        return 0

    if removed:
        logger.info(f"Removed {removed} login attempt(s) older than {LOGIN_ATTEMPT_RETENTION_HOURS}h")
    return removed
