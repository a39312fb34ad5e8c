"""Public game routes reached through a game's share link."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.api.routes import limiter, api_response
from cancha.database.db import get_db_session
from cancha.models.schemas import FriendRegistrationRequest
from cancha.services import friend_registration_service
from cancha.services.security_service import get_request_context
from cancha.utils.constants import (
    CANCELLATION_REASON_MAX_LENGTH,
    GAME_VIEW_RATE_LIMIT,
    REGISTRATION_RATE_LIMIT,
    STATUS_RATE_LIMIT,
)
from cancha.utils.errors import AppError, ServerError, raise_for_result

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/games/{share_token}")
@limiter.limit(GAME_VIEW_RATE_LIMIT)
async def get_game(
    request: Request, share_token: str, session: AsyncSession = Depends(get_db_session)
):
    """Public information about a game."""
    try:
        result = raise_for_result(
            await friend_registration_service.get_public_game_info(session, share_token)
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error loading game: {e}", exc_info=True)
        raise ServerError()


@router.post("/api/games/{share_token}/register", status_code=201)
@limiter.limit(REGISTRATION_RATE_LIMIT)
async def register_for_game(
    request: Request,
    share_token: str,
    payload: FriendRegistrationRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Register a friend; full games place the friend on the waiting list."""
    try:
        result = raise_for_result(
            await friend_registration_service.register_friend(
                session,
                share_token,
                payload.model_dump(),
                get_request_context(request),
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error registering for game: {e}", exc_info=True)
        raise ServerError()


@router.delete("/api/games/{share_token}/register")
@limiter.limit(REGISTRATION_RATE_LIMIT)
async def cancel_game_registration(
    request: Request,
    share_token: str,
    phone: str = Query(..., min_length=1, max_length=40),
    reason: Optional[str] = Query(None, max_length=CANCELLATION_REASON_MAX_LENGTH),
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel the registration held by a phone number."""
    try:
        result = raise_for_result(
            await friend_registration_service.cancel_friend_registration(
                session, share_token, phone, reason, get_request_context(request)
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error cancelling registration: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/games/{share_token}/status")
@limiter.limit(STATUS_RATE_LIMIT)
async def get_registration_status(
    request: Request,
    share_token: str,
    phone: str = Query(..., min_length=1, max_length=40),
    session: AsyncSession = Depends(get_db_session),
):
    """Whether a phone number is registered for the game."""
    try:
        result = raise_for_result(
            await friend_registration_service.get_player_registration_status(
                session, share_token, phone
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error checking registration status: {e}", exc_info=True)
        raise ServerError()
