"""Self-service registration routes (the "mi registro" link sent to each player)."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.api.routes import limiter, api_response
from cancha.database.db import get_db_session
from cancha.models.schemas import CancelRegistrationRequest
from cancha.services import friend_registration_service
from cancha.services.security_service import get_request_context
from cancha.utils.constants import MI_REGISTRO_CANCEL_RATE_LIMIT, MI_REGISTRO_VIEW_RATE_LIMIT
from cancha.utils.errors import AppError, ServerError, raise_for_result

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/mi-registro/{token}")
@limiter.limit(MI_REGISTRO_VIEW_RATE_LIMIT)
async def get_my_registration(
    request: Request, token: str, session: AsyncSession = Depends(get_db_session)
):
    """Registration details for the holder of a registration token."""
    try:
        result = raise_for_result(
            await friend_registration_service.get_registration_by_token(session, token)
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error loading registration: {e}", exc_info=True)
        raise ServerError()


@router.post("/api/mi-registro/{token}/cancel")
@limiter.limit(MI_REGISTRO_CANCEL_RATE_LIMIT)
async def cancel_my_registration(
    request: Request,
    token: str,
    payload: CancelRegistrationRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Cancel the registration owning the token."""
    try:
        result = raise_for_result(
            await friend_registration_service.cancel_registration_by_token(
                session, token, payload.reason, get_request_context(request)
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error cancelling registration by token: {e}", exc_info=True)
        raise ServerError()
