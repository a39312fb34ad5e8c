"""WhatsApp Business webhook routes."""

import logging
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.api.routes import limiter, api_response
from cancha.database.db import get_db_session
from cancha.models.schemas import WhatsAppWebhookPayload
from cancha.services import notification_service
from cancha.utils.constants import WEBHOOK_RATE_LIMIT
from cancha.utils.errors import (
    AuthenticationError,
    AuthorizationError,
    ErrorCode,
    ValidationError,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/notifications/whatsapp/webhook")
async def verify_whatsapp_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Subscription handshake: echo hub.challenge when the verify token matches."""
    if not mode or not verify_token or not challenge:
        raise ValidationError("Faltan parámetros de verificación")

    answer = notification_service.verify_webhook(mode, verify_token, challenge)
    if answer is None:
        logger.warning("WhatsApp webhook verification failed")
        raise AuthorizationError(
            "Verificación del webhook fallida", code=ErrorCode.WEBHOOK_VERIFICATION_FAILED
        )
    logger.info("WhatsApp webhook verified")
    return PlainTextResponse(answer)


@router.post("/api/notifications/whatsapp/webhook")
@limiter.limit(WEBHOOK_RATE_LIMIT)
async def receive_whatsapp_webhook(request: Request, session: AsyncSession = Depends(get_db_session)):
    """
    Delivery status callbacks from WhatsApp.

    Answers 200 once the payload is authenticated and well formed, even if
    applying it fails, so WhatsApp does not keep retrying the delivery.
    """
    body = await request.body()
    if not notification_service.verify_signature(body, request.headers.get("x-hub-signature-256")):
        logger.warning("Rejected WhatsApp webhook with missing or invalid signature")
        raise AuthenticationError("Firma inválida", code=ErrorCode.INVALID_SIGNATURE)

    try:
        payload = WhatsAppWebhookPayload.model_validate_json(body)
    except pydantic.ValidationError:
        raise ValidationError("Payload de webhook inválido")

    try:
        updated = await notification_service.process_status_updates(session, payload)
    except Exception as e:
        logger.error(f"Error processing WhatsApp webhook: {e}", exc_info=True)
        return api_response("Webhook recibido", updated=0)
    return api_response("Webhook procesado", updated=updated)
