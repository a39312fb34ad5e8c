"""
WhatsApp notification queue and delivery-status webhook processing.

Messages are queued as rows in the notifications table; the webhook reports
what happened to them after they were handed to WhatsApp.
"""

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Optional

import pytz
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import Notification, DeliveryStatus
from cancha.models.schemas import WhatsAppWebhookPayload
from cancha.utils.constants import (
    LOCATION_NAME,
    WHATSAPP_APP_SECRET,
    WHATSAPP_WEBHOOK_VERIFY_TOKEN,
)
from cancha.utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="

# Later states never move back to earlier ones
_STATUS_RANK = {
    DeliveryStatus.PENDING.value: 0,
    DeliveryStatus.SENT.value: 1,
    DeliveryStatus.FAILED.value: 2,
    DeliveryStatus.DELIVERED.value: 3,
    DeliveryStatus.READ.value: 4,
}


async def queue_notification(
    session: AsyncSession,
    player_phone: str,
    message_type: str,
    message_content: str,
    game_id: Optional[int] = None,
    registration_id: Optional[int] = None,
) -> int:
    """
    Queue a WhatsApp message for a player.

    Only flushes; the caller's transaction decides whether it is kept.

    Returns:
        ID of the notification row
    """
    notification = Notification(
        game_id=game_id,
        registration_id=registration_id,
        player_phone=player_phone,
        message_type=message_type,
        message_content=message_content,
        delivery_status=DeliveryStatus.PENDING.value,
    )
    session.add(notification)
    await session.flush()
    return notification.id


def _format_game_date(game_date: datetime) -> str:
    return ensure_utc(game_date).strftime("%d/%m/%Y %H:%M UTC")


def registration_confirmed_message(player_name: str, game_title: str, game_date: datetime, management_url: str) -> str:
    return (
        f"¡Hola {player_name}! Tu inscripción para \"{game_title}\" en {LOCATION_NAME} "
        f"el {_format_game_date(game_date)} está confirmada. "
        f"Gestiona tu inscripción aquí: {management_url}"
    )


def waiting_list_message(player_name: str, game_title: str, position: int, management_url: str) -> str:
    return (
        f"¡Hola {player_name}! \"{game_title}\" está completo. Quedaste en la lista de espera "
        f"en la posición {position}. Te avisaremos si se libera un cupo. "
        f"Gestiona tu inscripción aquí: {management_url}"
    )


def promoted_message(player_name: str, game_title: str, game_date: datetime, management_url: str) -> str:
    return (
        f"¡Buenas noticias {player_name}! Se liberó un cupo y ya estás confirmado para "
        f"\"{game_title}\" el {_format_game_date(game_date)}. "
        f"Gestiona tu inscripción aquí: {management_url}"
    )


def cancellation_message(player_name: str, game_title: str) -> str:
    return f"Hola {player_name}, tu inscripción para \"{game_title}\" fue cancelada."


def game_updated_message(player_name: str, game_title: str, game_date: datetime) -> str:
    return (
        f"Hola {player_name}, el partido \"{game_title}\" cambió. "
        f"Ahora se juega el {_format_game_date(game_date)}."
    )


def game_cancelled_message(player_name: str, game_title: str) -> str:
    return (
        f"Hola {player_name}, el partido \"{game_title}\" fue cancelado. "
        f"Te avisaremos sobre los próximos partidos."
    )


def teams_assigned_message(player_name: str, game_title: str, team_name: str) -> str:
    return f"¡Equipos armados para \"{game_title}\"! {player_name}, jugás en {team_name}."


def verify_webhook(mode: Optional[str], verify_token: Optional[str], challenge: Optional[str]) -> Optional[str]:
    """
    Answer the WhatsApp subscription handshake.

    Returns:
        The challenge to echo back, or None if verification fails
    """
    if mode != "subscribe" or not WHATSAPP_WEBHOOK_VERIFY_TOKEN or not verify_token:
        return None
    if not hmac.compare_digest(verify_token, WHATSAPP_WEBHOOK_VERIFY_TOKEN):
        return None
    return challenge


def verify_signature(body: bytes, signature_header: Optional[str]) -> bool:
    """
    Check the x-hub-signature-256 header.

    With WHATSAPP_APP_SECRET configured the HMAC-SHA256 of the raw body must
    match; otherwise only the header's presence is required.
    """
    if not signature_header:
        return False
    if not WHATSAPP_APP_SECRET:
        return True
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    expected = hmac.new(WHATSAPP_APP_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header[len(SIGNATURE_PREFIX):], expected)


async def process_status_updates(session: AsyncSession, payload: WhatsAppWebhookPayload) -> int:
    """
    Apply delivery status updates from a webhook payload.

    Args:
        session: Database session
        payload: Validated webhook body

    Returns:
        Number of notifications updated
    """
    updated = 0
    for entry in payload.entry:
        for change in entry.changes:
            for status in change.value.statuses or []:
                result = await session.execute(
                    select(Notification).where(Notification.whatsapp_message_id == status.id)
                )
                notification = result.scalar_one_or_none()
                if notification is None:
                    logger.debug(f"No notification found for WhatsApp message {status.id}")
                    continue

                current_rank = _STATUS_RANK.get(notification.delivery_status, 0)
                if _STATUS_RANK[status.status] < current_rank:
                    continue

                reported_at = datetime.fromtimestamp(int(status.timestamp), tz=pytz.UTC)
                notification.delivery_status = status.status
                if status.status == DeliveryStatus.SENT.value:
                    notification.sent_at = reported_at
                elif status.status in (DeliveryStatus.DELIVERED.value, DeliveryStatus.READ.value):
                    notification.delivered_at = notification.delivered_at or reported_at
                elif status.status == DeliveryStatus.FAILED.value and status.errors:
                    error = status.errors[0]
                    notification.error_message = error.message or error.title or f"Error {error.code}"
                updated += 1

    await session.commit()
    if updated:
        logger.info(f"Applied {updated} WhatsApp delivery status update(s)")
    return updated
