"""
Tests for the WhatsApp notification queue and webhook processing.
"""

import hashlib
import hmac

import pydantic
import pytest
from sqlalchemy import select

from cancha.database.models import DeliveryStatus, Notification, NotificationType
from cancha.models.schemas import WhatsAppWebhookPayload
from cancha.services import notification_service
from cancha.utils.datetime_utils import utcnow


def status_payload(message_id: str, status: str, timestamp: str = "1760000000", errors=None) -> dict:
    status_entry = {
        "id": message_id,
        "status": status,
        "timestamp": timestamp,
        "recipient_id": "5491155500001",
    }
    if errors:
        status_entry["errors"] = errors
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "102290129340398",
                "changes": [
                    {
                        "field": "messages",
                        "value": {"messaging_product": "whatsapp", "statuses": [status_entry]},
                    }
                ],
            }
        ],
    }


async def queued(session, message_id="wamid.TEST1") -> Notification:
    notification_id = await notification_service.queue_notification(
        session,
        player_phone="+5491155500001",
        message_type=NotificationType.REGISTRATION_CONFIRMED.value,
        message_content="Hola",
    )
    notification = await session.get(Notification, notification_id)
    notification.whatsapp_message_id = message_id
    await session.commit()
    return notification


class TestVerifyWebhook:
    def test_returns_challenge_for_matching_token(self):
        assert notification_service.verify_webhook("subscribe", "test-verify-token", "1158201444") == "1158201444"

    def test_wrong_token(self):
        assert notification_service.verify_webhook("subscribe", "wrong", "1158201444") is None

    def test_wrong_mode(self):
        assert notification_service.verify_webhook("unsubscribe", "test-verify-token", "1") is None


class TestVerifySignature:
    def test_missing_header(self):
        assert notification_service.verify_signature(b"{}", None) is False

    def test_presence_only_without_app_secret(self, monkeypatch):
        monkeypatch.setattr(notification_service, "WHATSAPP_APP_SECRET", "")
        assert notification_service.verify_signature(b"{}", "sha256=anything") is True

    def test_hmac_checked_with_app_secret(self, monkeypatch):
        monkeypatch.setattr(notification_service, "WHATSAPP_APP_SECRET", "app-secret")
        body = b'{"object":"whatsapp_business_account"}'
        good = "sha256=" + hmac.new(b"app-secret", body, hashlib.sha256).hexdigest()

        assert notification_service.verify_signature(body, good) is True
        assert notification_service.verify_signature(body + b" ", good) is False
        assert notification_service.verify_signature(body, "sha256=" + "0" * 64) is False
        assert notification_service.verify_signature(body, good[len("sha256="):]) is False


def test_messages_mention_management_url():
    message = notification_service.registration_confirmed_message(
        "Juan", "Partido del jueves", utcnow(), "http://testserver/mi-registro/abc"
    )
    assert "Juan" in message
    assert "http://testserver/mi-registro/abc" in message


@pytest.mark.asyncio
async def test_queue_notification_is_pending(db_session):
    notification = await queued(db_session)
    assert notification.delivery_status == DeliveryStatus.PENDING.value


@pytest.mark.asyncio
async def test_status_updates_applied(db_session):
    await queued(db_session)

    updated = await notification_service.process_status_updates(
        db_session, WhatsAppWebhookPayload.model_validate(status_payload("wamid.TEST1", "delivered"))
    )

    assert updated == 1
    notification = (await db_session.execute(
        select(Notification).execution_options(populate_existing=True)
    )).scalar_one()
    assert notification.delivery_status == DeliveryStatus.DELIVERED.value
    assert notification.delivered_at is not None


@pytest.mark.asyncio
async def test_status_never_regresses(db_session):
    await queued(db_session)
    for status in ("read", "delivered", "sent"):
        await notification_service.process_status_updates(
            db_session, WhatsAppWebhookPayload.model_validate(status_payload("wamid.TEST1", status))
        )

    notification = (await db_session.execute(select(Notification))).scalar_one()
    assert notification.delivery_status == DeliveryStatus.READ.value


@pytest.mark.asyncio
async def test_failed_status_records_error(db_session):
    await queued(db_session)
    payload = status_payload(
        "wamid.TEST1", "failed", errors=[{"code": 131026, "title": "Message undeliverable"}]
    )

    await notification_service.process_status_updates(
        db_session, WhatsAppWebhookPayload.model_validate(payload)
    )

    notification = (await db_session.execute(select(Notification))).scalar_one()
    assert notification.delivery_status == DeliveryStatus.FAILED.value
    assert notification.error_message == "Message undeliverable"


@pytest.mark.asyncio
async def test_unknown_message_ignored(db_session):
    await queued(db_session)

    updated = await notification_service.process_status_updates(
        db_session, WhatsAppWebhookPayload.model_validate(status_payload("wamid.OTHER", "read"))
    )
    assert updated == 0


def test_payload_rejects_non_numeric_timestamp():
    with pytest.raises(pydantic.ValidationError):
        WhatsAppWebhookPayload.model_validate(status_payload("wamid.TEST1", "sent", timestamp="yesterday"))
