"""Tests for booking push notifications."""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from medibook.services.notification_service import (
    NOTIFICATION_TEMPLATES,
    NotificationEvent,
    NotificationService,
)


def test_every_event_has_a_template():
    assert set(NOTIFICATION_TEMPLATES) == set(NotificationEvent)


@pytest.mark.asyncio
async def test_notify_sends_to_user_topic():
    """Test the message goes to the recipient's topic with the event payload."""
    appointment_id, recipient_id = uuid4(), uuid4()
    send = MagicMock(return_value="projects/medibook/messages/1")

    with (
        patch("medibook.services.notification_service.is_firebase_initialized", return_value=True),
        patch("medibook.services.notification_service.messaging.send", send),
    ):
        sent = await NotificationService().notify(
            NotificationEvent.APPOINTMENT_CONFIRMED, appointment_id, recipient_id
        )

    assert sent is True
    message = send.call_args.args[0]
    assert message.topic == f"user-{recipient_id}"
    assert message.data == {
        "type": "appointment_confirmed",
        "appointment_id": str(appointment_id),
    }
    assert message.notification.title == "Appointment confirmed"


@pytest.mark.asyncio
async def test_notify_swallows_delivery_errors():
    send = MagicMock(side_effect=RuntimeError("FCM unavailable"))

    with (
        patch("medibook.services.notification_service.is_firebase_initialized", return_value=True),
        patch("medibook.services.notification_service.messaging.send", send),
    ):
        sent = await NotificationService().notify(
            NotificationEvent.APPOINTMENT_BOOKED, uuid4(), uuid4()
        )

    assert sent is False
    send.assert_called_once()


@pytest.mark.asyncio
async def test_notify_skipped_when_disabled():
    send = MagicMock()

    with (
        patch("medibook.services.notification_service.is_firebase_initialized", return_value=True),
        patch("medibook.services.notification_service.messaging.send", send),
    ):
        sent = await NotificationService(enabled=False).notify(
            NotificationEvent.APPOINTMENT_BOOKED, uuid4(), uuid4()
        )

    assert sent is False
    send.assert_not_called()


@pytest.mark.asyncio
async def test_notify_skipped_without_firebase():
    send = MagicMock()

    with (
        patch("medibook.services.notification_service.is_firebase_initialized", return_value=False),
        patch("medibook.services.notification_service.messaging.send", send),
    ):
        sent = await NotificationService().notify(
            NotificationEvent.APPOINTMENT_BOOKED, uuid4(), uuid4()
        )

    assert sent is False
    send.assert_not_called()
