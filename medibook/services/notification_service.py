"""Notification service for booking push notifications via FCM."""

import asyncio
from enum import Enum
from uuid import UUID

import structlog
from firebase_admin import messaging

from medibook.core.firebase import is_firebase_initialized

logger = structlog.get_logger(__name__)


class NotificationEvent(str, Enum):
    """Booking events that trigger a push notification."""

    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    CONSULTATION_STARTED = "consultation_started"
    APPOINTMENT_COMPLETED = "appointment_completed"
    APPOINTMENT_NO_SHOW = "appointment_no_show"
    PAYMENT_RECEIVED = "payment_received"
    REFUND_PROCESSED = "refund_processed"
    EMERGENCY_BOOKED = "emergency_booked"
    FOLLOW_UP_BOOKED = "follow_up_booked"


# Title/body per event, shown on the device.
NOTIFICATION_TEMPLATES: dict[NotificationEvent, tuple[str, str]] = {
    NotificationEvent.APPOINTMENT_BOOKED: (
        "Appointment booked",
        "Your appointment request has been received.",
    ),
    NotificationEvent.APPOINTMENT_CONFIRMED: (
        "Appointment confirmed",
        "Your appointment has been confirmed.",
    ),
    NotificationEvent.APPOINTMENT_RESCHEDULED: (
        "Appointment rescheduled",
        "Your appointment has been moved to a new time.",
    ),
    NotificationEvent.APPOINTMENT_CANCELLED: (
        "Appointment cancelled",
        "Your appointment has been cancelled.",
    ),
    NotificationEvent.CONSULTATION_STARTED: (
        "Consultation started",
        "Your doctor has started the consultation.",
    ),
    NotificationEvent.APPOINTMENT_COMPLETED: (
        "Consultation completed",
        "Your consultation is complete.",
    ),
    NotificationEvent.APPOINTMENT_NO_SHOW: (
        "Missed appointment",
        "You were marked as not attending your appointment.",
    ),
    NotificationEvent.PAYMENT_RECEIVED: ("Payment received", "We have received your payment."),
    NotificationEvent.REFUND_PROCESSED: ("Refund processed", "Your refund has been processed."),
    NotificationEvent.EMERGENCY_BOOKED: (
        "Emergency appointment booked",
        "A doctor has been assigned to your emergency request.",
    ),
    NotificationEvent.FOLLOW_UP_BOOKED: (
        "Follow-up booked",
        "Your follow-up appointment has been booked.",
    ),
}


class NotificationService:
    """Fire-and-forget push delivery for booking events."""

    def __init__(self, enabled: bool = True):
        """Initialize service; delivery is skipped entirely when disabled."""
        self.enabled = enabled

    @staticmethod
    def _topic_for(recipient_id: UUID) -> str:
        """Devices subscribe to a per-user topic on login."""
        return f"user-{recipient_id}"

    async def notify(
        self,
        event: NotificationEvent,
        appointment_id: UUID,
        recipient_id: UUID,
    ) -> bool:
        """
        Send a booking event to a user's devices.

        Never raises: delivery failures are logged and reported as False.

        Args:
            event: Booking event
            appointment_id: Appointment the event concerns
            recipient_id: User to notify

        Returns:
            True if FCM accepted the message
        """
        if not self.enabled or not is_firebase_initialized():
            logger.debug(
                "notification_skipped",
                notification_event=event.value,
                appointment_id=str(appointment_id),
            )
            return False

        title, body = NOTIFICATION_TEMPLATES[event]
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data={
                "type": event.value,
                "appointment_id": str(appointment_id),
            },
            topic=self._topic_for(recipient_id),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(sound="default"),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
            ),
        )

        try:
            # firebase_admin is synchronous
            message_id = await asyncio.to_thread(messaging.send, message)
        except Exception as e:
            logger.warning(
                "push_notification_failed",
                notification_event=event.value,
                appointment_id=str(appointment_id),
                recipient_id=str(recipient_id),
                error=str(e),
            )
            return False

        logger.info(
            "push_notification_sent",
            notification_event=event.value,
            appointment_id=str(appointment_id),
            message_id=message_id,
        )
        return True
