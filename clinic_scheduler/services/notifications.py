import logging
from enum import Enum
from typing import Protocol

from clinic_scheduler.models.booking import Booking

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    CREATED = "created"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    REMINDER_DUE = "reminder_due"


class NotificationSink(Protocol):
    async def notify(self, kind: NotificationKind, booking: Booking) -> None: ...


class LoggingNotificationSink:
    """Default sink when no delivery channel is configured."""

    async def notify(self, kind: NotificationKind, booking: Booking) -> None:
        logger.info(
            "Notification %s for booking %s (%s at %s)",
            kind.value,
            booking.id,
            booking.email,
            booking.appointment_datetime,
        )


class FanOutNotificationSink:
    """Deliver to several sinks; one failing sink does not stop the others."""

    def __init__(self, *sinks: NotificationSink) -> None:
        self.sinks = sinks

    async def notify(self, kind: NotificationKind, booking: Booking) -> None:
        for sink in self.sinks:
            try:
                await sink.notify(kind, booking)
            except Exception as e:
                logger.exception("Notification sink %s failed for booking %s: %s", type(sink).__name__, booking.id, e)
