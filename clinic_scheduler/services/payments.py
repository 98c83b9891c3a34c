import logging
from decimal import Decimal
from typing import Protocol

from clinic_scheduler.models.booking import Booking

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    """Outbound side of the payment collaborator (capture and webhooks live elsewhere)."""

    async def request_refund(self, booking: Booking, amount: Decimal) -> None: ...


class LoggingPaymentGateway:
    async def request_refund(self, booking: Booking, amount: Decimal) -> None:
        logger.info("Refund of %s requested for booking %s", amount, booking.id)
