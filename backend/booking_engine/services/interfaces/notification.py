"""
Ticket notification interface and the bundled log-backed sender.
Sending is fire-and-forget: callers log failures and carry on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from booking_engine.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """Which channels accepted the ticket."""

    email: bool = False
    sms: bool = False

    @property
    def delivered(self) -> bool:
        return self.email or self.sms


class NotificationService(ABC):

    @abstractmethod
    async def send_ticket(self, booking, email: bool = True, sms: bool = True) -> DeliveryResult:
        """
        Deliver the ticket for a confirmed booking on the requested channels.

        Returns:
            DeliveryResult flagging each channel that accepted the message
        """
        pass


class LogNotificationService(NotificationService):
    """Writes the ticket delivery to the structured log instead of a mail/SMS provider."""

    async def send_ticket(self, booking, email: bool = True, sms: bool = True) -> DeliveryResult:
        logger.info(
            "ticket_sent",
            booking_number=booking.booking_number,
            user_id=booking.user_id,
            qr_code_url=booking.qr_code_url,
            email=email,
            sms=sms,
        )
        return DeliveryResult(email=email, sms=sms)
