"""
Provider factory.
Configures which payment gateway and notification sender the booking lifecycle uses.
"""

from typing import Optional

from booking_engine.core.config import get_settings
from booking_engine.services.interfaces import (
    LogNotificationService,
    NotificationService,
    PaymentGateway,
    SignaturePaymentGateway,
)


def get_payment_gateway_strategy() -> PaymentGateway:
    """
    Get configured payment gateway.

    Selected through the PAYMENT_GATEWAY env var. Only the signature
    gateway ships with this service.
    """
    gateway = get_settings().PAYMENT_GATEWAY

    if gateway == "signature":
        return SignaturePaymentGateway()
    raise ValueError(f"Unknown payment gateway: {gateway}")


# Singleton instances
_gateway: Optional[PaymentGateway] = None
_notifier: Optional[NotificationService] = None


def get_payment_gateway() -> PaymentGateway:
    """Get payment gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = get_payment_gateway_strategy()
    return _gateway


def get_notifier() -> NotificationService:
    """Get notification sender singleton."""
    global _notifier
    if _notifier is None:
        _notifier = LogNotificationService()
    return _notifier
