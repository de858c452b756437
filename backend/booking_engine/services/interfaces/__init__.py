"""
Service interfaces for dependency inversion.
Allows swapping payment and notification providers without changing business logic.
"""

from .payment_gateway import PaymentGateway, PaymentGatewayError, PaymentOrder
from .signature_gateway import SignaturePaymentGateway
from .notification import DeliveryResult, NotificationService, LogNotificationService

__all__ = [
    'PaymentGateway', 'PaymentGatewayError', 'PaymentOrder', 'SignaturePaymentGateway',
    'DeliveryResult', 'NotificationService', 'LogNotificationService',
]
