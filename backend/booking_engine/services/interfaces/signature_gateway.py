"""
Signature-verifying payment gateway.

Checkout happens on the provider's page; the provider redirects back with
(order_ref, payment_ref, signature) where

    signature = HMAC_SHA256(key_secret, f"{order_ref}|{payment_ref}")

Only someone holding the key secret can produce a valid signature, so a
matching signature proves the payment was captured by the provider.
"""

import hashlib
import hmac
import uuid

from booking_engine.core.config import get_settings
from booking_engine.core.logging import get_logger
from booking_engine.services.interfaces.payment_gateway import PaymentGateway, PaymentGatewayError, PaymentOrder

logger = get_logger(__name__)


class SignaturePaymentGateway(PaymentGateway):

    def __init__(self, key_id: str = None, key_secret: str = None):
        settings = get_settings()
        self.key_id = key_id or settings.PAYMENT_KEY_ID
        self.key_secret = key_secret or settings.PAYMENT_KEY_SECRET

    def sign(self, order_ref: str, payment_ref: str) -> str:
        if not self.key_secret:
            raise PaymentGatewayError("Payment gateway key secret is not configured")
        message = f"{order_ref}|{payment_ref}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    async def initiate(self, amount: float, currency: str, receipt: str) -> PaymentOrder:
        if amount < 0:
            raise PaymentGatewayError("Order amount cannot be negative")
        order = PaymentOrder(
            order_ref=f"order_{uuid.uuid4().hex[:14]}",
            amount=round(amount, 2),
            currency=currency,
            key_id=self.key_id,
        )
        logger.info("payment_order_created", order_ref=order.order_ref, receipt=receipt, amount=order.amount)
        return order

    async def verify(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        expected = self.sign(order_ref, payment_ref)
        valid = hmac.compare_digest(expected, signature or "")
        if not valid:
            logger.warning("payment_signature_mismatch", order_ref=order_ref, payment_ref=payment_ref)
        return valid

    async def refund(self, transaction_ref: str, amount: float) -> str:
        if not transaction_ref:
            raise PaymentGatewayError("No captured payment to refund")
        refund_ref = f"rfnd_{uuid.uuid4().hex[:14]}"
        logger.info("payment_refunded", transaction_ref=transaction_ref, refund_ref=refund_ref, amount=amount)
        return refund_ref
