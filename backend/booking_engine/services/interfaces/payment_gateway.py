"""
Payment gateway interface.
The booking lifecycle depends only on this contract, never on a provider SDK.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class PaymentGatewayError(Exception):
    """The gateway could not be reached or refused the request."""


@dataclass
class PaymentOrder:
    order_ref: str
    amount: float
    currency: str
    key_id: str


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations:
    - SignaturePaymentGateway: HMAC-SHA256 signed checkout callbacks
    """

    @abstractmethod
    async def initiate(self, amount: float, currency: str, receipt: str) -> PaymentOrder:
        """
        Create a provider-side order for the amount to be charged.

        Args:
            amount: Amount in major currency units
            currency: ISO currency code
            receipt: Our reference (booking number)

        Raises:
            PaymentGatewayError if the provider is unavailable
        """
        pass

    @abstractmethod
    async def verify(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        """
        Check that the checkout callback was produced by the provider.

        Returns:
            True if the signature matches, False if it was tampered with
        """
        pass

    @abstractmethod
    async def refund(self, transaction_ref: str, amount: float) -> str:
        """
        Refund part or all of a captured payment.

        Returns:
            Provider refund reference
        """
        pass
