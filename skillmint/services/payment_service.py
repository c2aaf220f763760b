"""
Payment Gateway - Razorpay Integration

Narrow adapter around the payment processor:
- Create processor-side orders
- Verify checkout signatures (HMAC-SHA256 of "order_id|payment_id")
- Verify webhook signatures (HMAC-SHA256 of the raw body)
- Fetch payments for reconciliation
- Refund processing

The Razorpay SDK is synchronous; every call runs in a worker thread under a
hard timeout so a slow processor never blocks the event loop.
"""

import asyncio
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Dict, Any, List

import razorpay
from pydantic import BaseModel

from skillmint.config import settings
from skillmint.core.exceptions import (
    GatewayTimeout,
    GatewayUnavailable,
    MoneyError,
    SignatureMismatch,
)
from skillmint.db_types import to_money

logger = logging.getLogger(__name__)


class GatewayOrder(BaseModel):
    """Processor-side order."""
    gateway_order_id: str
    amount: Decimal  # In INR
    currency: str
    receipt: str


class GatewayPayment(BaseModel):
    """Payment as reported by the processor."""
    id: str
    status: str
    amount: Decimal  # In INR
    currency: str
    method: Optional[str] = None
    captured: bool = False
    order_id: Optional[str] = None


class GatewayRefund(BaseModel):
    refund_id: str
    payment_id: str
    amount: Decimal  # In INR
    status: str


def to_paise(amount: Decimal) -> int:
    """Razorpay uses the smallest currency unit."""
    return int(to_money(amount) * 100)


def from_paise(amount: int) -> Decimal:
    return to_money(Decimal(amount) / 100)


def sign(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class PaymentGateway(ABC):
    """
    Processor adapter. Signature checks are pure HMAC and shared; network
    operations are implemented per processor.
    """

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str):
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret

    @abstractmethod
    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        ...

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        ...

    @abstractmethod
    async def get_order_payments(self, gateway_order_id: str) -> List[GatewayPayment]:
        ...

    @abstractmethod
    async def refund_payment(
        self,
        payment_id: str,
        amount: Optional[Decimal] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayRefund:
        ...

    def verify_checkout_signature(self, gateway_order_id: str, payment_id: str, signature: str) -> bool:
        """
        Verify the signature returned to the checkout page.

        Raises:
            SignatureMismatch: signature does not match
        """
        expected = sign(self.key_secret, f"{gateway_order_id}|{payment_id}".encode())
        if not hmac.compare_digest(expected.encode(), (signature or "").encode()):
            logger.warning(f"Invalid checkout signature for gateway order {gateway_order_id}")
            raise SignatureMismatch(
                "Invalid payment signature",
                {"gateway_order_id": gateway_order_id, "payment_id": payment_id},
            )
        return True

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """
        Verify a webhook signature over the exact raw request bytes.

        Args:
            body: Raw request body bytes
            signature: X-Razorpay-Signature header value

        Returns:
            True if signature is valid, False otherwise
        """
        if not self.webhook_secret:
            logger.warning("Webhook secret not configured")
            return False
        if not signature:
            return False

        is_valid = hmac.compare_digest(sign(self.webhook_secret, body).encode(), signature.encode())
        if not is_valid:
            logger.warning("Invalid webhook signature")
        return is_valid


class RazorpayGateway(PaymentGateway):
    """
    Razorpay implementation of the gateway adapter.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        base_url: str = "https://api.razorpay.com",
        timeout: float = 10.0,
    ):
        super().__init__(key_id, key_secret, webhook_secret)
        self.client = razorpay.Client(auth=(key_id, key_secret), base_url=base_url)
        self.timeout = timeout

    async def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Razorpay {operation} timed out after {self.timeout}s")
            raise GatewayTimeout(
                f"Payment gateway did not respond to {operation}",
                {"timeout_seconds": self.timeout},
            )
        except MoneyError:
            raise
        except Exception as e:
            logger.error(f"Razorpay {operation} failed: {e}")
            raise GatewayUnavailable(
                f"Payment gateway {operation} failed",
                {"error": str(e)},
            ) from e

    async def create_order(
        self,
        amount: Decimal,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayOrder:
        """
        Create a Razorpay order for payment.

        Args:
            amount: Amount in INR (converted to paise)
            currency: ISO currency code
            receipt: Our order id, echoed back by Razorpay

        Returns:
            GatewayOrder with the Razorpay order id
        """
        order_data = {
            "amount": to_paise(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
        }
        razorpay_order = await self._call("order.create", self.client.order.create, data=order_data)

        logger.info(f"Created Razorpay order {razorpay_order['id']} for receipt {receipt}")

        return GatewayOrder(
            gateway_order_id=razorpay_order["id"],
            amount=to_money(amount),
            currency=currency,
            receipt=receipt,
        )

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        payment = await self._call("payment.fetch", self.client.payment.fetch, payment_id)
        return self._to_payment(payment)

    async def get_order_payments(self, gateway_order_id: str) -> List[GatewayPayment]:
        """
        Get all payments for a Razorpay order.
        """
        payments = await self._call("order.payments", self.client.order.payments, gateway_order_id)
        return [self._to_payment(p) for p in payments.get("items", [])]

    async def refund_payment(
        self,
        payment_id: str,
        amount: Optional[Decimal] = None,
        notes: Optional[Dict[str, str]] = None,
    ) -> GatewayRefund:
        """
        Initiate a refund for a payment. Full refund when amount is None.
        """
        refund_data: Dict[str, Any] = {"notes": notes or {}}
        if amount:
            refund_data["amount"] = to_paise(amount)

        refund = await self._call("payment.refund", self.client.payment.refund, payment_id, refund_data)

        logger.info(f"Refund initiated: {refund['id']} for payment {payment_id}")

        return GatewayRefund(
            refund_id=refund["id"],
            payment_id=payment_id,
            amount=from_paise(refund["amount"]),
            status=refund["status"],
        )

    @staticmethod
    def _to_payment(payment: Dict[str, Any]) -> GatewayPayment:
        return GatewayPayment(
            id=payment["id"],
            status=payment["status"],
            amount=from_paise(payment["amount"]),
            currency=payment["currency"],
            method=payment.get("method"),
            captured=payment.get("captured", False),
            order_id=payment.get("order_id"),
        )


# Webhook event types
class WebhookEvent:
    """Razorpay webhook event types handled by the order pipeline."""
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    REFUND_PROCESSED = "refund.processed"


def get_payment_gateway() -> PaymentGateway:
    """Build the gateway from settings. Called once at startup."""
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        base_url=settings.RAZORPAY_BASE_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
