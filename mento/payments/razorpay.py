"""Razorpay order creation and payment signature verification.

Checkout flow:
1. The backend creates an order for the plan price (in paise).
2. The client completes checkout and receives
   ``razorpay_order_id``, ``razorpay_payment_id`` and ``razorpay_signature``.
3. The backend recomputes HMAC-SHA256(key_secret, "order_id|payment_id")
   and compares it with the signature in constant time.
"""

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Annotated, Optional

import httpx
from fastapi import Depends

from ..config import Settings, get_settings
from ..errors import InternalError
from ..logging_config import get_logger

logger = get_logger("mento.payments")


class GatewayError(InternalError):
    """Raised when the payment gateway cannot be reached or refuses a request."""

    default_message = "Payment gateway error"


@dataclass
class GatewayOrder:
    """An order created at the payment gateway."""

    id: str
    amount: int  # paise
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": self.amount,
            "currency": self.currency,
            "receipt": self.receipt,
            "status": self.status,
        }


def compute_payment_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 of ``order_id|payment_id``."""
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(key_secret.encode(), message, hashlib.sha256).hexdigest()


def verify_payment_signature(
    key_secret: str,
    order_id: str,
    payment_id: str,
    signature: str,
) -> bool:
    """Return True iff ``signature`` matches the expected HMAC exactly."""
    expected = compute_payment_signature(key_secret, order_id, payment_id)
    return hmac.compare_digest(expected.encode(), signature.encode())


class RazorpayClient:
    """Minimal Razorpay Orders API client."""

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_payment_signature(self.key_secret, order_id, payment_id, signature)

    async def create_order(
        self,
        amount_minor: int,
        currency: str = "INR",
        receipt: str | None = None,
        notes: dict | None = None,
    ) -> GatewayOrder:
        """Create an order for ``amount_minor`` paise. Raises ``GatewayError``."""
        if amount_minor <= 0:
            raise GatewayError("Order amount must be positive")

        body: dict = {
            "amount": amount_minor,
            "currency": currency,
            "payment_capture": 1,
        }
        if receipt:
            body["receipt"] = receipt[:40]  # Razorpay caps receipts at 40 chars
        if notes:
            body["notes"] = notes

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/orders",
                    json=body,
                    auth=(self.key_id, self.key_secret),
                )
        except httpx.HTTPError as e:
            logger.error(f"Razorpay order request failed: {e}")
            raise GatewayError("Payment gateway unavailable")

        if response.status_code >= 400:
            logger.error(
                f"Razorpay order rejected: status={response.status_code} body={response.text[:200]}"
            )
            raise GatewayError("Failed to create payment order")

        data = response.json()
        order_id = data.get("id")
        if not order_id:
            logger.error(f"Razorpay order response missing id: {data}")
            raise GatewayError("Invalid response from payment gateway")

        return GatewayOrder(
            id=order_id,
            amount=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt"),
            status=data.get("status"),
            raw=data,
        )


def get_payment_gateway(
    settings: Annotated[Settings, Depends(get_settings)],
) -> RazorpayClient:
    """FastAPI dependency for the Razorpay client."""
    if not settings.is_razorpay_enabled:
        raise InternalError("Payment gateway is not configured")
    return RazorpayClient(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        base_url=settings.razorpay_api_url,
        timeout=settings.gateway_timeout_seconds,
    )


PaymentGateway = Annotated[RazorpayClient, Depends(get_payment_gateway)]
