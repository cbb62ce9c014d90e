"""Payment gateway integration for Mento subscriptions."""

from .razorpay import (
    GatewayError,
    GatewayOrder,
    PaymentGateway,
    RazorpayClient,
    compute_payment_signature,
    get_payment_gateway,
    verify_payment_signature,
)

__all__ = [
    "RazorpayClient",
    "GatewayOrder",
    "GatewayError",
    "PaymentGateway",
    "get_payment_gateway",
    "compute_payment_signature",
    "verify_payment_signature",
]
