"""External service integrations for the CareBridge platform."""

from .payment_gateway import PaymentGateway, PaymentGatewayError
from .razorpay_client import (
    FakeRazorpayClient,
    RazorpayClient,
    build_payment_gateway,
    compute_payment_signature,
    verify_payment_signature,
)

__all__ = [
    "FakeRazorpayClient",
    "PaymentGateway",
    "PaymentGatewayError",
    "RazorpayClient",
    "build_payment_gateway",
    "compute_payment_signature",
    "verify_payment_signature",
]
