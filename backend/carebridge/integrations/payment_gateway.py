"""Payment gateway contract shared by the Razorpay client and its fake."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol


class PaymentGatewayError(RuntimeError):
    """Raised when the payment gateway rejects a call or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_code: str | None = None,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.error_body = error_body


class PaymentGateway(Protocol):
    """
    Operations the payment coordinators need from a gateway.

    All amounts are integer minor units (paise for INR).
    """

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]: ...

    def fetch_order(self, order_id: str) -> Dict[str, Any]: ...

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]: ...

    def refund_payment(
        self,
        payment_id: str,
        *,
        amount: int,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]: ...
