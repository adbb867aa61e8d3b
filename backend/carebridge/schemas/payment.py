# backend/carebridge/schemas/payment.py
"""
Payment schemas for the CareBridge platform.

Amounts on the wire are integer minor units, matching the gateway.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class OrderDescriptor(StrictModel):
    """What the checkout widget needs to collect a payment."""

    booking_id: str
    order_id: str
    amount: int = Field(..., description="Minor units")
    currency: str
    key_id: str = ""
    reused: bool = Field(False, description="True when an existing open order was returned")


class PaymentVerification(StrictRequestModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class PaymentStatusResponse(StrictModel):
    booking_id: str
    payment_status: Optional[str] = None
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[int] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class RefundDescriptor(StrictModel):
    """
    Result of a refund.

    ``warning`` is set when the gateway refunded the payment but the local
    record could not be finalized; operators were alerted.
    """

    booking_id: str
    refund_id: str
    amount: int = Field(..., description="Minor units")
    currency: str
    payment_status: str
    warning: Optional[str] = None
