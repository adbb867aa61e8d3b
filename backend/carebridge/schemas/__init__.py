"""Pydantic request and response models."""

from .booking import BookingCreate, ReviewCreate, ServiceReport, Vitals
from .duty import ApplicationCreate, ApplicationStats, DutyCreate
from .payment import OrderDescriptor, PaymentStatusResponse, PaymentVerification, RefundDescriptor

__all__ = [
    "ApplicationCreate",
    "ApplicationStats",
    "BookingCreate",
    "DutyCreate",
    "OrderDescriptor",
    "PaymentStatusResponse",
    "PaymentVerification",
    "RefundDescriptor",
    "ReviewCreate",
    "ServiceReport",
    "Vitals",
]
