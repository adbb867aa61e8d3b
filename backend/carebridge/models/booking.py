# backend/carebridge/models/booking.py
"""
Booking model for the CareBridge platform.

Represents a home-care visit requested by a patient and fulfilled by a nurse
or physiotherapist. A booking row is the unit of atomicity: the provider
assignment, the payment record and the lifecycle timestamps all live on the
same row so that every state change can be written as one conditional update.

Architecture: Bookings snapshot pricing at creation. The payment column
group mirrors the gateway order/payment/refund for this booking; it is never
stored anywhere else.
"""

from datetime import datetime, timezone
from enum import Enum
import logging

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking lifecycle statuses, in forward order."""

    REQUESTED = "REQUESTED"  # Created by the patient
    SEARCHING = "SEARCHING"  # Paid or released, waiting for a provider
    ASSIGNED = "ASSIGNED"  # Provider claimed the booking
    CONFIRMED = "CONFIRMED"  # Provider confirmed the visit
    EN_ROUTE = "EN_ROUTE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
ASSIGNABLE_BOOKING_STATUSES = (BookingStatus.SEARCHING, BookingStatus.REQUESTED)


class PaymentStatus(str, Enum):
    """Payment column group status. NULL means no order was ever created."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUND_PENDING = "REFUND_PENDING"
    REFUNDED = "REFUNDED"


# Statuses under which a new order must not be created
SETTLED_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PAID, PaymentStatus.REFUND_PENDING, PaymentStatus.REFUNDED}
)


class Booking(Base):
    """
    Home-care booking between a patient and a provider.

    Design: provider_id is written exactly once, by the assignment claim.
    Payment fields are only written through conditional updates keyed on
    the payment status and order id that the writer observed.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    # Core relationships
    patient_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String(26), ForeignKey("users.id"), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)

    # Service request
    service_type = Column(String(100), nullable=False)
    scheduled_date = Column(Date, nullable=False, index=True)
    scheduled_time = Column(Time, nullable=False)
    service_location = Column(Text, nullable=True)
    special_requirements = Column(Text, nullable=True)
    prescription_url = Column(String(500), nullable=True)
    is_package = Column(Boolean, nullable=False, default=False)

    status = Column(String(20), nullable=False, default=BookingStatus.REQUESTED.value, index=True)

    # Pricing snapshot (major units, immutable after creation)
    base_price = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    payable_amount = Column(Numeric(10, 2), nullable=False)

    # Payment column group (amounts in minor units)
    payment_order_id = Column(String(64), nullable=True, index=True)
    payment_id = Column(String(64), nullable=True)
    payment_amount = Column(Integer, nullable=True)
    payment_currency = Column(String(3), nullable=True)
    payment_status = Column(String(20), nullable=True, index=True)
    payment_refund_id = Column(String(64), nullable=True)
    payment_refund_amount = Column(Integer, nullable=True)
    payment_failure_reason = Column(String(255), nullable=True)
    payment_order_claim = Column(String(26), nullable=True)
    payment_created_at = Column(DateTime(timezone=True), nullable=True)
    payment_paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_refunded_at = Column(DateTime(timezone=True), nullable=True)

    # Lifecycle
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    en_route_at = Column(DateTime(timezone=True), nullable=True)
    service_started_at = Column(DateTime(timezone=True), nullable=True)
    service_ended_at = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    service_report = Column(JSON, nullable=True)

    # Cancellation tracking
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Review
    rating_stars = Column(Integer, nullable=True)
    rating_comment = Column(Text, nullable=True)
    rated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now()
    )
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    patient = relationship("User", foreign_keys=[patient_id])
    provider = relationship("User", foreign_keys=[provider_id])
    status_changes = relationship(
        "BookingStatusChange",
        back_populates="booking",
        order_by="BookingStatusChange.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('REQUESTED', 'SEARCHING', 'ASSIGNED', 'CONFIRMED', "
            "'EN_ROUTE', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_bookings_status",
        ),
        CheckConstraint(
            "payment_status IS NULL OR payment_status IN "
            "('PENDING', 'PAID', 'FAILED', 'REFUND_PENDING', 'REFUNDED')",
            name="ck_bookings_payment_status",
        ),
        CheckConstraint("payable_amount >= 0", name="check_payable_non_negative"),
        CheckConstraint(
            "rating_stars IS NULL OR (rating_stars >= 1 AND rating_stars <= 5)",
            name="check_rating_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: patient={self.patient_id}, "
            f"provider={self.provider_id}, status={self.status}, "
            f"payment={self.payment_status}>"
        )

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.patient_id, self.provider_id)


class BookingStatusChange(Base):
    """Append-only history of successful booking transitions."""

    __tablename__ = "booking_status_changes"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    actor_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )

    booking = relationship("Booking", back_populates="status_changes")

    def __repr__(self) -> str:
        return f"<BookingStatusChange {self.booking_id}: {self.from_status}->{self.to_status}>"


Index("ix_booking_provider_status", Booking.provider_id, Booking.status)
Index("ix_booking_patient_status", Booking.patient_id, Booking.status)
