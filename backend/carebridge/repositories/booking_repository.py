# backend/carebridge/repositories/booking_repository.py
"""
Booking Repository for the CareBridge Platform

Implements all data access operations for bookings. Every write that can
race with another request is expressed as a conditional update whose WHERE
clause carries the state the caller observed; the returned match count is
the only signal that the caller won.

This repository handles:
- Booking reads and participant listings
- Provider claim and compensating release
- Status transitions and their history rows
- The payment order, verification and refund column group
- Patient reviews
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import case, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.booking import (
    SETTLED_PAYMENT_STATUSES,
    Booking,
    BookingStatus,
    BookingStatusChange,
    PaymentStatus,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_UNSETTLED_PAYMENT = or_(
    Booking.payment_status.is_(None),
    Booking.payment_status.notin_([s.value for s in SETTLED_PAYMENT_STATUSES]),
)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    # Reads

    def list_for_patient(
        self,
        patient_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Booking]:
        query = self._build_query().filter(Booking.patient_id == patient_id)
        if status:
            query = query.filter(Booking.status == status)
        query = query.order_by(Booking.created_at.desc(), Booking.id.desc())
        return cast(List[Booking], self._execute_query(query.offset(skip).limit(limit)))

    def list_for_provider(
        self,
        provider_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Booking]:
        query = self._build_query().filter(Booking.provider_id == provider_id)
        if status:
            query = query.filter(Booking.status == status)
        query = query.order_by(Booking.scheduled_date.asc(), Booking.id.asc())
        return cast(List[Booking], self._execute_query(query.offset(skip).limit(limit)))

    def count_for_patient(self, patient_id: str, status: Optional[str] = None) -> int:
        query = self.db.query(Booking.id).filter(Booking.patient_id == patient_id)
        if status:
            query = query.filter(Booking.status == status)
        return int(query.count())

    def count_for_provider(self, provider_id: str, status: Optional[str] = None) -> int:
        query = self.db.query(Booking.id).filter(Booking.provider_id == provider_id)
        if status:
            query = query.filter(Booking.status == status)
        return int(query.count())

    def list_all(
        self,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> List[Booking]:
        """Admin listing; filters are exact matches on booking columns."""
        query = self._apply_filters(self._build_query(), filters)
        query = query.order_by(
            Booking.scheduled_date.desc(), Booking.scheduled_time.desc(), Booking.id.desc()
        )
        return cast(List[Booking], self._execute_query(query.offset(skip).limit(limit)))

    def count_all(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return int(self._apply_filters(self.db.query(Booking.id), filters).count())

    @staticmethod
    def _apply_filters(query, filters: Optional[Dict[str, Any]]):
        for column, value in (filters or {}).items():
            if value is not None:
                query = query.filter(getattr(Booking, column) == value)
        return query

    # Provider assignment

    def claim_provider(
        self,
        booking_id: str,
        provider_id: str,
        from_status: BookingStatus,
        now: datetime,
    ) -> int:
        """Set the provider only while the booking is unassigned and in from_status."""
        return self.conditional_update(
            booking_id,
            [Booking.status == from_status.value, Booking.provider_id.is_(None)],
            {
                "provider_id": provider_id,
                "status": BookingStatus.ASSIGNED.value,
                "assigned_at": now,
            },
        )

    def release_provider_claim(
        self, booking_id: str, provider_id: str, restore_status: BookingStatus
    ) -> int:
        """Undo a claim, but only if the booking is still assigned to this provider."""
        return self.conditional_update(
            booking_id,
            [
                Booking.status == BookingStatus.ASSIGNED.value,
                Booking.provider_id == provider_id,
            ],
            {"provider_id": None, "status": restore_status.value, "assigned_at": None},
        )

    # Status transitions

    def update_status(
        self,
        booking_id: str,
        from_status: BookingStatus,
        to_status: BookingStatus,
        extra_values: Optional[Dict[str, Any]] = None,
    ) -> int:
        values: Dict[str, Any] = {"status": to_status.value}
        values.update(extra_values or {})
        return self.conditional_update(booking_id, [Booking.status == from_status.value], values)

    def add_status_change(
        self,
        booking_id: str,
        from_status: BookingStatus,
        to_status: BookingStatus,
        actor_id: Optional[str],
        note: Optional[str] = None,
    ) -> BookingStatusChange:
        try:
            change = BookingStatusChange(
                booking_id=booking_id,
                from_status=from_status.value,
                to_status=to_status.value,
                actor_id=actor_id,
                note=note,
            )
            self.db.add(change)
            self.db.flush()
            return change
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording status change for booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to record status change: {str(e)}")

    def get_status_history(self, booking_id: str) -> List[BookingStatusChange]:
        query = (
            self.db.query(BookingStatusChange)
            .filter(BookingStatusChange.booking_id == booking_id)
            .order_by(BookingStatusChange.created_at.asc(), BookingStatusChange.id.asc())
        )
        return cast(List[BookingStatusChange], self._execute_query(query))

    # Payment orders

    def claim_payment_order(
        self, booking_id: str, claim_token: str, observed_order_id: Optional[str]
    ) -> int:
        """
        Take the order-creation claim.

        Matches only when nobody holds a claim, the stored order id is still the
        one the caller saw, and the booking has not been paid.
        """
        order_criterion = (
            Booking.payment_order_id.is_(None)
            if observed_order_id is None
            else Booking.payment_order_id == observed_order_id
        )
        return self.conditional_update(
            booking_id,
            [Booking.payment_order_claim.is_(None), order_criterion, _UNSETTLED_PAYMENT],
            {
                "payment_status": PaymentStatus.PENDING.value,
                "payment_order_claim": claim_token,
            },
        )

    def record_payment_order(
        self,
        booking_id: str,
        claim_token: str,
        order_id: str,
        amount_minor: int,
        currency: str,
        now: datetime,
    ) -> int:
        """Record the new order; loses to a payment verified while the claim was held."""
        return self.conditional_update(
            booking_id,
            [
                Booking.payment_order_claim == claim_token,
                Booking.payment_status == PaymentStatus.PENDING.value,
            ],
            {
                "payment_order_id": order_id,
                "payment_amount": amount_minor,
                "payment_currency": currency,
                "payment_created_at": now,
                "payment_id": None,
                "payment_failure_reason": None,
                "payment_order_claim": None,
            },
        )

    def release_payment_order_claim(
        self, booking_id: str, claim_token: str, restore_status: Optional[str]
    ) -> int:
        return self.conditional_update(
            booking_id,
            [Booking.payment_order_claim == claim_token],
            {"payment_order_claim": None, "payment_status": restore_status},
        )

    # Payment verification

    def mark_payment_failed(self, booking_id: str, order_id: str, reason: str) -> int:
        return self.conditional_update(
            booking_id,
            [
                Booking.payment_order_id == order_id,
                Booking.payment_order_claim.is_(None),
                Booking.payment_status.in_(
                    [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]
                ),
            ],
            {
                "payment_status": PaymentStatus.FAILED.value,
                "payment_failure_reason": reason[:255],
            },
        )

    def mark_payment_paid(
        self, booking_id: str, order_id: str, payment_id: str, now: datetime
    ) -> int:
        """
        Mark PAID and release a REQUESTED booking to SEARCHING in the same write.

        A captured payment outranks an order creation in flight: the claim is
        cleared, so the pending record_payment_order matches nothing.
        """
        return self.conditional_update(
            booking_id,
            [
                Booking.payment_order_id == order_id,
                Booking.payment_status.in_(
                    [PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]
                ),
            ],
            {
                "payment_status": PaymentStatus.PAID.value,
                "payment_id": payment_id,
                "payment_paid_at": now,
                "payment_failure_reason": None,
                "payment_order_claim": None,
                "status": case(
                    (
                        Booking.status == BookingStatus.REQUESTED.value,
                        BookingStatus.SEARCHING.value,
                    ),
                    else_=Booking.status,
                ),
            },
        )

    # Refunds

    def lock_refund(self, booking_id: str, amount_minor: int) -> int:
        return self.conditional_update(
            booking_id,
            [Booking.payment_status == PaymentStatus.PAID.value],
            {
                "payment_status": PaymentStatus.REFUND_PENDING.value,
                "payment_refund_amount": amount_minor,
            },
        )

    def release_refund_lock(self, booking_id: str) -> int:
        return self.conditional_update(
            booking_id,
            [Booking.payment_status == PaymentStatus.REFUND_PENDING.value],
            {"payment_status": PaymentStatus.PAID.value, "payment_refund_amount": None},
        )

    def finalize_refund(self, booking_id: str, refund_id: str, now: datetime) -> int:
        return self.conditional_update(
            booking_id,
            [Booking.payment_status == PaymentStatus.REFUND_PENDING.value],
            {
                "payment_status": PaymentStatus.REFUNDED.value,
                "payment_refund_id": refund_id,
                "payment_refunded_at": now,
            },
        )

    # Reviews

    def record_review(
        self,
        booking_id: str,
        patient_id: str,
        stars: int,
        comment: Optional[str],
        now: datetime,
    ) -> int:
        return self.conditional_update(
            booking_id,
            [
                Booking.patient_id == patient_id,
                Booking.status == BookingStatus.COMPLETED.value,
                Booking.rated_at.is_(None),
            ],
            {"rating_stars": stars, "rating_comment": comment, "rated_at": now},
        )
