# backend/carebridge/services/payment_service.py
"""
Payment Service for the CareBridge Platform

Coordinates gateway orders and checkout verification for bookings.

Order creation is idempotent:
- a PENDING order whose live gateway order is still open for the same amount
  is returned as-is;
- otherwise the caller must win a claim (conditional update on the claim
  token and the order id it observed) before calling the gateway, so two
  concurrent requests cannot both create orders.

Verification runs four mandatory checks in order: order id, signature, the
gateway's own payment record, and finally a conditional PAID write that also
releases a REQUESTED booking to SEARCHING.
"""

import logging
from typing import Any, Dict, List, Optional

import ulid

from ..core.config import settings
from ..core.enums import NotificationType
from ..core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    GatewayException,
    NotFoundException,
    ValidationException,
)
from ..integrations.payment_gateway import PaymentGateway, PaymentGatewayError
from ..integrations.razorpay_client import build_payment_gateway, verify_payment_signature
from ..models.booking import SETTLED_PAYMENT_STATUSES, Booking, BookingStatus, PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import OrderDescriptor, PaymentStatusResponse
from .base import BaseService
from .collaborators import NotificationClient
from .notification_service import NotificationService
from .pricing_service import to_minor_units

logger = logging.getLogger(__name__)

OPEN_ORDER_STATUSES = frozenset({"created", "attempted"})
ACCEPTED_PAYMENT_STATUSES = frozenset({"authorized", "captured"})


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PaymentService(BaseService):
    def __init__(
        self,
        db,
        gateway: Optional[PaymentGateway] = None,
        notifications: Optional[NotificationClient] = None,
        signature_secret: Optional[str] = None,
        currency: Optional[str] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.gateway = gateway or build_payment_gateway()
        self.notifications = notifications or NotificationService()
        self.signature_secret = (
            settings.payment_signature_secret if signature_secret is None else signature_secret
        )
        self.currency = (currency or settings.payment_currency).upper()

    # Orders

    @BaseService.measure_operation("create_order")
    def create_order(self, booking_id: str, patient_id: str) -> OrderDescriptor:
        """
        Create (or reuse) a gateway order for the booking's payable amount.

        Raises:
            NotFoundException: booking missing
            ForbiddenException: caller is not the booking's patient
            ValidationException: booking cancelled or nothing to pay
            BookingConflictException: already paid, or another order creation won
            GatewayException: the gateway failed; the claim was released
        """
        booking = self._get_booking_or_404(booking_id)
        if booking.patient_id != patient_id:
            raise ForbiddenException("Only the booking's patient can pay for it")
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationException("Cancelled bookings cannot be paid", code="BOOKING_NOT_PAYABLE")
        if booking.payment_status in SETTLED_PAYMENT_STATUSES:
            raise BookingConflictException(
                "Booking has already been paid",
                code="ALREADY_PAID",
                details={"payment_status": booking.payment_status},
            )

        amount_minor = to_minor_units(booking.payable_amount)
        if amount_minor <= 0:
            raise ValidationException("Nothing to pay for this booking", code="NOTHING_TO_PAY")

        if booking.payment_status == PaymentStatus.PENDING and booking.payment_order_id:
            existing = self._reusable_order(booking, amount_minor)
            if existing is not None:
                return existing

        observed_order_id = booking.payment_order_id
        prior_status = booking.payment_status
        claim_token = str(ulid.ULID())

        with self.transaction():
            claimed = self.booking_repository.claim_payment_order(
                booking_id, claim_token, observed_order_id
            )
            if not claimed:
                self.record_conflict("booking", "create_order", booking_id=booking_id)
                raise BookingConflictException(
                    "A payment order for this booking is already being created",
                    code="ORDER_CREATION_IN_PROGRESS",
                )

        try:
            order = self.gateway.create_order(
                amount=amount_minor,
                currency=self.currency,
                receipt=booking_id,
                notes={"booking_id": booking_id, "patient_id": patient_id},
            )
            order_id = str(order["id"])
        except Exception as exc:
            self._release_order_claim(booking_id, claim_token, prior_status)
            prometheus_metrics.record_gateway_request("create_order", "error")
            raise GatewayException(
                "Payment gateway could not create the order",
                code="GATEWAY_ORDER_FAILED",
            ) from exc
        prometheus_metrics.record_gateway_request("create_order", "success")

        try:
            with self.transaction():
                recorded = self.booking_repository.record_payment_order(
                    booking_id, claim_token, order_id, amount_minor, self.currency, self.utcnow()
                )
        except Exception:
            logger.error(
                "Could not record the new order; releasing the claim",
                extra={"booking_id": booking_id, "order_id": order_id},
            )
            self._release_order_claim(booking_id, claim_token, prior_status)
            raise

        if not recorded:
            # A payment on the previous order was verified while the claim was held
            current = self.booking_repository.get_by_id(booking_id, fresh=True)
            payment_status = current.payment_status if current else None
            self.record_conflict("booking", "create_order", booking_id=booking_id)
            logger.warning(
                "New order lost to a concurrent payment verification",
                extra={"booking_id": booking_id, "order_id": order_id, "payment_status": payment_status},
            )
            raise BookingConflictException(
                "Booking payment changed while the order was being created",
                code="ORDER_CLAIM_LOST",
                details={"payment_status": payment_status},
            )

        self.log_operation(
            "create_order", booking_id=booking_id, order_id=order_id, amount=amount_minor
        )
        return self._descriptor(booking_id, order_id, amount_minor, reused=False)

    def _reusable_order(self, booking: Booking, amount_minor: int) -> Optional[OrderDescriptor]:
        """Return the existing order if the gateway still has it open for the same amount."""
        order_id = booking.payment_order_id
        try:
            live = self.gateway.fetch_order(order_id)
        except PaymentGatewayError as exc:
            logger.warning(
                "Could not fetch existing order, creating a new one",
                extra={"booking_id": booking.id, "order_id": order_id, "error": str(exc)},
            )
            return None

        status = str(live.get("status", "")).lower()
        if status == "paid":
            logger.warning(
                "Gateway reports order paid but booking is unverified",
                extra={"booking_id": booking.id, "order_id": order_id},
            )
            raise BookingConflictException(
                "A payment was already captured for this booking's order; verification is pending",
                code="ORDER_ALREADY_PAID",
                details={"order_id": order_id},
            )

        live_amount = _as_int(live.get("amount"))
        live_currency = str(live.get("currency", self.currency)).upper()
        if status in OPEN_ORDER_STATUSES and live_amount == amount_minor and live_currency == self.currency:
            return self._descriptor(booking.id, order_id, amount_minor, reused=True)

        logger.info(
            "Existing order is stale, creating a new one",
            extra={"booking_id": booking.id, "order_id": order_id, "order_status": status},
        )
        return None

    def _release_order_claim(
        self, booking_id: str, claim_token: str, prior_status: Optional[str]
    ) -> None:
        with self.transaction():
            released = self.booking_repository.release_payment_order_claim(
                booking_id, claim_token, prior_status
            )
        if not released:
            logger.error(
                "Order claim release matched no rows",
                extra={"booking_id": booking_id},
            )
        prometheus_metrics.record_compensation("booking", "create_order")

    def _descriptor(
        self, booking_id: str, order_id: str, amount_minor: int, *, reused: bool
    ) -> OrderDescriptor:
        return OrderDescriptor(
            booking_id=booking_id,
            order_id=order_id,
            amount=amount_minor,
            currency=self.currency,
            key_id=settings.razorpay_key_id,
            reused=reused,
        )

    # Verification

    @BaseService.measure_operation("verify_payment")
    def verify_payment(
        self,
        booking_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
        patient_id: Optional[str] = None,
    ) -> Booking:
        """
        Verify a checkout callback and mark the booking PAID.

        Raises:
            ValidationException: order mismatch, bad signature, or payment mismatch
            BookingConflictException: payment state moved on
            GatewayException: the gateway payment could not be fetched
        """
        booking = self._get_booking_or_404(booking_id)
        if patient_id is not None and booking.patient_id != patient_id:
            raise ForbiddenException("Only the booking's patient can verify its payment")

        if booking.payment_status == PaymentStatus.PAID:
            if booking.payment_id == payment_id and booking.payment_order_id == order_id:
                return booking
            raise BookingConflictException("Booking has already been paid", code="ALREADY_PAID")
        if booking.payment_status in SETTLED_PAYMENT_STATUSES:
            raise BookingConflictException(
                "Booking payment has been refunded",
                code="PAYMENT_REFUNDED",
                details={"payment_status": booking.payment_status},
            )

        # 1. Order id
        if not booking.payment_order_id or order_id != booking.payment_order_id:
            raise ValidationException(
                "Order does not belong to this booking", code="ORDER_MISMATCH"
            )

        # 2. Signature
        if not verify_payment_signature(order_id, payment_id, signature, self.signature_secret):
            self._mark_failed(booking_id, order_id, "Invalid payment signature")
            raise ValidationException(
                "Payment signature verification failed", code="INVALID_SIGNATURE"
            )

        # 3. Gateway payment record
        try:
            payment = self.gateway.fetch_payment(payment_id)
        except PaymentGatewayError as exc:
            prometheus_metrics.record_gateway_request("fetch_payment", "error")
            raise GatewayException(
                "Could not confirm the payment with the gateway; please retry",
                code="GATEWAY_FETCH_FAILED",
            ) from exc
        prometheus_metrics.record_gateway_request("fetch_payment", "success")

        mismatches = self._payment_mismatches(booking, order_id, payment)
        if mismatches:
            self._mark_failed(booking_id, order_id, f"Payment mismatch: {', '.join(mismatches)}")
            logger.warning(
                "Gateway payment does not match booking",
                extra={"booking_id": booking_id, "payment_id": payment_id, "mismatches": mismatches},
            )
            raise ValidationException(
                "Payment details do not match the booking",
                code="PAYMENT_MISMATCH",
                details={"mismatched_fields": mismatches},
            )

        # 4. Conditional PAID write
        with self.transaction():
            matched = self.booking_repository.mark_payment_paid(
                booking_id, order_id, payment_id, self.utcnow()
            )
            if matched and booking.status == BookingStatus.REQUESTED:
                self.booking_repository.add_status_change(
                    booking_id,
                    BookingStatus.REQUESTED,
                    BookingStatus.SEARCHING,
                    booking.patient_id,
                    "Payment verified",
                )

        updated = self.booking_repository.get_by_id(booking_id, fresh=True)
        if not matched:
            if updated.payment_status == PaymentStatus.PAID and updated.payment_id == payment_id:
                return updated
            self.record_conflict("booking", "verify_payment", booking_id=booking_id)
            raise BookingConflictException(
                "Booking payment changed during verification",
                code="PAYMENT_STATE_CHANGED",
                details={"payment_status": updated.payment_status},
            )

        self.log_operation(
            "verify_payment", booking_id=booking_id, order_id=order_id, payment_id=payment_id
        )
        self._notify(
            updated.patient_id,
            {"booking_id": booking_id, "payment_id": payment_id, "amount": updated.payment_amount},
        )
        return updated

    def _payment_mismatches(
        self, booking: Booking, order_id: str, payment: Dict[str, Any]
    ) -> List[str]:
        mismatches: List[str] = []
        if _as_int(payment.get("amount")) != to_minor_units(booking.payable_amount):
            mismatches.append("amount")
        if str(payment.get("currency", "")).upper() != self.currency:
            mismatches.append("currency")
        if payment.get("order_id") != order_id:
            mismatches.append("order_id")
        if str(payment.get("status", "")).lower() not in ACCEPTED_PAYMENT_STATUSES:
            mismatches.append("status")
        return mismatches

    def _mark_failed(self, booking_id: str, order_id: str, reason: str) -> int:
        with self.transaction():
            matched = self.booking_repository.mark_payment_failed(booking_id, order_id, reason)
        if not matched:
            logger.info(
                "Payment failure not recorded; state already moved",
                extra={"booking_id": booking_id, "reason": reason},
            )
        return matched

    # Failure reporting and status

    @BaseService.measure_operation("record_payment_failure")
    def record_payment_failure(self, booking_id: str, reason: str) -> Booking:
        """Record a failure reported by the checkout widget for the current order."""
        booking = self._get_booking_or_404(booking_id)
        if booking.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            raise ValidationException(
                "No pending payment to mark as failed",
                code="NO_PENDING_PAYMENT",
                details={"payment_status": booking.payment_status},
            )
        if not self._mark_failed(booking_id, booking.payment_order_id, reason or "Payment failed"):
            self.record_conflict("booking", "record_payment_failure", booking_id=booking_id)
            raise BookingConflictException(
                "Booking payment changed since it was read", code="PAYMENT_STATE_CHANGED"
            )
        return self.booking_repository.get_by_id(booking_id, fresh=True)

    @BaseService.measure_operation("get_payment_status")
    def get_payment_status(self, booking_id: str, patient_id: str) -> PaymentStatusResponse:
        booking = self._get_booking_or_404(booking_id)
        if booking.patient_id != patient_id:
            user = self.user_repository.get_by_id(patient_id)
            if user is None or not user.is_admin:
                raise ForbiddenException("You do not have access to this booking's payment")
        return PaymentStatusResponse(
            booking_id=booking.id,
            payment_status=booking.payment_status,
            order_id=booking.payment_order_id,
            payment_id=booking.payment_id,
            amount=booking.payment_amount,
            currency=booking.payment_currency,
            refund_id=booking.payment_refund_id,
            refund_amount=booking.payment_refund_amount,
            failure_reason=booking.payment_failure_reason,
            paid_at=booking.payment_paid_at,
            refunded_at=booking.payment_refunded_at,
        )

    # Helpers

    def _notify(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        try:
            self.notifications.notify(recipient_id, NotificationType.PAYMENT_RECEIVED.value, payload)
        except Exception as exc:
            logger.warning("Notification failed", extra={"recipient_id": recipient_id, "error": str(exc)})

    def _get_booking_or_404(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, fresh=True)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return booking
