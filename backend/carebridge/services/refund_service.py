"""
Refund workflow for paid bookings.

1. Lock: PAID -> REFUND_PENDING, conditional, so of N concurrent refunds
   exactly one reaches the gateway.
2. Execute: refund at the gateway with the payment id captured under the lock.
   On failure the lock is reverted to PAID.
3. Finalize: record the refund id and REFUNDED. The money has already moved,
   so this step is retried and, if it still fails, the refund is reported as
   successful with a warning and escalated for reconciliation. It is never
   rolled back or re-attempted at the gateway.
"""

from __future__ import annotations

from decimal import Decimal
import logging
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import NotificationType
from ..core.exceptions import (
    BookingConflictException,
    CriticalReconciliationError,
    GatewayException,
    NotFoundException,
    ValidationException,
)
from ..integrations.payment_gateway import PaymentGateway, PaymentGatewayError
from ..integrations.razorpay_client import build_payment_gateway
from ..models.booking import Booking, PaymentStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import RefundDescriptor
from .alert_service import AlertService
from .base import BaseService
from .collaborators import AlertClient, NotificationClient
from .notification_service import NotificationService
from .pricing_service import to_minor_units

logger = logging.getLogger(__name__)

FINALIZE_WARNING = (
    "Refund was processed by the payment gateway but could not be recorded; "
    "the operations team has been alerted"
)


class RefundService(BaseService):
    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        alerts: Optional[AlertClient] = None,
        notifications: Optional[NotificationClient] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.gateway = gateway or build_payment_gateway()
        self.alerts = alerts or AlertService()
        self.notifications = notifications or NotificationService()
        self.max_attempts = max_attempts or settings.refund_finalize_max_attempts
        self.backoff_seconds = (
            settings.refund_finalize_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._sleep = sleep

    @BaseService.measure_operation("refund")
    def refund(
        self,
        booking_id: str,
        amount: Optional[Decimal] = None,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> RefundDescriptor:
        """
        Refund a paid booking, in full by default.

        Args:
            booking_id: Booking to refund
            amount: Major-unit amount; defaults to the payable snapshot
            actor_id: Who requested the refund, for the audit trail
            reason: Free-text reason sent to the gateway

        Raises:
            NotFoundException: booking missing
            ValidationException: invalid amount or nothing to refund
            BookingConflictException: already refunded or refund in progress
            GatewayException: the gateway refused; the booking is PAID again
        """
        booking = self.booking_repository.get_by_id(booking_id, fresh=True)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")

        refund_minor = self._resolve_amount(booking, amount)

        with self.transaction():
            locked = self.booking_repository.lock_refund(booking_id, refund_minor)
        if not locked:
            self._raise_lock_failure(booking_id)

        booking = self.booking_repository.get_by_id(booking_id, fresh=True)
        payment_id = booking.payment_id
        currency = booking.payment_currency or settings.payment_currency
        logger.info(
            "Refund locked",
            extra={"booking_id": booking_id, "payment_id": payment_id, "amount": refund_minor},
        )

        try:
            result = self.gateway.refund_payment(
                payment_id,
                amount=refund_minor,
                notes={"booking_id": booking_id, "reason": reason or "", "actor_id": actor_id or ""},
            )
        except Exception as exc:
            self._release_lock(booking_id)
            prometheus_metrics.record_gateway_request("refund_payment", "error")
            if not isinstance(exc, PaymentGatewayError):
                logger.error(
                    "Unexpected error from the gateway refund call",
                    extra={"booking_id": booking_id, "error": repr(exc)},
                )
            raise GatewayException(
                "Refund failed at the payment gateway; the payment is unchanged",
                code="GATEWAY_REFUND_FAILED",
            ) from exc
        prometheus_metrics.record_gateway_request("refund_payment", "success")

        refund_id = str(result["id"])
        warning = self._finalize(booking_id, refund_id, payment_id, refund_minor)

        self.log_operation(
            "refund",
            booking_id=booking_id,
            refund_id=refund_id,
            amount=refund_minor,
            actor_id=actor_id,
            finalized=warning is None,
        )
        self._notify(booking.patient_id, {"booking_id": booking_id, "refund_id": refund_id, "amount": refund_minor})

        return RefundDescriptor(
            booking_id=booking_id,
            refund_id=refund_id,
            amount=refund_minor,
            currency=currency,
            payment_status=(
                PaymentStatus.REFUNDED.value if warning is None else PaymentStatus.REFUND_PENDING.value
            ),
            warning=warning,
        )

    def _resolve_amount(self, booking: Booking, amount: Optional[Decimal]) -> int:
        paid_minor = booking.payment_amount or to_minor_units(booking.payable_amount)
        refund_minor = (
            to_minor_units(booking.payable_amount) if amount is None else to_minor_units(Decimal(amount))
        )
        if refund_minor <= 0 or refund_minor > paid_minor:
            raise ValidationException(
                "Refund amount must be positive and no more than the amount paid",
                code="INVALID_REFUND_AMOUNT",
                details={"requested": refund_minor, "paid": paid_minor},
            )
        return refund_minor

    def _raise_lock_failure(self, booking_id: str) -> None:
        current = self.booking_repository.get_by_id(booking_id, fresh=True)
        status = current.payment_status if current else None
        self.record_conflict("booking", "refund", booking_id=booking_id, payment_status=status)
        if status == PaymentStatus.REFUNDED:
            raise BookingConflictException(
                "Booking has already been refunded", code="ALREADY_REFUNDED"
            )
        if status == PaymentStatus.REFUND_PENDING:
            raise BookingConflictException(
                "A refund for this booking is already in progress", code="REFUND_IN_PROGRESS"
            )
        raise ValidationException(
            "Booking has no captured payment to refund",
            code="NOTHING_TO_REFUND",
            details={"payment_status": status},
        )

    def _release_lock(self, booking_id: str) -> None:
        with self.transaction():
            released = self.booking_repository.release_refund_lock(booking_id)
        if not released:
            logger.error("Refund lock release matched no rows", extra={"booking_id": booking_id})
        prometheus_metrics.record_compensation("booking", "refund")

    def _finalize(
        self, booking_id: str, refund_id: str, payment_id: Optional[str], amount_minor: int
    ) -> Optional[str]:
        """Persist the refund with bounded retries; return a warning if it never stuck."""
        last_error = "unknown"
        attempts = 0
        for attempt in range(1, self.max_attempts + 1):
            attempts = attempt
            try:
                with self.transaction():
                    matched = self.booking_repository.finalize_refund(
                        booking_id, refund_id, self.utcnow()
                    )
                if matched:
                    return None
                # Lock is gone; another attempt cannot match either
                last_error = "booking is no longer REFUND_PENDING"
                break
            except Exception as exc:
                last_error = str(exc)
                logger.warning(
                    f"Refund finalize attempt {attempt}/{self.max_attempts} failed: {exc}",
                    extra={"booking_id": booking_id, "refund_id": refund_id},
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_seconds * attempt)

        self._escalate(
            CriticalReconciliationError(
                f"Refund {refund_id} succeeded at the gateway but booking {booking_id} "
                "could not be marked REFUNDED",
                booking_id=booking_id,
                details={
                    "refund_id": refund_id,
                    "payment_id": payment_id,
                    "amount": amount_minor,
                    "attempts": attempts,
                    "last_error": last_error,
                },
            )
        )
        return FINALIZE_WARNING

    def _escalate(self, error: CriticalReconciliationError) -> None:
        try:
            self.alerts.raise_reconciliation_alert(error)
        except Exception as exc:
            logger.critical(
                f"Reconciliation alert delivery failed: {exc}; original: {error.message}",
                extra=error.details,
            )

    def _notify(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        try:
            self.notifications.notify(recipient_id, NotificationType.REFUND_PROCESSED.value, payload)
        except Exception as exc:
            logger.warning("Notification failed", extra={"recipient_id": recipient_id, "error": str(exc)})
