# backend/carebridge/services/provider_assignment_service.py
"""
Provider Assignment Service for the CareBridge Platform

Assigns a nurse or physiotherapist to a booking in three steps:

1. Claim: one conditional update sets provider, ASSIGNED and assigned_at only
   while the booking is unassigned and in an assignable status. Of N
   concurrent claims exactly one matches.
2. Grant: the provider receives access to the patient's health data.
3. Compensate: if the grant fails, a second conditional update (still
   ASSIGNED to this provider) restores the status the claim matched and
   clears the provider. A booking is never left ASSIGNED without access.
"""

import logging
from typing import Any, Dict, Optional

from ..core.constants import PROVIDER_BOOKING_ACCESS_LEVEL, PROVIDER_BOOKING_RESOURCES
from ..core.enums import NotificationType
from ..core.exceptions import BookingConflictException, NotFoundException, ValidationException
from ..models.booking import ASSIGNABLE_BOOKING_STATUSES, Booking, BookingStatus
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .access_grant_service import AccessGrantService
from .base import BaseService
from .collaborators import AccessGrantClient, NotificationClient
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class ProviderAssignmentService(BaseService):
    def __init__(
        self,
        db,
        access_grants: Optional[AccessGrantClient] = None,
        notifications: Optional[NotificationClient] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.access_grants = access_grants or AccessGrantService()
        self.notifications = notifications or NotificationService()

    @BaseService.measure_operation("assign")
    def assign(self, booking_id: str, provider_id: str) -> Booking:
        """
        Assign a provider to an unassigned booking.

        Raises:
            NotFoundException: booking or provider missing
            ValidationException: provider ineligible, or access grant failed
            BookingConflictException: booking already assigned or not assignable
        """
        provider = self.user_repository.get_by_id(provider_id)
        if provider is None:
            raise NotFoundException(f"Provider {provider_id} not found")
        if not provider.can_take_bookings:
            raise ValidationException(
                "Provider is not eligible for home-care bookings",
                code="PROVIDER_NOT_ELIGIBLE",
                details={"provider_id": provider_id, "role": provider.role},
            )

        claimed_from = self._claim(booking_id, provider_id)
        booking = self.booking_repository.get_by_id(booking_id, fresh=True)

        try:
            self.access_grants.grant_access(
                patient_id=booking.patient_id,
                provider_id=provider_id,
                booking_id=booking_id,
                resources=PROVIDER_BOOKING_RESOURCES,
                access_level=PROVIDER_BOOKING_ACCESS_LEVEL,
                reason=f"Assigned to booking {booking_id}",
            )
        except Exception as exc:
            self._rollback_assignment(booking_id, provider_id, claimed_from, exc)

        self.log_operation(
            "assign",
            booking_id=booking_id,
            provider_id=provider_id,
            claimed_from=claimed_from.value,
        )
        payload: Dict[str, Any] = {"booking_id": booking_id, "provider_id": provider_id}
        self._notify(provider_id, payload)
        self._notify(booking.patient_id, payload)
        return booking

    def _claim(self, booking_id: str, provider_id: str) -> BookingStatus:
        """Run the claim; return the status it matched or raise."""
        with self.transaction():
            for from_status in ASSIGNABLE_BOOKING_STATUSES:
                if self.booking_repository.claim_provider(
                    booking_id, provider_id, from_status, self.utcnow()
                ):
                    self.booking_repository.add_status_change(
                        booking_id, from_status, BookingStatus.ASSIGNED, provider_id
                    )
                    return from_status

        booking = self.booking_repository.get_by_id(booking_id, fresh=True)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")

        self.record_conflict("booking", "assign", booking_id=booking_id, provider_id=provider_id)
        if booking.provider_id:
            raise BookingConflictException(
                "Booking already has a provider",
                code="BOOKING_ALREADY_ASSIGNED",
                details={"status": booking.status},
            )
        raise BookingConflictException(
            "Booking is not open for assignment",
            code="BOOKING_NOT_ASSIGNABLE",
            details={"status": booking.status},
        )

    def _rollback_assignment(
        self,
        booking_id: str,
        provider_id: str,
        restore_status: BookingStatus,
        cause: Exception,
    ) -> None:
        logger.error(
            "Access grant failed, reverting assignment",
            extra={"booking_id": booking_id, "provider_id": provider_id, "error": str(cause)},
        )
        with self.transaction():
            released = self.booking_repository.release_provider_claim(
                booking_id, provider_id, restore_status
            )
            if released:
                self.booking_repository.add_status_change(
                    booking_id,
                    BookingStatus.ASSIGNED,
                    restore_status,
                    None,
                    "Assignment reverted: access grant failed",
                )
        if not released:
            logger.error(
                "Assignment revert matched no rows; booking moved on while compensating",
                extra={"booking_id": booking_id, "provider_id": provider_id},
            )
        prometheus_metrics.record_compensation("booking", "assign")

        try:
            self.access_grants.revoke_booking_access(
                booking_id, revoked_by=None, reason="Assignment rolled back"
            )
        except Exception as exc:
            logger.warning(
                "Failed to revoke partial grant after rollback",
                extra={"booking_id": booking_id, "error": str(exc)},
            )

        raise ValidationException(
            "Could not grant the provider access to patient records; assignment was rolled back",
            code="ACCESS_GRANT_FAILED",
            details={"booking_id": booking_id, "provider_id": provider_id},
        ) from cause

    def _notify(self, recipient_id: str, payload: Dict[str, Any]) -> None:
        try:
            self.notifications.notify(recipient_id, NotificationType.BOOKING_ASSIGNED.value, payload)
        except Exception as exc:
            logger.warning(
                "Notification failed",
                extra={"recipient_id": recipient_id, "error": str(exc)},
            )
