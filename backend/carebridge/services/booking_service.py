# backend/carebridge/services/booking_service.py
"""
Booking Service for the CareBridge Platform

Handles booking creation, reads and the lifecycle state machine:
REQUESTED -> SEARCHING -> ASSIGNED -> CONFIRMED -> EN_ROUTE -> IN_PROGRESS -> COMPLETED,
with CANCELLED reachable from any non-terminal status.

Every status write is a conditional update on the status that was read, so
two requests racing on the same booking produce exactly one winner. Side
effects that leave the database (access revocation, notifications, health
record capture) are best effort and never undo a committed transition.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Union

from ..core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MAX_REVIEW_COMMENT_LENGTH
from ..core.enums import NotificationType, RoleName
from ..core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from ..domain.booking_state_machine import (
    STATUS_TIMESTAMP_FIELDS,
    parse_status,
    validate_transition,
)
from ..models.booking import (
    TERMINAL_BOOKING_STATUSES,
    Booking,
    BookingStatus,
    BookingStatusChange,
    PaymentStatus,
)
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate, ServiceReport
from .access_grant_service import AccessGrantService
from .base import BaseService
from .collaborators import AccessGrantClient, HealthRecordClient, NotificationClient
from .health_record_service import HealthRecordService
from .notification_service import NotificationService
from .pricing_service import PricingService

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Collaborators default to the database-backed implementations; callers
    and tests may inject any object satisfying the collaborator protocols.
    """

    def __init__(
        self,
        db,
        access_grants: Optional[AccessGrantClient] = None,
        notifications: Optional[NotificationClient] = None,
        health_records: Optional[HealthRecordClient] = None,
        pricing: Optional[PricingService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.catalog_repository = RepositoryFactory.create_service_catalog_repository(db)
        self.access_grants = access_grants or AccessGrantService()
        self.notifications = notifications or NotificationService()
        self.health_records = health_records or HealthRecordService()
        self.pricing = pricing or PricingService()

    # Creation and reads

    @BaseService.measure_operation("create_booking")
    def create_booking(self, patient_id: str, data: BookingCreate) -> Booking:
        """
        Create a REQUESTED booking with a pricing snapshot.

        Raises:
            NotFoundException: patient or catalog service missing
            ForbiddenException: caller is not a patient
            ValidationException: prescription missing where required
        """
        patient = self._get_user_or_404(patient_id)
        if not patient.has_role(RoleName.PATIENT):
            raise ForbiddenException("Only patients can create bookings")

        service = self.catalog_repository.get_active_by_name(data.service_type)
        if service is None:
            raise NotFoundException(f"Service {data.service_type} not found")

        if service.prescription_required and not data.prescription_url:
            raise ValidationException(
                "Prescription is required for this service", code="PRESCRIPTION_REQUIRED"
            )

        pricing = self.pricing.snapshot_for(service, data.scheduled_time, data.is_package)

        with self.transaction():
            booking = self.booking_repository.create(
                patient_id=patient_id,
                service_type=data.service_type,
                scheduled_date=data.scheduled_date,
                scheduled_time=data.scheduled_time,
                service_location=data.service_location,
                special_requirements=data.special_requirements,
                prescription_url=data.prescription_url,
                is_package=data.is_package,
                status=BookingStatus.REQUESTED.value,
                **pricing.as_booking_fields(),
            )

        self.log_operation(
            "create_booking",
            booking_id=booking.id,
            patient_id=patient_id,
            service_type=data.service_type,
            payable_amount=str(pricing.payable_amount),
        )
        return booking

    @BaseService.measure_operation("get_booking")
    def get_booking(self, booking_id: str, user_id: str) -> Booking:
        booking = self._get_booking_or_404(booking_id)
        user = self._get_user_or_404(user_id)
        if not (user.is_admin or booking.is_participant(user.id)):
            raise ForbiddenException("You do not have access to this booking")
        return booking

    @BaseService.measure_operation("list_patient_bookings")
    def list_patient_bookings(
        self,
        patient_id: str,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        status_value = parse_status(status).value if status else None
        skip, limit = self._page_window(page, per_page)
        items = self.booking_repository.list_for_patient(patient_id, status_value, skip, limit)
        total = self.booking_repository.count_for_patient(patient_id, status_value)
        return {"items": items, "total": total, "page": page, "per_page": limit}

    @BaseService.measure_operation("list_provider_bookings")
    def list_provider_bookings(
        self,
        provider_id: str,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        status_value = parse_status(status).value if status else None
        skip, limit = self._page_window(page, per_page)
        items = self.booking_repository.list_for_provider(provider_id, status_value, skip, limit)
        total = self.booking_repository.count_for_provider(provider_id, status_value)
        return {"items": items, "total": total, "page": page, "per_page": limit}

    @BaseService.measure_operation("list_all_bookings")
    def list_all_bookings(
        self,
        admin_id: str,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        service_type: Optional[str] = None,
        patient_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        Admin-wide listing, latest scheduled visit first.

        Raises:
            ForbiddenException: caller is not an admin
            ValidationException: unknown status or payment status
        """
        admin = self._get_user_or_404(admin_id)
        if not admin.is_admin:
            raise ForbiddenException("Only admins can list all bookings")

        filters = {
            "status": parse_status(status).value if status else None,
            "payment_status": self._parse_payment_status(payment_status),
            "service_type": service_type.strip().upper() if service_type else None,
            "patient_id": patient_id,
            "provider_id": provider_id,
        }
        skip, limit = self._page_window(page, per_page)
        items = self.booking_repository.list_all(filters, skip, limit)
        total = self.booking_repository.count_all(filters)
        return {"items": items, "total": total, "page": page, "per_page": limit}

    def get_status_history(self, booking_id: str, user_id: str) -> List[BookingStatusChange]:
        booking = self.get_booking(booking_id, user_id)
        return self.booking_repository.get_status_history(booking.id)

    # State machine

    @BaseService.measure_operation("transition")
    def transition(
        self,
        booking_id: str,
        requested_status: Any,
        actor_id: str,
        note: Optional[str] = None,
    ) -> Booking:
        """
        Move a booking along its lifecycle.

        Raises:
            ValidationException: unknown status, illegal pair, or ASSIGNED requested
            ForbiddenException: actor may not make this change
            NotFoundException: booking or actor missing
            BookingConflictException: the status changed since it was read
        """
        requested = parse_status(requested_status)
        if requested == BookingStatus.ASSIGNED:
            raise ValidationException(
                "Bookings become ASSIGNED only through provider assignment",
                code="ASSIGNMENT_REQUIRED",
            )

        booking = self._get_booking_or_404(booking_id)
        actor = self._get_user_or_404(actor_id)
        current = parse_status(booking.status)
        validate_transition(current, requested)
        self._authorize_transition(booking, actor, requested)

        return self._apply_transition(booking, current, requested, actor_id, note)

    @BaseService.measure_operation("complete_service")
    def complete_service(
        self,
        booking_id: str,
        provider_id: str,
        report: Union[ServiceReport, Dict[str, Any]],
    ) -> Booking:
        """
        Complete an IN_PROGRESS visit and store its report.

        Vitals are captured before the COMPLETED write. A capture failure is
        logged and does not block completion; the data stays in the report.
        """
        booking = self._get_booking_or_404(booking_id)
        if booking.provider_id != provider_id:
            raise ForbiddenException("Only the assigned provider can complete the service")
        if booking.status != BookingStatus.IN_PROGRESS:
            raise ValidationException(
                "Service must be in progress to complete",
                code="SERVICE_NOT_IN_PROGRESS",
                details={"status": booking.status},
            )

        report_data = (
            report.model_dump(mode="json") if isinstance(report, ServiceReport) else dict(report)
        )

        try:
            captured = self.health_records.capture_vitals(
                booking.patient_id, booking.id, report_data, provider_id
            )
            if captured:
                logger.info(
                    "Health metrics captured from booking",
                    extra={"booking_id": booking.id, "metrics_count": captured},
                )
        except Exception as exc:
            logger.error(
                "Failed to capture health metrics from booking; data kept in service report",
                extra={"booking_id": booking.id, "patient_id": booking.patient_id, "error": str(exc)},
            )

        return self._apply_transition(
            booking,
            BookingStatus.IN_PROGRESS,
            BookingStatus.COMPLETED,
            provider_id,
            None,
            extra_values={"service_report": report_data},
        )

    def cancel_booking(self, booking_id: str, actor_id: str, reason: Optional[str] = None) -> Booking:
        """Cancel a booking from any non-terminal status."""
        return self.transition(booking_id, BookingStatus.CANCELLED, actor_id, reason)

    @BaseService.measure_operation("add_review")
    def add_review(
        self,
        booking_id: str,
        patient_id: str,
        stars: int,
        comment: Optional[str] = None,
    ) -> Booking:
        if not isinstance(stars, int) or not 1 <= stars <= 5:
            raise ValidationException("Rating must be between 1 and 5", code="INVALID_RATING")
        if comment is not None and len(comment) > MAX_REVIEW_COMMENT_LENGTH:
            raise ValidationException("Review comment is too long", code="INVALID_REVIEW")

        booking = self._get_booking_or_404(booking_id)
        if booking.patient_id != patient_id:
            raise ForbiddenException("Only the patient can review this booking")
        if booking.status != BookingStatus.COMPLETED:
            raise ValidationException(
                "Only completed bookings can be reviewed", code="BOOKING_NOT_COMPLETED"
            )

        with self.transaction():
            matched = self.booking_repository.record_review(
                booking_id, patient_id, stars, comment, self.utcnow()
            )
            if not matched:
                self.record_conflict("booking", "add_review", booking_id=booking_id)
                raise BookingConflictException(
                    "This booking has already been reviewed", code="ALREADY_REVIEWED"
                )

        return self.booking_repository.get_by_id(booking_id, fresh=True)

    # Helpers

    def _apply_transition(
        self,
        booking: Booking,
        current: BookingStatus,
        requested: BookingStatus,
        actor_id: Optional[str],
        note: Optional[str],
        extra_values: Optional[Dict[str, Any]] = None,
    ) -> Booking:
        values = self._lifecycle_values(booking, requested, actor_id, note)
        values.update(extra_values or {})

        with self.transaction():
            matched = self.booking_repository.update_status(booking.id, current, requested, values)
            if not matched:
                self.record_conflict(
                    "booking",
                    "transition",
                    booking_id=booking.id,
                    from_status=current.value,
                    to_status=requested.value,
                )
                raise BookingConflictException(
                    "Booking status changed since it was read",
                    code="BOOKING_STATUS_CHANGED",
                    details={"expected_status": current.value, "requested_status": requested.value},
                )
            self.booking_repository.add_status_change(booking.id, current, requested, actor_id, note)

        updated = self.booking_repository.get_by_id(booking.id, fresh=True)
        self.log_operation(
            "transition",
            booking_id=booking.id,
            from_status=current.value,
            to_status=requested.value,
            actor_id=actor_id,
        )
        self._after_transition(updated, current, requested, actor_id, note)
        return updated

    def _lifecycle_values(
        self,
        booking: Booking,
        requested: BookingStatus,
        actor_id: Optional[str],
        note: Optional[str],
    ) -> Dict[str, Any]:
        now = self.utcnow()
        values: Dict[str, Any] = {}
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(requested)
        if timestamp_field:
            values[timestamp_field] = now

        if requested == BookingStatus.COMPLETED:
            started = booking.service_started_at
            values["duration_minutes"] = (
                round((now - _as_utc(started)).total_seconds() / 60) if started else None
            )
        elif requested == BookingStatus.CANCELLED:
            values["cancelled_by_id"] = actor_id
            values["cancellation_reason"] = note
        return values

    def _authorize_transition(self, booking: Booking, actor: User, requested: BookingStatus) -> None:
        if actor.is_admin:
            return
        if requested == BookingStatus.CANCELLED:
            if booking.is_participant(actor.id):
                return
            raise ForbiddenException("Only the patient, assigned provider or an admin can cancel")
        if booking.provider_id and booking.provider_id == actor.id:
            return
        raise ForbiddenException("Only the assigned provider or an admin can update this booking")

    def _after_transition(
        self,
        booking: Booking,
        previous: BookingStatus,
        current: BookingStatus,
        actor_id: Optional[str],
        note: Optional[str],
    ) -> None:
        if current in TERMINAL_BOOKING_STATUSES:
            try:
                self.access_grants.revoke_booking_access(
                    booking.id, revoked_by=actor_id, reason=f"Booking {current.value.lower()}"
                )
            except Exception as exc:
                logger.warning(
                    "Failed to revoke access for terminal booking",
                    extra={"booking_id": booking.id, "error": str(exc)},
                )

        notification_type = {
            BookingStatus.CANCELLED: NotificationType.BOOKING_CANCELLED,
            BookingStatus.COMPLETED: NotificationType.BOOKING_COMPLETED,
        }.get(current, NotificationType.BOOKING_STATUS_CHANGED)
        payload = {
            "booking_id": booking.id,
            "from_status": previous.value,
            "to_status": current.value,
            "note": note,
        }
        for recipient in {booking.patient_id, booking.provider_id} - {None, actor_id}:
            self._notify(recipient, notification_type, payload)

    def _notify(self, recipient_id: str, type: NotificationType, payload: Dict[str, Any]) -> None:
        try:
            self.notifications.notify(recipient_id, type.value, payload)
        except Exception as exc:
            logger.warning(
                "Notification failed",
                extra={"recipient_id": recipient_id, "notification_type": type.value, "error": str(exc)},
            )

    def _get_booking_or_404(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, fresh=True)
        if booking is None:
            raise NotFoundException(f"Booking {booking_id} not found")
        return booking

    def _get_user_or_404(self, user_id: str) -> User:
        user = self.user_repository.get_by_id(user_id)
        if user is None:
            raise NotFoundException(f"User {user_id} not found")
        return user

    @staticmethod
    def _parse_payment_status(value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        try:
            return PaymentStatus(value.strip().upper()).value
        except ValueError:
            raise ValidationException(
                f"Unknown payment status: {value!r}",
                code="UNKNOWN_PAYMENT_STATUS",
                details={"payment_status": value},
            )

    @staticmethod
    def _page_window(page: int, per_page: int) -> tuple[int, int]:
        if page < 1:
            raise ValidationException("page must be >= 1")
        limit = max(1, min(per_page, MAX_PAGE_SIZE))
        return (page - 1) * limit, limit
