# backend/carebridge/services/application_service.py
"""
Application Service for the CareBridge Platform

Arbitrates doctors' applications for hospital duties.

Accepting an application is one database transaction:
1. conditional increment of the duty's fill counter (duty OPEN, not full,
   applicant not already assigned);
2. insert of the assignment row;
3. conditional PENDING -> ACCEPTED on the application.
Any zero match raises ConflictException and rolls back all three. When the
counter reaches positions_needed, the duty moves to FILLED and every other
pending application is rejected in a single bulk update flagged as
auto-rejected.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.constants import AUTO_REJECT_NOTE, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..core.enums import NotificationType, RoleName
from ..core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    RepositoryException,
    ValidationException,
)
from ..models.application import Application, ApplicationStatus
from ..models.duty import Duty, DutyStatus
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from ..schemas.duty import ApplicationStats
from .base import BaseService
from .collaborators import NotificationClient
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class ApplicationService(BaseService):
    def __init__(self, db: Session, notifications: Optional[NotificationClient] = None):
        super().__init__(db)
        self.application_repository = RepositoryFactory.create_application_repository(db)
        self.duty_repository = RepositoryFactory.create_duty_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.notifications = notifications or NotificationService()

    @BaseService.measure_operation("apply_for_duty")
    def apply_for_duty(
        self, duty_id: str, applicant_id: str, cover_letter: Optional[str] = None
    ) -> Application:
        """
        Submit a PENDING application.

        Raises:
            ForbiddenException: applicant is not an active doctor
            NotFoundException: duty or applicant missing
            ValidationException: duty is not OPEN
            ConflictException: applicant already applied
        """
        applicant = self._get_user_or_404(applicant_id)
        if not applicant.has_role(RoleName.DOCTOR) or not applicant.is_active:
            raise ForbiddenException("Only doctors can apply for duties")

        duty = self._get_duty_or_404(duty_id)
        if duty.status != DutyStatus.OPEN:
            raise ValidationException("Duty is no longer open", code="DUTY_NOT_OPEN")
        if self.application_repository.get_for_duty_and_applicant(duty_id, applicant_id):
            raise ConflictException("You have already applied for this duty", code="ALREADY_APPLIED")

        with self.transaction():
            try:
                application = self.application_repository.create(
                    duty_id=duty_id,
                    applicant_id=applicant_id,
                    cover_letter=cover_letter,
                    status=ApplicationStatus.PENDING.value,
                )
            except RepositoryException as exc:
                raise ConflictException(
                    "You have already applied for this duty", code="ALREADY_APPLIED"
                ) from exc
            self.duty_repository.increment_applications(duty_id)

        self.log_operation("apply_for_duty", duty_id=duty_id, applicant_id=applicant_id)
        self._notify(
            duty.posted_by_id,
            NotificationType.APPLICATION_RECEIVED,
            {"duty_id": duty_id, "application_id": application.id, "applicant_id": applicant_id},
        )
        return application

    @BaseService.measure_operation("accept")
    def accept(
        self, application_id: str, acting_user_id: str, notes: Optional[str] = None
    ) -> Application:
        """
        Accept a pending application and take one of the duty's positions.

        Raises:
            NotFoundException: application, duty or user missing
            ForbiddenException: actor is neither the poster nor an admin
            ConflictException: application not pending, duty full or closed,
                or applicant already assigned
        """
        application = self._get_application_or_404(application_id)
        duty = self._get_duty_or_404(application.duty_id)
        actor = self._get_user_or_404(acting_user_id)
        self._authorize_decision(duty, actor)

        if application.status != ApplicationStatus.PENDING:
            raise ConflictException(
                "Application has already been decided",
                code="APPLICATION_NOT_PENDING",
                details={"status": application.status},
            )

        now = self.utcnow()
        auto_rejected_applicants: List[str] = []
        filled = False

        with self.transaction():
            if not self.duty_repository.reserve_position(duty.id, application.applicant_id):
                self.record_conflict("duty", "accept", duty_id=duty.id, application_id=application_id)
                raise ConflictException(
                    "Duty is full, closed, or the applicant already holds a position",
                    code="DUTY_UNAVAILABLE",
                    details={"duty_id": duty.id},
                )

            try:
                self.duty_repository.add_assignment(duty.id, application.applicant_id, application.id)
            except RepositoryException as exc:
                self.record_conflict("duty", "accept", duty_id=duty.id, application_id=application_id)
                raise ConflictException(
                    "Applicant is already assigned to this duty", code="ALREADY_ASSIGNED"
                ) from exc

            if not self.application_repository.decide(
                application.id, ApplicationStatus.ACCEPTED, actor.id, now, notes
            ):
                self.record_conflict("application", "accept", application_id=application_id)
                raise ConflictException(
                    "Application has already been decided", code="APPLICATION_NOT_PENDING"
                )

            refreshed = self.duty_repository.get_by_id(duty.id, fresh=True)
            if refreshed.is_full:
                filled = bool(self.duty_repository.mark_filled_if_full(duty.id))
                auto_rejected_applicants = [
                    pending.applicant_id
                    for pending in self.application_repository.list_for_duty(
                        duty.id, ApplicationStatus.PENDING.value
                    )
                ]
                self.application_repository.reject_pending_for_duty(
                    duty.id, AUTO_REJECT_NOTE, actor.id, now
                )

        self.log_operation(
            "accept",
            application_id=application_id,
            duty_id=duty.id,
            duty_filled=filled,
            auto_rejected=len(auto_rejected_applicants),
        )

        self._notify(
            application.applicant_id,
            NotificationType.APPLICATION_ACCEPTED,
            {"duty_id": duty.id, "application_id": application.id},
        )
        if filled:
            self._notify(duty.posted_by_id, NotificationType.DUTY_FILLED, {"duty_id": duty.id})
        for applicant_id in auto_rejected_applicants:
            self._notify(
                applicant_id,
                NotificationType.APPLICATION_REJECTED,
                {"duty_id": duty.id, "reason": AUTO_REJECT_NOTE},
            )

        return self.application_repository.get_by_id(application.id, fresh=True)

    @BaseService.measure_operation("reject")
    def reject(
        self, application_id: str, acting_user_id: str, notes: Optional[str] = None
    ) -> Application:
        application = self._get_application_or_404(application_id)
        duty = self._get_duty_or_404(application.duty_id)
        actor = self._get_user_or_404(acting_user_id)
        self._authorize_decision(duty, actor)

        with self.transaction():
            if not self.application_repository.decide(
                application.id, ApplicationStatus.REJECTED, actor.id, self.utcnow(), notes
            ):
                self.record_conflict("application", "reject", application_id=application_id)
                raise ConflictException(
                    "Application has already been decided", code="APPLICATION_NOT_PENDING"
                )

        self._notify(
            application.applicant_id,
            NotificationType.APPLICATION_REJECTED,
            {"duty_id": duty.id, "application_id": application.id, "reason": notes},
        )
        return self.application_repository.get_by_id(application.id, fresh=True)

    @BaseService.measure_operation("withdraw")
    def withdraw(self, application_id: str, applicant_id: str) -> Application:
        application = self._get_application_or_404(application_id)
        if application.applicant_id != applicant_id:
            raise ForbiddenException("Only the applicant can withdraw an application")

        with self.transaction():
            if not self.application_repository.decide(
                application.id, ApplicationStatus.WITHDRAWN, applicant_id, self.utcnow()
            ):
                self.record_conflict("application", "withdraw", application_id=application_id)
                raise ConflictException(
                    "Only pending applications can be withdrawn", code="APPLICATION_NOT_PENDING"
                )
            self.duty_repository.decrement_applications(application.duty_id)

        self.log_operation("withdraw", application_id=application_id, applicant_id=applicant_id)
        return self.application_repository.get_by_id(application.id, fresh=True)

    @BaseService.measure_operation("get_application_stats")
    def get_application_stats(self, user_id: str) -> ApplicationStats:
        """Counts of the user's applications by status."""
        self._get_user_or_404(user_id)
        by_status = self.application_repository.count_by_status_for_applicant(user_id)
        total = sum(by_status.values())
        accepted = by_status.get(ApplicationStatus.ACCEPTED.value, 0)
        return ApplicationStats(
            total=total,
            by_status={status.value: by_status.get(status.value, 0) for status in ApplicationStatus},
            acceptance_rate=round(accepted / total, 4) if total else 0.0,
        )

    def list_duty_applications(self, duty_id: str, acting_user_id: str) -> List[Application]:
        duty = self._get_duty_or_404(duty_id)
        self._authorize_decision(duty, self._get_user_or_404(acting_user_id))
        return self.application_repository.list_for_duty(duty_id)

    def get_my_applications(
        self,
        applicant_id: str,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> List[Application]:
        """The applicant's own applications, newest first."""
        limit = max(1, min(per_page, MAX_PAGE_SIZE))
        skip = (max(page, 1) - 1) * limit
        return self.application_repository.list_for_applicant(applicant_id, status, skip, limit)

    def get_application(self, application_id: str, user_id: str) -> Application:
        """Visible to the applicant, the duty's poster and admins."""
        application = self._get_application_or_404(application_id)
        if application.applicant_id == user_id:
            return application
        duty = self._get_duty_or_404(application.duty_id)
        self._authorize_decision(duty, self._get_user_or_404(user_id))
        return application

    # Helpers

    @staticmethod
    def _authorize_decision(duty: Duty, actor: User) -> None:
        if actor.is_admin or duty.posted_by_id == actor.id:
            return
        raise ForbiddenException("Only the duty's poster or an admin can decide applications")

    def _notify(self, recipient_id: str, type: NotificationType, payload: Dict[str, Any]) -> None:
        try:
            self.notifications.notify(recipient_id, type.value, payload)
        except Exception as exc:
            logger.warning(
                "Notification failed",
                extra={"recipient_id": recipient_id, "notification_type": type.value, "error": str(exc)},
            )

    def _get_application_or_404(self, application_id: str) -> Application:
        application = self.application_repository.get_by_id(application_id, fresh=True)
        if application is None:
            raise NotFoundException(f"Application {application_id} not found")
        return application

    def _get_duty_or_404(self, duty_id: str) -> Duty:
        duty = self.duty_repository.get_by_id(duty_id, fresh=True)
        if duty is None:
            raise NotFoundException(f"Duty {duty_id} not found")
        return duty

    def _get_user_or_404(self, user_id: str) -> User:
        user = self.user_repository.get_by_id(user_id)
        if user is None:
            raise NotFoundException(f"User {user_id} not found")
        return user
