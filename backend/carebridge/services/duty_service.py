# backend/carebridge/services/duty_service.py
"""
Duty Service for the CareBridge Platform

Hospitals (or admins) post duties with a fixed number of positions that
doctors apply for. Acceptance lives in ApplicationService.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..core.enums import DUTY_POSTER_ROLES
from ..core.exceptions import ForbiddenException, NotFoundException
from ..models.duty import Duty, DutyStatus
from ..repositories.factory import RepositoryFactory
from ..schemas.duty import DutyCreate
from .base import BaseService

logger = logging.getLogger(__name__)

_POSTER_ROLE_VALUES = {role.value for role in DUTY_POSTER_ROLES}


class DutyService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.duty_repository = RepositoryFactory.create_duty_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    @BaseService.measure_operation("create_duty")
    def create_duty(self, poster_id: str, data: DutyCreate) -> Duty:
        poster = self.user_repository.get_by_id(poster_id)
        if poster is None:
            raise NotFoundException(f"User {poster_id} not found")
        if poster.role not in _POSTER_ROLE_VALUES or not poster.is_active:
            raise ForbiddenException("Only hospitals and admins can post duties")

        with self.transaction():
            duty = self.duty_repository.create(
                posted_by_id=poster_id,
                positions_filled=0,
                applications_count=0,
                status=DutyStatus.OPEN.value,
                **data.model_dump(),
            )

        self.log_operation(
            "create_duty", duty_id=duty.id, poster_id=poster_id, positions=duty.positions_needed
        )
        return duty

    @BaseService.measure_operation("get_duty")
    def get_duty(self, duty_id: str) -> Duty:
        duty = self.duty_repository.get_by_id(duty_id, fresh=True)
        if duty is None:
            raise NotFoundException(f"Duty {duty_id} not found")
        return duty

    def get_duty_details(self, duty_id: str) -> Dict[str, Any]:
        """Duty with its assigned-provider list."""
        duty = self.get_duty(duty_id)
        return {
            "duty": duty,
            "assigned_provider_ids": self.duty_repository.get_assigned_provider_ids(duty_id),
        }

    def list_open_duties(
        self, specialty: Optional[str] = None, page: int = 1, per_page: int = DEFAULT_PAGE_SIZE
    ) -> list[Duty]:
        limit = max(1, min(per_page, MAX_PAGE_SIZE))
        skip = (max(page, 1) - 1) * limit
        return self.duty_repository.list_open(specialty, skip, limit)
