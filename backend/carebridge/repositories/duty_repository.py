# backend/carebridge/repositories/duty_repository.py
"""
Duty Repository for the CareBridge Platform

Data access for hospital duties and their assigned-provider list. The fill
counter is only advanced through reserve_position, whose WHERE clause keeps
positions_filled within positions_needed under any interleaving.
"""

import logging
from typing import List, Optional, cast

from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.duty import Duty, DutyAssignment, DutyStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class DutyRepository(BaseRepository[Duty]):
    def __init__(self, db: Session):
        super().__init__(db, Duty)
        self.logger = logging.getLogger(__name__)

    def list_open(self, specialty: Optional[str] = None, skip: int = 0, limit: int = 20) -> List[Duty]:
        query = self._build_query().filter(Duty.status == DutyStatus.OPEN.value)
        if specialty:
            query = query.filter(Duty.specialty == specialty)
        query = query.order_by(Duty.duty_date.asc(), Duty.id.asc())
        return cast(List[Duty], self._execute_query(query.offset(skip).limit(limit)))

    def reserve_position(self, duty_id: str, provider_id: str) -> int:
        """Increment positions_filled iff the duty is open, not full and the provider holds no slot."""
        already_assigned = exists().where(
            DutyAssignment.duty_id == duty_id,
            DutyAssignment.provider_id == provider_id,
        )
        return self.conditional_update(
            duty_id,
            [
                Duty.status == DutyStatus.OPEN.value,
                Duty.positions_filled < Duty.positions_needed,
                ~already_assigned,
            ],
            {"positions_filled": Duty.positions_filled + 1},
        )

    def mark_filled_if_full(self, duty_id: str) -> int:
        return self.conditional_update(
            duty_id,
            [
                Duty.status == DutyStatus.OPEN.value,
                Duty.positions_filled >= Duty.positions_needed,
            ],
            {"status": DutyStatus.FILLED.value},
        )

    def increment_applications(self, duty_id: str) -> int:
        return self.conditional_update(
            duty_id, [], {"applications_count": Duty.applications_count + 1}
        )

    def decrement_applications(self, duty_id: str) -> int:
        return self.conditional_update(
            duty_id,
            [Duty.applications_count > 0],
            {"applications_count": Duty.applications_count - 1},
        )

    def add_assignment(
        self, duty_id: str, provider_id: str, application_id: Optional[str] = None
    ) -> DutyAssignment:
        """Insert an assignment row; the (duty, provider) unique key rejects duplicates."""
        try:
            assignment = DutyAssignment(
                duty_id=duty_id, provider_id=provider_id, application_id=application_id
            )
            self.db.add(assignment)
            self.db.flush()
            return assignment
        except IntegrityError as exc:
            self.logger.warning(
                "Duplicate assignment for duty %s provider %s", duty_id, provider_id
            )
            raise RepositoryException(f"Provider already assigned to duty: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error adding assignment to duty {duty_id}: {str(e)}")
            raise RepositoryException(f"Failed to add duty assignment: {str(e)}")

    def get_assigned_provider_ids(self, duty_id: str) -> List[str]:
        rows = (
            self.db.query(DutyAssignment.provider_id)
            .filter(DutyAssignment.duty_id == duty_id)
            .order_by(DutyAssignment.assigned_at.asc(), DutyAssignment.id.asc())
            .all()
        )
        return [row[0] for row in rows]
