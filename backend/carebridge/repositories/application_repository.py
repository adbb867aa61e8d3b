# backend/carebridge/repositories/application_repository.py
"""
Application Repository for the CareBridge Platform

Decisions on applications are conditional on the PENDING status, so an
application is accepted, rejected or withdrawn at most once.
"""

from datetime import datetime
import logging
from typing import Dict, List, Optional, cast

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.application import Application, ApplicationStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ApplicationRepository(BaseRepository[Application]):
    def __init__(self, db: Session):
        super().__init__(db, Application)
        self.logger = logging.getLogger(__name__)

    def get_for_duty_and_applicant(self, duty_id: str, applicant_id: str) -> Optional[Application]:
        return self.find_one_by(duty_id=duty_id, applicant_id=applicant_id)

    def list_for_duty(self, duty_id: str, status: Optional[str] = None) -> List[Application]:
        query = self._build_query().filter(Application.duty_id == duty_id)
        if status:
            query = query.filter(Application.status == status)
        query = query.order_by(Application.applied_at.asc(), Application.id.asc())
        return cast(List[Application], self._execute_query(query))

    def list_for_applicant(
        self, applicant_id: str, status: Optional[str] = None, skip: int = 0, limit: int = 20
    ) -> List[Application]:
        query = self._build_query().filter(Application.applicant_id == applicant_id)
        if status:
            query = query.filter(Application.status == status)
        query = query.order_by(Application.applied_at.desc(), Application.id.desc())
        return cast(List[Application], self._execute_query(query.offset(skip).limit(limit)))

    def decide(
        self,
        application_id: str,
        to_status: ApplicationStatus,
        decided_by_id: Optional[str],
        now: datetime,
        notes: Optional[str] = None,
    ) -> int:
        """Move a PENDING application to its final status."""
        values = {
            "status": to_status.value,
            "decided_by_id": decided_by_id,
            "decided_at": now,
            "auto_rejected": False,
        }
        if notes is not None:
            values["notes"] = notes
        return self.conditional_update(
            application_id,
            [Application.status == ApplicationStatus.PENDING.value],
            values,
        )

    def reject_pending_for_duty(
        self, duty_id: str, note: str, decided_by_id: Optional[str], now: datetime
    ) -> int:
        """Bulk reject every application still pending on a duty."""
        return self.conditional_update_where(
            [
                Application.duty_id == duty_id,
                Application.status == ApplicationStatus.PENDING.value,
            ],
            {
                "status": ApplicationStatus.REJECTED.value,
                "notes": note,
                "auto_rejected": True,
                "decided_by_id": decided_by_id,
                "decided_at": now,
            },
        )

    def count_by_status_for_applicant(self, applicant_id: str) -> Dict[str, int]:
        rows = (
            self.db.query(Application.status, func.count(Application.id))
            .filter(Application.applicant_id == applicant_id)
            .group_by(Application.status)
            .all()
        )
        return {status: int(count) for status, count in rows}
