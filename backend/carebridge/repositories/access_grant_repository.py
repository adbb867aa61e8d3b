# backend/carebridge/repositories/access_grant_repository.py
"""
Access Grant Repository for the CareBridge Platform

Grants are never deleted. Revocation stamps revoked_at on every active grant
tied to a booking in one statement.
"""

from datetime import datetime
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..models.access_grant import HealthAccessGrant
from .base_repository import BaseRepository


class AccessGrantRepository(BaseRepository[HealthAccessGrant]):
    def __init__(self, db: Session):
        super().__init__(db, HealthAccessGrant)

    def list_active_for_booking(self, booking_id: str) -> List[HealthAccessGrant]:
        query = self._build_query().filter(
            HealthAccessGrant.booking_id == booking_id,
            HealthAccessGrant.revoked_at.is_(None),
        )
        return cast(List[HealthAccessGrant], self._execute_query(query))

    def has_active_grant(self, patient_id: str, provider_id: str) -> bool:
        query = self._build_query().filter(
            HealthAccessGrant.patient_id == patient_id,
            HealthAccessGrant.provider_id == provider_id,
            HealthAccessGrant.revoked_at.is_(None),
        )
        return query.first() is not None

    def revoke_for_booking(
        self,
        booking_id: str,
        revoked_by_id: Optional[str],
        reason: Optional[str],
        now: datetime,
    ) -> int:
        return self.conditional_update_where(
            [
                HealthAccessGrant.booking_id == booking_id,
                HealthAccessGrant.revoked_at.is_(None),
            ],
            {"revoked_at": now, "revoked_by_id": revoked_by_id, "revoke_reason": reason},
        )
