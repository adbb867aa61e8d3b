# backend/carebridge/services/access_grant_service.py
"""
Health data access grants for providers assigned to bookings.

Grants are written and committed in a dedicated session: a grant either
exists for the caller to rely on, or the call raised.
"""

import logging
from typing import Optional, Sequence

from ..core.enums import HEALTHCARE_PROVIDER_ROLES
from ..core.exceptions import NotFoundException, ValidationException
from ..database import SessionFactory, SessionLocal, get_db_session
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

_PROVIDER_ROLE_VALUES = {role.value for role in HEALTHCARE_PROVIDER_ROLES}


class AccessGrantService:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or SessionLocal
        self.logger = logging.getLogger(self.__class__.__name__)

    def grant_access(
        self,
        *,
        patient_id: str,
        provider_id: str,
        booking_id: str,
        resources: Sequence[str],
        access_level: str,
        reason: Optional[str] = None,
    ) -> str:
        if not resources:
            raise ValidationException("At least one resource must be granted")

        with get_db_session(self._session_factory) as db:
            provider = db.get(User, provider_id)
            if provider is None:
                raise NotFoundException(f"Provider {provider_id} not found")
            if provider.role not in _PROVIDER_ROLE_VALUES or not provider.is_active:
                raise ValidationException(
                    "Only active healthcare providers can be granted access",
                    code="PROVIDER_NOT_ELIGIBLE",
                )

            grant = RepositoryFactory.create_access_grant_repository(db).create(
                patient_id=patient_id,
                provider_id=provider_id,
                booking_id=booking_id,
                access_level=access_level,
                allowed_resources=list(resources),
                reason=reason,
            )
            grant_id = grant.id

        self.logger.info(
            "Access granted",
            extra={"booking_id": booking_id, "provider_id": provider_id, "grant_id": grant_id},
        )
        return grant_id

    def revoke_booking_access(
        self,
        booking_id: str,
        revoked_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> int:
        with get_db_session(self._session_factory) as db:
            revoked = RepositoryFactory.create_access_grant_repository(db).revoke_for_booking(
                booking_id, revoked_by, reason, BaseService.utcnow()
            )
        if revoked:
            self.logger.info(
                "Access revoked",
                extra={"booking_id": booking_id, "revoked_count": revoked, "reason": reason},
            )
        return revoked

    def has_access(self, patient_id: str, provider_id: str) -> bool:
        with get_db_session(self._session_factory) as db:
            return RepositoryFactory.create_access_grant_repository(db).has_active_grant(
                patient_id, provider_id
            )
