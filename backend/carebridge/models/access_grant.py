"""
Health data access grants.

A grant lets a provider read or write a patient's health data for the lifetime
of a booking. Grants are revoked, never deleted.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from ..database import Base


class HealthAccessGrant(Base):
    __tablename__ = "health_access_grants"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    patient_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    provider_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id"), nullable=False, index=True
    )
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id"), nullable=True, index=True
    )
    access_level: Mapped[str] = mapped_column(String(20), nullable=False)
    allowed_resources: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    revoke_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def __repr__(self) -> str:
        state = "active" if self.is_active else "revoked"
        return f"<HealthAccessGrant {self.provider_id}->{self.patient_id} ({state})>"
