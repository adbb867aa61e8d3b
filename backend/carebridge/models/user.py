# backend/carebridge/models/user.py
"""
User model for the CareBridge platform.

A single table holds every actor: patients who book home care, nurses and
physiotherapists who are assigned to bookings, doctors who apply for duties,
hospitals that post duties, and administrators.
"""

import logging

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import func
import ulid

from ..core.enums import BOOKING_PROVIDER_ROLES, RoleName
from ..database import Base

logger = logging.getLogger(__name__)


class User(Base):
    """
    Platform user.

    Attributes:
        id: ULID primary key
        email: Unique login email
        full_name: Display name
        role: One of RoleName values
        is_active: Inactive users cannot be assigned or act on resources
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(String(20), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    def has_role(self, role: RoleName) -> bool:
        return self.role == role.value

    @property
    def is_admin(self) -> bool:
        return self.has_role(RoleName.ADMIN)

    @property
    def can_take_bookings(self) -> bool:
        return bool(self.is_active) and self.role in {r.value for r in BOOKING_PROVIDER_ROLES}

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
