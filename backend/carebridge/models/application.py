# backend/carebridge/models/application.py
"""
Duty applications submitted by doctors.

Status moves PENDING -> ACCEPTED | REJECTED | WITHDRAWN exactly once. Rejections
made by the fill cascade are flagged with auto_rejected so they can be told
apart from manual decisions.
"""

from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class Application(Base):
    __tablename__ = "applications"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    duty_id = Column(String(26), ForeignKey("duties.id"), nullable=False, index=True)
    applicant_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    cover_letter = Column(Text, nullable=True)
    status = Column(
        String(20), nullable=False, default=ApplicationStatus.PENDING.value, index=True
    )
    notes = Column(Text, nullable=True)
    auto_rejected = Column(Boolean, nullable=False, default=False)

    decided_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    applied_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    duty = relationship("Duty")

    __table_args__ = (
        UniqueConstraint("duty_id", "applicant_id", name="uq_application_duty_applicant"),
        CheckConstraint(
            "status IN ('PENDING', 'ACCEPTED', 'REJECTED', 'WITHDRAWN')",
            name="ck_applications_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Application {self.id}: duty={self.duty_id} applicant={self.applicant_id} {self.status}>"
