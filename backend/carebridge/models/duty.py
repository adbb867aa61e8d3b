# backend/carebridge/models/duty.py
"""
Hospital duty postings and their assigned-provider list.

A duty has a fixed number of positions. positions_filled is only ever moved
by a conditional increment that also checks the duty is OPEN and not full,
so the counter cannot overshoot positions_needed.
"""

from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class DutyStatus(str, Enum):
    OPEN = "OPEN"
    FILLED = "FILLED"


class Duty(Base):
    __tablename__ = "duties"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    posted_by_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    hospital_name = Column(String(200), nullable=False)
    department = Column(String(100), nullable=True)
    specialty = Column(String(100), nullable=True)

    duty_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    hourly_rate = Column(Numeric(10, 2), nullable=False)

    positions_needed = Column(Integer, nullable=False, default=1)
    positions_filled = Column(Integer, nullable=False, default=0)
    applications_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=DutyStatus.OPEN.value, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assignments = relationship("DutyAssignment", back_populates="duty")

    __table_args__ = (
        CheckConstraint("status IN ('OPEN', 'FILLED')", name="ck_duties_status"),
        CheckConstraint("positions_needed >= 1", name="check_positions_needed_positive"),
        CheckConstraint(
            "positions_filled >= 0 AND positions_filled <= positions_needed",
            name="check_positions_filled_bounds",
        ),
        CheckConstraint("applications_count >= 0", name="check_applications_count_non_negative"),
    )

    @property
    def is_full(self) -> bool:
        return (self.positions_filled or 0) >= (self.positions_needed or 0)

    @property
    def assigned_provider_ids(self) -> list[str]:
        return [assignment.provider_id for assignment in self.assignments]

    def __repr__(self) -> str:
        return (
            f"<Duty {self.id}: {self.title} "
            f"{self.positions_filled}/{self.positions_needed} {self.status}>"
        )


class DutyAssignment(Base):
    """A provider holding one of the duty's positions."""

    __tablename__ = "duty_assignments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    duty_id = Column(String(26), ForeignKey("duties.id"), nullable=False, index=True)
    provider_id = Column(String(26), ForeignKey("users.id"), nullable=False)
    application_id = Column(String(26), ForeignKey("applications.id"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    duty = relationship("Duty", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("duty_id", "provider_id", name="uq_duty_assignment_provider"),
    )
