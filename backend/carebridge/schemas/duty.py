# backend/carebridge/schemas/duty.py
"""Duty and application schemas for the CareBridge platform."""

from datetime import date, time
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field, model_validator

from ._strict_base import StrictModel, StrictRequestModel


class DutyCreate(StrictRequestModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=4000)
    hospital_name: str = Field(..., min_length=1, max_length=200)
    department: Optional[str] = Field(None, max_length=100)
    specialty: Optional[str] = Field(None, max_length=100)
    duty_date: date
    start_time: time
    end_time: time
    hourly_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    positions_needed: int = Field(1, ge=1, le=100)

    @model_validator(mode="after")
    def _check_times(self) -> "DutyCreate":
        if self.start_time == self.end_time:
            raise ValueError("end_time must differ from start_time")
        return self


class ApplicationCreate(StrictRequestModel):
    cover_letter: Optional[str] = Field(None, max_length=4000)


class ApplicationStats(StrictModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    acceptance_rate: float = 0.0
