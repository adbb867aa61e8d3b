# backend/carebridge/schemas/booking.py
"""
Booking schemas for the CareBridge platform.

Request DTOs for creating bookings, completing a visit with its service
report, and reviewing a completed visit.
"""

from datetime import date, time
import re
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.constants import MAX_REVIEW_COMMENT_LENGTH
from ._strict_base import StrictRequestModel

BLOOD_PRESSURE_REGEX = re.compile(r"^\s*\d{2,3}\s*/\s*\d{2,3}\s*$")


class BookingCreate(StrictRequestModel):
    """Create a home-care booking. Pricing is computed server-side."""

    service_type: str = Field(..., min_length=1, max_length=100, description="Catalog service name")
    scheduled_date: date = Field(..., description="Date of the visit")
    scheduled_time: time = Field(..., description="Local start time of the visit")
    service_location: Optional[str] = Field(None, max_length=500)
    special_requirements: Optional[str] = Field(None, max_length=1000)
    prescription_url: Optional[str] = Field(None, max_length=500)
    is_package: bool = False

    @field_validator("service_type")
    @classmethod
    def _normalize_service_type(cls, value: str) -> str:
        return value.strip().upper()


class Vitals(StrictRequestModel):
    """Vitals measured during a visit."""

    blood_pressure: Optional[str] = Field(None, description="Systolic/diastolic, e.g. 120/80")
    heart_rate: Optional[int] = Field(None, gt=0, lt=300)
    temperature: Optional[float] = Field(None, gt=25, lt=45, description="Celsius")
    oxygen_saturation: Optional[int] = Field(None, gt=0, le=100)
    blood_sugar: Optional[float] = Field(None, gt=0, lt=1000, description="mg/dL")

    @field_validator("blood_pressure")
    @classmethod
    def _check_blood_pressure(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not BLOOD_PRESSURE_REGEX.fullmatch(value):
            raise ValueError("blood_pressure must look like 120/80")
        return value.replace(" ", "")


class ServiceReport(StrictRequestModel):
    """Report filed by the provider when completing a visit."""

    vitals_checked: Optional[Vitals] = None
    procedures_performed: List[str] = Field(default_factory=list)
    observations: Optional[str] = Field(None, max_length=4000)
    recommendations: Optional[str] = Field(None, max_length=4000)
    next_visit_recommended: bool = False


class ReviewCreate(StrictRequestModel):
    stars: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=MAX_REVIEW_COMMENT_LENGTH)
