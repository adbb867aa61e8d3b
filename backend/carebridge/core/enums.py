# backend/carebridge/core/enums.py
"""
Core enums for the CareBridge platform.

This module contains enumeration types used throughout the application
for type safety and consistency.
"""

from enum import Enum


class RoleName(str, Enum):
    """Standard role names for platform users."""

    ADMIN = "admin"
    PATIENT = "patient"
    NURSE = "nurse"
    PHYSIOTHERAPIST = "physiotherapist"
    DOCTOR = "doctor"
    HOSPITAL = "hospital"


# Roles that can be assigned to a home-care booking
BOOKING_PROVIDER_ROLES = frozenset({RoleName.NURSE, RoleName.PHYSIOTHERAPIST})

# Roles that may hold health-data access grants
HEALTHCARE_PROVIDER_ROLES = frozenset(
    {RoleName.NURSE, RoleName.PHYSIOTHERAPIST, RoleName.DOCTOR}
)

# Roles that may post duties
DUTY_POSTER_ROLES = frozenset({RoleName.HOSPITAL, RoleName.ADMIN})


class NotificationType(str, Enum):
    BOOKING_ASSIGNED = "booking_assigned"
    BOOKING_STATUS_CHANGED = "booking_status_changed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    PAYMENT_RECEIVED = "payment_received"
    REFUND_PROCESSED = "refund_processed"
    APPLICATION_RECEIVED = "application_received"
    APPLICATION_ACCEPTED = "application_accepted"
    APPLICATION_REJECTED = "application_rejected"
    DUTY_FILLED = "duty_filled"
