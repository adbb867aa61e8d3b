"""
Database models for the CareBridge platform.

This module exports all SQLAlchemy models used in the application.
The models are organized by functionality:
- Users and the service catalog
- Bookings, their payment column group and status history
- Duties, assignments and applications
- Collaborator records: access grants, health metrics, notifications
- Operational alerts
"""

from .access_grant import HealthAccessGrant
from .application import Application, ApplicationStatus
from .booking import Booking, BookingStatus, BookingStatusChange, PaymentStatus
from .duty import Duty, DutyAssignment, DutyStatus
from .health_metric import HealthMetric
from .monitoring import AlertHistory
from .notification import Notification
from .service_catalog import ServiceCatalog
from .user import User

__all__ = [
    "AlertHistory",
    "Application",
    "ApplicationStatus",
    "Booking",
    "BookingStatus",
    "BookingStatusChange",
    "Duty",
    "DutyAssignment",
    "DutyStatus",
    "HealthAccessGrant",
    "HealthMetric",
    "Notification",
    "PaymentStatus",
    "ServiceCatalog",
    "User",
]
