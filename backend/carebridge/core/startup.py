# backend/carebridge/core/startup.py
"""
Process startup and service wiring for the CareBridge transaction core.

Entry points (API workers, scripts, tests) call initialize() once and build
services per database session with build_core_services().
"""

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from .config import is_running_tests, settings
from .constants import BRAND_NAME
from .logging_config import configure_logging

if TYPE_CHECKING:
    from ..services.application_service import ApplicationService
    from ..services.booking_service import BookingService
    from ..services.duty_service import DutyService
    from ..services.payment_service import PaymentService
    from ..services.provider_assignment_service import ProviderAssignmentService
    from ..services.refund_service import RefundService

logger = logging.getLogger(__name__)


def initialize(bind: Optional[Engine] = None, *, create_schema: bool = True) -> None:
    """Configure logging and error reporting, then create missing tables."""
    from ..database import Base, engine
    from ..monitoring.sentry import init_sentry
    import carebridge.models  # noqa: F401  registers every mapper on Base.metadata

    configure_logging()
    logger.info(f"{BRAND_NAME} transaction core starting (environment={settings.environment})")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    init_sentry()

    if create_schema:
        target = bind or engine
        Base.metadata.create_all(bind=target)
        logger.info("Database schema ready")


@dataclass
class CoreServices:
    bookings: "BookingService"
    assignments: "ProviderAssignmentService"
    payments: "PaymentService"
    refunds: "RefundService"
    duties: "DutyService"
    applications: "ApplicationService"


def build_core_services(
    db: Session,
    *,
    session_factory=None,
    gateway=None,
) -> CoreServices:
    """
    Wire the five coordinators around one session.

    Collaborators (access grants, notifications, health records, alerts)
    write through their own short-lived sessions from session_factory so a
    failure there never rolls back the caller's transaction.
    """
    from ..integrations.razorpay_client import build_payment_gateway
    from ..services.access_grant_service import AccessGrantService
    from ..services.alert_service import AlertService
    from ..services.application_service import ApplicationService
    from ..services.booking_service import BookingService
    from ..services.duty_service import DutyService
    from ..services.health_record_service import HealthRecordService
    from ..services.notification_service import NotificationService
    from ..services.payment_service import PaymentService
    from ..services.provider_assignment_service import ProviderAssignmentService
    from ..services.refund_service import RefundService

    access_grants = AccessGrantService(session_factory)
    notifications = NotificationService(session_factory)
    gateway = gateway or build_payment_gateway()

    return CoreServices(
        bookings=BookingService(
            db,
            access_grants=access_grants,
            notifications=notifications,
            health_records=HealthRecordService(session_factory),
        ),
        assignments=ProviderAssignmentService(
            db, access_grants=access_grants, notifications=notifications
        ),
        payments=PaymentService(db, gateway=gateway, notifications=notifications),
        refunds=RefundService(
            db, gateway=gateway, alerts=AlertService(session_factory), notifications=notifications
        ),
        duties=DutyService(db),
        applications=ApplicationService(db, notifications=notifications),
    )
