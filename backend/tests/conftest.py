# backend/tests/conftest.py
"""
Pytest configuration for the CareBridge transaction core.

Every test gets its own file-backed SQLite database so that worker threads
holding separate sessions genuinely race on the same rows. External
collaborators are replaced with in-memory fakes; the payment gateway is the
in-memory Razorpay fake.
"""

import os

# Set testing mode BEFORE any carebridge imports
os.environ["is_testing"] = "true"
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test-signing-secret"
os.environ["RAZORPAY_FAKE"] = "true"

from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import Session

from carebridge.core.config import settings
from carebridge.core.enums import RoleName
from carebridge.core.exceptions import CriticalReconciliationError
from carebridge.database import Base, build_engine, build_session_factory
from carebridge.integrations.razorpay_client import FakeRazorpayClient
import carebridge.models  # noqa: F401
from carebridge.models.service_catalog import ServiceCatalog
from carebridge.models.user import User
from carebridge.services.application_service import ApplicationService
from carebridge.services.booking_service import BookingService
from carebridge.services.duty_service import DutyService
from carebridge.services.payment_service import PaymentService
from carebridge.services.provider_assignment_service import ProviderAssignmentService
from carebridge.services.refund_service import RefundService
from tests.factories import TEST_SIGNING_SECRET, booking_request

settings.is_testing = True


# ============================================================================
# Collaborator fakes
# ============================================================================


class FakeAccessGrants:
    """Records grants and revocations; ``fail_grants`` makes grant_access raise."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.grants: List[Dict[str, Any]] = []
        self.revocations: List[Dict[str, Any]] = []
        self.fail_grants = False

    def grant_access(self, *, patient_id, provider_id, booking_id, resources, access_level, reason=None):
        if self.fail_grants:
            raise RuntimeError("access grant store unavailable")
        with self._lock:
            self.grants.append(
                {
                    "patient_id": patient_id,
                    "provider_id": provider_id,
                    "booking_id": booking_id,
                    "resources": tuple(resources),
                    "access_level": access_level,
                }
            )
            return f"grant-{len(self.grants)}"

    def revoke_booking_access(self, booking_id, revoked_by=None, reason=None):
        with self._lock:
            self.revocations.append(
                {"booking_id": booking_id, "revoked_by": revoked_by, "reason": reason}
            )
        return 1


class FakeNotifications:
    def __init__(self) -> None:
        self._lock = Lock()
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    def notify(self, recipient_id, type, payload):
        if self.fail:
            raise RuntimeError("notification backend down")
        with self._lock:
            self.sent.append({"recipient_id": recipient_id, "type": type, "payload": payload})

    def of_type(self, type: str) -> List[Dict[str, Any]]:
        return [n for n in self.sent if n["type"] == type]


class FakeHealthRecords:
    def __init__(self) -> None:
        self.captured: List[Dict[str, Any]] = []
        self.fail = False

    def capture_vitals(self, patient_id, booking_id, report, provider_id):
        if self.fail:
            raise RuntimeError("health record store unavailable")
        self.captured.append({"patient_id": patient_id, "booking_id": booking_id, "report": report})
        return len((report.get("vitals_checked") or {}))


class FakeAlerts:
    def __init__(self) -> None:
        self.raised: List[CriticalReconciliationError] = []

    def raise_reconciliation_alert(self, error):
        self.raised.append(error)


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'carebridge_test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session: Session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Seed data
# ============================================================================


def _create_user(db: Session, role: RoleName, name: str, is_active: bool = True) -> User:
    user = User(
        email=f"{name}@carebridge.test",
        full_name=name.replace("_", " ").title(),
        role=role.value,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def patient(db):
    return _create_user(db, RoleName.PATIENT, "test_patient")


@pytest.fixture
def other_patient(db):
    return _create_user(db, RoleName.PATIENT, "other_patient")


@pytest.fixture
def nurse(db):
    return _create_user(db, RoleName.NURSE, "test_nurse")


@pytest.fixture
def nurses(db):
    return [_create_user(db, RoleName.NURSE, f"nurse_{i}") for i in range(5)]


@pytest.fixture
def physiotherapist(db):
    return _create_user(db, RoleName.PHYSIOTHERAPIST, "test_physio")


@pytest.fixture
def inactive_nurse(db):
    return _create_user(db, RoleName.NURSE, "inactive_nurse", is_active=False)


@pytest.fixture
def admin(db):
    return _create_user(db, RoleName.ADMIN, "test_admin")


@pytest.fixture
def hospital(db):
    return _create_user(db, RoleName.HOSPITAL, "city_hospital")


@pytest.fixture
def doctors(db):
    return [_create_user(db, RoleName.DOCTOR, f"doctor_{i}") for i in range(5)]


@pytest.fixture
def catalog(db):
    services = {
        "HOME_NURSING": ServiceCatalog(name="HOME_NURSING", base_price=Decimal("1000.00")),
        "PHYSIOTHERAPY": ServiceCatalog(
            name="PHYSIOTHERAPY",
            base_price=Decimal("800.00"),
            package_price=Decimal("7000.00"),
            surge_start_hour=20,
            surge_end_hour=23,
            surge_multiplier=Decimal("1.50"),
        ),
        "IV_THERAPY": ServiceCatalog(
            name="IV_THERAPY", base_price=Decimal("1500.00"), prescription_required=True
        ),
    }
    db.add_all(services.values())
    db.commit()
    return services


# ============================================================================
# Collaborators and services
# ============================================================================


@pytest.fixture
def access_grants():
    return FakeAccessGrants()


@pytest.fixture
def notifications():
    return FakeNotifications()


@pytest.fixture
def health_records():
    return FakeHealthRecords()


@pytest.fixture
def alerts():
    return FakeAlerts()


@pytest.fixture
def gateway():
    return FakeRazorpayClient(key_secret=TEST_SIGNING_SECRET)


@pytest.fixture
def booking_service_for(access_grants, notifications, health_records):
    def build(session: Session) -> BookingService:
        return BookingService(
            session,
            access_grants=access_grants,
            notifications=notifications,
            health_records=health_records,
        )

    return build


@pytest.fixture
def assignment_service_for(access_grants, notifications):
    def build(session: Session) -> ProviderAssignmentService:
        return ProviderAssignmentService(
            session, access_grants=access_grants, notifications=notifications
        )

    return build


@pytest.fixture
def payment_service_for(gateway, notifications):
    def build(session: Session) -> PaymentService:
        return PaymentService(
            session,
            gateway=gateway,
            notifications=notifications,
            signature_secret=TEST_SIGNING_SECRET,
            currency="INR",
        )

    return build


@pytest.fixture
def refund_service_for(gateway, alerts, notifications):
    def build(session: Session, **kwargs: Any) -> RefundService:
        kwargs.setdefault("sleep", lambda _seconds: None)
        return RefundService(
            session, gateway=gateway, alerts=alerts, notifications=notifications, **kwargs
        )

    return build


@pytest.fixture
def application_service_for(notifications):
    def build(session: Session) -> ApplicationService:
        return ApplicationService(session, notifications=notifications)

    return build


@pytest.fixture
def booking_service(db, booking_service_for):
    return booking_service_for(db)


@pytest.fixture
def assignment_service(db, assignment_service_for):
    return assignment_service_for(db)


@pytest.fixture
def payment_service(db, payment_service_for):
    return payment_service_for(db)


@pytest.fixture
def refund_service(db, refund_service_for):
    return refund_service_for(db)


@pytest.fixture
def duty_service(db):
    return DutyService(db)


@pytest.fixture
def application_service(db, application_service_for):
    return application_service_for(db)


# ============================================================================
# Booking builders
# ============================================================================


@pytest.fixture
def make_booking(booking_service, patient, catalog):
    def build(service_type: str = "HOME_NURSING", patient_id: Optional[str] = None, **overrides: Any):
        return booking_service.create_booking(
            patient_id or patient.id, booking_request(service_type, **overrides)
        )

    return build


@pytest.fixture
def paid_booking(make_booking, payment_service, gateway, patient):
    """A booking whose payment was verified; status SEARCHING."""
    booking = make_booking()
    order = payment_service.create_order(booking.id, patient.id)
    checkout = gateway.simulate_payment(order.order_id)
    return payment_service.verify_payment(
        booking.id, order.order_id, checkout["payment_id"], checkout["signature"], patient.id
    )


@pytest.fixture
def in_progress_booking(paid_booking, assignment_service, booking_service, nurse):
    """A paid booking assigned to ``nurse`` and moved to IN_PROGRESS."""
    assignment_service.assign(paid_booking.id, nurse.id)
    for status in ("CONFIRMED", "EN_ROUTE", "IN_PROGRESS"):
        booking_service.transition(paid_booking.id, status, nurse.id)
    return booking_service.get_booking(paid_booking.id, nurse.id)
