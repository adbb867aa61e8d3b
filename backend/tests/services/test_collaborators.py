"""Default collaborator implementations, run against the test database."""

from __future__ import annotations

from decimal import Decimal

import pytest

from carebridge.core.exceptions import CriticalReconciliationError, ValidationException
from carebridge.core.startup import build_core_services
from carebridge.models.access_grant import HealthAccessGrant
from carebridge.models.health_metric import HealthMetric
from carebridge.models.monitoring import AlertHistory
from carebridge.repositories.factory import RepositoryFactory
from carebridge.services.access_grant_service import AccessGrantService
from carebridge.services.alert_service import RECONCILIATION_ALERT_TYPE, AlertService
from carebridge.services.booking_service import BookingService
from carebridge.services.health_record_service import HealthRecordService, extract_vitals
from carebridge.services.notification_service import NotificationService


class TestAccessGrantService:
    def test_grant_and_revoke(self, db, session_factory, make_booking, patient, nurse, admin):
        booking = make_booking()
        service = AccessGrantService(session_factory)

        grant_id = service.grant_access(
            patient_id=patient.id,
            provider_id=nurse.id,
            booking_id=booking.id,
            resources=["vitals", "medications"],
            access_level="READ",
        )

        assert db.get(HealthAccessGrant, grant_id).allowed_resources == ["vitals", "medications"]
        assert service.has_access(patient.id, nurse.id)
        grants = RepositoryFactory.create_access_grant_repository(db).list_active_for_booking(booking.id)
        assert [g.id for g in grants] == [grant_id]

        assert service.revoke_booking_access(booking.id, revoked_by=admin.id, reason="visit over") == 1
        assert not service.has_access(patient.id, nurse.id)
        assert service.revoke_booking_access(booking.id) == 0

    def test_only_providers_receive_grants(self, session_factory, make_booking, patient, other_patient):
        booking = make_booking()

        with pytest.raises(ValidationException) as exc_info:
            AccessGrantService(session_factory).grant_access(
                patient_id=patient.id,
                provider_id=other_patient.id,
                booking_id=booking.id,
                resources=["vitals"],
                access_level="READ",
            )

        assert exc_info.value.code == "PROVIDER_NOT_ELIGIBLE"

    def test_empty_resources_rejected(self, session_factory, patient, nurse):
        with pytest.raises(ValidationException):
            AccessGrantService(session_factory).grant_access(
                patient_id=patient.id,
                provider_id=nurse.id,
                booking_id="01HZZZZZZZZZZZZZZZZZZZZZZZ",
                resources=[],
                access_level="READ",
            )


class TestNotificationService:
    def test_notify_and_list(self, session_factory, patient):
        service = NotificationService(session_factory)

        service.notify(patient.id, "booking_assigned", {"booking_id": "b1"})

        stored = service.list_for_recipient(patient.id)
        assert [(n.type, n.payload) for n in stored] == [("booking_assigned", {"booking_id": "b1"})]

    def test_notify_never_raises(self, patient):
        def broken_factory():
            raise RuntimeError("no database")

        NotificationService(broken_factory).notify(patient.id, "booking_assigned", {})


class TestHealthRecordService:
    def test_extract_vitals(self):
        rows = extract_vitals(
            {
                "vitals_checked": {
                    "blood_pressure": "120/80",
                    "heart_rate": 72,
                    "temperature": "98.6",
                    "oxygen_saturation": None,
                }
            }
        )

        assert rows == [
            ("BP_SYSTOLIC", Decimal("120"), "mmHg"),
            ("BP_DIASTOLIC", Decimal("80"), "mmHg"),
            ("HEART_RATE", Decimal("72"), "bpm"),
            ("TEMPERATURE", Decimal("98.6"), "celsius"),
        ]

    def test_report_without_vitals(self):
        assert extract_vitals({"notes": "all good"}) == []

    def test_capture_persists_metrics(self, db, session_factory, make_booking, patient, nurse):
        booking = make_booking()

        count = HealthRecordService(session_factory).capture_vitals(
            patient.id, booking.id, {"vitals_checked": {"heart_rate": 80, "blood_sugar": 110}}, nurse.id
        )

        assert count == 2
        metrics = db.query(HealthMetric).filter(HealthMetric.booking_id == booking.id).all()
        assert {m.metric_type for m in metrics} == {"HEART_RATE", "BLOOD_SUGAR"}
        assert all(m.source == "BOOKING" for m in metrics)


class TestAlertService:
    def test_reconciliation_alert_is_persisted(self, db, session_factory):
        error = CriticalReconciliationError(
            "Refund rfnd_1 succeeded at the gateway but was not recorded",
            booking_id="01HBOOKING0000000000000000",
            details={"refund_id": "rfnd_1", "amount": 135700},
        )

        AlertService(session_factory).raise_reconciliation_alert(error)

        alert = db.query(AlertHistory).one()
        assert alert.alert_type == RECONCILIATION_ALERT_TYPE
        assert alert.severity == "critical"
        assert alert.details["refund_id"] == "rfnd_1"
        assert alert.details["booking_id"] == "01HBOOKING0000000000000000"

    def test_alert_never_raises_when_storage_fails(self):
        def broken_factory():
            raise RuntimeError("no database")

        error = CriticalReconciliationError("lost refund", booking_id="b1")
        AlertService(broken_factory).raise_reconciliation_alert(error)


def test_build_core_services_wires_one_session(db, session_factory, gateway):
    services = build_core_services(db, session_factory=session_factory, gateway=gateway)

    assert isinstance(services.bookings, BookingService)
    assert isinstance(services.bookings.access_grants, AccessGrantService)
    assert services.payments.gateway is gateway
    assert services.refunds.gateway is gateway
    assert isinstance(services.refunds.alerts, AlertService)
    for service in (
        services.bookings,
        services.assignments,
        services.payments,
        services.refunds,
        services.duties,
        services.applications,
    ):
        assert service.db is db
