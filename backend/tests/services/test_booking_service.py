from __future__ import annotations

from datetime import time
from decimal import Decimal

import pytest
from tests.factories import booking_request

from carebridge.core.exceptions import (
    BookingConflictException,
    ForbiddenException,
    IllegalStatusTransitionException,
    NotFoundException,
    ValidationException,
)
from carebridge.models.booking import Booking, BookingStatus


class TestCreateBooking:
    def test_creates_requested_booking_with_pricing_snapshot(self, make_booking, patient):
        booking = make_booking()

        assert booking.status == BookingStatus.REQUESTED.value
        assert booking.patient_id == patient.id
        assert booking.provider_id is None
        assert booking.payment_status is None
        assert booking.base_price == Decimal("1000.00")
        assert booking.platform_fee == Decimal("150.00")
        assert booking.tax == Decimal("207.00")
        assert booking.payable_amount == Decimal("1357.00")

    def test_service_type_is_normalized(self, make_booking):
        booking = make_booking("home_nursing")
        assert booking.service_type == "HOME_NURSING"

    def test_surge_pricing_is_snapshotted(self, make_booking):
        booking = make_booking("PHYSIOTHERAPY", scheduled_time=time(21, 0))
        assert booking.base_price == Decimal("1200.00")

    def test_only_patients_can_book(self, booking_service, nurse, catalog):
        with pytest.raises(ForbiddenException):
            booking_service.create_booking(nurse.id, booking_request())

    def test_unknown_service_is_not_found(self, booking_service, patient, catalog):
        with pytest.raises(NotFoundException):
            booking_service.create_booking(patient.id, booking_request("ACUPUNCTURE"))

    def test_prescription_required(self, booking_service, patient, catalog):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.create_booking(patient.id, booking_request("IV_THERAPY"))
        assert exc_info.value.code == "PRESCRIPTION_REQUIRED"

        booking = booking_service.create_booking(
            patient.id,
            booking_request("IV_THERAPY", prescription_url="https://files.test/rx.pdf"),
        )
        assert booking.prescription_url == "https://files.test/rx.pdf"


class TestReads:
    def test_non_participant_cannot_read(self, booking_service, make_booking, other_patient):
        booking = make_booking()
        with pytest.raises(ForbiddenException):
            booking_service.get_booking(booking.id, other_patient.id)

    def test_admin_can_read(self, booking_service, make_booking, admin):
        booking = make_booking()
        assert booking_service.get_booking(booking.id, admin.id).id == booking.id

    def test_patient_listing_is_paginated(self, booking_service, make_booking, patient):
        for _ in range(3):
            make_booking()

        page = booking_service.list_patient_bookings(patient.id, page=1, per_page=2)

        assert page["total"] == 3
        assert len(page["items"]) == 2
        assert page["per_page"] == 2

    def test_listing_filters_by_status(self, booking_service, make_booking, patient, admin):
        first = make_booking()
        make_booking()
        booking_service.cancel_booking(first.id, admin.id, "duplicate")

        page = booking_service.list_patient_bookings(patient.id, status="cancelled")

        assert page["total"] == 1
        assert page["items"][0].id == first.id

    def test_admin_lists_all_bookings_with_filters(
        self, booking_service, make_booking, patient, other_patient, admin
    ):
        nursing = make_booking()
        physio = make_booking("PHYSIOTHERAPY", patient_id=other_patient.id)
        booking_service.cancel_booking(nursing.id, admin.id, "duplicate")

        everything = booking_service.list_all_bookings(admin.id)
        assert everything["total"] == 2
        assert {b.id for b in everything["items"]} == {nursing.id, physio.id}

        cancelled = booking_service.list_all_bookings(admin.id, status="cancelled")
        assert [b.id for b in cancelled["items"]] == [nursing.id]

        physio_only = booking_service.list_all_bookings(admin.id, service_type="physiotherapy")
        assert [b.id for b in physio_only["items"]] == [physio.id]

        by_patient = booking_service.list_all_bookings(admin.id, patient_id=other_patient.id)
        assert by_patient["total"] == 1

        paid = booking_service.list_all_bookings(admin.id, payment_status="PAID")
        assert paid["total"] == 0

    def test_all_bookings_listing_is_admin_only(self, booking_service, make_booking, patient):
        make_booking()
        with pytest.raises(ForbiddenException):
            booking_service.list_all_bookings(patient.id)

    def test_all_bookings_rejects_unknown_payment_status(self, booking_service, admin):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.list_all_bookings(admin.id, payment_status="settled")
        assert exc_info.value.code == "UNKNOWN_PAYMENT_STATUS"


class TestTransitions:
    def test_full_lifecycle_stamps_timestamps(
        self, booking_service, in_progress_booking, nurse
    ):
        assert in_progress_booking.status == BookingStatus.IN_PROGRESS.value
        assert in_progress_booking.confirmed_at is not None
        assert in_progress_booking.en_route_at is not None
        assert in_progress_booking.service_started_at is not None

        completed = booking_service.complete_service(
            in_progress_booking.id, nurse.id, {"observations": "stable"}
        )

        assert completed.status == BookingStatus.COMPLETED.value
        assert completed.service_ended_at is not None
        assert completed.duration_minutes == 0
        assert completed.service_report == {"observations": "stable"}

    def test_history_rows_are_appended(self, booking_service, in_progress_booking, nurse):
        history = booking_service.get_status_history(in_progress_booking.id, nurse.id)

        assert [(h.from_status, h.to_status) for h in history] == [
            ("REQUESTED", "SEARCHING"),
            ("SEARCHING", "ASSIGNED"),
            ("ASSIGNED", "CONFIRMED"),
            ("CONFIRMED", "EN_ROUTE"),
            ("EN_ROUTE", "IN_PROGRESS"),
        ]

    def test_illegal_transition_from_completed_leaves_booking_unchanged(
        self, db, booking_service, in_progress_booking, nurse, admin
    ):
        booking_service.complete_service(in_progress_booking.id, nurse.id, {})

        for target in ("CANCELLED", "IN_PROGRESS", "REQUESTED"):
            with pytest.raises(IllegalStatusTransitionException):
                booking_service.transition(in_progress_booking.id, target, admin.id)

        db.expire_all()
        stored = db.get(Booking, in_progress_booking.id)
        assert stored.status == BookingStatus.COMPLETED.value
        assert stored.cancelled_at is None

    def test_skipping_steps_is_rejected(self, booking_service, paid_booking, assignment_service, nurse):
        assignment_service.assign(paid_booking.id, nurse.id)

        with pytest.raises(IllegalStatusTransitionException):
            booking_service.transition(paid_booking.id, "IN_PROGRESS", nurse.id)

    def test_assigned_only_through_assignment(self, booking_service, paid_booking, admin):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.transition(paid_booking.id, "ASSIGNED", admin.id)
        assert exc_info.value.code == "ASSIGNMENT_REQUIRED"

    def test_unknown_status_rejected(self, booking_service, paid_booking, admin):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.transition(paid_booking.id, "TELEPORTED", admin.id)
        assert exc_info.value.code == "UNKNOWN_BOOKING_STATUS"

    def test_only_assigned_provider_moves_forward(
        self, booking_service, assignment_service, paid_booking, nurse, physiotherapist, patient
    ):
        assignment_service.assign(paid_booking.id, nurse.id)

        with pytest.raises(ForbiddenException):
            booking_service.transition(paid_booking.id, "CONFIRMED", physiotherapist.id)
        with pytest.raises(ForbiddenException):
            booking_service.transition(paid_booking.id, "CONFIRMED", patient.id)

        confirmed = booking_service.transition(paid_booking.id, "CONFIRMED", nurse.id)
        assert confirmed.status == BookingStatus.CONFIRMED.value

    def test_stale_status_write_is_a_conflict(self, db, booking_service, make_booking, admin):
        booking = make_booking()
        booking_service.cancel_booking(booking.id, admin.id)

        # Replay the write as if REQUESTED had been read before the cancel landed
        with pytest.raises(BookingConflictException) as exc_info:
            booking_service._apply_transition(
                booking, BookingStatus.REQUESTED, BookingStatus.SEARCHING, admin.id, None
            )
        assert exc_info.value.code == "BOOKING_STATUS_CHANGED"

        db.expire_all()
        assert db.get(Booking, booking.id).status == BookingStatus.CANCELLED.value


class TestCancellation:
    def test_patient_cancels_and_grants_are_revoked(
        self, booking_service, assignment_service, paid_booking, patient, nurse, access_grants, notifications
    ):
        assignment_service.assign(paid_booking.id, nurse.id)

        cancelled = booking_service.cancel_booking(paid_booking.id, patient.id, "feeling better")

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancelled_by_id == patient.id
        assert cancelled.cancellation_reason == "feeling better"
        assert cancelled.cancelled_at is not None
        assert access_grants.revocations[-1]["booking_id"] == paid_booking.id
        cancel_notices = notifications.of_type("booking_cancelled")
        assert [n["recipient_id"] for n in cancel_notices] == [nurse.id]

    def test_stranger_cannot_cancel(self, booking_service, make_booking, other_patient):
        booking = make_booking()
        with pytest.raises(ForbiddenException):
            booking_service.cancel_booking(booking.id, other_patient.id)

    def test_notification_failure_does_not_undo_cancel(
        self, booking_service, make_booking, admin, notifications
    ):
        booking = make_booking()
        notifications.fail = True

        cancelled = booking_service.cancel_booking(booking.id, admin.id)

        assert cancelled.status == BookingStatus.CANCELLED.value


class TestCompleteService:
    def test_vitals_captured_before_completion(
        self, booking_service, in_progress_booking, nurse, health_records
    ):
        report = {"vitals_checked": {"blood_pressure": "120/80", "heart_rate": 72}}

        completed = booking_service.complete_service(in_progress_booking.id, nurse.id, report)

        assert health_records.captured[0]["booking_id"] == in_progress_booking.id
        assert completed.service_report["vitals_checked"]["heart_rate"] == 72

    def test_capture_failure_does_not_block_completion(
        self, booking_service, in_progress_booking, nurse, health_records, access_grants
    ):
        health_records.fail = True

        completed = booking_service.complete_service(
            in_progress_booking.id, nurse.id, {"vitals_checked": {"heart_rate": 80}}
        )

        assert completed.status == BookingStatus.COMPLETED.value
        assert completed.service_report == {"vitals_checked": {"heart_rate": 80}}
        assert access_grants.revocations[-1]["booking_id"] == in_progress_booking.id

    def test_only_assigned_provider_completes(
        self, booking_service, in_progress_booking, physiotherapist
    ):
        with pytest.raises(ForbiddenException):
            booking_service.complete_service(in_progress_booking.id, physiotherapist.id, {})

    def test_requires_in_progress(self, booking_service, assignment_service, paid_booking, nurse):
        assignment_service.assign(paid_booking.id, nurse.id)
        with pytest.raises(ValidationException) as exc_info:
            booking_service.complete_service(paid_booking.id, nurse.id, {})
        assert exc_info.value.code == "SERVICE_NOT_IN_PROGRESS"


class TestReviews:
    def test_review_once(self, booking_service, in_progress_booking, nurse, patient):
        booking_service.complete_service(in_progress_booking.id, nurse.id, {})

        reviewed = booking_service.add_review(in_progress_booking.id, patient.id, 5, "Very kind")
        assert reviewed.rating_stars == 5

        with pytest.raises(BookingConflictException) as exc_info:
            booking_service.add_review(in_progress_booking.id, patient.id, 4)
        assert exc_info.value.code == "ALREADY_REVIEWED"

    def test_review_requires_completion(self, booking_service, in_progress_booking, patient):
        with pytest.raises(ValidationException) as exc_info:
            booking_service.add_review(in_progress_booking.id, patient.id, 5)
        assert exc_info.value.code == "BOOKING_NOT_COMPLETED"

    @pytest.mark.parametrize("stars", [0, 6])
    def test_rating_range(self, booking_service, make_booking, patient, stars):
        booking = make_booking()
        with pytest.raises(ValidationException) as exc_info:
            booking_service.add_review(booking.id, patient.id, stars)
        assert exc_info.value.code == "INVALID_RATING"
