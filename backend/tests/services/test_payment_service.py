from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest
from sqlalchemy.exc import OperationalError

from carebridge.core.exceptions import (
    BookingConflictException,
    ConflictException,
    ForbiddenException,
    GatewayException,
    ServiceException,
    ValidationException,
)
from carebridge.integrations.razorpay_client import compute_payment_signature
from carebridge.models.booking import Booking, BookingStatus, PaymentStatus

from tests.factories import TEST_SIGNING_SECRET


def _stored(db, booking_id: str) -> Booking:
    db.expire_all()
    return db.get(Booking, booking_id)


class TestCreateOrder:
    def test_creates_order_for_payable_amount_in_minor_units(
        self, db, payment_service, make_booking, patient, gateway
    ):
        booking = make_booking()

        order = payment_service.create_order(booking.id, patient.id)

        assert order.amount == 135700
        assert order.currency == "INR"
        assert order.reused is False
        stored = _stored(db, booking.id)
        assert stored.payment_status == PaymentStatus.PENDING.value
        assert stored.payment_order_id == order.order_id
        assert stored.payment_amount == 135700
        assert stored.payment_order_claim is None
        assert gateway.orders[order.order_id]["receipt"] == booking.id

    def test_repeat_call_returns_same_open_order(self, payment_service, make_booking, patient, gateway):
        booking = make_booking()

        first = payment_service.create_order(booking.id, patient.id)
        second = payment_service.create_order(booking.id, patient.id)

        assert second.order_id == first.order_id
        assert second.reused is True
        assert gateway.call_count("create_order") == 1

    def test_expired_order_is_replaced(self, db, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        first = payment_service.create_order(booking.id, patient.id)
        gateway.expire_order(first.order_id)

        second = payment_service.create_order(booking.id, patient.id)

        assert second.order_id != first.order_id
        assert _stored(db, booking.id).payment_order_id == second.order_id

    def test_unfetchable_order_is_replaced(self, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        first = payment_service.create_order(booking.id, patient.id)
        gateway.fail_next("fetch_order")

        second = payment_service.create_order(booking.id, patient.id)

        assert second.order_id != first.order_id
        assert gateway.call_count("create_order") == 2

    def test_order_paid_at_gateway_but_unverified_is_conflict(
        self, db, payment_service, make_booking, patient, gateway
    ):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        gateway.simulate_payment(order.order_id)

        with pytest.raises(BookingConflictException) as exc_info:
            payment_service.create_order(booking.id, patient.id)

        assert exc_info.value.code == "ORDER_ALREADY_PAID"
        assert _stored(db, booking.id).payment_order_id == order.order_id
        assert gateway.call_count("create_order") == 1

    def test_paid_booking_rejects_new_order(self, payment_service, paid_booking, patient):
        with pytest.raises(BookingConflictException) as exc_info:
            payment_service.create_order(paid_booking.id, patient.id)
        assert exc_info.value.code == "ALREADY_PAID"

    def test_only_patient_can_pay(self, payment_service, make_booking, other_patient):
        booking = make_booking()
        with pytest.raises(ForbiddenException):
            payment_service.create_order(booking.id, other_patient.id)

    def test_cancelled_booking_is_not_payable(
        self, payment_service, booking_service, make_booking, patient
    ):
        booking = make_booking()
        booking_service.cancel_booking(booking.id, patient.id)

        with pytest.raises(ValidationException) as exc_info:
            payment_service.create_order(booking.id, patient.id)
        assert exc_info.value.code == "BOOKING_NOT_PAYABLE"

    def test_gateway_failure_releases_claim(self, db, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        gateway.fail_next("create_order")

        with pytest.raises(GatewayException) as exc_info:
            payment_service.create_order(booking.id, patient.id)

        assert exc_info.value.code == "GATEWAY_ORDER_FAILED"
        stored = _stored(db, booking.id)
        assert stored.payment_order_claim is None
        assert stored.payment_status is None
        assert stored.payment_order_id is None

        retry = payment_service.create_order(booking.id, patient.id)
        assert _stored(db, booking.id).payment_order_id == retry.order_id

    def test_unexpected_gateway_error_is_mapped_and_releases_claim(
        self, db, payment_service, make_booking, patient, gateway, monkeypatch
    ):
        booking = make_booking()

        def broken_create_order(**kwargs):
            raise ValueError("malformed gateway response")

        monkeypatch.setattr(gateway, "create_order", broken_create_order)

        with pytest.raises(GatewayException) as exc_info:
            payment_service.create_order(booking.id, patient.id)

        assert exc_info.value.code == "GATEWAY_ORDER_FAILED"
        assert _stored(db, booking.id).payment_order_claim is None

    def test_record_failure_releases_claim_and_retry_succeeds(
        self, db, payment_service, make_booking, patient, gateway, monkeypatch
    ):
        booking = make_booking()
        repository = payment_service.booking_repository
        real_record = repository.record_payment_order
        calls = {"n": 0}

        def locked_once(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("UPDATE bookings", {}, Exception("database is locked"))
            return real_record(*args, **kwargs)

        monkeypatch.setattr(repository, "record_payment_order", locked_once)

        with pytest.raises(ServiceException):
            payment_service.create_order(booking.id, patient.id)

        stored = _stored(db, booking.id)
        assert stored.payment_order_claim is None
        assert stored.payment_status is None
        assert stored.payment_order_id is None

        retry = payment_service.create_order(booking.id, patient.id)

        assert _stored(db, booking.id).payment_order_id == retry.order_id
        assert gateway.call_count("create_order") == 2

    def test_payment_verified_during_order_creation_is_kept(
        self, db, session_factory, payment_service, payment_service_for, make_booking, patient, gateway,
        monkeypatch,
    ):
        booking = make_booking()
        booking_id = booking.id
        patient_id = patient.id
        first = payment_service.create_order(booking_id, patient_id)
        checkout = gateway.simulate_payment(first.order_id)
        gateway.fail_next("fetch_order")
        real_create_order = gateway.create_order

        def create_while_patient_pays(**kwargs):
            order = real_create_order(**kwargs)
            other = session_factory()
            try:
                payment_service_for(other).verify_payment(
                    booking_id, first.order_id, checkout["payment_id"], checkout["signature"], patient_id
                )
            finally:
                other.close()
            return order

        monkeypatch.setattr(gateway, "create_order", create_while_patient_pays)

        with pytest.raises(BookingConflictException) as exc_info:
            payment_service.create_order(booking_id, patient_id)

        assert exc_info.value.code == "ORDER_CLAIM_LOST"
        stored = _stored(db, booking_id)
        assert stored.payment_status == PaymentStatus.PAID.value
        assert stored.payment_id == checkout["payment_id"]
        assert stored.payment_order_id == first.order_id
        assert stored.payment_order_claim is None
        assert stored.status == BookingStatus.SEARCHING.value

    def test_concurrent_order_requests_create_one_gateway_order(
        self, db, session_factory, payment_service_for, make_booking, patient, gateway
    ):
        booking = make_booking()
        workers = 5
        barrier = threading.Barrier(workers)

        def attempt(_):
            session = session_factory()
            try:
                service = payment_service_for(session)
                barrier.wait()
                try:
                    return service.create_order(booking.id, patient.id).order_id
                except ConflictException:
                    return None
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(attempt, range(workers)))

        assert gateway.call_count("create_order") == 1
        order_ids = {r for r in results if r is not None}
        assert order_ids == {_stored(db, booking.id).payment_order_id}


class TestVerifyPayment:
    def test_valid_payment_marks_paid_and_releases_to_searching(
        self, db, payment_service, make_booking, patient, gateway, notifications
    ):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        checkout = gateway.simulate_payment(order.order_id)

        verified = payment_service.verify_payment(
            booking.id, order.order_id, checkout["payment_id"], checkout["signature"], patient.id
        )

        assert verified.payment_status == PaymentStatus.PAID.value
        assert verified.payment_id == checkout["payment_id"]
        assert verified.payment_paid_at is not None
        assert verified.status == BookingStatus.SEARCHING.value
        assert notifications.of_type("payment_received")[0]["recipient_id"] == patient.id

    def test_reverify_same_payment_is_idempotent(self, payment_service, paid_booking, patient):
        again = payment_service.verify_payment(
            paid_booking.id,
            paid_booking.payment_order_id,
            paid_booking.payment_id,
            compute_payment_signature(
                paid_booking.payment_order_id, paid_booking.payment_id, TEST_SIGNING_SECRET
            ),
            patient.id,
        )
        assert again.payment_status == PaymentStatus.PAID.value
        assert again.payment_paid_at == paid_booking.payment_paid_at

    def test_different_payment_on_paid_booking_is_conflict(self, payment_service, paid_booking):
        with pytest.raises(BookingConflictException) as exc_info:
            payment_service.verify_payment(
                paid_booking.id, paid_booking.payment_order_id, "pay_other", "sig"
            )
        assert exc_info.value.code == "ALREADY_PAID"

    def test_order_mismatch(self, db, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        payment_service.create_order(booking.id, patient.id)

        with pytest.raises(ValidationException) as exc_info:
            payment_service.verify_payment(booking.id, "order_somebody_else", "pay_1", "sig")

        assert exc_info.value.code == "ORDER_MISMATCH"
        assert _stored(db, booking.id).payment_status == PaymentStatus.PENDING.value

    def test_bad_signature_marks_failed(self, db, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        checkout = gateway.simulate_payment(order.order_id)

        with pytest.raises(ValidationException) as exc_info:
            payment_service.verify_payment(
                booking.id, order.order_id, checkout["payment_id"], "0" * 64
            )

        assert exc_info.value.code == "INVALID_SIGNATURE"
        stored = _stored(db, booking.id)
        assert stored.payment_status == PaymentStatus.FAILED.value
        assert stored.status == BookingStatus.REQUESTED.value
        assert gateway.call_count("fetch_payment") == 0

    def test_tampered_amount_is_never_paid(self, db, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        # Correctly signed, but the customer only paid one rupee
        checkout = gateway.simulate_payment(order.order_id, amount=100)

        with pytest.raises(ValidationException) as exc_info:
            payment_service.verify_payment(
                booking.id, order.order_id, checkout["payment_id"], checkout["signature"]
            )

        assert exc_info.value.code == "PAYMENT_MISMATCH"
        assert exc_info.value.details["mismatched_fields"] == ["amount"]
        stored = _stored(db, booking.id)
        assert stored.payment_status == PaymentStatus.FAILED.value
        assert stored.payment_id is None
        assert stored.status == BookingStatus.REQUESTED.value

    def test_currency_mismatch_is_rejected(self, payment_service, make_booking, patient, gateway):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        checkout = gateway.simulate_payment(order.order_id, currency="USD")

        with pytest.raises(ValidationException) as exc_info:
            payment_service.verify_payment(
                booking.id, order.order_id, checkout["payment_id"], checkout["signature"]
            )
        assert exc_info.value.details["mismatched_fields"] == ["currency"]

    def test_gateway_fetch_failure_leaves_state_untouched(
        self, db, payment_service, make_booking, patient, gateway
    ):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        checkout = gateway.simulate_payment(order.order_id)
        gateway.fail_next("fetch_payment")

        with pytest.raises(GatewayException) as exc_info:
            payment_service.verify_payment(
                booking.id, order.order_id, checkout["payment_id"], checkout["signature"]
            )

        assert exc_info.value.code == "GATEWAY_FETCH_FAILED"
        assert _stored(db, booking.id).payment_status == PaymentStatus.PENDING.value

        verified = payment_service.verify_payment(
            booking.id, order.order_id, checkout["payment_id"], checkout["signature"]
        )
        assert verified.payment_status == PaymentStatus.PAID.value

    def test_failed_payment_can_be_retried_on_same_order(
        self, payment_service, make_booking, patient, gateway
    ):
        booking = make_booking()
        order = payment_service.create_order(booking.id, patient.id)
        payment_service.record_payment_failure(booking.id, "card declined")

        checkout = gateway.simulate_payment(order.order_id)
        verified = payment_service.verify_payment(
            booking.id, order.order_id, checkout["payment_id"], checkout["signature"]
        )

        assert verified.payment_status == PaymentStatus.PAID.value
        assert verified.payment_failure_reason is None


class TestStatusAndFailures:
    def test_record_payment_failure(self, payment_service, make_booking, patient):
        booking = make_booking()
        payment_service.create_order(booking.id, patient.id)

        failed = payment_service.record_payment_failure(booking.id, "card declined")

        assert failed.payment_status == PaymentStatus.FAILED.value
        assert failed.payment_failure_reason == "card declined"

    def test_record_failure_without_order_is_rejected(self, payment_service, make_booking):
        booking = make_booking()
        with pytest.raises(ValidationException) as exc_info:
            payment_service.record_payment_failure(booking.id, "declined")
        assert exc_info.value.code == "NO_PENDING_PAYMENT"

    def test_payment_status_for_patient_and_admin(
        self, payment_service, paid_booking, patient, admin, other_patient
    ):
        status = payment_service.get_payment_status(paid_booking.id, patient.id)
        assert status.payment_status == PaymentStatus.PAID.value
        assert status.amount == 135700

        assert payment_service.get_payment_status(paid_booking.id, admin.id).payment_id

        with pytest.raises(ForbiddenException):
            payment_service.get_payment_status(paid_booking.id, other_patient.id)
