# tests/test_payment_service.py
"""Unit tests for the payment hold coordinator and the Razorpay adapter."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import time

import pytest
import razorpay
import requests
from unittest.mock import AsyncMock, MagicMock
from slotgate.errors import (
    AuthorizationError, BookingWindowElapsedError, CapacityError, InvalidInputError, MisconfiguredError,
    OrderInProgressError, ProviderUnavailableError, RateLimitedError, SecurityError, StateConflictError,
)
from slotgate.models import Booking, BookingStatus, Parking, PaymentStatus
from slotgate.services.booking_service import BookingRequest
from slotgate.services.payment_gateway import PaymentGatewayError, RazorpayGateway
from slotgate.services.payment_service import create_hold, verify_payment
from slotgate.services.reconciliation import expire_payment_holds
from conftest import (
    RAZORPAY_SECRET, USER_ID, at, make_booking, make_paid_booking, make_parking, minutes, sign_payment,
)


def make_gateway(order_id="order_1", **kwargs):
    gateway = RazorpayGateway("rzp_test_key", RAZORPAY_SECRET)
    gateway.create_order = AsyncMock(return_value={"id": order_id, "amount": 10000}, **kwargs)
    return gateway


def make_request(parking, **overrides):
    fields = dict(parking_id=parking.id, vehicle_number="KA01AB1234", booking_date="2026-03-10",
                  start_time="10:00", end_time="12:00")
    fields.update(overrides)
    return BookingRequest(**fields)


def _available(db, parking_id):
    db.expire_all()
    return db.query(Parking).filter(Parking.id == parking_id).first().available_slots


def _booking(db, booking_id):
    db.expire_all()
    return db.query(Booking).filter(Booking.id == booking_id).first()


async def _verify(db, gateway, hold, now, payment_id="pay_1", signature=None, order_id=None, user_id=USER_ID):
    order_id = order_id or hold.order_id
    signature = signature or sign_payment(order_id, payment_id)
    return await verify_payment(db, gateway, user_id, hold.booking_id, order_id, payment_id, signature, now=now)


class TestCreateHold:
    @pytest.mark.asyncio
    async def test_hold_reserves_slot_and_creates_order(self, db):
        parking = make_parking(db, price=50.0)
        gateway = make_gateway()

        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))

        booking = _booking(db, hold.booking_id)
        assert hold.order_id == "order_1"
        assert hold.amount == 10000                  # 2h × 50 in paise
        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert booking.payment_status == PaymentStatus.CREATED
        assert booking.hold_expires_at == at("09:00") + minutes(2)
        assert booking.payment_order_id == "order_1"
        assert _available(db, parking.id) == 19
        gateway.create_order.assert_awaited_once()
        assert gateway.create_order.await_args.kwargs["receipt"] == str(booking.id)

    @pytest.mark.asyncio
    async def test_retry_within_hold_reuses_order(self, db):
        parking = make_parking(db)
        gateway = make_gateway()

        first = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        second = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:01"))

        assert second.reused is True
        assert (second.booking_id, second.order_id) == (first.booking_id, first.order_id)
        assert _available(db, parking.id) == 19
        gateway.create_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_paid_request_creates_nothing(self, db):
        parking = make_parking(db, available_slots=19)
        paid = make_paid_booking(db, parking, payment_order_id="order_old")
        gateway = make_gateway()

        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))

        assert hold.already_paid is True
        assert hold.booking_id == paid.id
        assert _available(db, parking.id) == 19
        gateway.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_different_vehicle_is_a_new_hold(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        hold = await create_hold(db, gateway, USER_ID, make_request(parking, vehicle_number="MH12XY9999"),
                                 now=at("09:00"))
        assert hold.reused is False
        assert _available(db, parking.id) == 18

    @pytest.mark.asyncio
    async def test_retry_with_differently_written_plate_reuses_hold(self, db):
        parking = make_parking(db)
        gateway = make_gateway()

        first = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        second = await create_hold(db, gateway, USER_ID, make_request(parking, vehicle_number="ka-01 ab 1234"),
                                   now=at("09:01"))

        assert second.reused is True
        assert second.booking_id == first.booking_id
        assert _booking(db, first.booking_id).vehicle_number == "KA01AB1234"
        assert _available(db, parking.id) == 19
        gateway.create_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hold_without_order_yet_asks_client_to_retry(self, db):
        parking = make_parking(db, available_slots=19)
        in_flight = make_booking(db, parking, status=BookingStatus.PENDING_PAYMENT,
                                 hold_expires_at=at("09:02"), created_at=at("09:00"))
        gateway = make_gateway()

        with pytest.raises(OrderInProgressError) as exc:
            await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:01"))

        assert exc.value.retryable is True
        assert db.query(Booking).count() == 1
        assert _booking(db, in_flight.id).payment_order_id is None
        assert _available(db, parking.id) == 19
        gateway.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_order_failure_compensates(self, db):
        parking = make_parking(db)
        gateway = make_gateway(side_effect=ProviderUnavailableError("Payment gateway timed out"))

        with pytest.raises(ProviderUnavailableError):
            await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))

        booking = db.query(Booking).one()
        assert booking.status == BookingStatus.PAYMENT_FAILED
        assert booking.payment_status == PaymentStatus.FAILED
        assert booking.payment_failure_reason == "ORDER_CREATE_FAILED"
        assert booking.hold_expires_at is None
        assert _available(db, parking.id) == 20

    @pytest.mark.asyncio
    async def test_invalid_window_writes_nothing(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        with pytest.raises(InvalidInputError):
            await create_hold(db, gateway, USER_ID, make_request(parking, end_time="10:00"), now=at("09:00"))
        assert db.query(Booking).count() == 0
        gateway.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_elapsed_window_rejected(self, db):
        parking = make_parking(db)
        with pytest.raises(InvalidInputError):
            await create_hold(db, make_gateway(), USER_ID, make_request(parking), now=at("12:00"))

    @pytest.mark.asyncio
    async def test_full_lot(self, db):
        parking = make_parking(db, total_slots=20, available_slots=2)
        gateway = make_gateway()
        with pytest.raises(CapacityError):
            await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        assert db.query(Booking).count() == 0

    @pytest.mark.asyncio
    async def test_unconfigured_gateway(self, db):
        parking = make_parking(db)
        with pytest.raises(MisconfiguredError):
            await create_hold(db, RazorpayGateway(None, None), USER_ID, make_request(parking), now=at("09:00"))
        assert _available(db, parking.id) == 20


class TestVerifyPayment:
    @pytest.mark.asyncio
    async def test_valid_signature_confirms_booking(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))

        booking = await _verify(db, gateway, hold, now=at("09:01"))

        assert booking.status == BookingStatus.UPCOMING
        assert booking.payment_status == PaymentStatus.PAID
        assert booking.paid_at == at("09:01")
        assert booking.payment_id == "pay_1"
        assert booking.hold_expires_at is None
        assert _available(db, parking.id) == 19

    @pytest.mark.asyncio
    async def test_verify_inside_window_is_active(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("10:30"))
        booking = await _verify(db, gateway, hold, now=at("10:31"))
        assert booking.status == BookingStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))

        with pytest.raises(SecurityError, match="Invalid payment signature"):
            await _verify(db, gateway, hold, now=at("09:01"), signature="deadbeef")
        assert _booking(db, hold.booking_id).status == BookingStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_signature_for_another_payment_rejected(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        forged = sign_payment(hold.order_id, "pay_other")
        with pytest.raises(SecurityError):
            await _verify(db, gateway, hold, now=at("09:01"), payment_id="pay_1", signature=forged)

    @pytest.mark.asyncio
    async def test_order_mismatch_rejected(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        with pytest.raises(SecurityError, match="Order ID mismatch"):
            await _verify(db, gateway, hold, now=at("09:01"), order_id="order_other")

    @pytest.mark.asyncio
    async def test_expired_hold_rejected(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        with pytest.raises(StateConflictError, match="Payment window expired"):
            await _verify(db, gateway, hold, now=at("09:02"))

    @pytest.mark.asyncio
    async def test_other_user_rejected(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        with pytest.raises(AuthorizationError):
            await _verify(db, gateway, hold, now=at("09:01"), user_id=USER_ID + 1)

    @pytest.mark.asyncio
    async def test_missing_details(self, db):
        with pytest.raises(InvalidInputError):
            await verify_payment(db, make_gateway(), USER_ID, 1, "order_1", "", "sig", now=at("09:00"))

    @pytest.mark.asyncio
    async def test_window_elapsed_expires_booking(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("11:59"))

        with pytest.raises(BookingWindowElapsedError):
            await _verify(db, gateway, hold, now=at("12:00") + minutes(0.5))

        booking = _booking(db, hold.booking_id)
        assert booking.status == BookingStatus.EXPIRED
        assert booking.payment_status == PaymentStatus.FAILED
        assert booking.payment_failure_reason == "BOOKING_WINDOW_ELAPSED"
        assert booking.payment_id == "pay_1"        # kept for the manual refund
        assert _available(db, parking.id) == 20

    @pytest.mark.asyncio
    async def test_verify_after_sweep_hits_early_guard(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))

        stats = expire_payment_holds(db, now=at("09:03"))
        assert stats.holds_expired == 1

        with pytest.raises(StateConflictError):
            await _verify(db, gateway, hold, now=at("09:01"))
        assert _available(db, parking.id) == 20

    @pytest.mark.asyncio
    async def test_sweep_expires_hold_between_verify_read_and_write(self, session_factory):
        verifier, sweeper = session_factory(), session_factory()
        try:
            parking = make_parking(verifier)
            gateway = make_gateway()
            hold = await create_hold(verifier, gateway, USER_ID, make_request(parking), now=at("09:00"))

            # Verify has already loaded the hold when the cleanup sweep commits in another session
            swept = []

            def expire_then_accept(*args):
                swept.append(expire_payment_holds(sweeper, now=at("09:03")))
                return True

            gateway.verify_signature = MagicMock(side_effect=expire_then_accept)

            with pytest.raises(StateConflictError, match="Payment window expired"):
                await _verify(verifier, gateway, hold, now=at("09:01"))

            assert swept[0].holds_expired == 1
            check = session_factory()
            booking = check.query(Booking).filter(Booking.id == hold.booking_id).one()
            assert booking.status == BookingStatus.EXPIRED
            assert booking.payment_status == PaymentStatus.FAILED
            assert booking.paid_at is None
            assert booking.payment_id is None
            assert check.query(Parking).filter(Parking.id == parking.id).one().available_slots == 20
            check.close()
        finally:
            verifier.close()
            sweeper.close()

    @pytest.mark.asyncio
    async def test_double_verify(self, db):
        parking = make_parking(db)
        gateway = make_gateway()
        hold = await create_hold(db, gateway, USER_ID, make_request(parking), now=at("09:00"))
        await _verify(db, gateway, hold, now=at("09:01"))
        with pytest.raises(StateConflictError):
            await _verify(db, gateway, hold, now=at("09:01"))


def _sdk_gateway(create=None, side_effect=None, timeout=None):
    gateway = RazorpayGateway("rzp_test_key", RAZORPAY_SECRET, timeout=timeout)
    gateway.client = MagicMock()
    if create is not None:
        gateway.client.order.create.side_effect = create
    elif side_effect is not None:
        gateway.client.order.create.side_effect = side_effect
    return gateway


class TestRazorpayGateway:
    def test_signature_check(self):
        gateway = RazorpayGateway("rzp_test_key", RAZORPAY_SECRET)
        good = sign_payment("order_1", "pay_1")
        assert gateway.verify_signature("order_1", "pay_1", good)
        assert not gateway.verify_signature("order_1", "pay_2", good)
        assert not gateway.verify_signature("order_1", "pay_1", None)

    def test_signature_under_other_secret_rejected(self):
        gateway = RazorpayGateway("rzp_test_key", RAZORPAY_SECRET)
        assert not gateway.verify_signature("order_1", "pay_1", sign_payment("order_1", "pay_1", secret="other"))

    def test_unconfigured_has_no_client(self):
        gateway = RazorpayGateway(None, None)
        assert gateway.client is None
        with pytest.raises(MisconfiguredError):
            gateway.verify_signature("order_1", "pay_1", "sig")

    @pytest.mark.asyncio
    async def test_create_order(self):
        gateway = _sdk_gateway()
        gateway.client.order.create.return_value = {"id": "order_9", "amount": 5000}

        order = await gateway.create_order(5000, "INR", "12", {"bookingId": "12"})

        assert order["id"] == "order_9"
        data = gateway.client.order.create.call_args.kwargs["data"]
        assert data == {"amount": 5000, "currency": "INR", "receipt": "12", "notes": {"bookingId": "12"}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raised,error,retryable", [
        (razorpay.errors.BadRequestError("Authentication failed"), MisconfiguredError, False),
        (razorpay.errors.BadRequestError("Too many requests"), RateLimitedError, True),
        (razorpay.errors.BadRequestError("amount must be at least INR 1.00"), PaymentGatewayError, False),
        (razorpay.errors.GatewayError("upstream failure"), PaymentGatewayError, True),
        (razorpay.errors.ServerError("The server encountered an error"), PaymentGatewayError, True),
        (requests.ConnectionError("connection refused"), ProviderUnavailableError, True),
    ])
    async def test_sdk_errors(self, raised, error, retryable):
        gateway = _sdk_gateway(side_effect=raised)
        with pytest.raises(error) as exc:
            await gateway.create_order(100, "INR", "1", {})
        assert exc.value.retryable is retryable

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        gateway = _sdk_gateway(create=lambda **kwargs: time.sleep(0.5), timeout=0.05)
        with pytest.raises(ProviderUnavailableError, match="timed out"):
            await gateway.create_order(100, "INR", "1", {})

    @pytest.mark.asyncio
    async def test_missing_order_id(self):
        gateway = _sdk_gateway()
        gateway.client.order.create.return_value = {"status": "created"}
        with pytest.raises(PaymentGatewayError):
            await gateway.create_order(100, "INR", "1", {})
