# slotgate/services/payment_service.py
"""
Payment hold coordinator: hold → external order → verify → confirm.

There is no transaction spanning the gateway call and our writes, so each step has
a compensation:

  step                          on failure
  ────────────────────────────  ──────────────────────────────────────────────
  validate + dedupe             nothing written
  acquire slot                  nothing written (CapacityError)
  insert PENDING_PAYMENT hold   release slot
  create gateway order          hold → PAYMENT_FAILED, release slot
  verify (window elapsed)       hold → EXPIRED, release slot; payment stays
                                captured at the gateway (logged for reconciliation)

The hold cleanup sweep in reconciliation.py races verify; both go through the same
status-guarded update, so exactly one of them wins.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from slotgate.config import settings
from slotgate.errors import (
    AuthorizationError, BookingWindowElapsedError, InvalidInputError, OrderInProgressError, SecurityError,
    StateConflictError,
)
from slotgate.models.booking import Booking, BookingStatus, GateStatus, PaymentStatus
from slotgate.services import booking_state
from slotgate.services.booking_service import (
    BookingRequest, contact_fields, get_booking, log_client_mismatch, parse_window, price_for,
)
from slotgate.services.capacity_service import acquire_slot, release_slot
from slotgate.services.parking_service import get_parking
from slotgate.services.payment_gateway import PROVIDER, RazorpayGateway
from slotgate.utils.civil_time import utc_now
from slotgate.utils.logger import get_logger
from slotgate.utils.plate import normalize_plate

logger = get_logger(__name__)


@dataclass
class HoldResult:
    booking_id: int
    order_id: Optional[str]
    amount: Optional[int]
    currency: str
    hold_expires_at: Optional[datetime]
    already_paid: bool = False
    reused: bool = False


def _same_request(req: BookingRequest, user_id: int, window):
    return (
        Booking.user_id == user_id,
        Booking.parking_id == req.parking_id,
        Booking.booking_date == window.day,
        Booking.start_time == window.start_time,
        Booking.end_time == window.end_time,
        Booking.vehicle_number == normalize_plate(req.vehicle_number),
    )


def _fail_hold(db: Session, booking: Booking, target: BookingStatus, reason: str, now: datetime,
               extra: Optional[dict] = None) -> bool:
    """Move a PENDING_PAYMENT hold to a failed terminal status and give its slot back."""
    values = {
        "payment_status": PaymentStatus.FAILED,
        "payment_failed_at": now,
        "payment_failure_reason": reason,
        "hold_expires_at": None,
    }
    values.update(extra or {})
    matched = booking_state.apply_transition(db, booking, target, values=values, now=now)
    db.commit()
    if matched:
        release_slot(db, booking.parking_id)
    return matched


async def create_hold(db: Session, gateway: RazorpayGateway, user_id: int, req: BookingRequest,
                      now: Optional[datetime] = None) -> HoldResult:
    now = now or utc_now()
    gateway.require_configured()

    window = parse_window(req, now)
    if now >= window.end:
        raise InvalidInputError("Booking time window has already passed")
    parking = get_parking(db, req.parking_id)

    paid = (
        db.query(Booking)
        .filter(
            *_same_request(req, user_id, window),
            Booking.payment_status == PaymentStatus.PAID,
            Booking.status != BookingStatus.CANCELLED,
        )
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .first()
    )
    if paid:
        logger.info(f"[hold] Booking {paid.id} already paid for this request — nothing created")
        return HoldResult(booking_id=paid.id, order_id=paid.payment_order_id, amount=paid.payment_amount,
                          currency=paid.payment_currency or settings.CURRENCY,
                          hold_expires_at=None, already_paid=True)

    existing = (
        db.query(Booking)
        .filter(
            *_same_request(req, user_id, window),
            Booking.status == BookingStatus.PENDING_PAYMENT,
            Booking.hold_expires_at > now,
        )
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .first()
    )
    if existing and existing.payment_order_id:
        logger.info(f"[hold] Reusing hold {existing.id} / order {existing.payment_order_id}")
        return HoldResult(booking_id=existing.id, order_id=existing.payment_order_id,
                          amount=existing.payment_amount,
                          currency=existing.payment_currency or settings.CURRENCY,
                          hold_expires_at=existing.hold_expires_at, reused=True)
    if existing:
        # Another request for the same hold is still waiting on the gateway
        logger.info(f"[hold] Hold {existing.id} has no order yet — asking the client to retry")
        raise OrderInProgressError("Payment order is still being created, retry shortly")

    acquire_slot(db, parking, now)

    duration, total_price = price_for(window, parking.price)
    log_client_mismatch(req, duration, total_price)
    amount = int(round(total_price * 100))

    booking = Booking(
        parking_id=parking.id,
        user_id=user_id,
        vehicle_number=normalize_plate(req.vehicle_number),
        booking_date=window.day,
        start_time=window.start_time,
        end_time=window.end_time,
        duration=duration,
        total_price=total_price,
        status=BookingStatus.PENDING_PAYMENT,
        gate_status=GateStatus.PENDING_ENTRY,
        hold_expires_at=now + timedelta(minutes=settings.PAYMENT_HOLD_MINUTES),
        payment_provider=PROVIDER,
        payment_amount=amount,
        payment_currency=settings.CURRENCY,
        payment_status=PaymentStatus.CREATED,
        created_at=now,
        updated_at=now,
        **contact_fields(req),
    )
    try:
        db.add(booking)
        db.commit()
    except Exception:
        db.rollback()
        release_slot(db, parking.id)
        raise
    db.refresh(booking)
    logger.info(f"[hold] Booking {booking.id} held until {booking.hold_expires_at} (amount={amount})")

    try:
        order = await gateway.create_order(
            amount=amount,
            currency=settings.CURRENCY,
            receipt=str(booking.id),
            notes={"bookingId": str(booking.id), "parkingId": str(parking.id), "userId": str(user_id)},
        )
    except Exception as e:
        logger.error(f"[hold] Order creation failed for booking {booking.id}: {e} — releasing hold")
        _fail_hold(db, booking, BookingStatus.PAYMENT_FAILED, "ORDER_CREATE_FAILED", now)
        raise

    booking.payment_order_id = order["id"]
    db.commit()
    db.refresh(booking)
    return HoldResult(booking_id=booking.id, order_id=booking.payment_order_id, amount=amount,
                      currency=booking.payment_currency, hold_expires_at=booking.hold_expires_at)


async def verify_payment(db: Session, gateway: RazorpayGateway, user_id: int, booking_id: int,
                         order_id: str, payment_id: str, signature: str,
                         now: Optional[datetime] = None) -> Booking:
    now = now or utc_now()
    gateway.require_configured()

    if not booking_id or not order_id or not payment_id or not signature:
        raise InvalidInputError("Missing payment details")

    booking = get_booking(db, booking_id)
    if booking.user_id != user_id:
        raise AuthorizationError("Access denied")
    if booking.status != BookingStatus.PENDING_PAYMENT:
        raise StateConflictError("Booking is not pending payment")
    if booking.hold_expires_at is not None and booking.hold_expires_at <= now:
        raise StateConflictError("Payment window expired")
    if booking.payment_order_id and booking.payment_order_id != order_id:
        logger.warning(f"[verify] Order mismatch on booking {booking.id}: got {order_id}")
        raise SecurityError("Order ID mismatch")
    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning(f"[verify] Bad signature on booking {booking.id} (order {order_id})")
        raise SecurityError("Invalid payment signature")

    payment_fields = {"payment_order_id": order_id, "payment_id": payment_id, "payment_signature": signature}
    start, end = booking_state.window_of(booking)
    target = booking_state.status_for_window(now, start, end)

    if target == BookingStatus.EXPIRED:
        matched = _fail_hold(db, booking, BookingStatus.EXPIRED, "BOOKING_WINDOW_ELAPSED", now,
                             extra=payment_fields)
        if not matched:
            raise StateConflictError("Payment window expired")
        # Captured at the gateway, failed locally: needs a manual refund decision
        logger.warning(f"[verify] RECONCILE: payment {payment_id} captured for booking {booking.id} "
                       f"after its window ended — booking expired, refund not issued")
        raise BookingWindowElapsedError("Booking time window has already passed")

    values = dict(payment_fields, payment_status=PaymentStatus.PAID, paid_at=now, hold_expires_at=None)
    matched = booking_state.apply_transition(db, booking, target, values=values, now=now)
    db.commit()
    if not matched:
        # Cleanup sweep expired the hold between our read and this write
        raise StateConflictError("Payment window expired")

    db.refresh(booking)
    logger.info(f"[verify] Booking {booking.id} paid ({payment_id}) → {target.value}")
    return booking
