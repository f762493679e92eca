# slotgate/services/booking_service.py
"""
Direct booking creation (already-paid path), cancellation with refund, and listings.

Flow for create:
  validate window → initial status from the clock → acquire a slot → insert booking.
Flow for cancel:
  guard (UPCOMING/ACTIVE, gate untouched) → quote refund → conditional move to
  CANCELLED → release the slot only if that move matched.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from slotgate.errors import AuthorizationError, InvalidInputError, NotFoundError, StateConflictError
from slotgate.models.booking import Booking, BookingStatus, GateStatus
from slotgate.models.parking import Parking
from slotgate.services import booking_state
from slotgate.services.capacity_service import acquire_slot, release_slot
from slotgate.services.parking_service import get_parking
from slotgate.services.refund_service import RefundQuote, compute_refund
from slotgate.utils.civil_time import booking_window, civil_today, parse_civil_date, parse_hhmm, utc_now
from slotgate.utils.logger import get_logger
from slotgate.utils.plate import normalize_plate

logger = get_logger(__name__)


@dataclass
class BookingRequest:
    parking_id: int
    vehicle_number: str
    start_time: str
    end_time: str
    booking_date: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    duration: Optional[int] = None        # client's own figure, informational only
    total_price: Optional[float] = None


@dataclass
class BookingWindow:
    day: date
    start_time: str
    end_time: str
    start: datetime
    end: datetime


def parse_window(req: BookingRequest, now: datetime) -> BookingWindow:
    """Validate the requested civil window. Raises InvalidInputError, writes nothing."""
    if not req.parking_id or not normalize_plate(req.vehicle_number) or not req.start_time or not req.end_time:
        raise InvalidInputError("All fields are required")

    day = parse_civil_date(req.booking_date) if req.booking_date else civil_today(now)
    start_h, start_m = parse_hhmm(req.start_time)
    end_h, end_m = parse_hhmm(req.end_time)
    start_time, end_time = f"{start_h:02d}:{start_m:02d}", f"{end_h:02d}:{end_m:02d}"
    start, end = booking_window(day, start_time, end_time)
    if end <= start:
        raise InvalidInputError("End time must be after start time")
    return BookingWindow(day=day, start_time=start_time, end_time=end_time, start=start, end=end)


def price_for(window: BookingWindow, price_per_hour: float) -> Tuple[int, float]:
    """Whole hours, rounded up, at least one."""
    hours = math.ceil((window.end - window.start).total_seconds() / 3600)
    duration = max(1, hours)
    return duration, duration * float(price_per_hour)


def log_client_mismatch(req: BookingRequest, duration: int, total_price: float):
    # Server figures win; a disagreeing client is only worth a log line
    if req.duration is not None and int(req.duration) != duration:
        logger.info(f"Client duration {req.duration} ≠ server {duration} for parking {req.parking_id}")
    if req.total_price is not None and float(req.total_price) != total_price:
        logger.info(f"Client price {req.total_price} ≠ server {total_price} for parking {req.parking_id}")


def contact_fields(req: BookingRequest) -> dict:
    return {
        "customer_name": (req.customer_name or "").strip() or None,
        "customer_email": (req.customer_email or "").strip().lower() or None,
        "customer_phone": (req.customer_phone or "").strip() or None,
    }


def get_booking(db: Session, booking_id: int) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def get_user_booking(db: Session, user_id: int, booking_id: int) -> Booking:
    booking = get_booking(db, booking_id)
    if booking.user_id != user_id:
        raise AuthorizationError("Not allowed")
    return booking


async def create_booking(db: Session, user_id: int, req: BookingRequest,
                         now: Optional[datetime] = None) -> Booking:
    now = now or utc_now()
    window = parse_window(req, now)
    status = booking_state.initial_status(now, window.start, window.end)
    parking = get_parking(db, req.parking_id)

    acquire_slot(db, parking, now)

    duration, total_price = price_for(window, parking.price)
    log_client_mismatch(req, duration, total_price)

    booking = Booking(
        parking_id=parking.id,
        user_id=user_id,
        vehicle_number=normalize_plate(req.vehicle_number),
        booking_date=window.day,
        start_time=window.start_time,
        end_time=window.end_time,
        duration=duration,
        total_price=total_price,
        status=status,
        gate_status=GateStatus.PENDING_ENTRY,
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
    logger.info(f"Booking {booking.id} created: parking={parking.id} {window.day} "
                f"{window.start_time}-{window.end_time} status={status.value} price={total_price}")
    return booking


async def cancel_booking(db: Session, user_id: int, booking_id: int,
                         now: Optional[datetime] = None) -> Tuple[Booking, RefundQuote]:
    now = now or utc_now()
    booking = get_user_booking(db, user_id, booking_id)

    if not booking_state.can_cancel(booking):
        raise StateConflictError("Booking cannot be cancelled")

    start, _ = booking_state.window_of(booking)
    quote = compute_refund(now, booking.paid_at, booking.payment_status, start, booking.total_price)

    matched = booking_state.apply_transition(
        db, booking, BookingStatus.CANCELLED,
        values={"cancelled_at": now, "refund_percent": quote.percent, "refund_amount": quote.amount},
        expected_gate=GateStatus.PENDING_ENTRY,
        now=now,
        extra_filters=(Booking.arrived_at_gate_at.is_(None),),
    )
    db.commit()
    if not matched:
        raise StateConflictError("Booking cannot be cancelled")

    release_slot(db, booking.parking_id)
    db.refresh(booking)
    logger.info(f"Booking {booking.id} cancelled — refund {quote.percent:.0%} ({quote.amount})")
    return booking, quote


def list_user_bookings(db: Session, user_id: int) -> list:
    return (
        db.query(Booking)
        .filter(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .all()
    )


def list_owner_bookings(db: Session, owner_id: int, parking_id: Optional[int] = None) -> list:
    owned = [pid for (pid,) in db.query(Parking.id).filter(Parking.owner_id == owner_id).all()]
    if parking_id is not None:
        if parking_id not in owned:
            raise AuthorizationError("Access denied")
        owned = [parking_id]
    if not owned:
        return []
    return (
        db.query(Booking)
        .filter(Booking.parking_id.in_(owned))
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .all()
    )
