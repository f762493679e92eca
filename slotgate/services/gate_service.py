# slotgate/services/gate_service.py
"""
Gate events: owner check-in/check-out by plate (OCR) or by booking id (QR),
and the rider's geofenced "arrived at gate" queue hold.

How it works:
  - Plate scans match today's (IST) bookings at that parking on the normalised plate;
    newest booking wins. The scan is stamped on the matched booking for audit
    whatever the outcome.
  - Check-in is allowed from 30 min before start to 30 min after end.
  - Check-out bills overstay past end + 5 min in whole 15-minute units and gives
    the slot back.
  - Gate status never moves backwards; every move is a conditional update.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from slotgate.config import settings
from slotgate.errors import AuthorizationError, InvalidInputError, NotFoundError, StateConflictError
from slotgate.models.booking import Booking, BookingStatus, GateMethod, GateStatus
from slotgate.models.parking import Parking
from slotgate.services import booking_state
from slotgate.services.booking_service import get_booking, get_user_booking
from slotgate.services.capacity_service import release_slot
from slotgate.services.parking_service import get_owned_parking, get_parking
from slotgate.utils.civil_time import civil_today, format_ymd, utc_now
from slotgate.utils.geo import distance_meters
from slotgate.utils.logger import get_logger
from slotgate.utils.plate import normalize_plate, plates_match

logger = get_logger(__name__)

PLATE_LOOKUP_STATUSES = (
    BookingStatus.UPCOMING,
    BookingStatus.ACTIVE,
    BookingStatus.CHECKED_IN,
    BookingStatus.OVERSTAYED,
)
CHECK_IN_STATUSES = (BookingStatus.UPCOMING, BookingStatus.ACTIVE)
ARRIVAL_STATUSES = (BookingStatus.UPCOMING, BookingStatus.ACTIVE)

REVOKE_REASON_LEFT_RADIUS = "LEFT_GATE_RADIUS"


@dataclass
class GateResult:
    message: str
    booking: Booking


@dataclass
class PlateScan:
    plate_number: str
    raw_text: Optional[str] = None
    confidence: Optional[float] = None


def compute_overstay(end: datetime, now: datetime) -> Tuple[int, float]:
    """(billable minutes, fine). Zero inside the exit grace."""
    billable = now - (end + timedelta(minutes=settings.EXIT_GRACE_MINUTES))
    if billable <= timedelta(0):
        return 0, 0.0
    units = math.ceil(billable / timedelta(minutes=settings.OVERSTAY_UNIT_MINUTES))
    minutes = math.ceil(billable.total_seconds() / 60)
    return minutes, float(units * settings.OVERSTAY_RATE_PER_UNIT)


def find_todays_booking_by_plate(db: Session, parking_id: int, plate: str,
                                 now: datetime) -> Optional[Booking]:
    plate_norm = normalize_plate(plate)
    if not plate_norm:
        return None
    candidates = (
        db.query(Booking)
        .filter(
            Booking.parking_id == parking_id,
            Booking.booking_date == civil_today(now),
            Booking.status.in_(PLATE_LOOKUP_STATUSES),
            Booking.gate_status != GateStatus.CHECKED_OUT,
        )
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .all()
    )
    return next((b for b in candidates if plates_match(b.vehicle_number, plate_norm)), None)


def _record_scan(db: Session, booking: Booking, scan: PlateScan, now: datetime):
    booking.last_plate_raw_text = str(scan.raw_text)[:200] if scan.raw_text else None
    booking.last_plate_normalized = normalize_plate(scan.plate_number)
    booking.last_plate_confidence = scan.confidence if isinstance(scan.confidence, (int, float)) else None
    booking.last_plate_scanned_at = now
    db.commit()


def _check_entry_window(booking: Booking, now: datetime):
    start, end = booking_state.window_of(booking)
    grace = timedelta(minutes=settings.GATE_GRACE_MINUTES)
    if now < start - grace:
        raise StateConflictError("Too early for this booking")
    if now > end + grace:
        raise StateConflictError("Booking time has passed")


def _check_in(db: Session, booking: Booking, method: GateMethod, now: datetime) -> GateResult:
    if booking.gate_status == GateStatus.CHECKED_OUT:
        raise StateConflictError("Booking already checked out")
    if booking.gate_status == GateStatus.CHECKED_IN:
        return GateResult("Already checked in", booking)
    if booking.status not in CHECK_IN_STATUSES:
        raise StateConflictError("Booking is not active")

    _check_entry_window(booking, now)

    matched = booking_state.apply_transition(
        db, booking, BookingStatus.CHECKED_IN,
        values={"checked_in_at": now, "entry_method": method},
        expected_gate=GateStatus.PENDING_ENTRY,
        target_gate=GateStatus.CHECKED_IN,
        now=now,
    )
    db.commit()
    if not matched:
        raise StateConflictError("Booking changed while checking in, scan again")
    db.refresh(booking)
    logger.info(f"[gate] Booking {booking.id} checked in via {method.value} ({booking.vehicle_number})")
    return GateResult("Checked in", booking)


def _check_out(db: Session, booking: Booking, method: GateMethod, now: datetime) -> GateResult:
    if booking.gate_status == GateStatus.CHECKED_OUT or booking.checked_out_at is not None:
        raise StateConflictError("Booking already checked out")
    if booking.gate_status != GateStatus.CHECKED_IN:
        raise StateConflictError("Booking is not checked in yet")

    _, end = booking_state.window_of(booking)
    overstay_minutes, overstay_fine = compute_overstay(end, now)

    matched = booking_state.apply_transition(
        db, booking, BookingStatus.COMPLETED,
        values={
            "checked_out_at": now,
            "exit_method": method,
            "overstay_minutes": overstay_minutes,
            "overstay_fine": overstay_fine,
        },
        expected_gate=GateStatus.CHECKED_IN,
        target_gate=GateStatus.CHECKED_OUT,
        now=now,
    )
    db.commit()
    if not matched:
        raise StateConflictError("Booking already checked out")

    release_slot(db, booking.parking_id)
    db.refresh(booking)
    logger.info(f"[gate] Booking {booking.id} checked out via {method.value}"
                + (f" — overstay {overstay_minutes} min, fine {overstay_fine}" if overstay_fine else ""))
    return GateResult("Checked out", booking)


def _booking_at_owned_parking(db: Session, owner_id: int, booking_id: int,
                              parking_id: Optional[int]) -> Booking:
    if not booking_id:
        raise InvalidInputError("bookingId is required")
    booking = get_booking(db, booking_id)
    parking = get_owned_parking(db, owner_id, parking_id or booking.parking_id)
    if booking.parking_id != parking.id:
        raise AuthorizationError("Access denied")
    return booking


def _plate_booking(db: Session, owner_id: int, parking_id: int, scan: PlateScan,
                   now: datetime) -> Booking:
    if not parking_id or not scan.plate_number:
        raise InvalidInputError("parkingId and plateNumber are required")
    get_owned_parking(db, owner_id, parking_id)
    booking = find_todays_booking_by_plate(db, parking_id, scan.plate_number, now)
    if not booking:
        logger.info(f"[gate] No booking on {format_ymd(now)} at parking {parking_id} for plate "
                    f"{normalize_plate(scan.plate_number)!r}")
        raise NotFoundError("No active booking found for this plate today")
    _record_scan(db, booking, scan, now)
    return booking


async def check_in_by_plate(db: Session, owner_id: int, parking_id: int, scan: PlateScan,
                            now: Optional[datetime] = None) -> GateResult:
    now = now or utc_now()
    booking = _plate_booking(db, owner_id, parking_id, scan, now)
    return _check_in(db, booking, GateMethod.PLATE_OCR, now)


async def check_out_by_plate(db: Session, owner_id: int, parking_id: int, scan: PlateScan,
                             now: Optional[datetime] = None) -> GateResult:
    now = now or utc_now()
    booking = _plate_booking(db, owner_id, parking_id, scan, now)
    return _check_out(db, booking, GateMethod.PLATE_OCR, now)


async def check_in_by_booking(db: Session, owner_id: int, booking_id: int,
                              parking_id: Optional[int] = None,
                              now: Optional[datetime] = None) -> GateResult:
    now = now or utc_now()
    booking = _booking_at_owned_parking(db, owner_id, booking_id, parking_id)
    return _check_in(db, booking, GateMethod.QR, now)


async def check_out_by_booking(db: Session, owner_id: int, booking_id: int,
                               parking_id: Optional[int] = None,
                               now: Optional[datetime] = None) -> GateResult:
    now = now or utc_now()
    booking = _booking_at_owned_parking(db, owner_id, booking_id, parking_id)
    return _check_out(db, booking, GateMethod.QR, now)


def _distance_to(parking: Parking, lat: float, lng: float) -> float:
    if lat is None or lng is None:
        raise InvalidInputError("latitude and longitude are required")
    return distance_meters(lat, lng, parking.lat, parking.lng)


async def arrive_at_gate(db: Session, user_id: int, booking_id: int, lat: float, lng: float,
                         now: Optional[datetime] = None) -> GateResult:
    """Rider is physically queued at the gate: keep the slot for a few more minutes."""
    now = now or utc_now()
    booking = get_user_booking(db, user_id, booking_id)

    if booking.status not in ARRIVAL_STATUSES or booking.gate_status != GateStatus.PENDING_ENTRY:
        raise StateConflictError("Booking is not awaiting entry")

    start, end = booking_state.window_of(booking)
    cutoff = booking_state.no_checkin_cutoff(start, end)
    window_opens = cutoff - timedelta(minutes=settings.ARRIVAL_WINDOW_MINUTES)
    if now < start or now < window_opens:
        raise StateConflictError("Too early to mark arrival")
    if now >= cutoff:
        raise StateConflictError("Arrival window has closed")

    parking = get_parking(db, booking.parking_id)
    distance = _distance_to(parking, lat, lng)
    if distance > settings.GATE_RADIUS_METERS:
        logger.info(f"[gate] Arrival for booking {booking.id} rejected: {distance:.0f} m from gate")
        raise StateConflictError(f"You must be within {settings.GATE_RADIUS_METERS:.0f} m of the parking")

    hold_until = now + timedelta(minutes=settings.QUEUE_HOLD_MINUTES)
    matched = (
        db.query(Booking)
        .filter(
            Booking.id == booking.id,
            Booking.status.in_(ARRIVAL_STATUSES),
            Booking.gate_status == GateStatus.PENDING_ENTRY,
        )
        .update({
            Booking.arrived_at_gate_at: now,
            Booking.queue_hold_until: hold_until,
            Booking.queue_hold_revoked_at: None,
            Booking.queue_hold_revoke_reason: None,
            Booking.updated_at: now,
        }, synchronize_session=False)
    )
    db.commit()
    if not matched:
        raise StateConflictError("Booking is not awaiting entry")
    db.refresh(booking)
    logger.info(f"[gate] Booking {booking.id} queued at gate until {hold_until} ({distance:.0f} m)")
    return GateResult("Arrival recorded", booking)


async def revoke_arrival(db: Session, user_id: int, booking_id: int, lat: float, lng: float,
                         now: Optional[datetime] = None) -> GateResult:
    now = now or utc_now()
    booking = get_user_booking(db, user_id, booking_id)

    if not booking_state.has_active_queue_hold(booking, now):
        raise StateConflictError("No active gate hold")

    parking = get_parking(db, booking.parking_id)
    distance = _distance_to(parking, lat, lng)
    if distance <= settings.GATE_RADIUS_METERS:
        raise StateConflictError("Still within the gate radius")

    matched = (
        db.query(Booking)
        .filter(
            Booking.id == booking.id,
            Booking.queue_hold_until > now,
            Booking.queue_hold_revoked_at.is_(None),
        )
        .update({
            Booking.queue_hold_until: None,
            Booking.queue_hold_revoked_at: now,
            Booking.queue_hold_revoke_reason: REVOKE_REASON_LEFT_RADIUS,
            Booking.updated_at: now,
        }, synchronize_session=False)
    )
    db.commit()
    if not matched:
        raise StateConflictError("No active gate hold")
    db.refresh(booking)
    logger.info(f"[gate] Booking {booking.id} gate hold revoked ({distance:.0f} m away)")
    return GateResult("Gate hold revoked", booking)
