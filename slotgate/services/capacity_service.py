# slotgate/services/capacity_service.py
"""
Slot capacity controller.

Two layers guard a finite lot against overselling under parallel requests:
  1. the authoritative active-bookings count must be below the bookable limit;
  2. a compare-and-set on parkings.available_slots that only succeeds while the
     counter is above the conflict buffer.
No locks. Each acquire/release is one conditional UPDATE committed on its own.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from slotgate.errors import CapacityError
from slotgate.models.booking import Booking, BookingStatus, GateStatus
from slotgate.models.parking import Parking
from slotgate.utils.logger import get_logger

logger = get_logger(__name__)

NON_OCCUPYING_STATUSES = (
    BookingStatus.CANCELLED,
    BookingStatus.COMPLETED,
    BookingStatus.EXPIRED,
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.PAYMENT_FAILED,
)
BOOKED_STATUSES = (BookingStatus.UPCOMING, BookingStatus.ACTIVE)
INSIDE_STATUSES = (BookingStatus.CHECKED_IN, BookingStatus.OVERSTAYED)


@dataclass
class CapacitySnapshot:
    parking_id: int
    total_slots: int
    available_slots: int
    conflict_buffer: int
    bookable_limit: int
    active_bookings: int

    @property
    def can_admit(self) -> bool:
        return self.active_bookings < self.bookable_limit and self.available_slots > self.conflict_buffer


def conflict_buffer(total_slots) -> int:
    """Reserved margin: max(2, ceil(10%)), never more than the lot itself."""
    slots = int(total_slots or 0)
    if slots <= 0:
        return 0
    return min(slots, max(2, math.ceil(slots * 0.1)))


def bookable_limit(total_slots) -> int:
    slots = int(total_slots or 0)
    if slots <= 0:
        return 0
    return max(0, slots - conflict_buffer(slots))


def active_booking_criteria(parking_id: int, now: datetime):
    """
    Bookings currently holding a slot: booked, inside, or queued at the gate
    under an unrevoked, unexpired queue hold.
    """
    return and_(
        Booking.parking_id == parking_id,
        Booking.gate_status != GateStatus.CHECKED_OUT,
        Booking.status.notin_(NON_OCCUPYING_STATUSES),
        or_(
            Booking.status.in_(BOOKED_STATUSES),
            Booking.status.in_(INSIDE_STATUSES),
            and_(Booking.queue_hold_until > now, Booking.queue_hold_revoked_at.is_(None)),
        ),
    )


def count_active_bookings(db: Session, parking_id: int, now: datetime) -> int:
    return db.query(func.count(Booking.id)).filter(active_booking_criteria(parking_id, now)).scalar() or 0


def capacity_snapshot(db: Session, parking: Parking, now: datetime) -> CapacitySnapshot:
    return CapacitySnapshot(
        parking_id=parking.id,
        total_slots=parking.total_slots,
        available_slots=parking.available_slots,
        conflict_buffer=conflict_buffer(parking.total_slots),
        bookable_limit=bookable_limit(parking.total_slots),
        active_bookings=count_active_bookings(db, parking.id, now),
    )


def ensure_admissible(db: Session, parking: Parking, now: datetime):
    """Soft ceiling, checked before touching the counter."""
    limit = bookable_limit(parking.total_slots)
    active = count_active_bookings(db, parking.id, now)
    if active >= limit:
        logger.info(f"[capacity] Parking {parking.id} at soft limit ({active}/{limit}) — rejected")
        raise CapacityError("No slots available")


def acquire_slot(db: Session, parking: Parking, now: datetime):
    """
    Take one slot or raise CapacityError. On rejection nothing is written.
    Commits the counter decrement immediately.
    """
    ensure_admissible(db, parking, now)

    buffer = conflict_buffer(parking.total_slots)
    matched = (
        db.query(Parking)
        .filter(Parking.id == parking.id, Parking.available_slots > buffer)
        .update({Parking.available_slots: Parking.available_slots - 1}, synchronize_session=False)
    )
    db.commit()
    if not matched:
        logger.info(f"[capacity] Parking {parking.id} counter at buffer ({buffer}) — rejected")
        raise CapacityError("No slots available")
    logger.debug(f"[capacity] Parking {parking.id}: slot acquired")


def release_slot(db: Session, parking_id: int) -> bool:
    """
    Give one slot back, clamped to total_slots. Callers only invoke this after their
    own status transition matched, so each event releases once.
    """
    matched = (
        db.query(Parking)
        .filter(Parking.id == parking_id, Parking.available_slots < Parking.total_slots)
        .update({Parking.available_slots: Parking.available_slots + 1}, synchronize_session=False)
    )
    db.commit()
    if not matched:
        logger.warning(f"[capacity] Parking {parking_id}: release skipped, counter already at total")
    return matched == 1


def resize_slots(db: Session, parking_id: int, new_total: int) -> bool:
    """
    Set total_slots and shift available_slots by the same delta in one conditional
    UPDATE, so slots taken concurrently are never credited back. False if the new
    total is below the slots currently taken.
    """
    matched = (
        db.query(Parking)
        .filter(Parking.id == parking_id, Parking.total_slots - Parking.available_slots <= new_total)
        .update(
            {
                Parking.available_slots: Parking.available_slots + (new_total - Parking.total_slots),
                Parking.total_slots: new_total,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return matched == 1
