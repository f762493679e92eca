# slotgate/services/reconciliation.py
"""
Periodic reconciliation — moves bookings along as the clock passes their windows.

Two sweeps, each run every RECONCILE_INTERVAL_SECONDS on its own asyncio task:
  - advance_booking_statuses: UPCOMING → ACTIVE, no-show ACTIVE → EXPIRED (slot released),
    CHECKED_IN past end + exit grace → OVERSTAYED
  - expire_payment_holds: unpaid PENDING_PAYMENT past its hold → EXPIRED (slot released)

Every move is the same conditional update the request handlers use, so a sweep racing
a check-in or a payment verify just loses quietly. One bad row never stops a pass.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from slotgate.config import settings
from slotgate.database import SessionLocal
from slotgate.models.booking import Booking, BookingStatus, GateStatus, PaymentStatus
from slotgate.services import booking_state
from slotgate.services.capacity_service import release_slot
from slotgate.utils.civil_time import utc_now
from slotgate.utils.logger import get_logger

logger = get_logger(__name__)

HOLD_EXPIRED_REASON = "PAYMENT_WINDOW_EXPIRED"


@dataclass
class SweepStats:
    activated: int = 0
    expired: int = 0
    overstayed: int = 0
    holds_expired: int = 0
    errors: int = 0


def _advance_one(db: Session, booking: Booking, now: datetime, stats: SweepStats):
    start, end = booking_state.window_of(booking)

    if booking.status == BookingStatus.UPCOMING and now >= start:
        if booking_state.apply_transition(db, booking, BookingStatus.ACTIVE, now=now):
            stats.activated += 1
        db.commit()
        # Same pass can also expire it if the grace is already gone

    if booking_state.is_no_show(booking, now):
        matched = booking_state.apply_transition(
            db, booking, BookingStatus.EXPIRED,
            expected_gate=GateStatus.PENDING_ENTRY,
            now=now,
        )
        db.commit()
        if matched:
            release_slot(db, booking.parking_id)
            stats.expired += 1
            logger.info(f"[sweep] Booking {booking.id} expired — no check-in by "
                        f"{booking_state.no_checkin_cutoff(start, end)}")
        return

    if booking_state.is_overstayed(booking, now):
        matched = booking_state.apply_transition(
            db, booking, BookingStatus.OVERSTAYED,
            expected_gate=GateStatus.CHECKED_IN,
            now=now,
        )
        db.commit()
        if matched:
            stats.overstayed += 1


def advance_booking_statuses(db: Session, now: Optional[datetime] = None) -> SweepStats:
    now = now or utc_now()
    stats = SweepStats()
    candidates = (
        db.query(Booking)
        .filter(Booking.status.in_((BookingStatus.UPCOMING, BookingStatus.ACTIVE, BookingStatus.CHECKED_IN)))
        .order_by(Booking.id)
        .all()
    )
    for booking in candidates:
        try:
            _advance_one(db, booking, now, stats)
        except Exception as e:
            db.rollback()
            stats.errors += 1
            logger.error(f"[sweep] Booking {booking.id} status advance failed: {e}", exc_info=True)
    if stats.activated or stats.expired or stats.overstayed or stats.errors:
        logger.info(f"[sweep] statuses: activated={stats.activated} expired={stats.expired} "
                    f"overstayed={stats.overstayed} errors={stats.errors}")
    return stats


def expire_payment_holds(db: Session, now: Optional[datetime] = None) -> SweepStats:
    now = now or utc_now()
    stats = SweepStats()
    stale = (
        db.query(Booking)
        .filter(
            Booking.status == BookingStatus.PENDING_PAYMENT,
            Booking.hold_expires_at.isnot(None),
            Booking.hold_expires_at <= now,
        )
        .order_by(Booking.id)
        .all()
    )
    for booking in stale:
        try:
            matched = booking_state.apply_transition(
                db, booking, BookingStatus.EXPIRED,
                values={
                    "payment_status": PaymentStatus.FAILED,
                    "payment_failed_at": now,
                    "payment_failure_reason": HOLD_EXPIRED_REASON,
                    "hold_expires_at": None,
                },
                now=now,
                extra_filters=(Booking.hold_expires_at <= now,),
            )
            db.commit()
            if matched:
                release_slot(db, booking.parking_id)
                stats.holds_expired += 1
        except Exception as e:
            db.rollback()
            stats.errors += 1
            logger.error(f"[sweep] Hold {booking.id} expiry failed: {e}", exc_info=True)
    if stats.holds_expired or stats.errors:
        logger.info(f"[sweep] holds: expired={stats.holds_expired} errors={stats.errors}")
    return stats


async def run_periodic(name: str, sweep, interval: float):
    """Run `sweep(db)` forever with a fresh session per tick."""
    logger.info(f"🔁 {name} sweep started (every {interval}s)")
    while True:
        db = SessionLocal()
        try:
            sweep(db)
        except Exception as e:
            logger.error(f"❌ {name} sweep failed: {e}", exc_info=True)
        finally:
            db.close()
        await asyncio.sleep(interval)


async def start_reconciliation(interval: float = None):
    """
    Launch both sweeps concurrently.
    Called once at backend startup.
    """
    interval = interval or settings.RECONCILE_INTERVAL_SECONDS
    tasks = [
        asyncio.create_task(run_periodic("booking-status", advance_booking_statuses, interval)),
        asyncio.create_task(run_periodic("payment-hold", expire_payment_holds, interval)),
    ]
    logger.info(f"🚀 Reconciliation running: {len(tasks)} sweep(s)")
    await asyncio.gather(*tasks)
