# slotgate/services/booking_state.py
"""
Booking lifecycle state machine.

Status DAG:
  PENDING_PAYMENT → UPCOMING | ACTIVE | EXPIRED | PAYMENT_FAILED
  UPCOMING        → ACTIVE | CHECKED_IN | CANCELLED
  ACTIVE          → CHECKED_IN | EXPIRED | CANCELLED
  CHECKED_IN      → OVERSTAYED | COMPLETED
  OVERSTAYED      → COMPLETED
Gate status only moves forward: PENDING_ENTRY → CHECKED_IN → CHECKED_OUT.

Every write goes through apply_transition(): a single conditional UPDATE that only
matches while the row still has the status (and gate status) the caller read. Zero
matched rows means another request or the reconciliation sweep got there first.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from slotgate.config import settings
from slotgate.errors import InvalidInputError, StateConflictError
from slotgate.models.booking import Booking, BookingStatus, GateStatus
from slotgate.utils.civil_time import booking_window
from slotgate.utils.logger import get_logger

logger = get_logger(__name__)

S = BookingStatus

STATUS_TRANSITIONS = {
    S.PENDING_PAYMENT: frozenset({S.UPCOMING, S.ACTIVE, S.EXPIRED, S.PAYMENT_FAILED}),
    S.UPCOMING: frozenset({S.ACTIVE, S.CHECKED_IN, S.CANCELLED}),
    S.ACTIVE: frozenset({S.CHECKED_IN, S.EXPIRED, S.CANCELLED}),
    S.CHECKED_IN: frozenset({S.OVERSTAYED, S.COMPLETED}),
    S.OVERSTAYED: frozenset({S.COMPLETED}),
}

GATE_TRANSITIONS = {
    GateStatus.PENDING_ENTRY: frozenset({GateStatus.CHECKED_IN}),
    GateStatus.CHECKED_IN: frozenset({GateStatus.CHECKED_OUT}),
}

TERMINAL_STATUSES = frozenset({S.EXPIRED, S.CANCELLED, S.COMPLETED, S.PAYMENT_FAILED})
CANCELLABLE_STATUSES = frozenset({S.UPCOMING, S.ACTIVE})


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in STATUS_TRANSITIONS.get(current, frozenset())


def can_move_gate(current: GateStatus, target: GateStatus) -> bool:
    return target in GATE_TRANSITIONS.get(current, frozenset())


def assert_transition(current: BookingStatus, target: BookingStatus):
    if not can_transition(current, target):
        raise StateConflictError(f"Booking cannot move from {current.value} to {target.value}")


def window_of(booking: Booking):
    return booking_window(booking.booking_date, booking.start_time, booking.end_time)


def initial_status(now: datetime, start: datetime, end: datetime) -> BookingStatus:
    """Status for a booking created directly (already paid)."""
    if now >= end:
        raise InvalidInputError("Booking time window has already passed")
    return S.UPCOMING if now < start else S.ACTIVE


def status_for_window(now: datetime, start: datetime, end: datetime) -> BookingStatus:
    if now < start:
        return S.UPCOMING
    if now < end:
        return S.ACTIVE
    return S.EXPIRED


def no_checkin_cutoff(start: datetime, end: datetime) -> datetime:
    """A booking nobody checked into expires at min(end, start + grace)."""
    return min(end, start + timedelta(minutes=settings.NO_CHECKIN_GRACE_MINUTES))


def has_active_queue_hold(booking: Booking, now: datetime) -> bool:
    return (
        booking.queue_hold_until is not None
        and booking.queue_hold_until > now
        and booking.queue_hold_revoked_at is None
    )


def is_no_show(booking: Booking, now: datetime) -> bool:
    if booking.status != S.ACTIVE or booking.gate_status != GateStatus.PENDING_ENTRY:
        return False
    if has_active_queue_hold(booking, now):
        return False
    start, end = window_of(booking)
    return now >= no_checkin_cutoff(start, end)


def is_overstayed(booking: Booking, now: datetime) -> bool:
    if booking.status != S.CHECKED_IN or booking.gate_status != GateStatus.CHECKED_IN:
        return False
    _, end = window_of(booking)
    return now > end + timedelta(minutes=settings.EXIT_GRACE_MINUTES)


def can_cancel(booking: Booking) -> bool:
    """No cancelling once the rider has queued at or passed the gate."""
    return (
        booking.status in CANCELLABLE_STATUSES
        and booking.gate_status == GateStatus.PENDING_ENTRY
        and booking.arrived_at_gate_at is None
    )


def apply_transition(
    db: Session,
    booking: Booking,
    target: BookingStatus,
    values: Optional[dict] = None,
    expected_gate: Optional[GateStatus] = None,
    target_gate: Optional[GateStatus] = None,
    now: Optional[datetime] = None,
    extra_filters: tuple = (),
) -> bool:
    """
    Conditionally move `booking` to `target` (and optionally the gate to `target_gate`).
    Returns True iff the row still matched. Does not commit.
    """
    current = BookingStatus(booking.status)
    assert_transition(current, target)

    changes = {Booking.status: target}
    query = db.query(Booking).filter(Booking.id == booking.id, Booking.status == current)

    if target_gate is not None:
        gate_from = expected_gate or GateStatus(booking.gate_status)
        if not can_move_gate(gate_from, target_gate):
            raise StateConflictError(
                f"Gate cannot move from {gate_from.value} to {target_gate.value}"
            )
        changes[Booking.gate_status] = target_gate
    if expected_gate is not None:
        query = query.filter(Booking.gate_status == expected_gate)
    if extra_filters:
        query = query.filter(*extra_filters)

    for column, value in (values or {}).items():
        changes[getattr(Booking, column)] = value
    if now is not None:
        changes[Booking.updated_at] = now

    matched = query.update(changes, synchronize_session=False)
    if matched:
        logger.info(f"Booking {booking.id}: {current.value} → {target.value}"
                    + (f" (gate → {target_gate.value})" if target_gate else ""))
    else:
        logger.info(f"Booking {booking.id}: {current.value} → {target.value} skipped, row changed underneath")
    return matched == 1
