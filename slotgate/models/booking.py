# slotgate/models/booking.py
"""
Bookings table — one row per reservation, never deleted.
Status and gate status only move through booking_state.apply_transition;
payment is flattened into payment_* columns.
"""

import enum

from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Float, ForeignKey, Index, Enum as SAEnum,
)
from slotgate.database import Base


class BookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    UPCOMING = "UPCOMING"
    ACTIVE = "ACTIVE"
    CHECKED_IN = "CHECKED_IN"
    OVERSTAYED = "OVERSTAYED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class GateStatus(str, enum.Enum):
    PENDING_ENTRY = "PENDING_ENTRY"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class PaymentStatus(str, enum.Enum):
    CREATED = "CREATED"
    PAID = "PAID"
    FAILED = "FAILED"


class GateMethod(str, enum.Enum):
    PLATE_OCR = "PLATE_OCR"
    QR = "QR"
    MANUAL = "MANUAL"


def _enum(cls):
    return SAEnum(cls, native_enum=False, length=20)


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_status_hold", "status", "hold_expires_at"),
        Index("ix_bookings_gate_lookup", "parking_id", "booking_date", "status", "gate_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    parking_id = Column(Integer, ForeignKey("parkings.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    vehicle_number = Column(String(50), nullable=False)

    customer_name = Column(String(200))
    customer_email = Column(String(200))
    customer_phone = Column(String(50))

    # Civil (IST) window
    booking_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)     # "HH:MM"
    end_time = Column(String(5), nullable=False)
    duration = Column(Integer, nullable=False)         # hours, rounded up
    total_price = Column(Float, nullable=False)

    status = Column(_enum(BookingStatus), nullable=False, default=BookingStatus.ACTIVE)
    gate_status = Column(_enum(GateStatus), nullable=False, default=GateStatus.PENDING_ENTRY)

    # Payment sub-record
    payment_provider = Column(String(20))
    payment_order_id = Column(String(100), index=True)
    payment_id = Column(String(100))
    payment_signature = Column(String(200))
    payment_amount = Column(Integer)                   # minor units (paise)
    payment_currency = Column(String(3))
    payment_status = Column(_enum(PaymentStatus))
    paid_at = Column(DateTime)
    payment_failed_at = Column(DateTime)
    payment_failure_reason = Column(String(100))
    hold_expires_at = Column(DateTime)                 # only while PENDING_PAYMENT

    # Gate
    checked_in_at = Column(DateTime)
    checked_out_at = Column(DateTime)
    entry_method = Column(_enum(GateMethod))
    exit_method = Column(_enum(GateMethod))

    # Last plate scan (audit only)
    last_plate_raw_text = Column(String(200))
    last_plate_normalized = Column(String(50))
    last_plate_confidence = Column(Float)
    last_plate_scanned_at = Column(DateTime)

    # Arrived-at-gate queue hold
    arrived_at_gate_at = Column(DateTime)
    queue_hold_until = Column(DateTime)
    queue_hold_revoked_at = Column(DateTime)
    queue_hold_revoke_reason = Column(String(100))

    overstay_minutes = Column(Integer, default=0)
    overstay_fine = Column(Float, default=0)

    cancelled_at = Column(DateTime)
    refund_percent = Column(Float)                     # fraction, 0.0–1.0
    refund_amount = Column(Float)

    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Booking {self.id} parking={self.parking_id} status={self.status} gate={self.gate_status}>"
