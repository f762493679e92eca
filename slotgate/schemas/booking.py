# slotgate/schemas/booking.py
from pydantic import BaseModel
from datetime import date, datetime
from typing import Optional

from slotgate.models.booking import BookingStatus, GateMethod, GateStatus, PaymentStatus


class BookingCreate(BaseModel):
    # Everything optional here so a missing field comes back as the service's own 400
    parking_id: Optional[int] = None
    vehicle_number: Optional[str] = None
    booking_date: Optional[str] = None      # "YYYY-MM-DD" civil date, defaults to today
    start_time: Optional[str] = None        # "HH:MM"
    end_time: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    duration: Optional[int] = None
    total_price: Optional[float] = None


class BookingOut(BaseModel):
    id: int
    parking_id: int
    user_id: int
    vehicle_number: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    booking_date: date
    start_time: str
    end_time: str
    duration: int
    total_price: float
    status: BookingStatus
    gate_status: GateStatus

    payment_order_id: Optional[str]
    payment_amount: Optional[int]
    payment_currency: Optional[str]
    payment_status: Optional[PaymentStatus]
    paid_at: Optional[datetime]
    hold_expires_at: Optional[datetime]

    checked_in_at: Optional[datetime]
    checked_out_at: Optional[datetime]
    entry_method: Optional[GateMethod]
    exit_method: Optional[GateMethod]

    arrived_at_gate_at: Optional[datetime]
    queue_hold_until: Optional[datetime]
    queue_hold_revoked_at: Optional[datetime]

    overstay_minutes: Optional[int]
    overstay_fine: Optional[float]
    cancelled_at: Optional[datetime]
    refund_percent: Optional[float]
    refund_amount: Optional[float]
    created_at: datetime

    class Config:
        from_attributes = True


class CancelOut(BaseModel):
    message: str
    refund_percent: float
    refund_amount: float
    booking: BookingOut


class GatePosition(BaseModel):
    lat: Optional[float] = None
    lng: Optional[float] = None
