# slotgate/schemas/payment.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from slotgate.schemas.booking import BookingCreate, BookingOut


class HoldRequest(BookingCreate):
    pass


class HoldOut(BaseModel):
    booking_id: int
    order_id: Optional[str]
    amount: Optional[int]          # paise
    currency: str
    key_id: Optional[str]
    hold_expires_at: Optional[datetime]
    already_paid: bool = False
    reused: bool = False


class VerifyRequest(BaseModel):
    booking_id: Optional[int] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class VerifyOut(BaseModel):
    message: str
    booking: BookingOut


class KeyOut(BaseModel):
    key_id: str
