# slotgate/schemas/gate.py
from pydantic import BaseModel
from typing import Optional

from slotgate.schemas.booking import BookingOut


class PlateScanRequest(BaseModel):
    parking_id: Optional[int] = None
    plate_number: Optional[str] = None
    raw_text: Optional[str] = None       # unprocessed OCR output, kept for audit
    confidence: Optional[float] = None


class BookingScanRequest(BaseModel):
    booking_id: Optional[int] = None
    parking_id: Optional[int] = None


class GateOut(BaseModel):
    message: str
    booking: BookingOut
