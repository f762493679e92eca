# slotgate/schemas/parking.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class ParkingCreate(BaseModel):
    name: str
    lat: float
    lng: float
    price: float                 # per hour
    total_slots: int = 20


class ParkingUpdate(BaseModel):
    """Partial update — only the fields sent are applied."""
    name: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    price: Optional[float] = None
    total_slots: Optional[int] = None


class ParkingOut(BaseModel):
    id: int
    name: str
    owner_id: int
    lat: float
    lng: float
    price: float
    total_slots: int
    available_slots: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class CapacityOut(BaseModel):
    parking_id: int
    total_slots: int
    available_slots: int
    conflict_buffer: int
    bookable_limit: int
    active_bookings: int
    can_admit: bool

    class Config:
        from_attributes = True
