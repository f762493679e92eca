# slotgate/models/parking.py
"""
Parking lots offered by owners.
available_slots is a best-effort counter kept in [0, total_slots] by capacity_service;
the authoritative occupancy is the active-bookings query, not this column.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float
from slotgate.database import Base


class Parking(Base):
    __tablename__ = "parkings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    owner_id = Column(Integer, nullable=False, index=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    price = Column(Float, nullable=False)               # per hour
    total_slots = Column(Integer, default=20, nullable=False)
    available_slots = Column(Integer, default=20, nullable=False)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def __repr__(self):
        return f"<Parking {self.id} {self.name!r} slots={self.available_slots}/{self.total_slots}>"
