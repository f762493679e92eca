# slotgate/services/parking_service.py
"""
Parking lot management for owners + lookup helpers shared by the other services.
Resizing a lot is a single conditional UPDATE in the capacity controller, so slots taken
concurrently stay taken. A lot can only be deleted while no booking references it.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from slotgate.errors import AuthorizationError, InvalidInputError, NotFoundError, StateConflictError
from slotgate.models.booking import Booking
from slotgate.models.parking import Parking
from slotgate.services.capacity_service import resize_slots
from slotgate.utils.civil_time import utc_now
from slotgate.utils.geo import distance_km
from slotgate.utils.logger import get_logger

logger = get_logger(__name__)


def get_parking(db: Session, parking_id: int) -> Parking:
    parking = db.query(Parking).filter(Parking.id == parking_id).first()
    if not parking:
        raise NotFoundError("Parking not found")
    return parking


def get_owned_parking(db: Session, owner_id: int, parking_id: int) -> Parking:
    parking = get_parking(db, parking_id)
    if parking.owner_id != owner_id:
        raise AuthorizationError("Access denied")
    return parking


def create_parking(db: Session, owner_id: int, name: str, lat: float, lng: float, price: float,
                   total_slots: int = 20, now: Optional[datetime] = None) -> Parking:
    name = (name or "").strip()
    if not name:
        raise InvalidInputError("Parking name is required")
    if price < 0 or total_slots < 0:
        raise InvalidInputError("Price and totalSlots must be non-negative")

    now = now or utc_now()
    parking = Parking(name=name, owner_id=owner_id, lat=lat, lng=lng, price=price,
                      total_slots=total_slots, available_slots=total_slots,
                      created_at=now, updated_at=now)
    db.add(parking)
    db.commit()
    db.refresh(parking)
    logger.info(f"Parking {parking.id} created by owner {owner_id} ({total_slots} slots @ {price}/h)")
    return parking


def update_parking(db: Session, owner_id: int, parking_id: int, changes: dict,
                   now: Optional[datetime] = None) -> Parking:
    """Apply a partial update. `changes` holds only the fields the owner sent."""
    parking = get_owned_parking(db, owner_id, parking_id)

    if "name" in changes:
        name = str(changes["name"] or "").strip()
        if not name:
            raise InvalidInputError("Invalid name")
    if "price" in changes and changes["price"] < 0:
        raise InvalidInputError("Invalid price")
    if "total_slots" in changes:
        new_total = changes["total_slots"]
        if new_total < 0:
            raise InvalidInputError("Invalid totalSlots")
        if not resize_slots(db, parking.id, new_total):
            db.refresh(parking)
            taken = parking.total_slots - parking.available_slots
            raise InvalidInputError(f"totalSlots cannot be less than booked slots ({taken})")
        logger.info(f"Parking {parking.id} resized to {new_total} slots by owner {owner_id}")

    if "name" in changes:
        parking.name = name
    for field in ("lat", "lng", "price"):
        if field in changes:
            setattr(parking, field, changes[field])

    parking.updated_at = now or utc_now()
    db.commit()
    db.refresh(parking)
    return parking


def list_owner_parkings(db: Session, owner_id: int) -> list:
    return (
        db.query(Parking)
        .filter(Parking.owner_id == owner_id)
        .order_by(Parking.created_at.desc(), Parking.id.desc())
        .all()
    )


def delete_parking(db: Session, owner_id: int, parking_id: int):
    """Remove a lot that has never been booked. Any booking row, in any status, blocks it."""
    parking = get_owned_parking(db, owner_id, parking_id)
    has_bookings = db.query(Booking.id).filter(Booking.parking_id == parking.id).first() is not None
    if has_bookings:
        raise StateConflictError("Cannot delete parking with bookings")
    db.delete(parking)
    db.commit()
    logger.info(f"Parking {parking_id} deleted by owner {owner_id}")


def search_parkings(db: Session, search: Optional[str] = None, lat: Optional[float] = None,
                    lng: Optional[float] = None, radius_km: Optional[float] = None) -> list:
    q = db.query(Parking)
    if search:
        q = q.filter(Parking.name.ilike(f"%{search}%"))
    parkings = q.order_by(Parking.id.desc()).all()
    if lat is not None and lng is not None and radius_km is not None:
        parkings = [p for p in parkings if distance_km(lat, lng, p.lat, p.lng) <= radius_km]
    return parkings
