# slotgate/routers/parkings.py
"""Parking lots: owner CRUD, public search and live capacity."""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from slotgate.auth import Actor, require_owner
from slotgate.database import get_db
from slotgate.schemas.parking import CapacityOut, ParkingCreate, ParkingOut, ParkingUpdate
from slotgate.services import parking_service
from slotgate.services.capacity_service import capacity_snapshot
from slotgate.utils.civil_time import utc_now

router = APIRouter()


@router.post("/parkings", response_model=ParkingOut, status_code=status.HTTP_201_CREATED,
             summary="Add a parking lot")
def create_parking(body: ParkingCreate, actor: Actor = Depends(require_owner),
                   db: Session = Depends(get_db)):
    return parking_service.create_parking(db, actor.user_id, body.name, body.lat, body.lng,
                                          body.price, body.total_slots)


@router.put("/parkings/{parking_id}", response_model=ParkingOut, summary="Update a parking lot")
def update_parking(parking_id: int, body: ParkingUpdate, actor: Actor = Depends(require_owner),
                   db: Session = Depends(get_db)):
    return parking_service.update_parking(db, actor.user_id, parking_id, body.model_dump(exclude_unset=True))


@router.get("/parkings/owner", response_model=list[ParkingOut], summary="List my parking lots")
def owner_parkings(actor: Actor = Depends(require_owner), db: Session = Depends(get_db)):
    return parking_service.list_owner_parkings(db, actor.user_id)


@router.get("/parkings/nearby", response_model=list[ParkingOut], summary="Search parkings")
def nearby(search: Optional[str] = None, lat: Optional[float] = None, lng: Optional[float] = None,
           radius_km: Optional[float] = 5.0, db: Session = Depends(get_db)):
    return parking_service.search_parkings(db, search=search, lat=lat, lng=lng, radius_km=radius_km)


@router.delete("/parkings/{parking_id}", status_code=status.HTTP_204_NO_CONTENT,
               summary="Delete a parking lot with no bookings")
def delete_parking(parking_id: int, actor: Actor = Depends(require_owner), db: Session = Depends(get_db)):
    parking_service.delete_parking(db, actor.user_id, parking_id)


@router.get("/parkings/{parking_id}", response_model=ParkingOut, summary="Get a parking lot")
def get_parking(parking_id: int, db: Session = Depends(get_db)):
    return parking_service.get_parking(db, parking_id)


@router.get("/parkings/{parking_id}/capacity", response_model=CapacityOut, summary="Live capacity")
def capacity(parking_id: int, db: Session = Depends(get_db)):
    parking = parking_service.get_parking(db, parking_id)
    return capacity_snapshot(db, parking, utc_now())
