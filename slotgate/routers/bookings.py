# slotgate/routers/bookings.py
"""
Rider bookings + owner booking list.
POST /bookings                              — create an already-paid booking
GET  /bookings/my                           — rider's bookings, newest first
GET  /bookings/owner                        — bookings across the owner's lots
PUT  /bookings/{id}/cancel                  — cancel with lead-time refund
POST /bookings/{id}/arrive-at-gate          — geofenced queue hold
POST /bookings/{id}/arrive-at-gate/revoke   — rider left the gate radius
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from slotgate.auth import Actor, require_owner, require_user
from slotgate.database import get_db
from slotgate.schemas.booking import BookingCreate, BookingOut, CancelOut, GatePosition
from slotgate.schemas.gate import GateOut
from slotgate.services import booking_service, gate_service
from slotgate.services.booking_service import BookingRequest

router = APIRouter()


@router.post("/bookings", response_model=BookingOut, status_code=status.HTTP_201_CREATED,
             summary="Create a booking")
async def create_booking(body: BookingCreate, actor: Actor = Depends(require_user),
                         db: Session = Depends(get_db)):
    return await booking_service.create_booking(db, actor.user_id, BookingRequest(**body.model_dump()))


@router.get("/bookings/my", response_model=list[BookingOut], summary="List my bookings")
def my_bookings(actor: Actor = Depends(require_user), db: Session = Depends(get_db)):
    return booking_service.list_user_bookings(db, actor.user_id)


@router.get("/bookings/owner", response_model=list[BookingOut], summary="List bookings at my parkings")
def owner_bookings(parking_id: Optional[int] = None, actor: Actor = Depends(require_owner),
                   db: Session = Depends(get_db)):
    return booking_service.list_owner_bookings(db, actor.user_id, parking_id)


@router.put("/bookings/{booking_id}/cancel", response_model=CancelOut, summary="Cancel a booking")
async def cancel_booking(booking_id: int, actor: Actor = Depends(require_user),
                         db: Session = Depends(get_db)):
    booking, quote = await booking_service.cancel_booking(db, actor.user_id, booking_id)
    return {
        "message": "Booking cancelled",
        "refund_percent": quote.percent,
        "refund_amount": quote.amount,
        "booking": booking,
    }


@router.post("/bookings/{booking_id}/arrive-at-gate", response_model=GateOut,
             summary="Mark arrival at the gate")
async def arrive_at_gate(booking_id: int, body: GatePosition, actor: Actor = Depends(require_user),
                         db: Session = Depends(get_db)):
    result = await gate_service.arrive_at_gate(db, actor.user_id, booking_id, body.lat, body.lng)
    return {"message": result.message, "booking": result.booking}


@router.post("/bookings/{booking_id}/arrive-at-gate/revoke", response_model=GateOut,
             summary="Revoke the gate queue hold")
async def revoke_arrival(booking_id: int, body: GatePosition, actor: Actor = Depends(require_user),
                         db: Session = Depends(get_db)):
    result = await gate_service.revoke_arrival(db, actor.user_id, booking_id, body.lat, body.lng)
    return {"message": result.message, "booking": result.booking}
