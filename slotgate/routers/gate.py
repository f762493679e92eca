# slotgate/routers/gate.py
"""
Owner gate console.
POST /gate/check-in/plate     POST /gate/check-out/plate     — ANPR path
POST /gate/check-in/booking   POST /gate/check-out/booking   — QR path
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotgate.auth import Actor, require_owner
from slotgate.database import get_db
from slotgate.schemas.gate import BookingScanRequest, GateOut, PlateScanRequest
from slotgate.services import gate_service
from slotgate.services.gate_service import PlateScan

router = APIRouter()


def _scan(body: PlateScanRequest) -> PlateScan:
    return PlateScan(plate_number=body.plate_number, raw_text=body.raw_text, confidence=body.confidence)


def _out(result) -> dict:
    return {"message": result.message, "booking": result.booking}


@router.post("/gate/check-in/plate", response_model=GateOut, summary="Check in by plate")
async def check_in_plate(body: PlateScanRequest, actor: Actor = Depends(require_owner),
                         db: Session = Depends(get_db)):
    return _out(await gate_service.check_in_by_plate(db, actor.user_id, body.parking_id, _scan(body)))


@router.post("/gate/check-out/plate", response_model=GateOut, summary="Check out by plate")
async def check_out_plate(body: PlateScanRequest, actor: Actor = Depends(require_owner),
                          db: Session = Depends(get_db)):
    return _out(await gate_service.check_out_by_plate(db, actor.user_id, body.parking_id, _scan(body)))


@router.post("/gate/check-in/booking", response_model=GateOut, summary="Check in by booking QR")
async def check_in_booking(body: BookingScanRequest, actor: Actor = Depends(require_owner),
                           db: Session = Depends(get_db)):
    return _out(await gate_service.check_in_by_booking(db, actor.user_id, body.booking_id, body.parking_id))


@router.post("/gate/check-out/booking", response_model=GateOut, summary="Check out by booking QR")
async def check_out_booking(body: BookingScanRequest, actor: Actor = Depends(require_owner),
                            db: Session = Depends(get_db)):
    return _out(await gate_service.check_out_by_booking(db, actor.user_id, body.booking_id, body.parking_id))
