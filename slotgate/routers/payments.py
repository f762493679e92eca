# slotgate/routers/payments.py
"""
Razorpay checkout.
GET  /payments/razorpay/key           — public key id for the checkout widget
POST /payments/razorpay/create-order  — hold a slot + create the gateway order
POST /payments/razorpay/verify        — verify the widget's signature, confirm the booking
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotgate.auth import Actor, require_user
from slotgate.database import get_db
from slotgate.schemas.payment import HoldOut, HoldRequest, KeyOut, VerifyOut, VerifyRequest
from slotgate.services import payment_service
from slotgate.services.booking_service import BookingRequest
from slotgate.services.payment_gateway import RazorpayGateway, get_payment_gateway

router = APIRouter()


@router.get("/payments/razorpay/key", response_model=KeyOut, summary="Razorpay public key")
def razorpay_key(gateway: RazorpayGateway = Depends(get_payment_gateway)):
    gateway.require_configured()
    return {"key_id": gateway.key_id}


@router.post("/payments/razorpay/create-order", response_model=HoldOut, summary="Hold a slot and create an order")
async def create_order(body: HoldRequest, actor: Actor = Depends(require_user),
                       db: Session = Depends(get_db),
                       gateway: RazorpayGateway = Depends(get_payment_gateway)):
    hold = await payment_service.create_hold(db, gateway, actor.user_id, BookingRequest(**body.model_dump()))
    return {
        "booking_id": hold.booking_id,
        "order_id": hold.order_id,
        "amount": hold.amount,
        "currency": hold.currency,
        "key_id": gateway.key_id,
        "hold_expires_at": hold.hold_expires_at,
        "already_paid": hold.already_paid,
        "reused": hold.reused,
    }


@router.post("/payments/razorpay/verify", response_model=VerifyOut, summary="Verify payment")
async def verify(body: VerifyRequest, actor: Actor = Depends(require_user),
                 db: Session = Depends(get_db),
                 gateway: RazorpayGateway = Depends(get_payment_gateway)):
    booking = await payment_service.verify_payment(
        db, gateway, actor.user_id, body.booking_id,
        body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature,
    )
    return {"message": "Payment verified", "booking": booking}
