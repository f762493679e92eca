# slotgate/services/payment_gateway.py
"""
Razorpay adapter over the official SDK.

Only two things are needed from the gateway:
  - create an order for a held booking (network call, bounded timeout)
  - check the signature the checkout widget hands back to the client (local)
The SDK is synchronous, so order creation runs in a worker thread under
asyncio.wait_for. Failures surface as ExternalDependencyError subclasses so the
hold coordinator can run its compensation and the caller can decide whether to retry.
"""

import asyncio
from typing import Optional

import razorpay
import requests

from slotgate.config import settings
from slotgate.errors import (
    ExternalDependencyError, MisconfiguredError, ProviderUnavailableError, RateLimitedError,
)
from slotgate.utils.logger import get_logger

logger = get_logger(__name__)

PROVIDER = "RAZORPAY"


class PaymentGatewayError(ExternalDependencyError):
    kind = "payment_gateway"


def _bad_request(e: razorpay.errors.BadRequestError) -> ExternalDependencyError:
    message = str(e).lower()
    if "authentication" in message:
        return MisconfiguredError("Payment gateway rejected credentials")
    if "too many requests" in message:
        return RateLimitedError("Payment gateway rate limit exceeded. Try again later.")
    return PaymentGatewayError(f"Payment gateway rejected the order: {e}", retryable=False)


class RazorpayGateway:
    def __init__(self, key_id: Optional[str], key_secret: Optional[str], timeout: float = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self.client = razorpay.Client(auth=(key_id, key_secret)) if self.configured else None

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def require_configured(self):
        if not self.configured:
            raise MisconfiguredError("Razorpay is not configured")

    async def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        """client.order.create. Returns the order dict (has "id")."""
        self.require_configured()
        data = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        try:
            order = await asyncio.wait_for(
                asyncio.to_thread(self.client.order.create, data=data),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⏱  Razorpay order create timed out (receipt={receipt})")
            raise ProviderUnavailableError("Payment gateway timed out")
        except razorpay.errors.BadRequestError as e:
            logger.error(f"Razorpay order create rejected: {e}")
            raise _bad_request(e)
        except (razorpay.errors.GatewayError, razorpay.errors.ServerError) as e:
            logger.error(f"Razorpay order create failed: {e}")
            raise PaymentGatewayError("Payment gateway error", retryable=True)
        except requests.RequestException as e:
            logger.warning(f"❌ Razorpay unreachable: {e}")
            raise ProviderUnavailableError("Payment gateway unavailable")

        if not order or not order.get("id"):
            raise PaymentGatewayError("Payment gateway returned no order id")
        logger.info(f"Razorpay order {order['id']} created (receipt={receipt}, amount={amount})")
        return order

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        self.require_configured()
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": str(signature or ""),
            })
        except razorpay.errors.SignatureVerificationError:
            return False
        return True


def get_payment_gateway() -> RazorpayGateway:
    """FastAPI dependency — gateway built from current settings."""
    return RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
