# slotgate/services/refund_service.py
"""
Cancellation refund calculator. Pure: no DB, no clock.

  paid ≤ 2 min ago          → 100%
  ≥ 60 min before start     → 75%
  ≥ 30 min before start     → 50%
  otherwise / after start   → 0%
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from slotgate.config import settings
from slotgate.models.booking import PaymentStatus

LEAD_TIME_TIERS = (
    (timedelta(minutes=60), 0.75),
    (timedelta(minutes=30), 0.50),
)


@dataclass(frozen=True)
class RefundQuote:
    percent: float
    amount: float


def refund_percent(
    now: datetime,
    paid_at: Optional[datetime],
    payment_status: Optional[PaymentStatus],
    start: datetime,
) -> float:
    instant_window = timedelta(minutes=settings.INSTANT_REFUND_MINUTES)
    if payment_status == PaymentStatus.PAID and paid_at is not None and now - paid_at <= instant_window:
        return 1.0
    if now >= start:
        return 0.0
    lead = start - now
    for minimum_lead, percent in LEAD_TIME_TIERS:
        if lead >= minimum_lead:
            return percent
    return 0.0


def compute_refund(
    now: datetime,
    paid_at: Optional[datetime],
    payment_status: Optional[PaymentStatus],
    start: datetime,
    total_price: float,
) -> RefundQuote:
    percent = refund_percent(now, paid_at, payment_status, start)
    total = float(total_price or 0)
    # Half-up, not banker's rounding
    amount = min(max(float(math.floor(total * percent + 0.5)), 0.0), total)
    return RefundQuote(percent=percent, amount=amount)
