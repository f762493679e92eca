# tests/test_refund_service.py
"""Unit tests for the cancellation refund calculator."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from datetime import datetime, timedelta
from slotgate.models import PaymentStatus
from slotgate.services.refund_service import compute_refund, refund_percent

START = datetime(2026, 3, 10, 4, 30)


def before_start(mins):
    return START - timedelta(minutes=mins)


class TestRefundPercent:
    @pytest.mark.parametrize("lead,percent", [
        (120, 0.75), (60, 0.75), (59, 0.50), (30, 0.50), (29, 0.0), (0, 0.0), (-10, 0.0),
    ])
    def test_lead_time_tiers(self, lead, percent):
        assert refund_percent(before_start(lead), None, None, START) == percent

    def test_full_refund_just_after_payment(self):
        now = before_start(5)
        assert refund_percent(now, now - timedelta(minutes=2), PaymentStatus.PAID, START) == 1.0

    def test_instant_window_is_two_minutes(self):
        now = before_start(5)
        paid_at = now - timedelta(minutes=2, seconds=1)
        assert refund_percent(now, paid_at, PaymentStatus.PAID, START) == 0.0

    def test_instant_refund_needs_paid_status(self):
        now = before_start(5)
        assert refund_percent(now, now, PaymentStatus.FAILED, START) == 0.0

    def test_instant_refund_applies_even_after_start(self):
        now = START + timedelta(minutes=10)
        assert refund_percent(now, now - timedelta(minutes=1), PaymentStatus.PAID, START) == 1.0


class TestComputeRefund:
    def test_amount_rounds_half_up(self):
        quote = compute_refund(before_start(45), None, None, START, 101)
        assert quote.percent == 0.5
        assert quote.amount == 51.0

    def test_amount_rounds_down_below_half(self):
        quote = compute_refund(before_start(90), None, None, START, 75)
        assert quote.amount == 56.0

    def test_amount_never_exceeds_total(self):
        now = before_start(1)
        quote = compute_refund(now, now, PaymentStatus.PAID, START, 99.5)
        assert quote.amount == 99.5

    def test_zero_refund(self):
        quote = compute_refund(before_start(10), None, None, START, 200)
        assert (quote.percent, quote.amount) == (0.0, 0.0)
