# tests/conftest.py
"""Shared fixtures: in-memory SQLite session, parking/booking factories, fixed clock."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Must be set before slotgate.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["API_KEY"] = ""
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["PLATE_RECOGNIZER_API_KEY"] = "pr_test_key"

import hashlib
import hmac
from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from slotgate.database import Base
from slotgate.models import Booking, BookingStatus, GateStatus, Parking, PaymentStatus
from slotgate.utils.civil_time import to_instant

DAY = date(2026, 3, 10)
RAZORPAY_SECRET = "rzp_test_secret"
OWNER_ID = 7
USER_ID = 42

# Gate coordinates used across the gate tests (Bengaluru, MG Road)
GATE_LAT = 12.9756
GATE_LNG = 77.6050


def at(hhmm: str, day: date = DAY):
    """Civil "HH:MM" on the test day as a naive UTC instant."""
    return to_instant(day, hhmm)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    """File-backed database so two sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'slotgate.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield factory
    finally:
        engine.dispose()


def make_parking(db, owner_id=OWNER_ID, total_slots=20, available_slots=None, price=50.0,
                 lat=GATE_LAT, lng=GATE_LNG, name="Test Lot"):
    parking = Parking(
        name=name,
        owner_id=owner_id,
        lat=lat,
        lng=lng,
        price=price,
        total_slots=total_slots,
        available_slots=total_slots if available_slots is None else available_slots,
        created_at=at("08:00"),
        updated_at=at("08:00"),
    )
    db.add(parking)
    db.commit()
    db.refresh(parking)
    return parking


def make_booking(db, parking, user_id=USER_ID, status=BookingStatus.UPCOMING,
                 gate_status=GateStatus.PENDING_ENTRY, start="10:00", end="12:00", day=DAY,
                 vehicle_number="KA01AB1234", created_at=None, **fields):
    booking = Booking(
        parking_id=parking.id,
        user_id=user_id,
        vehicle_number=vehicle_number,
        booking_date=day,
        start_time=start,
        end_time=end,
        duration=2,
        total_price=100.0,
        status=status,
        gate_status=gate_status,
        created_at=created_at or at("09:00", day),
        updated_at=created_at or at("09:00", day),
        **fields,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def make_paid_booking(db, parking, paid_at=None, **kwargs):
    return make_booking(
        db, parking,
        payment_status=PaymentStatus.PAID,
        paid_at=paid_at or at("09:00"),
        **kwargs,
    )


def minutes(n):
    return timedelta(minutes=n)


def sign_payment(order_id, payment_id, secret=RAZORPAY_SECRET):
    """Signature the Razorpay checkout widget returns: hex HMAC-SHA256 of "order|payment"."""
    payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
