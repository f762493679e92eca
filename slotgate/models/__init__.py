# SlotGate — Database Models
# Import all models here for SQLAlchemy discovery

from slotgate.models.parking import Parking           # noqa
from slotgate.models.booking import (                  # noqa
    Booking, BookingStatus, GateStatus, PaymentStatus, GateMethod,
)
