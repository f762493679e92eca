# slotgate/schemas/anpr.py
from pydantic import BaseModel


class PlateReadingOut(BaseModel):
    plate: str
    confidence: float
    method: str = "platerecognizer"
