# slotgate/routers/anpr.py
"""
POST /anpr/scan — raw image body (Content-Type: image/jpeg | image/png | image/webp).
Returns the best plate reading; the owner console then calls /gate/check-*/plate.
"""

from fastapi import APIRouter, Depends, Request

from slotgate.auth import Actor, require_owner
from slotgate.schemas.anpr import PlateReadingOut
from slotgate.services.plate_recognizer import PlateRecognizerClient, get_plate_recognizer
from slotgate.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/anpr/scan", response_model=PlateReadingOut, summary="Read a plate from an image")
async def scan_plate(request: Request, actor: Actor = Depends(require_owner),
                     recognizer: PlateRecognizerClient = Depends(get_plate_recognizer)):
    image = await request.body()
    mime_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    logger.info(f"ANPR scan from owner {actor.user_id} | {len(image)} bytes | {mime_type}")
    reading = await recognizer.read_plate(image, mime_type)
    return {"plate": reading.plate, "confidence": reading.confidence}
