# slotgate/services/plate_recognizer.py
"""
Plate Recognizer (platerecognizer.com) client for the owner's gate camera.

The image goes up as a base64 data URI; the provider returns candidate plates with
confidences. We take the most confident candidate that also looks like a plate
(letters + digits, 6-14 chars, bonus for the Indian "KA01AB1234" shape) and fall
back to the most confident one otherwise.
"""

import base64
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

from slotgate.config import settings
from slotgate.errors import (
    ExternalDependencyError, InvalidInputError, MisconfiguredError, ProviderUnavailableError,
    RateLimitedError,
)
from slotgate.utils.logger import get_logger
from slotgate.utils.plate import normalize_plate

logger = get_logger(__name__)

ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024
GOOD_PLATE_SCORE = 10

_INDIAN_PLATE = re.compile(r"^[A-Z]{2}\d{1,2}[A-Z]{1,3}\d{3,4}$")
_TRIPLE_REPEAT = re.compile(r"(.)\1\1")


@dataclass
class PlateReading:
    plate: str
    confidence: float


def score_plate(candidate) -> int:
    """Plate-shape quality. -1 for empty, 0 for an impossible length."""
    s = normalize_plate(candidate)
    if not s:
        return -1
    if len(s) < 6 or len(s) > 14:
        return 0

    has_letters = any(c.isalpha() for c in s)
    has_digits = any(c.isdigit() for c in s)

    score = 10
    if has_letters and has_digits:
        score += 20
    else:
        score -= 15   # one-class strings: not mixed, and all-digits/all-letters
    if _TRIPLE_REPEAT.search(s):
        score -= 5
    if _INDIAN_PLATE.match(s):
        score += 15
    score -= abs(10 - len(s))
    return score


def best_plate(results: List[dict]) -> PlateReading:
    """Pick the reading to report from the provider's `results` list."""
    if not results:
        return PlateReading(plate="", confidence=0.0)

    ranked = sorted(results, key=lambda r: float(r.get("confidence") or 0), reverse=True)
    for result in ranked:
        if score_plate(result.get("plate")) >= GOOD_PLATE_SCORE:
            return PlateReading(normalize_plate(result["plate"]), float(result.get("confidence") or 0))

    top = ranked[0]
    return PlateReading(normalize_plate(top.get("plate")), float(top.get("confidence") or 0))


class PlateRecognizerClient:
    def __init__(self, api_key: Optional[str], url: str = None, timeout: float = None):
        self.api_key = api_key
        self.url = url or settings.PLATE_RECOGNIZER_URL
        self.timeout = timeout if timeout is not None else settings.PLATE_RECOGNIZER_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def read_plate(self, image: bytes, mime_type: str) -> PlateReading:
        if not image:
            raise InvalidInputError("No image provided")
        if mime_type not in ALLOWED_MIME_TYPES:
            raise InvalidInputError(f"File type {mime_type} not supported. Use JPEG, PNG, or WebP.")
        if len(image) > MAX_IMAGE_BYTES:
            raise InvalidInputError("Image too large (max 10 MB)")
        if not self.configured:
            raise MisconfiguredError("Plate recognition is not configured")

        data_uri = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.url,
                    json={"uploads": [{"image": data_uri}]},
                    headers={"Authorization": f"Token {self.api_key}"},
                )
        except httpx.TimeoutException:
            logger.warning("⏱  Plate Recognizer timed out")
            raise ProviderUnavailableError("Plate recognition timed out")
        except httpx.HTTPError as e:
            logger.warning(f"❌ Plate Recognizer unreachable: {e}")
            raise ProviderUnavailableError("Plate recognition unavailable")

        if response.status_code == 401:
            raise MisconfiguredError("Invalid Plate Recognizer API key")
        if response.status_code == 429:
            raise RateLimitedError("Plate Recognizer rate limit exceeded. Try again later.")
        if response.status_code >= 400:
            logger.error(f"Plate Recognizer failed: HTTP {response.status_code} {response.text[:200]}")
            raise ExternalDependencyError(
                f"Plate recognition failed (HTTP {response.status_code})",
                retryable=response.status_code >= 500,
            )

        uploads = response.json().get("uploads") or []
        results = (uploads[0].get("results") or []) if uploads else []
        reading = best_plate(results)
        logger.info(f"🔍 Plate read: {reading.plate or '<none>'} (confidence={reading.confidence:.2f}, "
                    f"{len(results)} candidate(s))")
        return reading


def get_plate_recognizer() -> PlateRecognizerClient:
    return PlateRecognizerClient(settings.PLATE_RECOGNIZER_API_KEY)
