# slotgate/utils/plate.py
"""Licence plate text helpers shared by the gate processor and the OCR client."""

import re

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize_plate(value) -> str:
    """Uppercase and strip everything that isn't A-Z / 0-9. "ka-01 ab 1234" → "KA01AB1234"."""
    return _NON_ALNUM.sub("", str(value or "").upper())


def plates_match(a, b) -> bool:
    """Normalised equality; two empty plates never match."""
    norm_a = normalize_plate(a)
    return norm_a != "" and norm_a == normalize_plate(b)
