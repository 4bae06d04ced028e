"""
utils/phone.py — Phone number normalization.

Phone numbers are compared in one canonical form everywhere: a leading "+"
followed by the country code and subscriber digits, with no formatting.

    "(555) 010-2030"     → "+15550102030"   (default country code "1")
    "+44 20 7946 0958"   → "+442079460958"
    "0044 20 7946 0958"  → "+442079460958"

A national number with a single leading trunk "0" has the zero dropped
before the country code is prefixed ("07946 0958" with code "44"
→ "+4479460958").
"""

from __future__ import annotations

import re

_FORMATTING = re.compile(r"[\s\-().]")
_DIGITS = re.compile(r"^\+?\d+$")

MIN_DIGITS = 7
MAX_DIGITS = 15


def normalize_phone(raw: str, default_country_code: str = "1") -> str:
    """
    Returns the canonical "+<digits>" form of raw.

    Raises ValueError if raw is not a plausible phone number. Callers in the
    service layer turn that into ValidationError(INVALID_PHONE).
    """
    if raw is None:
        raise ValueError("Phone number is required.")

    cleaned = _FORMATTING.sub("", str(raw).strip())
    if not cleaned or not _DIGITS.match(cleaned):
        raise ValueError(f"{raw!r} is not a valid phone number.")

    if cleaned.startswith("+"):
        digits = cleaned[1:]
    elif cleaned.startswith("00"):
        digits = cleaned[2:]
    else:
        national = cleaned[1:] if cleaned.startswith("0") else cleaned
        country = default_country_code.lstrip("+")
        # Already carries the default country code (e.g. "15550102030").
        if country == "1" and len(national) == 11 and national.startswith("1"):
            digits = national
        else:
            digits = country + national

    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        raise ValueError(f"{raw!r} is not a valid phone number.")

    return "+" + digits
