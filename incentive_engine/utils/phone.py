"""Phone number canonicalisation for Malaysian mobile numbers.

``+60 12-345 6789``, ``60123456789``, ``0060123456789`` and ``012-345 6789``
all normalise to ``0123456789`` so self-referral and duplicate checks compare
like with like.
"""
from __future__ import annotations

import re

from incentive_engine.config import FRAUD_SETTINGS

_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(phone: str | None) -> str:
    if not phone:
        return ""
    cleaned = _SEPARATORS.sub("", phone.strip())
    country = str(FRAUD_SETTINGS["country_code"])
    national = str(FRAUD_SETTINGS["national_prefix"])
    for prefix in (f"+{country}", f"00{country}", country):
        if cleaned.startswith(prefix):
            return national + cleaned[len(prefix):]
    return cleaned


def phones_match(a: str | None, b: str | None) -> bool:
    left, right = normalize_phone(a), normalize_phone(b)
    return bool(left) and left == right


__all__ = ["normalize_phone", "phones_match"]
