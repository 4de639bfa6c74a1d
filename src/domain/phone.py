"""
Cameroon mobile numbering helpers.

National numbers are 9 digits starting with ``6``; the international form
prefixes the ``237`` calling code.  The operator is derived from the
second and third digits:

* MTN:    67x, 68x, 650-654
* Orange: 69x, 655-659
"""

from __future__ import annotations

import re
from typing import Optional

from .enums import PaymentProvider

COUNTRY_CODE = "237"

_MTN_PATTERN = re.compile(r"^6(7\d|8\d|5[0-4])\d{6}$")
_ORANGE_PATTERN = re.compile(r"^6(9\d|5[5-9])\d{6}$")


def national_number(phone_number: str) -> Optional[str]:
    """Strip formatting and the calling code; ``None`` if malformed."""
    digits = re.sub(r"\D", "", phone_number or "")
    if len(digits) == 12 and digits.startswith(COUNTRY_CODE):
        digits = digits[3:]
    if len(digits) != 9:
        return None
    return digits


def international_number(phone_number: str) -> Optional[str]:
    national = national_number(phone_number)
    return f"{COUNTRY_CODE}{national}" if national else None


def detect_provider(phone_number: str) -> Optional[PaymentProvider]:
    national = national_number(phone_number)
    if national is None:
        return None
    if _MTN_PATTERN.match(national):
        return PaymentProvider.MTN
    if _ORANGE_PATTERN.match(national):
        return PaymentProvider.ORANGE
    return None
