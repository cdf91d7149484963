"""Phone normalisation and the fuzzy identity predicate.

Users type numbers with or without the country/area code, and entries
created directly in the calendar follow whatever format the staff used.
Rather than normalising formats at ingestion, every identity comparison
goes through :func:`phones_match`.
"""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")

# Minimum digits on both sides before suffix containment is trusted.
STORE_MIN_DIGITS = 4
CALENDAR_MIN_DIGITS = 8

COUNTRY_CODE = "55"


def normalize_phone(value: object) -> str:
    """Strip everything but digits (``'+55 (11) 9999-0000'`` → ``'5511999990000'``)."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def phones_match(a: str, b: str, min_digits: int = STORE_MIN_DIGITS) -> bool:
    """Mutual suffix containment guarded by a minimum length on both sides."""
    a = normalize_phone(a)
    b = normalize_phone(b)
    if len(a) < min_digits or len(b) < min_digits:
        return False
    return a.endswith(b) or b.endswith(a)


def text_matches_phone(text: str | None, phone: str) -> bool:
    """Match the digits embedded in free text (an event summary) against *phone*."""
    return phones_match(normalize_phone(text), phone, min_digits=CALENDAR_MIN_DIGITS)


def display_phone(phone: str) -> str:
    """Drop a leading country code from long numbers for calendar titles."""
    phone = normalize_phone(phone)
    if phone.startswith(COUNTRY_CODE) and len(phone) > 10:
        return phone[len(COUNTRY_CODE):]
    return phone
