"""
Phone Normalizer
================

Turns the phone formats people type into spreadsheets ("050-123-4567",
"+972 50 123 4567", "501234567") into the digits-only identifier WhatsApp
uses for a chat, e.g. "972501234567".
"""

import re

DEFAULT_COUNTRY_CODE = "972"

_NOT_DIALABLE = re.compile(r"[^\d+]")


def normalize_phone(phone, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Normalize a phone number to country code + subscriber digits.

    Never raises; anything without digits comes back as "".
    Running it on its own output returns the same value.
    """
    if phone is None:
        return ""

    raw = _NOT_DIALABLE.sub("", str(phone).strip())
    digits = raw.replace("+", "")
    if not digits:
        return ""

    # Only a leading + survives; "00" is the dial-out form of it
    international = raw.startswith("+")
    if not international and digits.startswith("00"):
        international = True
        digits = digits[2:]

    if international:
        # Country codes never start with 0
        cleaned = "+" + digits.lstrip("0")
    else:
        cleaned = digits

    if cleaned.startswith("0"):
        # National trunk prefix
        cleaned = country_code + cleaned[1:]
    elif cleaned.startswith("+" + country_code):
        cleaned = cleaned[1:]
    elif not international and len(digits) == 9:
        # Subscriber number typed without trunk prefix
        cleaned = country_code + cleaned

    return cleaned.lstrip("+")
