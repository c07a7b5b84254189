"""Phone address normalization for the WhatsApp gateway."""

import os
import re

DEFAULT_COUNTRY_CODE = "55"

_NON_DIGITS = re.compile(r"\D+")
_PHONE_SHAPED = re.compile(r"^\+?\d{8,15}$")


def _country_code() -> str:
    return os.environ.get("PHONE_COUNTRY_CODE", DEFAULT_COUNTRY_CODE).strip() or DEFAULT_COUNTRY_CODE


def normalize_phone(raw_phone: str, country_code: str | None = None) -> str:
    """Reduce a phone address to digits with the country calling code.

    Rules:
    - Strip everything that is not a digit ("+55 (11) 9 8765-4321" -> "5511987654321").
    - Prefix the country code when the digits do not already start with it.
    - Empty or digit-less input returns "".
    """
    if not raw_phone:
        return ""

    digits = _NON_DIGITS.sub("", raw_phone)
    if not digits:
        return ""

    code = country_code or _country_code()
    if not digits.startswith(code):
        digits = code + digits
    return digits


def looks_like_phone(value: str | None) -> bool:
    """True for strings that are just a phone number (8-15 digits, optional '+')."""
    if not value:
        return False
    compact = re.sub(r"[\s()\-]+", "", value.strip())
    return bool(_PHONE_SHAPED.match(compact))
