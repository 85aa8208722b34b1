"""Ghanaian mobile number validation and formatting."""

import re

_NON_DIGITS = re.compile(r"\D")

# 020/023/024/026/027/028/029 and 050/054/055/056/057/059 ranges
VALID_PREFIXES = ("02", "03", "05")


def normalize_phone(phone: str | None) -> str:
    """Strip everything but digits."""
    if not phone:
        return ""
    return _NON_DIGITS.sub("", phone)


def is_valid_phone(phone: str | None) -> bool:
    """Exactly 10 digits starting with a supported network prefix."""
    digits = normalize_phone(phone)
    if len(digits) != 10:
        return False
    return digits[:2] in VALID_PREFIXES


def format_phone(phone: str | None) -> str:
    """Render as 0XX-XXX-XXXX; invalid input is returned unchanged."""
    if not phone:
        return ""
    digits = normalize_phone(phone)
    if not is_valid_phone(digits):
        return phone
    return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
