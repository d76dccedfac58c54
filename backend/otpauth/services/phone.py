"""Phone number normalization for Pakistani mobile numbers.

Accepted input shapes (after stripping spaces, dashes, dots and brackets):
    03XXXXXXXXX   -> +923XXXXXXXXX
    923XXXXXXXXX  -> +923XXXXXXXXX
    +923XXXXXXXXX -> unchanged
    00923XXXXXXXXX -> +923XXXXXXXXX
"""

import re

from otpauth.services.errors import ErrorKind, Result, fail, ok

CANONICAL_PATTERN = re.compile(r"\+923\d{9}", re.ASCII)
_SEPARATORS = re.compile(r"[\s\-().]")


def _rewrite_prefix(number: str) -> str | None:
    if number.startswith("+923"):
        return number
    if number.startswith("00923"):
        return "+" + number[2:]
    if number.startswith("923"):
        return "+" + number
    if number.startswith("03"):
        return "+92" + number[1:]
    return None


def normalize_phone(raw: str | None) -> Result[str]:
    """Canonicalize a phone number to +923XXXXXXXXX.

    Idempotent: a canonical number normalizes to itself.
    """
    if raw is None or not str(raw).strip():
        return fail(
            ErrorKind.VALIDATION,
            "Phone number is required",
            fields={"phone_number": "is required"},
        )

    cleaned = _SEPARATORS.sub("", str(raw))
    candidate = _rewrite_prefix(cleaned)

    if candidate is None or not CANONICAL_PATTERN.fullmatch(candidate):
        return fail(
            ErrorKind.VALIDATION,
            "Invalid phone number format",
            fields={"phone_number": "must be a valid Pakistani mobile number"},
        )
    return ok(candidate)


def is_valid_phone(raw: str | None) -> bool:
    return normalize_phone(raw).is_ok


def mask_phone(phone: str) -> str:
    """Hide the last four digits: +923001234567 -> +92300123****."""
    if len(phone) < 4:
        return phone
    return f"{phone[:-4]}****"
