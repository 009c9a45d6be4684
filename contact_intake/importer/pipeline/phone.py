"""
Phone normalization helpers for contact identity matching.

``normalize`` turns whatever a user typed (or a spreadsheet cell held) into
canonical E.164 using ``phonenumbers``. ``variations`` lists the handful of
spellings an already-stored number may have been saved under so identity
lookups can match them with a single ``IN`` query.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

import phonenumbers

DEFAULT_PHONE_REGION = "IN"
MAX_VARIATIONS = 6

_E164_REGEX = re.compile(r"^\+[1-9]\d{1,14}$")
_NON_DIGIT_REGEX = re.compile(r"\D")


@dataclass(frozen=True)
class PhoneNormalization:
    """
    Outcome of normalizing a single phone value.

    Attributes:
        is_valid: True when the value parsed to a valid number.
        e164: Canonical ``+<country><national>`` form.
        country_code: Calling code without the leading ``+`` (e.g. ``"91"``).
        national_number: National significant number (no trunk prefix).
    """

    is_valid: bool
    e164: str | None = None
    country_code: str | None = None
    national_number: str | None = None


INVALID_PHONE = PhoneNormalization(is_valid=False)


def phone_token(value: object | None) -> str:
    """
    Render a raw phone value as a trimmed string.

    Spreadsheet cells frequently hold phone numbers as floats
    (``9876543210.0``); integral numbers are rendered without the fraction.
    """

    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return str(value)
    return str(value).strip()


def normalize(raw: object | None, region: str | None = DEFAULT_PHONE_REGION) -> PhoneNormalization:
    """
    Parse ``raw`` into E.164.

    - Values starting with ``+`` are parsed as international and ignore ``region``
    - A leading ``00`` international prefix is treated like ``+``
    - Anything unparseable or not a valid number yields ``INVALID_PHONE``

    Never raises on malformed input.
    """

    token = phone_token(raw)
    if not token or not any(char.isdigit() for char in token):
        return INVALID_PHONE
    if token.startswith("00"):
        token = f"+{token[2:]}"

    default_region = None if token.startswith("+") else (region or None)
    try:
        parsed = phonenumbers.parse(token, default_region)
    except phonenumbers.NumberParseException:
        return INVALID_PHONE
    if not phonenumbers.is_valid_number(parsed):
        return INVALID_PHONE

    return PhoneNormalization(
        is_valid=True,
        e164=phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164),
        country_code=str(parsed.country_code),
        national_number=phonenumbers.national_significant_number(parsed),
    )


def variations(raw: object | None, region: str | None = DEFAULT_PHONE_REGION) -> tuple[str, ...]:
    """
    Return the spellings a stored copy of ``raw`` may use, most canonical first.

    For a valid number this is E.164, E.164 without ``+``, the national number,
    the national number with ``+`` and the national number with a trunk ``0``.
    Invalid input falls back to the trimmed value and its digit-only forms.
    """

    result = normalize(raw, region)
    if result.is_valid:
        national = result.national_number
        candidates = (
            result.e164,
            result.e164[1:],
            national,
            f"+{national}",
            f"0{national}",
        )
    else:
        token = phone_token(raw)
        digits = _NON_DIGIT_REGEX.sub("", token)
        candidates = (token, f"+{digits}" if digits else "", digits)

    seen: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.append(candidate)
    return tuple(seen[:MAX_VARIATIONS])


def is_e164(value: object | None) -> bool:
    """Basic ``+`` followed by 2-15 digits shape check."""

    if not isinstance(value, str):
        return False
    return bool(_E164_REGEX.match(value))


def coerce_e164(raw: object | None) -> str | None:
    """
    Minimal formatting used when full normalization fails.

    Prefixes ``+`` when missing and returns the value only if it then has an
    E.164 shape.
    """

    token = phone_token(raw)
    if not token:
        return None
    if not token.startswith("+"):
        token = f"+{token}"
    return token if is_e164(token) else None
