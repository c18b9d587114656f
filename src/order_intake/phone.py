"""
Phone normalization for customer contact numbers.

normalize_phone() never fails; phone_error() is the strict check used by the
stage gate.
"""
import re
from typing import Optional

import config


def _digits(raw: str) -> str:
    return re.sub(r"\D", "", raw or "")


def normalize_phone(raw: str) -> str:
    """
    Canonicalize a phone number to country-code form.

    Args:
        raw: Arbitrary user input ("+591 777-12345", "77712345", ...)

    Returns:
        Digits with the country code prepended when the input is a bare
        local mobile number; otherwise the stripped digits unchanged.
    """
    digits = _digits(raw)
    country = config.PHONE_COUNTRY_CODE

    if digits.startswith(country):
        return digits

    if len(digits) == config.PHONE_LOCAL_DIGITS and digits.startswith(config.PHONE_MOBILE_PREFIXES):
        return country + digits

    return digits


def phone_error(raw: str) -> Optional[str]:
    """
    Strict format check: country code followed by exactly the local digit count.

    Returns:
        None when valid, otherwise a short message for the user.
    """
    if not (raw or "").strip():
        return "Phone number is required"

    normalized = normalize_phone(raw)
    country = config.PHONE_COUNTRY_CODE
    expected = len(country) + config.PHONE_LOCAL_DIGITS

    if not normalized.startswith(country) or len(normalized) != expected:
        return (
            f"Phone must be {country} followed by {config.PHONE_LOCAL_DIGITS} digits "
            f"(got '{normalized or raw.strip()}')"
        )
    return None


def is_valid_phone(raw: str) -> bool:
    return phone_error(raw) is None
