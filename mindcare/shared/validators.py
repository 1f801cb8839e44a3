"""Shared validation utilities"""

import re
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize an international phone number to E.164 format.

    Args:
        phone: Phone number string in various formats ("+40 721 234 567", "0040721234567")

    Returns:
        Normalized phone number in E.164 format (+XXXXXXXXXXX)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    stripped = phone.strip()
    digits = re.sub(r"\D", "", stripped)

    # "00" international prefix is equivalent to "+"
    if not stripped.startswith("+") and digits.startswith("00"):
        digits = digits[2:]
    elif not stripped.startswith("+"):
        raise ValueError("Phone number must include the country code (e.g. +40...)")

    # E.164 allows at most 15 digits; shorter than 8 is never a full number
    if not 8 <= len(digits) <= 15:
        raise ValueError("Phone number must have between 8 and 15 digits")

    return f"+{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_timezone(name: str) -> str:
    """Validate an IANA timezone name such as "Europe/Bucharest" """
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e
    return name


def validate_money(amount: Decimal) -> Decimal:
    """Money amounts carry at most two decimal places and are never negative"""
    if amount < 0:
        raise ValueError("Amount must not be negative")
    if amount.as_tuple().exponent < -2:
        raise ValueError("Amount must have at most two decimal places")
    return amount
