"""Shared validation utilities"""

import re
from datetime import datetime
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}$")


def phone_digits(phone: Optional[str]) -> str:
    """Digits of a US phone number, without a leading country code"""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def validate_us_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a patient or contact phone to E.164 (+1XXXXXXXXXX).

    Blank input passes through so optional phone columns stay empty.
    Raises ValueError unless exactly 10 digits remain.
    """
    if not phone:
        return phone

    digits = phone_digits(phone)
    if len(digits) != 10:
        raise ValueError("Phone number must be 10 digits for US numbers")
    return f"+1{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """Lowercased email, or ValueError if it does not look like one"""
    if not email:
        return email

    email = email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")
    return email


def validate_iso_date(value: str) -> str:
    """Validate a YYYY-MM-DD calendar date"""
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError):
        raise ValueError("Date must be in YYYY-MM-DD format") from None
    return value


def validate_clock_time(value: str) -> str:
    """Validate a 24h HH:MM time of day"""
    if not re.match(r"^([01]\d|2[0-3]):[0-5]\d$", value or ""):
        raise ValueError("Time must be in HH:MM (24h) format")
    return value
