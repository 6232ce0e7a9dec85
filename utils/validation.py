"""
Validation utilities for checkout input (shipping address, emails, amounts)
plus timezone helpers shared by the order and gift card ledgers
"""
import re
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

REQUIRED_ADDRESS_FIELDS = ("fullName", "phone", "address", "city", "country")

CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def validate_email(email: str) -> Tuple[bool, str]:
    """
    Validate email address format.
    Returns (is_valid, error_message).
    """
    trimmed = (email or "").strip().lower()
    if not trimmed:
        return False, "Email is required"
    if len(trimmed) > 255:
        return False, "Email is too long"
    if not EMAIL_RE.match(trimmed):
        return False, "Please enter a valid email address"
    return True, ""


def validate_shipping_address(address: dict) -> Tuple[bool, str]:
    """
    Validate the shipping snapshot captured at checkout.
    Returns (is_valid, error_message).
    """
    if not isinstance(address, dict) or not address:
        return False, "Shipping address is required"

    for field in REQUIRED_ADDRESS_FIELDS:
        value = address.get(field)
        if not isinstance(value, str) or not value.strip():
            return False, f"Shipping address field '{field}' is required"

    email = address.get("email")
    if email:
        ok, err = validate_email(email)
        if not ok:
            return False, err

    phone = re.sub(r'[\s\-()]', '', address.get("phone", ""))
    if not re.match(r'^\+?\d{7,15}$', phone):
        return False, "Please enter a valid phone number"

    return True, ""
