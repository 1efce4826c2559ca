"""Shared validation utilities"""

import re
from typing import Optional


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

    if not re.match(email_pattern, email) or len(email) > 254:
        raise ValueError("Invalid email format")

    return email


def normalize_kenyan_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Kenyan mobile number to the 254XXXXXXXXX form mobile money expects.

    Args:
        phone: Phone number string in various formats (0712..., +254712..., 712...)

    Returns:
        Digits only, prefixed with 254

    Raises:
        ValueError: If no digits remain
    """
    if not phone:
        return phone

    # Remove all non-digit characters
    digits = re.sub(r"\D", "", phone)
    if not digits:
        raise ValueError("Phone number must contain digits")

    if digits.startswith("0"):
        digits = "254" + digits[1:]
    if not digits.startswith("254"):
        digits = "254" + digits

    return digits
