"""
Security utilities for request input validation
"""
import re
from typing import Optional

# Input limits
MAX_EMAIL_LENGTH = 254
MIN_PASSWORD_LENGTH = 8
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50
MIN_ORDER_AMOUNT = 1
MAX_ORDER_AMOUNT = 100000
ALLOWED_CURRENCIES = ["INR", "USD", "EUR"]

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def validate_email(email: Optional[str]) -> str:
    """
    Validate and normalize an email address.

    Args:
        email: Raw email from the request body

    Returns:
        The trimmed, lower-cased email

    Raises:
        ValueError: If the email is missing, too long or malformed
    """
    if not email or not email.strip():
        raise ValueError("Email is required")

    email = email.strip()
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValueError(f"Email must be at most {MAX_EMAIL_LENGTH} characters")

    if not EMAIL_PATTERN.match(email):
        raise ValueError("Invalid email format")

    return email.lower()


def validate_password_strength(password: str) -> None:
    """
    Validate password strength according to security requirements.

    Enforces:
    - Minimum length: 8 characters
    - At least one uppercase letter (A-Z)
    - At least one lowercase letter (a-z)
    - At least one digit (0-9)

    Args:
        password: Password string to validate

    Raises:
        ValueError: If password does not meet strength requirements
    """
    if not password:
        raise ValueError("Password cannot be empty")

    # Check minimum length
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    # Check for uppercase letter
    if not re.search(r'[A-Z]', password):
        raise ValueError("Password must contain at least one uppercase letter (A-Z)")

    # Check for lowercase letter
    if not re.search(r'[a-z]', password):
        raise ValueError("Password must contain at least one lowercase letter (a-z)")

    # Check for digit
    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit (0-9)")


def validate_name(name: Optional[str]) -> str:
    """Trimmed display name, 2-50 characters."""
    if not name or not name.strip():
        raise ValueError("Name is required")
    name = name.strip()
    if len(name) < MIN_NAME_LENGTH or len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters")
    return name


def validate_amount(amount) -> int:
    if amount is None or isinstance(amount, bool):
        raise ValueError("Amount is required")
    try:
        value = int(amount)
    except (TypeError, ValueError):
        raise ValueError("Amount must be a number")
    if value != amount and not isinstance(amount, str):
        raise ValueError("Amount must be a whole number")
    if value < MIN_ORDER_AMOUNT or value > MAX_ORDER_AMOUNT:
        raise ValueError(f"Amount must be between {MIN_ORDER_AMOUNT} and {MAX_ORDER_AMOUNT}")
    return value


def validate_currency(currency: Optional[str]) -> str:
    currency = (currency or "INR").upper()
    if currency not in ALLOWED_CURRENCIES:
        raise ValueError(f"Currency must be one of: {', '.join(ALLOWED_CURRENCIES)}")
    return currency
