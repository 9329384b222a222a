"""
Field format rules for registration, password strength and payments.

Each validator returns a list of human-readable problems — empty means
valid. Callers collect every problem before failing so the client sees
all of them at once rather than fixing one field per round-trip.

Password rules are read from settings at call time; every character-class
requirement can be switched off independently:

    PASSWORD_MIN_LENGTH          (default 8)
    PASSWORD_REQUIRE_UPPERCASE   (default true)
    PASSWORD_REQUIRE_LOWERCASE   (default true)
    PASSWORD_REQUIRE_NUMBERS     (default true)
    PASSWORD_REQUIRE_SYMBOLS     (default true)
"""

import math
import re
from decimal import Decimal

from portal.config import settings

FULL_NAME_RE = re.compile(r"^[a-zA-Z\s]{2,50}$")
ID_NUMBER_RE = re.compile(r"^\d{13}$")
ACCOUNT_NUMBER_RE = re.compile(r"^\d{8,12}$")
RECIPIENT_ACCOUNT_RE = re.compile(r"^\d{8,12}$")
SWIFT_CODE_RE = re.compile(r"^[A-Z]{4}[A-Z]{2}[A-Z0-9]{2}([A-Z0-9]{3})?$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
SYMBOL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def validate_password_strength(password: str | None) -> list[str]:
    """List every enabled strength rule the password violates."""
    password = password or ""
    errors = []

    if len(password) < settings.PASSWORD_MIN_LENGTH:
        errors.append(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long"
        )
    if settings.PASSWORD_REQUIRE_UPPERCASE and not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if settings.PASSWORD_REQUIRE_LOWERCASE and not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if settings.PASSWORD_REQUIRE_NUMBERS and not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if settings.PASSWORD_REQUIRE_SYMBOLS and not SYMBOL_RE.search(password):
        errors.append("Password must contain at least one special character")

    return errors


def validate_registration(
    full_name: str | None,
    id_number: str | None,
    account_number: str | None,
    password: str | None,
) -> list[str]:
    errors = []

    if not full_name or not full_name.strip():
        errors.append("Full name is required.")
    elif not FULL_NAME_RE.match(full_name):
        errors.append("Full name may only contain letters and spaces (2-50 characters).")

    if not id_number or not ID_NUMBER_RE.match(id_number):
        errors.append("ID number must be exactly 13 digits.")

    if not account_number or not ACCOUNT_NUMBER_RE.match(account_number):
        errors.append("Account number must be 8-12 digits.")

    errors.extend(validate_password_strength(password))
    return errors


def validate_payment(
    amount: Decimal | float | int | None,
    currency: str | None,
    recipient_name: str | None,
    recipient_account: str | None,
    swift_code: str | None,
    provider: str | None,
    description: str | None = None,
) -> list[str]:
    """
    Format rules a payment must pass before it can be created.

    The upper bound on amount is enforced by the HTTP schema; here the
    amount only has to be a finite number greater than zero.
    """
    errors = []

    try:
        finite = amount is not None and math.isfinite(amount)
    except (TypeError, ValueError):
        finite = False
    if not finite or amount <= 0:
        errors.append("Amount must be a valid number greater than 0")

    if not currency or not CURRENCY_RE.match(currency):
        errors.append("Currency must be a 3-letter uppercase code")

    if not recipient_name or not 2 <= len(recipient_name.strip()) <= 100:
        errors.append("Recipient name must be 2-100 characters")

    if not recipient_account or not RECIPIENT_ACCOUNT_RE.match(recipient_account):
        errors.append("Recipient account must be 8-12 digits")

    if not swift_code or not SWIFT_CODE_RE.match(swift_code):
        errors.append("Invalid SWIFT code format. Example: ABSAZAJJ or ABSAZAJJXXX")

    if not provider or not provider.strip():
        errors.append("Provider is required")

    if description is not None and len(description) > 255:
        errors.append("Description must not exceed 255 characters")

    return errors
