"""
Validators — Identifier, amount and phone rules for the payment flows.
"""
import re
import uuid
from decimal import Decimal, InvalidOperation

from cemetery.exceptions import ValidationError

ECOCASH_LOCAL_PATTERN = re.compile(r"^07\d{8}$")
CENT = Decimal("0.01")
# Largest value a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


def validate_uuid(value: str | None, field_name: str = "ID") -> str:
    """Reject anything that is not a canonical UUID string before it reaches a query."""
    if not value or not isinstance(value, str):
        raise ValidationError(f"Invalid {field_name}: must be a string")
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: must be a valid UUID format")
    if str(parsed) != value.lower():
        raise ValidationError(f"Invalid {field_name}: must be a valid UUID format")
    return value


def validate_amount(value) -> Decimal:
    """Coerce an incoming amount to Decimal: positive, at most two decimal places.

    Floats are converted through ``str`` so binary noise never enters balance math.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"Amount cannot exceed ${MAX_AMOUNT:,}")
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation:
        raise ValidationError("Invalid amount")
    if amount != cents:
        raise ValidationError("Amount cannot have more than two decimal places")
    return amount


def validate_ecocash_phone(phone: str | None) -> bool:
    """EcoCash numbers are entered locally as 07XXXXXXXX."""
    if not phone:
        return False
    return bool(ECOCASH_LOCAL_PATTERN.match(phone.strip()))


def normalize_ecocash_phone(phone: str) -> str:
    """Convert a local EcoCash number to the 2637XXXXXXXX form Paynow expects."""
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("0"):
        digits = "263" + digits[1:]
    if digits.startswith("2637"):
        return digits
    raise ValidationError("Invalid EcoCash phone number")


def format_money(amount: Decimal) -> str:
    """Two-decimal presentation of an amount (messages and gateway payloads only)."""
    return f"{Decimal(amount).quantize(CENT):.2f}"
