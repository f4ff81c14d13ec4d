from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Maximum single amount: R$ 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

# Commission rates are stored in basis points: 10000 bps == 100%
MAX_RATE_BPS = 10_000

CENT = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""


def parse_amount_cents(value: Any, field: str = "amount") -> int:
    """
    Parse a client-supplied money amount into integer cents.

    Accepts decimal strings ("50.00", "50"), ints and floats. The value must
    be positive and carry at most two decimal places.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")

    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValidationError(f"{field} is required")
        # Reject scientific notation (e.g., "1e3")
        if "e" in raw.lower():
            raise ValidationError(f"{field} must be a plain decimal (scientific notation not allowed)")
    elif isinstance(value, (int, float)):
        raw = str(value)
    else:
        raise ValidationError(f"{field} must be a number")

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")

    if amount != amount.quantize(CENT):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")

    cents = int(amount * 100)
    if cents <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed value")
    return cents


def parse_rate_bps(value: Any, field: str = "commission_rate") -> int:
    """Parse a percentage (0-100, up to 2 decimals) into basis points."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not rate.is_finite() or rate < 0 or rate > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    if rate != rate.quantize(CENT):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")
    return int(rate * 100)


def cents_to_decimal(cents: int | None) -> str | None:
    """Render integer cents as a fixed two-place decimal string."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(CENT, rounding=ROUND_HALF_UP))


def bps_to_percent(bps: int | None) -> str | None:
    if bps is None:
        return None
    return str((Decimal(bps) / 100).quantize(CENT))


def require_fields(data: dict | None, *fields: str) -> dict:
    """Ensure a JSON body is present and carries every listed field."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")
    return data


def parse_limit(value: Any, default: int = 100, maximum: int = 500) -> int:
    """Query-string page size, clamped to 1..maximum."""
    if value in (None, ""):
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValidationError("limit must be an integer")
    return max(1, min(limit, maximum))
