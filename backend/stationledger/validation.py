from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from stationledger.errors import ValidationError
from stationledger.time_utils import parse_iso_datetime, to_utc_naive


# Maximum amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

# Quantities (liters, meter readings) are kept to the millilitre
QUANTITY_PLACES = Decimal("0.001")

# Numeric(14,3) columns hold at most 11 integer digits
MAX_QUANTITY = Decimal("99999999999.999")


def coerce_id(name: str, value: Any) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} is required")
    if isinstance(value, int):
        if value <= 0:
            raise ValidationError(f"{name} must be a positive integer")
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return coerce_id(name, int(value.strip()))
    raise ValidationError(f"{name} must be a positive integer")


def coerce_optional_id(name: str, value: Any) -> int | None:
    if value is None or value == "":
        return None
    return coerce_id(name, value)


def coerce_cents(name: str, value: Any, *, allow_zero: bool = True) -> int:
    """
    Strict integer-cents validation.

    Rejects floats, booleans, decimal strings and scientific notation, then
    applies the sign and range rules.
    """
    if value is None:
        raise ValidationError(f"{name} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer number of cents")

    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer number of cents (no decimals)")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer number of cents")
    else:
        raise ValidationError(f"{name} must be an integer number of cents")

    if cents < 0 or (cents == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents


def coerce_quantity(name: str, value: Any, *, allow_zero: bool = False) -> Decimal:
    """Parse a physical quantity (liters, meter reading) into a Decimal."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required")
    try:
        qty = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a number")
    if not qty.is_finite():
        raise ValidationError(f"{name} must be a finite number")

    if abs(qty) > MAX_QUANTITY:
        raise ValidationError(f"{name} cannot exceed {MAX_QUANTITY}")
    try:
        qty = qty.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError(f"{name} is out of range")
    if qty < 0 or (qty == 0 and not allow_zero):
        raise ValidationError(f"{name} must be {'>= 0' if allow_zero else '> 0'}")
    return qty


def coerce_datetime(name: str, value: Any) -> datetime:
    if isinstance(value, (datetime, date)):
        return to_utc_naive(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{name} is required")
        return dt
    raise ValidationError(f"{name} must be a datetime")


def coerce_optional_datetime(name: str, value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return coerce_datetime(name, value)


def coerce_choice(name: str, value: Any, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if not isinstance(value, str) or value.strip().lower() not in allowed:
        raise ValidationError(f"Invalid {name}: {value}. Must be one of {allowed}")
    return value.strip().lower()


def clean_text(value: Any, *, max_length: int | None = None, name: str = "value") -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return text


def line_total_cents(quantity: Decimal, unit_price_cents: int, *, name: str = "total") -> int:
    """quantity x unit price, rounded half-up to whole cents."""
    total = (Decimal(quantity) * Decimal(unit_price_cents)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return check_total_cents(name, int(total))


def check_total_cents(name: str, cents: int) -> int:
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})")
    return cents
