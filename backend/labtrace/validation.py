from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from labtrace.errors import ValidationFailed
from labtrace.time_utils import parse_iso_datetime


# Upper bound for any monetary amount or material quantity (Numeric(10, x))
MAX_AMOUNT = Decimal("9999999")

# Scales of the Numeric columns: money and rates (x, 2), material quantities (10, 3)
MONEY_PLACES = 2
QUANTITY_PLACES = 3


def require_fields(payload: dict, *fields: str) -> None:
    if payload is None or not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")


def coerce_decimal(value: Any, field: str, *, positive: bool = False, places: int | None = None) -> Decimal:
    """
    Coerce JSON input to Decimal.

    Floats are converted through str() so 0.1 stays 0.1 rather than the
    binary approximation. Booleans are rejected (bool is an int subclass).
    With `places`, values that need more decimal places than the column
    stores are rejected instead of being rounded on write (1.500 is fine
    for places=2, 1.505 is not).
    """
    if value is None or isinstance(value, bool):
        raise ValidationFailed(f"{field} must be a number")
    try:
        if isinstance(value, Decimal):
            dec = value
        elif isinstance(value, float):
            dec = Decimal(str(value))
        else:
            dec = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a number")

    if not dec.is_finite():
        raise ValidationFailed(f"{field} must be a finite number")
    if positive and dec <= 0:
        raise ValidationFailed(f"{field} must be > 0")
    if dec < 0:
        raise ValidationFailed(f"{field} must be >= 0")
    if abs(dec) > MAX_AMOUNT:
        raise ValidationFailed(f"{field} cannot exceed {MAX_AMOUNT}")
    if places is not None and dec != dec.quantize(Decimal(1).scaleb(-places)):
        raise ValidationFailed(f"{field} allows at most {places} decimal places")
    return dec


def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    # Reject floats and scientific notation
    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        result = int(value.strip())
    else:
        raise ValidationFailed(f"{field} must be an integer")
    if minimum is not None and result < minimum:
        raise ValidationFailed(f"{field} must be >= {minimum}")
    return result


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationFailed(f"{field} must be an ISO-8601 datetime")
    raise ValidationFailed(f"{field} must be an ISO-8601 datetime")


def coerce_date(value: Any, field: str) -> date | None:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    dt = coerce_datetime(value, field)
    return dt.date() if dt is not None else None


def clean_text(value: Any, field: str, *, max_length: int | None = None, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationFailed(f"{field} is required")
        return None
    text = str(value).strip()
    if required and not text:
        raise ValidationFailed(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise ValidationFailed(f"{field} exceeds max length {max_length}")
    return text or None
