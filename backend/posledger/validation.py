from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from posledger.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_int(value: Any, field: str) -> int:
    """Strict integer parsing - rejects floats, bools, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("cost_price_cents", "selling_price_cents"):
        if key in patch and patch[key] is not None:
            price = patch[key]
            if price < 0:
                raise ValidationError(f"{key} must be >= 0")
            if price > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")

    if "low_stock_threshold" in patch and patch["low_stock_threshold"] is not None:
        if patch["low_stock_threshold"] < 0:
            raise ValidationError("low_stock_threshold must be >= 0")


def parse_money_string(value: Any, field: str) -> int:
    """
    Parse a decimal money string ("10.00", "3.5", "7") into integer cents.

    Floats are rejected: money never passes through binary floating point.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a decimal string such as \"10.00\"")
    if isinstance(value, int):
        raise ValidationError(f"{field} must be a decimal string; send {field}_cents for integer cents")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a decimal string")
    s = value.strip()
    if 'e' in s.lower():
        raise ValidationError(f"{field} must not use scientific notation")
    try:
        amount = Decimal(s)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a decimal string")
    if amount.as_tuple().exponent < -2:
        raise ValidationError(f"{field} allows at most two decimal places")
    return int(amount * 100)


def money_field(data: dict, name: str, *, required: bool = False, default: int | None = None) -> int | None:
    """
    Read a money amount from either "<name>_cents" (integer cents) or "<name>" (decimal string).
    """
    cents_key = f"{name}_cents"
    if data.get(cents_key) is not None:
        cents = parse_int(data[cents_key], cents_key)
    elif data.get(name) is not None:
        cents = parse_money_string(data[name], name)
    elif required:
        raise ValidationError(f"{cents_key} or {name} is required")
    else:
        return default

    if abs(cents) > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} is out of range")
    return cents


def parse_quantity(value: Any, field: str = "quantity") -> int:
    qty = parse_int(value, field)
    if qty < 1:
        raise ValidationError(f"{field} must be >= 1")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return qty


def parse_exchange_rate(value: Any) -> Decimal | None:
    """Exchange rates arrive as decimal strings ("4.85"); at most four decimal places."""
    if value is None or value == "":
        return None
    if isinstance(value, (bool, float)):
        raise ValidationError("exchange_rate must be a decimal string such as \"4.85\"")
    try:
        rate = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("exchange_rate must be a decimal string")
    if not rate.is_finite() or rate <= 0:
        raise ValidationError("exchange_rate must be positive")
    if rate.as_tuple().exponent < -4:
        raise ValidationError("exchange_rate allows at most four decimal places")
    return rate


def parse_currency(value: Any, supported) -> str | None:
    if value is None:
        return None
    code = str(value).strip().upper()
    if code not in supported:
        raise ValidationError(f"currency must be one of: {', '.join(supported)}")
    return code


def parse_id_list(value: Any, field: str) -> list[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list of ids")
    ids = [parse_int(v, field) for v in value]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"{field} contains duplicates")
    return ids


def parse_optional_datetime(value: Any, field: str, *, end_of_range: bool = False) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value, end_of_range=end_of_range)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
