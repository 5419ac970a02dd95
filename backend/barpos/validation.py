from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models.catalog import PRODUCT_TYPES, PRODUCT_TYPE_FRACTIONED


# Maximum price: 999,999.99 (99,999,999 cents)
MAX_PRICE_CENTS = 99_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate barcode)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: accepted keys that are not model columns (e.g. initial stock)
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_int(value: Any, field: str) -> int:
    """Strict integer parse: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def to_cents(value: Any, field: str) -> int:
    """
    Convert a currency amount ("10.50", 10.5, 10) to integer cents.

    Floats go through str() so 0.1 stays 0.1. More than two decimal places
    is rejected rather than rounded.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if not isinstance(value, (int, float, str, Decimal)):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValidationError(f"{field} must have at most two decimal places")
    return int(cents)


def cents_to_str(cents: int) -> str:
    return f"{Decimal(cents) / 100:.2f}"


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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

    Money fields are accepted in currency units under their short name
    ("price" for price_cents) when the policy lists them that way.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    extra = policy.extra_fields or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields and k not in extra:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra:
            patch[k] = raw
            continue

        # "price" -> price_cents, "cost" -> cost_cents
        cents_key = f"{k}_cents"
        if k not in cols and cents_key in cols:
            col = cols[cents_key]
            if raw is None:
                if not col.nullable:
                    raise ValidationError(f"{k} cannot be null")
                patch[cents_key] = None
            else:
                patch[cents_key] = to_cents(raw, k)
            continue

        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

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
    for key in ("price_cents", "cost_cents"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} ({cents_to_str(MAX_PRICE_CENTS)})")

    if "product_type" in patch and patch["product_type"] not in PRODUCT_TYPES:
        raise ValidationError(f"product_type must be one of: {', '.join(PRODUCT_TYPES)}")

    if patch.get("barcode") == "":
        patch["barcode"] = None

    volume = patch.get("volume_per_dispense_ml")
    if volume is not None and volume <= 0:
        raise ValidationError("volume_per_dispense_ml must be > 0")

    if patch.get("product_type") == PRODUCT_TYPE_FRACTIONED:
        if volume is None:
            raise ValidationError("volume_per_dispense_ml is required for FRACTIONED products")
        if patch.get("barrel_id") is None:
            raise ValidationError("barrel_id is required for FRACTIONED products")


def enforce_rules_stock(patch: dict) -> None:
    for key in ("quantity", "min_quantity", "max_quantity"):
        value = patch.get(key)
        if value is not None and value < 0:
            raise ValidationError(f"{key} cannot be negative")
    max_q = patch.get("max_quantity")
    min_q = patch.get("min_quantity")
    if max_q is not None and min_q is not None and max_q < min_q:
        raise ValidationError("max_quantity must be >= min_quantity")
