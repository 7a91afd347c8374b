# Overview: Input coercion helpers shared by services; all failures raise ValidationError.

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Largest unit count a single line, receipt entry or ledger row may carry
MAX_QUANTITY = 1_000_000

# Signed 64-bit column range
MAX_DB_INTEGER = 2**63 - 1


def _out_of_range(field: str, maximum: int) -> ValidationError:
    return ValidationError(
        f"{field} cannot exceed {maximum}",
        details={"field": field, "max": maximum},
    )


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints (not bools) and plain digit strings. Rejects floats,
    decimals and scientific notation, and anything outside the signed
    64-bit range a database column can hold.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", details={"field": field})
        try:
            number = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field}) from None
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})
    if abs(number) > MAX_DB_INTEGER:
        raise _out_of_range(field, MAX_DB_INTEGER)
    return number


def default_maximum(field: str) -> int | None:
    if field.endswith("_cents"):
        return MAX_PRICE_CENTS
    if "quantity" in field:
        return MAX_QUANTITY
    return None


def enforce_maximum(number: int, field: str, maximum: int | None = None) -> int:
    """Cents fields are capped at MAX_PRICE_CENTS and quantities at MAX_QUANTITY unless a maximum is given."""
    limit = maximum if maximum is not None else default_maximum(field)
    if limit is not None and abs(number) > limit:
        raise _out_of_range(field, limit)
    return number


def require_positive_int(value: Any, field: str, *, maximum: int | None = None) -> int:
    if value is None:
        raise ValidationError(f"{field} is required", details={"field": field})
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0", details={"field": field, "value": number})
    return enforce_maximum(number, field, maximum)


def require_non_negative_int(
    value: Any, field: str, *, default: int | None = None, maximum: int | None = None,
) -> int:
    if value is None:
        if default is None:
            raise ValidationError(f"{field} is required", details={"field": field})
        return default
    number = coerce_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0", details={"field": field, "value": number})
    return enforce_maximum(number, field, maximum)


def optional_non_negative_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return require_non_negative_int(value, field)


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} cannot be blank", details={"field": field})
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return text


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_enum(enum_cls: type[enum.Enum], value: Any, field: str, *, error_cls=ValidationError):
    """Accept an enum member or the string naming one (case-insensitive)."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().upper())
        except ValueError:
            pass
    allowed = [member.value for member in enum_cls]
    raise error_cls(
        f"{field} must be one of: {', '.join(allowed)}",
        details={"field": field, "value": value if isinstance(value, (str, int)) else None, "allowed": allowed},
    )


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field}) from None


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create
    - forbidden_fields: fields that are rejected with a specific message
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    forbidden_fields: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_column_value(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean", details={"field": col.key})

    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming fields against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"fields": missing},
            )

    cols = _columns_by_key(model)

    for key in payload.keys():
        if key in policy.forbidden_fields:
            raise ValidationError(
                f"{key} cannot be set directly; stock changes go through the ledger",
                details={"field": key},
            )
        if key not in policy.writable_fields or key not in cols:
            raise ValidationError(f"Field not allowed: {key}", details={"field": key})

    patch: dict = {}
    for key, raw in payload.items():
        col = cols[key]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null", details={"field": key})
            patch[key] = None
            continue

        val = _coerce_column_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise ValidationError(f"{key} cannot be blank", details={"field": key})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{key} exceeds max length {col.type.length}", details={"field": key})

        if key.endswith("_cents") and isinstance(val, int):
            if val < 0:
                raise ValidationError(f"{key} must be >= 0", details={"field": key})
            if val > MAX_PRICE_CENTS:
                raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}", details={"field": key})

        patch[key] = val

    return patch
