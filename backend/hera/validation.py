"""
Error taxonomy and payload coercion shared by every engine.

Services raise CrudError subclasses; the contract boundary
(services/crud_service.py) turns them into {success: false, ...} values.
Each error carries a stable machine-readable code, its category, and an
optional details dict for callers that want to render field-level problems.
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from .time_utils import parse_iso_datetime


# Categories
VALIDATION = "VALIDATION"
GOVERNANCE = "GOVERNANCE"
AUTHORIZATION = "AUTHORIZATION"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
BALANCE = "BALANCE"
INTERNAL = "INTERNAL"

# Stable error codes
VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_ACTION = "INVALID_ACTION"
ORG_REQUIRED = "ORG_REQUIRED"
ACTOR_REQUIRED = "ACTOR_REQUIRED"
INVALID_RELATIONSHIP_TYPE = "INVALID_RELATIONSHIP_TYPE"
INVALID_FIELD_TYPE = "INVALID_FIELD_TYPE"
INVALID_SMART_CODE = "INVALID_SMART_CODE"
NOT_AUTHORIZED = "NOT_AUTHORIZED"
ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
RELATIONSHIP_NOT_FOUND = "RELATIONSHIP_NOT_FOUND"
DUPLICATE_CODE = "DUPLICATE_CODE"
IDEMPOTENCY_CONFLICT = "IDEMPOTENCY_CONFLICT"
ALREADY_VOIDED = "ALREADY_VOIDED"
INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
BALANCE_ERROR = "BALANCE_ERROR"
INTERNAL_ERROR = "INTERNAL_ERROR"


class CrudError(Exception):
    """Base class for every failure the CRUD contract reports as a value."""
    category = INTERNAL
    default_code = INTERNAL_ERROR

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.code,
            "category": self.category,
            "message": str(self),
            "details": self.details,
        }


class ValidationError(CrudError):
    """400-level input problem."""
    category = VALIDATION
    default_code = VALIDATION_ERROR


class GovernanceError(CrudError):
    """Smart code failed the governed pattern."""
    category = GOVERNANCE
    default_code = INVALID_SMART_CODE


class AuthorizationError(CrudError):
    """Actor is not a member of the organization or lacks the permission."""
    category = AUTHORIZATION
    default_code = NOT_AUTHORIZED


class NotFoundError(CrudError):
    """Row is absent within the caller's tenant scope."""
    category = NOT_FOUND
    default_code = ENTITY_NOT_FOUND


class ConflictError(CrudError):
    """409-level business rule conflict (e.g., duplicate entity code)."""
    category = CONFLICT
    default_code = DUPLICATE_CODE


class BalanceError(CrudError):
    """Transaction lines do not reconcile under the type's balance rule."""
    category = BALANCE
    default_code = BALANCE_ERROR


_IDENTIFIER_RE = re.compile(r"^[A-Z][A-Z0-9_]{0,63}$")


def require_fields(payload: dict, fields: tuple[str, ...], *, where: str) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields in {where}: {', '.join(missing)}",
            details={"missing": missing, "where": where},
        )


def require_dict(value: Any, *, where: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{where} must be an object")
    return value


def require_list(value: Any, *, where: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{where} must be an array")
    return value


def normalize_type_name(value: Any, *, field: str) -> str:
    """
    Normalize entity_type / transaction_type / relationship_type to UPPERCASE.

    Only letters, digits and underscores; must start with a letter.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    normalized = value.strip().upper()
    if not _IDENTIFIER_RE.match(normalized):
        raise ValidationError(
            f"{field} must be alphanumeric/underscore and start with a letter",
            details={"field": field, "value": value},
        )
    return normalized


def coerce_text(value: Any, *, field: str, max_length: int | None = None, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    text = str(value).strip()
    if required and text == "":
        raise ValidationError(f"{field} cannot be blank", details={"field": field})
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return text


def to_decimal(value: Any, *, field: str, required: bool = False) -> Decimal | None:
    """
    Strict numeric coercion for amounts and quantities.

    Accepts int, float, Decimal and numeric strings ("452.34").
    Rejects booleans, blanks, NaN and infinities.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValidationError(f"{field} must be a finite number", details={"field": field})
        return Decimal(str(value))
    if isinstance(value, (int, Decimal)):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", details={"field": field})
    else:
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    return result


def to_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def coerce_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"{field} must be a boolean", details={"field": field})


def coerce_datetime(value: Any, *, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
        return dt
    raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})


def coerce_id_list(value: Any, *, field: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValidationError(f"{field} must be a string or an array of strings", details={"field": field})


def coerce_page(options: dict, *, default_limit: int, max_limit: int) -> tuple[int, int]:
    """Validate limit/offset pagination options."""
    limit = options.get("limit", default_limit)
    offset = options.get("offset", 0)
    for name, raw in (("limit", limit), ("offset", offset)):
        if isinstance(raw, bool) or not isinstance(raw, (int, str)):
            raise ValidationError(f"{name} must be an integer", details={"field": name})
    try:
        limit = int(limit)
        offset = int(offset)
    except ValueError:
        raise ValidationError("limit and offset must be integers")
    if limit < 1:
        raise ValidationError("limit must be >= 1", details={"field": "limit"})
    if offset < 0:
        raise ValidationError("offset must be >= 0", details={"field": "offset"})
    return min(limit, max_limit), offset
