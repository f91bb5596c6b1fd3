# Overview: Typed dynamic-field parsing and per-field upserts for entities.

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DynamicField, Entity
from ..validation import (
    INVALID_FIELD_TYPE,
    ValidationError,
    coerce_bool,
    coerce_datetime,
    to_decimal,
)
from .guard_service import ActorContext
from .smart_code_service import require_smart_code


FIELD_TYPES = ("text", "number", "boolean", "date", "json")

# Older callers send the column-style names
_TYPE_ALIASES = {
    "string": "text",
    "str": "text",
    "numeric": "number",
    "decimal": "number",
    "int": "number",
    "integer": "number",
    "float": "number",
    "bool": "boolean",
    "datetime": "date",
    "timestamp": "date",
    "object": "json",
}

_FIELD_NAME_MAX = 128


@dataclass(frozen=True)
class FieldWrite:
    field_name: str
    field_type: str
    value: Any
    smart_code: str | None = None


def _normalize_field_type(raw) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("field type must be a string", code=INVALID_FIELD_TYPE)
    lowered = raw.strip().lower()
    lowered = _TYPE_ALIASES.get(lowered, lowered)
    if lowered not in FIELD_TYPES:
        raise ValidationError(
            f"Unsupported field type: {raw!r}",
            code=INVALID_FIELD_TYPE,
            details={"allowed": list(FIELD_TYPES)},
        )
    return lowered


def _infer_field_type(value) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, (dict, list)):
        return "json"
    return "text"


def _coerce_value(field_name: str, field_type: str, value):
    where = f"dynamic.{field_name}"
    if value is None:
        raise ValidationError(f"{where} value is required", details={"field": field_name})
    if field_type == "number":
        return to_decimal(value, field=where, required=True)
    if field_type == "boolean":
        return coerce_bool(value, field=where)
    if field_type == "date":
        return coerce_datetime(value, field=where)
    if field_type == "json":
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{where} must be JSON-serializable", details={"field": field_name})
        return value
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{where} must be a scalar for text fields", details={"field": field_name})
    return str(value)


def _parse_one(field_name, spec) -> FieldWrite:
    if not isinstance(field_name, str) or not field_name.strip():
        raise ValidationError("dynamic field_name is required")
    field_name = field_name.strip()
    if len(field_name) > _FIELD_NAME_MAX:
        raise ValidationError(f"dynamic field_name exceeds max length {_FIELD_NAME_MAX}")

    smart_code = None
    if isinstance(spec, dict):
        smart_code = spec.get("smart_code")
        raw_type = spec.get("type", spec.get("field_type"))
        if "value" in spec:
            raw_value = spec["value"]
        else:
            # {field_type: "number", field_value_number: 12.5}
            column_values = {k: v for k, v in spec.items() if k.startswith("field_value_")}
            if raw_type is None and len(column_values) == 1:
                raw_type = next(iter(column_values))[len("field_value_"):]
            field_type = _normalize_field_type(raw_type) if raw_type is not None else None
            raw_value = column_values.get(f"field_value_{field_type}") if field_type else None
        field_type = _normalize_field_type(raw_type) if raw_type is not None else _infer_field_type(raw_value)
    else:
        raw_value = spec
        field_type = _infer_field_type(spec)

    if smart_code is not None:
        require_smart_code(smart_code, field=f"dynamic.{field_name}.smart_code")

    return FieldWrite(
        field_name=field_name,
        field_type=field_type,
        value=_coerce_value(field_name, field_type, raw_value),
        smart_code=smart_code,
    )


def parse_dynamic_fields(dynamic) -> list[FieldWrite]:
    """
    Accepts either a mapping {field_name: spec} or a list of specs with
    field_name keys. Spec is {value, type, smart_code}, the column form
    {field_type, field_value_<type>}, or a bare scalar (type inferred).
    """
    if dynamic is None:
        return []
    if isinstance(dynamic, dict):
        items = list(dynamic.items())
    elif isinstance(dynamic, list):
        items = []
        for spec in dynamic:
            if not isinstance(spec, dict):
                raise ValidationError("dynamic entries must be objects")
            items.append((spec.get("field_name"), spec))
    else:
        raise ValidationError("dynamic must be an object or an array")

    writes = [_parse_one(name, spec) for name, spec in items]
    names = [w.field_name for w in writes]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValidationError(
            f"Duplicate dynamic fields: {', '.join(duplicates)}",
            details={"duplicates": duplicates},
        )
    return writes


def _assign(row: DynamicField, write: FieldWrite, actor_user_id: str) -> None:
    row.field_type = write.field_type
    row.field_value_text = write.value if write.field_type == "text" else None
    row.field_value_number = write.value if write.field_type == "number" else None
    row.field_value_boolean = write.value if write.field_type == "boolean" else None
    row.field_value_date = write.value if write.field_type == "date" else None
    row.field_value_json = write.value if write.field_type == "json" else None
    if write.smart_code is not None:
        row.smart_code = write.smart_code
    row.updated_by = actor_user_id


def _find(entity_id: str, field_name: str) -> DynamicField | None:
    return (
        db.session.query(DynamicField)
        .filter_by(entity_id=entity_id, field_name=field_name)
        .first()
    )


def upsert_dynamic_fields(ctx: ActorContext, entity: Entity, writes: list[FieldWrite]) -> list[DynamicField]:
    """
    Insert or replace one row per (entity, field_name).

    Fields not named in writes are untouched. The entity row must already be
    flushed; a concurrent insert of the same field surfaces as an
    IntegrityError inside the savepoint and is applied as an update instead.
    """
    rows = []
    for write in writes:
        row = _find(entity.id, write.field_name)
        if row is None:
            row = DynamicField(
                organization_id=ctx.organization_id,
                entity_id=entity.id,
                field_name=write.field_name,
                created_by=ctx.actor_user_id,
            )
            _assign(row, write, ctx.actor_user_id)
            try:
                with db.session.begin_nested():
                    db.session.add(row)
            except IntegrityError:
                row = _find(entity.id, write.field_name)
                if row is None:
                    raise
                _assign(row, write, ctx.actor_user_id)
        else:
            _assign(row, write, ctx.actor_user_id)
        rows.append(row)
    db.session.flush()
    return rows


def list_dynamic_fields(entity_id: str, organization_id: str) -> list[DynamicField]:
    return (
        db.session.query(DynamicField)
        .filter_by(entity_id=entity_id, organization_id=organization_id)
        .order_by(DynamicField.field_name)
        .all()
    )
