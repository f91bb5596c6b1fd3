"""
Entity CRUD Engine

WHY: Every vertical stores its business objects in the one generic entities
table. This module is the only writer of entities, their dynamic fields and
the relationships they own, so tenant scoping and smart-code governance are
enforced in one place.

ATOMICITY: every operation validates the whole payload (header, dynamic
fields, relationships, referenced entities) before adding the first row.
Nothing is committed here; the contract boundary commits or rolls back.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Entity
from ..models.common import new_id
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    DUPLICATE_CODE,
    ENTITY_NOT_FOUND,
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_id_list,
    coerce_page,
    coerce_text,
    normalize_type_name,
    require_dict,
    require_fields,
    require_list,
)
from .dynamic_data_service import list_dynamic_fields, parse_dynamic_fields, upsert_dynamic_fields
from .entity_kinds import check_required_fields, check_smart_code_family, get_entity_kind
from .guard_service import ActorContext, require_permission, scoped_query, warn_on_foreign_org
from .relationship_service import (
    DIRECTIONS,
    append_relationship,
    deactivate_edges_for_entity,
    parse_relationship_spec,
    query_relationships,
    require_entities_in_org,
)
from .smart_code_service import require_smart_code


ENTITY_STATUSES = ("active", "inactive", "deleted")
STATUS_DELETED = "deleted"

ORDERABLE_COLUMNS = {
    "created_at": Entity.created_at,
    "updated_at": Entity.updated_at,
    "entity_name": Entity.entity_name,
    "entity_code": Entity.entity_code,
    "entity_type": Entity.entity_type,
}


def _coerce_status(value, *, allow_deleted: bool = False) -> str:
    if not isinstance(value, str) or value.strip().lower() not in ENTITY_STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(ENTITY_STATUSES)}",
            details={"field": "status"},
        )
    status = value.strip().lower()
    if status == STATUS_DELETED and not allow_deleted:
        raise ValidationError("Use DELETE to delete an entity", details={"field": "status"})
    return status


def _check_duplicate_code(ctx: ActorContext, entity_type: str, entity_code: str | None, *, exclude_id: str | None = None) -> None:
    if not entity_code:
        return
    query = scoped_query(Entity, ctx.organization_id).filter_by(
        entity_type=entity_type, entity_code=entity_code,
    )
    if exclude_id:
        query = query.filter(Entity.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(
            f"{entity_type} with code {entity_code!r} already exists",
            code=DUPLICATE_CODE,
            details={"entity_type": entity_type, "entity_code": entity_code},
        )


def _parse_relationships(relationships, *, owner_id: str) -> list[dict]:
    return [
        parse_relationship_spec(spec, default_from=owner_id)
        for spec in require_list(relationships, where="relationships")
    ]


def _check_relationship_endpoints(ctx: ActorContext, parsed: list[dict], *, owner_id: str) -> None:
    referenced = set()
    for rel in parsed:
        referenced.update((rel["from_entity_id"], rel["to_entity_id"]))
    referenced.discard(owner_id)
    require_entities_in_org(referenced, ctx.organization_id)


def get_entity(ctx: ActorContext, entity_id, *, include_deleted: bool = False) -> Entity:
    """Tenant-scoped lookup; rows of other organizations are simply absent."""
    if not entity_id or not isinstance(entity_id, str):
        raise ValidationError("entity_id is required", details={"field": "entity_id"})
    query = scoped_query(Entity, ctx.organization_id).filter_by(id=entity_id)
    if not include_deleted:
        query = query.filter(Entity.status != STATUS_DELETED)
    entity = query.first()
    if entity is None:
        raise NotFoundError("Entity not found", code=ENTITY_NOT_FOUND, details={"entity_id": entity_id})
    return entity


def compose_entity(
    ctx: ActorContext,
    entity: Entity,
    *,
    include_dynamic: bool = True,
    include_relationships: bool = False,
    relationship_direction: str = "outgoing",
) -> dict:
    """{entity, dynamic_data[], relationships[]} as returned across the contract."""
    return {
        "entity": entity.to_dict(),
        "dynamic_data": (
            [f.to_dict() for f in list_dynamic_fields(entity.id, ctx.organization_id)]
            if include_dynamic else []
        ),
        "relationships": (
            [r.to_dict() for r in query_relationships(ctx, entity.id, direction=relationship_direction)]
            if include_relationships else []
        ),
    }


def create_entity(ctx: ActorContext, entity: dict, dynamic=None, relationships=None) -> Entity:
    """
    Insert the entity, its dynamic fields and its relationships as one unit.

    Raises:
        ValidationError for malformed input
        GovernanceError for any bad smart code (entity, dynamic, relationship)
        NotFoundError when a parent or relationship target is outside the org
        ConflictError(DUPLICATE_CODE) on (org, entity_type, entity_code) collision
    """
    entity = require_dict(entity, where="entity")
    require_fields(entity, ("entity_type", "entity_name", "smart_code"), where="entity")
    warn_on_foreign_org(ctx, entity, where="entity CREATE")

    entity_type = normalize_type_name(entity["entity_type"], field="entity_type")
    kind = get_entity_kind(entity_type)
    smart_code = require_smart_code(entity["smart_code"], field="entity.smart_code")
    check_smart_code_family(kind, smart_code)

    entity_name = coerce_text(entity["entity_name"], field="entity_name", max_length=255, required=True)
    entity_code = coerce_text(entity.get("entity_code"), field="entity_code", max_length=100) or None
    description = coerce_text(entity.get("entity_description"), field="entity_description")
    status = _coerce_status(entity.get("status", "active"))
    metadata = require_dict(entity.get("metadata"), where="entity.metadata")

    entity_id = new_id()
    writes = parse_dynamic_fields(dynamic)
    check_required_fields(kind, {w.field_name for w in writes})
    parsed_relationships = _parse_relationships(relationships, owner_id=entity_id)

    parent_id = entity.get("parent_entity_id")
    if parent_id:
        require_entities_in_org([parent_id], ctx.organization_id)
    _check_relationship_endpoints(ctx, parsed_relationships, owner_id=entity_id)
    _check_duplicate_code(ctx, entity_type, entity_code)

    row = Entity(
        id=entity_id,
        organization_id=ctx.organization_id,
        entity_type=entity_type,
        entity_name=entity_name,
        entity_code=entity_code,
        entity_description=description,
        parent_entity_id=parent_id or None,
        smart_code=smart_code.code,
        status=status,
        entity_metadata=metadata or None,
        created_by=ctx.actor_user_id,
        updated_by=ctx.actor_user_id,
    )
    db.session.add(row)
    db.session.flush()

    upsert_dynamic_fields(ctx, row, writes)
    for rel in parsed_relationships:
        append_relationship(ctx, rel)
    db.session.flush()
    return row


def read_entity(ctx: ActorContext, entity_id, options: dict | None = None) -> dict:
    options = require_dict(options, where="options")
    include_deleted = coerce_bool(options.get("include_deleted", False), field="include_deleted")
    if include_deleted:
        require_permission(ctx, "VIEW_AUDIT")

    direction = options.get("relationship_direction", "outgoing")
    if direction not in DIRECTIONS:
        raise ValidationError(
            f"relationship_direction must be one of {', '.join(DIRECTIONS)}",
            details={"field": "relationship_direction"},
        )

    entity = get_entity(ctx, entity_id, include_deleted=include_deleted)
    return compose_entity(
        ctx, entity,
        include_dynamic=coerce_bool(options.get("include_dynamic", True), field="include_dynamic"),
        include_relationships=coerce_bool(options.get("include_relationships", False), field="include_relationships"),
        relationship_direction=direction,
    )


def update_entity(ctx: ActorContext, entity_id, entity=None, dynamic=None, relationships=None) -> Entity:
    """
    Partial update. Header fields change only when their key is present;
    dynamic fields are upserted one row per field; relationships are appended.

    entity_type can never change. status may move between active and
    inactive; deleting goes through delete_entity.
    """
    entity = require_dict(entity, where="entity")
    warn_on_foreign_org(ctx, entity, where="entity UPDATE")
    writes = parse_dynamic_fields(dynamic)
    parsed_relationships = _parse_relationships(relationships, owner_id=entity_id)

    changes = {}
    if "entity_name" in entity:
        changes["entity_name"] = coerce_text(entity["entity_name"], field="entity_name", max_length=255, required=True)
    if "entity_code" in entity:
        changes["entity_code"] = coerce_text(entity["entity_code"], field="entity_code", max_length=100) or None
    if "entity_description" in entity:
        changes["entity_description"] = coerce_text(entity["entity_description"], field="entity_description")
    if "status" in entity:
        changes["status"] = _coerce_status(entity["status"])
    smart_code = None
    if "smart_code" in entity:
        smart_code = require_smart_code(entity["smart_code"], field="entity.smart_code")
        changes["smart_code"] = smart_code.code
    metadata = require_dict(entity.get("metadata"), where="entity.metadata") if "metadata" in entity else None

    row = get_entity(ctx, entity_id)

    if "entity_type" in entity:
        requested = normalize_type_name(entity["entity_type"], field="entity_type")
        if requested != row.entity_type:
            raise ValidationError(
                "entity_type cannot be changed",
                details={"entity_type": row.entity_type, "requested": requested},
            )
    if smart_code is not None:
        check_smart_code_family(get_entity_kind(row.entity_type), smart_code)
    if "entity_code" in changes:
        _check_duplicate_code(ctx, row.entity_type, changes["entity_code"], exclude_id=row.id)

    parent_id = entity.get("parent_entity_id")
    if parent_id:
        if parent_id == row.id:
            raise ValidationError("An entity cannot be its own parent", details={"field": "parent_entity_id"})
        require_entities_in_org([parent_id], ctx.organization_id)
    _check_relationship_endpoints(ctx, parsed_relationships, owner_id=row.id)

    for key, value in changes.items():
        setattr(row, key, value)
    if "parent_entity_id" in entity:
        row.parent_entity_id = parent_id or None
    if metadata is not None:
        # Merge so callers can set one key without resending the rest
        merged = dict(row.entity_metadata or {})
        merged.update(metadata)
        row.entity_metadata = merged
    row.updated_by = ctx.actor_user_id
    row.updated_at = utcnow()
    db.session.flush()

    upsert_dynamic_fields(ctx, row, writes)
    for rel in parsed_relationships:
        append_relationship(ctx, rel)
    db.session.flush()
    return row


def query_entities(ctx: ActorContext, filters: dict | None = None, options: dict | None = None) -> dict:
    """
    Filters: entity_type (str or list), entity_code, entity_ids, smart_code
    (str or list), status, parent_entity_id, q (name substring).
    Options: limit, offset, order_by, order, include_deleted, include_dynamic.
    """
    filters = require_dict(filters, where="filters")
    options = require_dict(options, where="options")
    limit, offset = coerce_page(
        options,
        default_limit=current_app.config.get("DEFAULT_QUERY_LIMIT", 100),
        max_limit=current_app.config.get("MAX_QUERY_LIMIT", 1000),
    )
    include_deleted = coerce_bool(options.get("include_deleted", False), field="include_deleted")
    if include_deleted:
        require_permission(ctx, "VIEW_AUDIT")
    include_dynamic = coerce_bool(options.get("include_dynamic", False), field="include_dynamic")

    query = scoped_query(Entity, ctx.organization_id)

    if filters.get("entity_type") is not None:
        raw = filters["entity_type"]
        types = raw if isinstance(raw, list) else [raw]
        query = query.filter(Entity.entity_type.in_([normalize_type_name(t, field="entity_type") for t in types]))
    if filters.get("entity_code") is not None:
        query = query.filter(Entity.entity_code == str(filters["entity_code"]))
    if filters.get("entity_ids") is not None:
        query = query.filter(Entity.id.in_(coerce_id_list(filters["entity_ids"], field="entity_ids")))
    if filters.get("smart_code") is not None:
        query = query.filter(Entity.smart_code.in_(coerce_id_list(filters["smart_code"], field="smart_code")))
    if filters.get("parent_entity_id") is not None:
        query = query.filter(Entity.parent_entity_id == filters["parent_entity_id"])
    if filters.get("status") is not None:
        query = query.filter(Entity.status == _coerce_status(filters["status"], allow_deleted=True))
    if filters.get("q"):
        needle = coerce_text(filters["q"], field="q", max_length=255)
        query = query.filter(or_(
            Entity.entity_name.ilike(f"%{needle}%"),
            Entity.entity_code.ilike(f"%{needle}%"),
        ))
    if not include_deleted:
        query = query.filter(Entity.status != STATUS_DELETED)

    order_by = options.get("order_by", "created_at")
    column = ORDERABLE_COLUMNS.get(order_by)
    if column is None:
        raise ValidationError(
            f"order_by must be one of {', '.join(ORDERABLE_COLUMNS)}",
            details={"field": "order_by"},
        )
    order = str(options.get("order", "desc")).lower()
    if order not in ("asc", "desc"):
        raise ValidationError("order must be asc or desc", details={"field": "order"})

    total = query.count()
    ordered = column.asc() if order == "asc" else column.desc()
    rows = query.order_by(ordered, Entity.id).limit(limit).offset(offset).all()

    return {
        "items": [compose_entity(ctx, e, include_dynamic=include_dynamic) for e in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    }


def delete_entity(ctx: ActorContext, entity_id, reason=None) -> Entity:
    """
    Soft delete: status becomes "deleted" and every active edge touching the
    entity is deactivated. The row, its dynamic fields and its edge history
    stay in place for audit reads.
    """
    reason = coerce_text(reason, field="reason", max_length=255)

    row = get_entity(ctx, entity_id)
    now = utcnow()
    metadata = dict(row.entity_metadata or {})
    metadata.update({
        "deleted_at": to_utc_z(now),
        "deleted_by": ctx.actor_user_id,
        "deletion_reason": reason,
    })
    row.entity_metadata = metadata
    row.status = STATUS_DELETED
    row.updated_by = ctx.actor_user_id
    row.updated_at = now
    deactivate_edges_for_entity(ctx, row.id)
    db.session.flush()
    return row
