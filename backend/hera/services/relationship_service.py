"""
Relationship Engine: directed, typed, append-only edges between entities.

Edges are never updated in place. A change of association appends a new
edge; ending one flips is_active and stamps who/when, so the trail stays
queryable with include_inactive=True.

relationship_type must come from the governed vocabulary below; callers
that need a new type register it once at import time instead of passing
ad hoc strings.
"""

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Entity, Relationship
from ..time_utils import utcnow
from ..validation import (
    INVALID_RELATIONSHIP_TYPE,
    RELATIONSHIP_NOT_FOUND,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_datetime,
    normalize_type_name,
    require_dict,
)
from .guard_service import ActorContext, scoped_query
from .smart_code_service import require_smart_code


RELATIONSHIP_TYPES = {
    # Hierarchy
    "PARENT_OF", "CHILD_OF", "MEMBER_OF", "CONTAINS",
    # Status / workflow
    "HAS_STATUS", "WAS_STATUS", "CAN_BE_STATUS",
    # Business
    "CUSTOMER_OF", "SUPPLIER_OF", "EMPLOYEE_OF", "OWNS", "MANAGES", "REPORTS_TO",
    "HAS_ROLE",
    # Operational
    "ASSIGNED_TO", "RESPONSIBLE_FOR", "REQUIRES", "DEPENDS_ON", "RELATED_TO",
    # Transactional
    "BILLED_TO", "SHIPPED_TO", "PAID_BY",
}

DIRECTIONS = ("outgoing", "incoming", "both")


def register_relationship_type(relationship_type: str) -> str:
    normalized = normalize_type_name(relationship_type, field="relationship_type")
    RELATIONSHIP_TYPES.add(normalized)
    return normalized


def require_relationship_type(value) -> str:
    normalized = normalize_type_name(value, field="relationship_type")
    if normalized not in RELATIONSHIP_TYPES:
        raise ValidationError(
            f"Unknown relationship_type: {value!r}",
            code=INVALID_RELATIONSHIP_TYPE,
            details={"relationship_type": value},
        )
    return normalized


def require_entities_in_org(entity_ids, organization_id: str, *, include_deleted: bool = False) -> dict[str, Entity]:
    """
    Load entities by id inside one tenant.

    Ids that exist only in another organization are reported exactly like
    ids that do not exist at all.
    """
    wanted = {eid for eid in entity_ids if eid}
    if not wanted:
        return {}
    query = scoped_query(Entity, organization_id).filter(Entity.id.in_(wanted))
    if not include_deleted:
        query = query.filter(Entity.status != "deleted")
    found = {e.id: e for e in query.all()}
    missing = sorted(wanted - set(found))
    if missing:
        raise NotFoundError(
            "Referenced entity not found",
            details={"entity_ids": missing},
        )
    return found


def parse_relationship_spec(spec, *, default_from: str | None = None) -> dict:
    """
    Validate one relationship payload without touching the database.

    Keys: to_entity_id (required), from_entity_id (defaults to the entity
    being written), relationship_type, smart_code, relationship_data,
    effective_date, expiration_date.
    """
    spec = require_dict(spec, where="relationship")
    from_id = spec.get("from_entity_id") or default_from
    to_id = spec.get("to_entity_id")
    if not to_id or not isinstance(to_id, str):
        raise ValidationError("relationship to_entity_id is required", details={"field": "to_entity_id"})
    if from_id is not None and not isinstance(from_id, str):
        raise ValidationError("relationship from_entity_id must be a string", details={"field": "from_entity_id"})
    return {
        "from_entity_id": from_id,
        "to_entity_id": to_id,
        "relationship_type": require_relationship_type(spec.get("relationship_type")),
        "smart_code": require_smart_code(spec.get("smart_code"), field="relationship.smart_code").code,
        "relationship_data": require_dict(spec.get("relationship_data"), where="relationship_data") or None,
        "effective_date": coerce_datetime(spec.get("effective_date"), field="effective_date"),
        "expiration_date": coerce_datetime(spec.get("expiration_date"), field="expiration_date"),
    }


def append_relationship(ctx: ActorContext, parsed: dict) -> Relationship:
    """Insert one already-validated edge. Endpoints must be checked by the caller."""
    if parsed["from_entity_id"] is None:
        raise ValidationError("relationship from_entity_id is required", details={"field": "from_entity_id"})
    edge = Relationship(
        organization_id=ctx.organization_id,
        from_entity_id=parsed["from_entity_id"],
        to_entity_id=parsed["to_entity_id"],
        relationship_type=parsed["relationship_type"],
        relationship_data=parsed["relationship_data"],
        smart_code=parsed["smart_code"],
        is_active=True,
        effective_date=parsed["effective_date"] or utcnow(),
        expiration_date=parsed["expiration_date"],
        created_by=ctx.actor_user_id,
        updated_by=ctx.actor_user_id,
    )
    db.session.add(edge)
    return edge


def create_relationship(ctx: ActorContext, spec: dict) -> Relationship:
    """create(from, to, type, data): validate, check both endpoints in-tenant, append."""
    parsed = parse_relationship_spec(spec)
    if parsed["from_entity_id"] is None:
        raise ValidationError("relationship from_entity_id is required", details={"field": "from_entity_id"})
    require_entities_in_org(
        [parsed["from_entity_id"], parsed["to_entity_id"]], ctx.organization_id,
    )
    edge = append_relationship(ctx, parsed)
    db.session.flush()
    return edge


def query_relationships(
    ctx: ActorContext,
    entity_id: str,
    *,
    direction: str = "outgoing",
    relationship_type=None,
    include_inactive=False,
) -> list[Relationship]:
    if not entity_id or not isinstance(entity_id, str):
        raise ValidationError("entity_id is required", details={"field": "entity_id"})
    if direction not in DIRECTIONS:
        raise ValidationError(
            f"direction must be one of {', '.join(DIRECTIONS)}",
            details={"field": "direction"},
        )

    query = scoped_query(Relationship, ctx.organization_id)
    if direction == "outgoing":
        query = query.filter(Relationship.from_entity_id == entity_id)
    elif direction == "incoming":
        query = query.filter(Relationship.to_entity_id == entity_id)
    else:
        query = query.filter(or_(
            Relationship.from_entity_id == entity_id,
            Relationship.to_entity_id == entity_id,
        ))

    if relationship_type is not None:
        types = relationship_type if isinstance(relationship_type, list) else [relationship_type]
        query = query.filter(Relationship.relationship_type.in_(
            [normalize_type_name(t, field="relationship_type") for t in types]
        ))
    if not coerce_bool(include_inactive, field="include_inactive"):
        query = query.filter(Relationship.is_active.is_(True))

    return query.order_by(Relationship.effective_date, Relationship.created_at, Relationship.id).all()


def _stamp_inactive(edge: Relationship, actor_user_id: str) -> None:
    edge.is_active = False
    edge.deactivated_at = utcnow()
    edge.deactivated_by = actor_user_id
    edge.updated_by = actor_user_id


def deactivate_relationship(ctx: ActorContext, relationship_id: str, reason: str | None = None) -> Relationship:
    """
    Flip is_active; the row itself is kept.

    Deactivating an already inactive edge is a no-op that returns it unchanged.
    """
    if not relationship_id or not isinstance(relationship_id, str):
        raise ValidationError("relationship_id is required", details={"field": "relationship_id"})
    edge = scoped_query(Relationship, ctx.organization_id).filter_by(id=relationship_id).first()
    if edge is None:
        raise NotFoundError("Relationship not found", code=RELATIONSHIP_NOT_FOUND)
    if not edge.is_active:
        return edge

    _stamp_inactive(edge, ctx.actor_user_id)
    if reason:
        data = dict(edge.relationship_data or {})
        data["deactivation_reason"] = reason
        edge.relationship_data = data
    db.session.flush()
    return edge


def deactivate_edges_for_entity(ctx: ActorContext, entity_id: str) -> int:
    """End every active edge touching entity_id (both directions)."""
    edges = query_relationships(ctx, entity_id, direction="both")
    for edge in edges:
        _stamp_inactive(edge, ctx.actor_user_id)
    return len(edges)
