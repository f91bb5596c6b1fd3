"""
Workflow state machines persisted as HAS_STATUS relationships.

Entities carry no mutable workflow column. Each state is a STATUS entity
(entity_code "<WORKFLOW>.<STATE>") and the current state is the single
active HAS_STATUS edge from the entity to one of them. A transition
deactivates that edge and appends a new one, so history() can replay every
move with who/when/why.

Legal moves are declared per workflow; callers never build HAS_STATUS
edges by hand.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Entity, Relationship
from ..time_utils import to_utc_z
from ..validation import (
    INVALID_STATE_TRANSITION,
    ConflictError,
    ValidationError,
    coerce_text,
)
from .entity_service import STATUS_DELETED
from .guard_service import ActorContext, scoped_query
from .relationship_service import (
    append_relationship,
    deactivate_relationship,
    query_relationships,
    require_entities_in_org,
)


STATUS_ENTITY_TYPE = "STATUS"
STATUS_RELATIONSHIP = "HAS_STATUS"


@dataclass(frozen=True)
class Workflow:
    name: str
    states: tuple[str, ...]
    transitions: dict = field(default_factory=dict)
    initial: str = ""
    smart_code: str = "HERA.CORE.WORKFLOW.REL.HAS_STATUS.v1"
    status_smart_code: str = "HERA.CORE.WORKFLOW.ENTITY.STATUS.v1"

    def allowed_from(self, state: str | None) -> tuple[str, ...]:
        if state is None:
            return (self.initial,)
        return tuple(self.transitions.get(state, ()))

    def is_terminal(self, state: str) -> bool:
        return not self.transitions.get(state)


_WORKFLOWS: dict[str, Workflow] = {}


def register_workflow(workflow: Workflow) -> Workflow:
    if workflow.initial not in workflow.states:
        raise ValueError(f"{workflow.name}: initial state {workflow.initial!r} is not a declared state")
    for source, targets in workflow.transitions.items():
        unknown = [s for s in (source, *targets) if s not in workflow.states]
        if unknown:
            raise ValueError(f"{workflow.name}: undeclared states in transitions: {unknown}")
    _WORKFLOWS[workflow.name] = workflow
    return workflow


def get_workflow(name) -> Workflow:
    key = name.strip().upper() if isinstance(name, str) else None
    workflow = _WORKFLOWS.get(key)
    if workflow is None:
        raise ValidationError(
            f"Unknown workflow: {name!r}",
            details={"workflow": name, "known": sorted(_WORKFLOWS)},
        )
    return workflow


APPOINTMENT = register_workflow(Workflow(
    name="APPOINTMENT",
    states=("DRAFT", "BOOKED", "CHECKED_IN", "IN_PROGRESS", "COMPLETED", "CANCELLED", "NO_SHOW"),
    transitions={
        "DRAFT": ("BOOKED", "CANCELLED"),
        "BOOKED": ("CHECKED_IN", "CANCELLED", "NO_SHOW"),
        "CHECKED_IN": ("IN_PROGRESS", "CANCELLED"),
        "IN_PROGRESS": ("COMPLETED",),
    },
    initial="DRAFT",
))

ORDER = register_workflow(Workflow(
    name="ORDER",
    states=("DRAFT", "PENDING", "CONFIRMED", "SHIPPED", "DELIVERED", "CANCELLED"),
    transitions={
        "DRAFT": ("PENDING", "CANCELLED"),
        "PENDING": ("CONFIRMED", "CANCELLED"),
        "CONFIRMED": ("SHIPPED", "CANCELLED"),
        "SHIPPED": ("DELIVERED",),
    },
    initial="DRAFT",
))


def _status_code(workflow: Workflow, state: str) -> str:
    return f"{workflow.name}.{state}"


def ensure_status_entity(ctx: ActorContext, workflow: Workflow, state: str) -> Entity:
    """Status entities are created lazily, one per (organization, workflow, state)."""
    code = _status_code(workflow, state)
    status = (
        scoped_query(Entity, ctx.organization_id)
        .filter_by(entity_type=STATUS_ENTITY_TYPE, entity_code=code)
        .first()
    )
    if status is not None and status.status == STATUS_DELETED:
        raise ConflictError(
            f"Status {code} was deleted and cannot take new transitions",
            code=INVALID_STATE_TRANSITION,
            details={"workflow": workflow.name, "to_state": state, "status_entity_id": status.id},
        )
    if status is None:
        status = Entity(
            organization_id=ctx.organization_id,
            entity_type=STATUS_ENTITY_TYPE,
            entity_name=state.replace("_", " ").title(),
            entity_code=code,
            smart_code=workflow.status_smart_code,
            status="active",
            entity_metadata={"workflow": workflow.name, "state": state},
            created_by=ctx.actor_user_id,
            updated_by=ctx.actor_user_id,
        )
        db.session.add(status)
        db.session.flush()
    return status


def _status_edges(ctx: ActorContext, entity_id: str, workflow: Workflow, *, include_inactive: bool) -> list[Relationship]:
    edges = query_relationships(
        ctx, entity_id,
        direction="outgoing",
        relationship_type=STATUS_RELATIONSHIP,
        include_inactive=include_inactive,
    )
    return [e for e in edges if (e.relationship_data or {}).get("workflow") == workflow.name]


def _active_edge(ctx: ActorContext, entity_id: str, workflow: Workflow) -> Relationship | None:
    edges = _status_edges(ctx, entity_id, workflow, include_inactive=False)
    return edges[-1] if edges else None


def current_state(ctx: ActorContext, entity_id: str, workflow_name) -> str | None:
    workflow = get_workflow(workflow_name)
    require_entities_in_org([entity_id], ctx.organization_id)
    edge = _active_edge(ctx, entity_id, workflow)
    return edge.relationship_data.get("state") if edge else None


def transition(ctx: ActorContext, entity_id: str, workflow_name, to_state, reason=None) -> Relationship:
    """
    Move entity_id to to_state.

    Raises ConflictError(INVALID_STATE_TRANSITION) for moves the workflow
    does not declare; the existing edge is left active in that case.
    """
    workflow = get_workflow(workflow_name)
    if not isinstance(to_state, str) or not to_state.strip():
        raise ValidationError("to_state is required", details={"field": "to_state"})
    to_state = to_state.strip().upper()
    if to_state not in workflow.states:
        raise ValidationError(
            f"{to_state!r} is not a {workflow.name} state",
            details={"states": list(workflow.states)},
        )
    reason = coerce_text(reason, field="reason", max_length=255)

    require_entities_in_org([entity_id], ctx.organization_id)
    active = _active_edge(ctx, entity_id, workflow)
    from_state = active.relationship_data.get("state") if active else None

    if to_state not in workflow.allowed_from(from_state):
        raise ConflictError(
            f"{workflow.name} cannot move from {from_state or 'no state'} to {to_state}",
            code=INVALID_STATE_TRANSITION,
            details={
                "workflow": workflow.name,
                "from_state": from_state,
                "to_state": to_state,
                "allowed": list(workflow.allowed_from(from_state)),
            },
        )

    status = ensure_status_entity(ctx, workflow, to_state)
    if active is not None:
        deactivate_relationship(ctx, active.id)

    edge = append_relationship(ctx, {
        "from_entity_id": entity_id,
        "to_entity_id": status.id,
        "relationship_type": STATUS_RELATIONSHIP,
        "smart_code": workflow.smart_code,
        "relationship_data": {
            "workflow": workflow.name,
            "state": to_state,
            "from_state": from_state,
            "reason": reason,
        },
        "effective_date": None,
        "expiration_date": None,
    })
    db.session.flush()
    return edge


def history(ctx: ActorContext, entity_id: str, workflow_name) -> list[dict]:
    """Every state the entity has held in this workflow, oldest first."""
    workflow = get_workflow(workflow_name)
    require_entities_in_org([entity_id], ctx.organization_id, include_deleted=True)
    return [
        {
            "relationship_id": e.id,
            "state": (e.relationship_data or {}).get("state"),
            "from_state": (e.relationship_data or {}).get("from_state"),
            "reason": (e.relationship_data or {}).get("reason"),
            "is_active": e.is_active,
            "effective_date": to_utc_z(e.effective_date),
            "deactivated_at": to_utc_z(e.deactivated_at),
            "actor_user_id": e.created_by,
        }
        for e in _status_edges(ctx, entity_id, workflow, include_inactive=True)
    ]
