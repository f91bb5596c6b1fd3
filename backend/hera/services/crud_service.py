"""
Universal CRUD contract: entity_crud, transaction_crud, relationship_crud.

Every caller (HTTP routes, CLI, scripts, other modules) goes through these
three functions. Each one:

1. checks the request shape and action
2. resolves the ActorContext for (organization_id, actor_user_id) with the
   permission the action needs
3. runs the engine call and commits, or rolls back on any failure; lock
   and version conflicts re-run the call and commit together

Errors never cross this boundary as exceptions. Every response is a dict
with a success flag; failures carry {error, category, message, details}.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..validation import (
    DUPLICATE_CODE,
    INTERNAL,
    INTERNAL_ERROR,
    INVALID_ACTION,
    ConflictError,
    CrudError,
    ValidationError,
    require_dict,
)
from . import entity_service, relationship_service, transaction_service, workflow_service
from .concurrency import run_with_retry
from .guard_service import resolve_actor_context


ENTITY_PERMISSIONS = {
    "CREATE": "ENTITY_WRITE",
    "READ": "ENTITY_READ",
    "UPDATE": "ENTITY_WRITE",
    "QUERY": "ENTITY_READ",
    "DELETE": "ENTITY_DELETE",
    "TRANSITION": "WORKFLOW_TRANSITION",
}

TRANSACTION_PERMISSIONS = {
    "CREATE": "TRANSACTION_CREATE",
    "READ": "TRANSACTION_READ",
    "QUERY": "TRANSACTION_READ",
    "COMPLETE": "TRANSACTION_COMPLETE",
    "VOID": "TRANSACTION_VOID",
}

RELATIONSHIP_PERMISSIONS = {
    "CREATE": "RELATIONSHIP_WRITE",
    "QUERY": "ENTITY_READ",
    "DEACTIVATE": "RELATIONSHIP_WRITE",
}

_READ_ONLY = {"READ", "QUERY"}


def _parse_action(request, allowed: dict) -> tuple[dict, str]:
    if not isinstance(request, dict):
        raise ValidationError("request must be an object")
    action = request.get("action")
    normalized = action.strip().upper() if isinstance(action, str) else None
    if normalized not in allowed:
        raise ValidationError(
            f"Unsupported action: {action!r}",
            code=INVALID_ACTION,
            details={"allowed": list(allowed)},
        )
    return request, normalized


def _run(contract: str, request, allowed: dict, handler) -> dict:
    action = None
    try:
        request, action = _parse_action(request, allowed)
        ctx = resolve_actor_context(
            request.get("organization_id"),
            request.get("actor_user_id"),
            allowed[action],
        )

        def _attempt():
            outcome = handler(ctx, action, request)
            if action in _READ_ONLY:
                db.session.rollback()
            else:
                db.session.commit()
            return outcome

        # A failed commit rolls back everything, so the handler re-runs with it.
        result = run_with_retry(_attempt)
        return {"success": True, "action": action, **result}
    except CrudError as exc:
        db.session.rollback()
        return exc.to_dict()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning("%s %s hit a storage constraint: %s", contract, action, exc.orig)
        return ConflictError(
            "Write conflicts with an existing row",
            code=DUPLICATE_CODE,
        ).to_dict()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("%s %s failed unexpectedly", contract, action)
        return {
            "success": False,
            "error": INTERNAL_ERROR,
            "category": INTERNAL,
            "message": "Internal error",
            "details": {},
        }


def _entity_handler(ctx, action: str, request: dict) -> dict:
    entity = require_dict(request.get("entity"), where="entity")
    options = require_dict(request.get("options"), where="options")

    if action == "QUERY":
        filters = {**entity, **require_dict(options.get("filters"), where="options.filters")}
        return {"data": entity_service.query_entities(ctx, filters, options)}

    if action == "CREATE":
        row = entity_service.create_entity(
            ctx, entity, request.get("dynamic"), request.get("relationships"),
        )
    else:
        entity_id = request.get("entity_id") or entity.get("id") or entity.get("entity_id")
        if action == "READ":
            data = entity_service.read_entity(ctx, entity_id, options)
            return {"entity_id": data["entity"]["id"], "data": data}
        if action == "UPDATE":
            row = entity_service.update_entity(
                ctx, entity_id,
                {k: v for k, v in entity.items() if k not in ("id", "entity_id")},
                request.get("dynamic"), request.get("relationships"),
            )
        elif action == "DELETE":
            row = entity_service.delete_entity(ctx, entity_id, options.get("reason"))
            return {
                "entity_id": row.id,
                "data": entity_service.compose_entity(ctx, row, include_dynamic=False),
            }
        else:
            workflow = options.get("workflow")
            edge = workflow_service.transition(
                ctx, entity_id, workflow, options.get("to_state"), options.get("reason"),
            )
            return {
                "entity_id": entity_id,
                "data": {
                    "state": edge.relationship_data["state"],
                    "relationship": edge.to_dict(),
                    "history": workflow_service.history(ctx, entity_id, workflow),
                },
            }

    return {
        "entity_id": row.id,
        "data": entity_service.compose_entity(
            ctx, row,
            include_dynamic=True,
            include_relationships=bool(request.get("relationships")),
        ),
    }


def _transaction_handler(ctx, action: str, request: dict) -> dict:
    payload = require_dict(request.get("payload"), where="payload")

    if action == "CREATE":
        txn, replayed = transaction_service.create_transaction(ctx, payload)
        result = {"transaction_id": txn.id, "data": transaction_service.compose_transaction(txn)}
        if replayed:
            result["idempotent_replay"] = True
        return result
    if action == "READ":
        data = transaction_service.read_transaction(ctx, payload)
        return {"transaction_id": data["header"]["id"], "data": data}
    if action == "QUERY":
        options = {k: v for k, v in payload.items() if k != "filters"}
        return {"data": transaction_service.query_transactions(ctx, payload.get("filters"), options)}
    if action == "COMPLETE":
        txn = transaction_service.complete_transaction(ctx, payload.get("transaction_id"))
    else:
        txn = transaction_service.void_transaction(ctx, payload.get("transaction_id"), payload.get("reason"))
    return {"transaction_id": txn.id, "data": transaction_service.compose_transaction(txn)}


def _relationship_handler(ctx, action: str, request: dict) -> dict:
    payload = require_dict(request.get("relationship") or request.get("payload"), where="relationship")

    if action == "CREATE":
        edge = relationship_service.create_relationship(ctx, payload)
        return {"relationship_id": edge.id, "data": edge.to_dict()}
    if action == "QUERY":
        edges = relationship_service.query_relationships(
            ctx,
            payload.get("entity_id"),
            direction=payload.get("direction", "outgoing"),
            relationship_type=payload.get("relationship_type"),
            include_inactive=payload.get("include_inactive", False),
        )
        return {"data": {"items": [e.to_dict() for e in edges], "count": len(edges)}}
    edge = relationship_service.deactivate_relationship(
        ctx, payload.get("relationship_id"), payload.get("reason"),
    )
    return {"relationship_id": edge.id, "data": edge.to_dict()}


def entity_crud(request) -> dict:
    """
    request = {action, actor_user_id, organization_id, entity, dynamic,
               relationships, options}

    action: CREATE | READ | UPDATE | QUERY | DELETE | TRANSITION
    """
    return _run("entity_crud", request, ENTITY_PERMISSIONS, _entity_handler)


def transaction_crud(request) -> dict:
    """
    request = {action, actor_user_id, organization_id, payload}

    payload by action:
        CREATE    {header, lines[], idempotency_key?}
        READ      {transaction_id, include_deleted?, include_lines?}
        QUERY     {filters, limit?, offset?, include_deleted?, include_lines?}
        COMPLETE  {transaction_id}
        VOID      {transaction_id, reason}
    """
    return _run("transaction_crud", request, TRANSACTION_PERMISSIONS, _transaction_handler)


def relationship_crud(request) -> dict:
    """
    request = {action, actor_user_id, organization_id, relationship}

    action: CREATE | QUERY | DEACTIVATE
    """
    return _run("relationship_crud", request, RELATIONSHIP_PERMISSIONS, _relationship_handler)
