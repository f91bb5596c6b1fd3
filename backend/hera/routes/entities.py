# Overview: Flask API routes for the entity contract; parses input and returns JSON responses.

"""Entity API routes. Thin marshalling into services.crud_service.entity_crud."""

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_actor_context
from ..services.crud_service import entity_crud
from ..validation import INTERNAL, INTERNAL_ERROR, ValidationError
from .common import contract_response, json_body, query_flag, with_context


entities_bp = Blueprint("entities", __name__, url_prefix="/api/v2/entities")


@entities_bp.post("")
@require_actor_context
def entity_crud_route():
    """
    Run any entity action.

    Body: {action (default CREATE), entity, dynamic, relationships, options}
    Tenant context comes from X-Organization-Id / X-Actor-User-Id.
    """
    try:
        body = json_body()
        return contract_response(entity_crud(with_context({"action": "CREATE", **body})))

    except ValidationError as e:
        return contract_response(e.to_dict())
    except Exception:
        current_app.logger.exception("Entity request failed")
        return jsonify({"success": False, "error": INTERNAL_ERROR, "category": INTERNAL}), 500


@entities_bp.get("/<entity_id>")
@require_actor_context
def read_entity_route(entity_id: str):
    """
    Read one entity.

    Query params: include_dynamic (default true), include_relationships,
    include_deleted, relationship_direction.
    """
    try:
        options = {
            "include_dynamic": query_flag("include_dynamic", True),
            "include_relationships": query_flag("include_relationships", False),
            "include_deleted": query_flag("include_deleted", False),
            "relationship_direction": query_flag("relationship_direction", "outgoing"),
        }
        result = entity_crud({
            "action": "READ",
            "organization_id": g.organization_id,
            "actor_user_id": g.actor_user_id,
            "entity_id": entity_id,
            "options": options,
        })
        return contract_response(result)

    except Exception:
        current_app.logger.exception("Failed to read entity")
        return jsonify({"success": False, "error": INTERNAL_ERROR, "category": INTERNAL}), 500
