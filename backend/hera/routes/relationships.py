# Overview: Flask API routes for the relationship contract.

from flask import Blueprint, current_app, jsonify

from ..decorators import require_actor_context
from ..services.crud_service import relationship_crud
from ..validation import INTERNAL, INTERNAL_ERROR, ValidationError
from .common import contract_response, json_body, with_context


relationships_bp = Blueprint("relationships", __name__, url_prefix="/api/v2/relationships")


@relationships_bp.post("")
@require_actor_context
def relationship_crud_route():
    """Body: {action (CREATE | QUERY | DEACTIVATE, default CREATE), relationship}"""
    try:
        body = json_body()
        return contract_response(relationship_crud(with_context({"action": "CREATE", **body})))

    except ValidationError as e:
        return contract_response(e.to_dict())
    except Exception:
        current_app.logger.exception("Relationship request failed")
        return jsonify({"success": False, "error": INTERNAL_ERROR, "category": INTERNAL}), 500
