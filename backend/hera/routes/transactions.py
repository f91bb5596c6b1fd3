# Overview: Flask API routes for the transaction contract; parses input and returns JSON responses.

"""Transaction API routes. Thin marshalling into services.crud_service.transaction_crud."""

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_actor_context
from ..services.crud_service import transaction_crud
from ..validation import INTERNAL, INTERNAL_ERROR, ValidationError
from .common import contract_response, json_body, query_flag, with_context


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/v2/transactions")


@transactions_bp.post("")
@require_actor_context
def transaction_crud_route():
    """
    Run any transaction action.

    Body: {action (default CREATE), payload}
    CREATE returns 201, or 200 when an idempotency key replays the original.
    """
    try:
        body = json_body()
        return contract_response(transaction_crud(with_context({"action": "CREATE", **body})))

    except ValidationError as e:
        return contract_response(e.to_dict())
    except Exception:
        current_app.logger.exception("Transaction request failed")
        return jsonify({"success": False, "error": INTERNAL_ERROR, "category": INTERNAL}), 500


@transactions_bp.get("/<transaction_id>")
@require_actor_context
def read_transaction_route(transaction_id: str):
    """Query params: include_deleted (audit view), include_lines (default true)."""
    try:
        result = transaction_crud({
            "action": "READ",
            "organization_id": g.organization_id,
            "actor_user_id": g.actor_user_id,
            "payload": {
                "transaction_id": transaction_id,
                "include_deleted": query_flag("include_deleted", False),
                "include_lines": query_flag("include_lines", True),
            },
        })
        return contract_response(result)

    except Exception:
        current_app.logger.exception("Failed to read transaction")
        return jsonify({"success": False, "error": INTERNAL_ERROR, "category": INTERNAL}), 500
