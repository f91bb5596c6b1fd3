# Overview: Shared helpers turning contract results into HTTP responses.

from flask import current_app, g, jsonify, request

from ..validation import (
    AUTHORIZATION,
    BALANCE,
    CONFLICT,
    GOVERNANCE,
    NOT_FOUND,
    VALIDATION,
    ValidationError,
)


STATUS_BY_CATEGORY = {
    VALIDATION: 400,
    GOVERNANCE: 400,
    AUTHORIZATION: 403,
    NOT_FOUND: 404,
    CONFLICT: 409,
    BALANCE: 422,
}


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def with_context(body: dict) -> dict:
    """Header context always wins over anything the body claims."""
    claimed = body.get("organization_id")
    if claimed is not None and claimed != g.organization_id:
        current_app.logger.warning(
            "Body organization_id=%s overridden by header org=%s on %s",
            claimed, g.organization_id, request.path,
        )
    return {**body, "organization_id": g.organization_id, "actor_user_id": g.actor_user_id}


def query_flag(name: str, default: bool):
    raw = request.args.get(name)
    return default if raw is None else raw


def contract_response(result: dict):
    if result.get("success"):
        status = 200
        if result.get("action") == "CREATE" and not result.get("idempotent_replay"):
            status = 201
        return jsonify(result), status
    return jsonify(result), STATUS_BY_CATEGORY.get(result.get("category"), 500)
