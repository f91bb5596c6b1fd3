# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .validation import ACTOR_REQUIRED, ORG_REQUIRED, VALIDATION


ORG_HEADER = "X-Organization-Id"
ACTOR_HEADER = "X-Actor-User-Id"


def _missing(code: str, header: str):
    return jsonify({
        "success": False,
        "error": code,
        "category": VALIDATION,
        "message": f"{header} header is required",
        "details": {"header": header},
    }), 400


def require_actor_context(f):
    """
    Establish explicit tenant context from request headers.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.organization_id: from X-Organization-Id - REQUIRED
    - g.actor_user_id: from X-Actor-User-Id - REQUIRED

    Returns 400 ORG_REQUIRED / ACTOR_REQUIRED when a header is absent.
    Membership and role are NOT checked here; the contract guard does that
    on every call, so a route cannot skip it.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        organization_id = (request.headers.get(ORG_HEADER) or "").strip()
        if not organization_id:
            return _missing(ORG_REQUIRED, ORG_HEADER)

        actor_user_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_user_id:
            return _missing(ACTOR_REQUIRED, ACTOR_HEADER)

        g.organization_id = organization_id
        g.actor_user_id = actor_user_id

        return f(*args, **kwargs)

    return decorated_function
