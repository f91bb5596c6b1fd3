"""
Actor/Org Context Guard: membership resolution and tenant scoping.

WHY: Every contract call names its tenant explicitly. There is no ambient
"current organization"; the guard turns (organization_id, actor_user_id)
into an ActorContext after checking membership and role, and every
downstream query is filtered by ctx.organization_id.

SECURITY INVARIANTS:
1. Missing organization_id is a hard error (ORG_REQUIRED), never a default
2. The role is re-read from organization_memberships on every call
3. Denials never reveal whether the organization exists
4. Denials are logged as security events

USAGE:
    from hera.services.guard_service import resolve_actor_context, scoped_query

    ctx = resolve_actor_context(org_id, actor_id, "ENTITY_WRITE")
    rows = scoped_query(Entity, ctx.organization_id).filter_by(entity_type="CUSTOMER").all()
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import Organization, OrganizationMembership, SecurityEvent, User
from ..permissions import ALL_PERMISSIONS, permissions_for_role
from ..validation import (
    ACTOR_REQUIRED,
    ORG_REQUIRED,
    AuthorizationError,
    ValidationError,
)


@dataclass(frozen=True)
class ActorContext:
    """Resolved caller identity for one contract call."""
    organization_id: str
    actor_user_id: str
    role: str
    permissions: frozenset = field(default_factory=frozenset)

    def can(self, permission_code: str) -> bool:
        return permission_code in self.permissions


def require_org_id(organization_id) -> str:
    if organization_id is None or (isinstance(organization_id, str) and not organization_id.strip()):
        raise ValidationError("organization_id is required", code=ORG_REQUIRED)
    if not isinstance(organization_id, str):
        raise ValidationError("organization_id must be a string", code=ORG_REQUIRED)
    return organization_id.strip()


def require_actor_id(actor_user_id) -> str:
    if actor_user_id is None or (isinstance(actor_user_id, str) and not actor_user_id.strip()):
        raise ValidationError("actor_user_id is required", code=ACTOR_REQUIRED)
    if not isinstance(actor_user_id, str):
        raise ValidationError("actor_user_id must be a string", code=ACTOR_REQUIRED)
    return actor_user_id.strip()


def log_security_event(
    user_id: str | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    organization_id: str | None = None,
) -> SecurityEvent:
    """
    Append a security event and commit it immediately.

    Runs before any business rows are added, so committing here never
    publishes half of a contract call.

    event_type examples:
    - NOT_A_MEMBER
    - PERMISSION_DENIED
    - CROSS_TENANT_ACCESS_DENIED
    """
    event = SecurityEvent(
        user_id=user_id,
        organization_id=organization_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
    )
    db.session.add(event)
    db.session.commit()
    return event


def _deny(organization_id: str, actor_user_id: str, event_type: str, reason: str, permission: str | None) -> None:
    current_app.logger.warning(
        "Guard denied actor=%s org=%s permission=%s: %s",
        actor_user_id, organization_id, permission, reason,
    )
    log_security_event(
        user_id=actor_user_id,
        event_type=event_type,
        success=False,
        action=permission,
        reason=reason,
        organization_id=organization_id,
    )
    raise AuthorizationError(
        "Actor is not authorized for this organization",
        details={"permission": permission} if event_type == "PERMISSION_DENIED" else {},
    )


def resolve_actor_context(organization_id, actor_user_id, permission: str | None = None) -> ActorContext:
    """
    Resolve membership and role, then check the permission (if any).

    Raises:
        ValidationError(ORG_REQUIRED / ACTOR_REQUIRED) for missing ids
        AuthorizationError(NOT_AUTHORIZED) for every other failure
    """
    org_id = require_org_id(organization_id)
    actor_id = require_actor_id(actor_user_id)

    if permission is not None and permission not in ALL_PERMISSIONS:
        raise ValueError(f"Unknown permission code: {permission}")

    org = db.session.get(Organization, org_id)
    if org is None or not org.is_active:
        _deny(org_id, actor_id, "NOT_A_MEMBER", "organization missing or inactive", permission)

    user = db.session.get(User, actor_id)
    if user is None or not user.is_active:
        _deny(org_id, actor_id, "NOT_A_MEMBER", "actor missing or inactive", permission)

    membership = (
        db.session.query(OrganizationMembership)
        .filter_by(organization_id=org_id, user_id=actor_id, is_active=True)
        .first()
    )
    if membership is None:
        _deny(org_id, actor_id, "NOT_A_MEMBER", "no active membership", permission)

    permissions = permissions_for_role(membership.role)
    if permission is not None and permission not in permissions:
        _deny(
            org_id, actor_id, "PERMISSION_DENIED",
            f"role {membership.role!r} lacks {permission}", permission,
        )

    return ActorContext(
        organization_id=org_id,
        actor_user_id=actor_id,
        role=membership.role,
        permissions=permissions,
    )


def require_permission(ctx: ActorContext, permission: str) -> None:
    """Second check for option-gated reads (e.g. include_deleted needs VIEW_AUDIT)."""
    if not ctx.can(permission):
        _deny(
            ctx.organization_id, ctx.actor_user_id, "PERMISSION_DENIED",
            f"role {ctx.role!r} lacks {permission}", permission,
        )


def scoped_query(model, organization_id: str):
    """
    Base query filtered to one tenant.

    Every model in the business tables carries organization_id directly.
    """
    if not organization_id:
        raise ValidationError("organization_id is required", code=ORG_REQUIRED)
    return db.session.query(model).filter(model.organization_id == organization_id)


def warn_on_foreign_org(ctx: ActorContext, payload: dict | None, *, where: str) -> None:
    """
    Payload organization ids are never trusted; a differing value is dropped
    and logged so cross-tenant write attempts are visible.
    """
    if not isinstance(payload, dict):
        return
    claimed = payload.get("organization_id")
    if claimed is not None and claimed != ctx.organization_id:
        current_app.logger.warning(
            "Ignoring payload organization_id=%s in %s (context org=%s, actor=%s)",
            claimed, where, ctx.organization_id, ctx.actor_user_id,
        )
