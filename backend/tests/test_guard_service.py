"""
Actor/Org context guard tests.

Verifies:
- Missing organization / actor ids are hard errors (never defaulted)
- Non-members and insufficient roles are denied and logged
- Roles are re-resolved on every call (no cross-organization caching)
- Denials do not reveal whether an organization exists
"""

import pytest

from hera.models import OrganizationMembership, SecurityEvent
from hera.services.guard_service import require_permission, resolve_actor_context
from hera.validation import (
    ACTOR_REQUIRED,
    NOT_AUTHORIZED,
    ORG_REQUIRED,
    AuthorizationError,
    ValidationError,
)


class TestRequiredIds:

    @pytest.mark.parametrize("org_id", [None, "", "   "])
    def test_missing_org_is_org_required(self, db_session, owner_a, org_id):
        with pytest.raises(ValidationError) as exc:
            resolve_actor_context(org_id, owner_a.id, "ENTITY_READ")
        assert exc.value.code == ORG_REQUIRED

    def test_missing_actor_is_actor_required(self, db_session, org_a):
        with pytest.raises(ValidationError) as exc:
            resolve_actor_context(org_a.id, None, "ENTITY_READ")
        assert exc.value.code == ACTOR_REQUIRED


class TestMembership:

    def test_member_resolves_role_and_permissions(self, db_session, org_a, staff_a):
        ctx = resolve_actor_context(org_a.id, staff_a.id, "TRANSACTION_CREATE")
        assert ctx.organization_id == org_a.id
        assert ctx.actor_user_id == staff_a.id
        assert ctx.role == "staff"
        assert ctx.can("ENTITY_WRITE")
        assert not ctx.can("TRANSACTION_VOID")

    def test_non_member_is_denied_and_logged(self, db_session, org_a, owner_b):
        with pytest.raises(AuthorizationError) as exc:
            resolve_actor_context(org_a.id, owner_b.id, "ENTITY_READ")
        assert exc.value.code == NOT_AUTHORIZED

        event = db_session.query(SecurityEvent).filter_by(user_id=owner_b.id).one()
        assert event.event_type == "NOT_A_MEMBER"
        assert event.organization_id == org_a.id
        assert event.success is False

    def test_unknown_org_looks_like_non_membership(self, db_session, owner_a, org_a, owner_b):
        with pytest.raises(AuthorizationError) as unknown:
            resolve_actor_context("00000000-0000-0000-0000-000000000000", owner_a.id, "ENTITY_READ")
        with pytest.raises(AuthorizationError) as foreign:
            resolve_actor_context(org_a.id, owner_b.id, "ENTITY_READ")
        assert str(unknown.value) == str(foreign.value)
        assert unknown.value.details == foreign.value.details

    def test_inactive_membership_is_denied(self, db_session, org_a, staff_a):
        membership = db_session.query(OrganizationMembership).filter_by(user_id=staff_a.id).one()
        membership.is_active = False
        db_session.commit()

        with pytest.raises(AuthorizationError):
            resolve_actor_context(org_a.id, staff_a.id, "ENTITY_READ")

    def test_inactive_org_is_denied(self, db_session, org_a, owner_a):
        org_a.is_active = False
        db_session.commit()

        with pytest.raises(AuthorizationError):
            resolve_actor_context(org_a.id, owner_a.id, "ENTITY_READ")

    def test_role_lacking_permission_is_denied(self, db_session, org_a, viewer_a):
        with pytest.raises(AuthorizationError) as exc:
            resolve_actor_context(org_a.id, viewer_a.id, "ENTITY_WRITE")
        assert exc.value.details == {"permission": "ENTITY_WRITE"}

        event = db_session.query(SecurityEvent).filter_by(user_id=viewer_a.id).one()
        assert event.event_type == "PERMISSION_DENIED"
        assert event.action == "ENTITY_WRITE"


class TestFreshResolution:

    def test_role_is_resolved_per_organization(self, db_session, org_a, org_b, owner_a):
        # owner_a is also a viewer in org_b
        db_session.add(OrganizationMembership(organization_id=org_b.id, user_id=owner_a.id, role="viewer"))
        db_session.commit()

        assert resolve_actor_context(org_a.id, owner_a.id, "TRANSACTION_VOID").role == "owner"
        with pytest.raises(AuthorizationError):
            resolve_actor_context(org_b.id, owner_a.id, "TRANSACTION_VOID")
        assert resolve_actor_context(org_b.id, owner_a.id, "ENTITY_READ").role == "viewer"

    def test_role_change_takes_effect_on_next_call(self, db_session, org_a, staff_a):
        assert not resolve_actor_context(org_a.id, staff_a.id).can("VIEW_AUDIT")

        membership = db_session.query(OrganizationMembership).filter_by(user_id=staff_a.id).one()
        membership.role = "manager"
        db_session.commit()

        assert resolve_actor_context(org_a.id, staff_a.id).can("VIEW_AUDIT")

    def test_require_permission_on_resolved_context(self, db_session, org_a, staff_a):
        ctx = resolve_actor_context(org_a.id, staff_a.id, "ENTITY_READ")
        with pytest.raises(AuthorizationError):
            require_permission(ctx, "VIEW_AUDIT")
