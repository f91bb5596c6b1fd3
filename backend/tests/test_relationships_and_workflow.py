"""
Relationship engine and workflow state machine tests.

Covers:
- Governed relationship_type vocabulary
- Tenant-checked endpoints
- Deactivation keeps the edge (append-only history)
- Workflow transitions as HAS_STATUS edges with full history
"""

import pytest

from hera.models import Entity, Relationship
from hera.services import entity_service, relationship_service, workflow_service
from hera.services.crud_service import entity_crud, relationship_crud
from hera.validation import (
    INVALID_RELATIONSHIP_TYPE,
    INVALID_STATE_TRANSITION,
    RELATIONSHIP_NOT_FOUND,
    ConflictError,
    NotFoundError,
    ValidationError,
)

from conftest import BRANCH_SMART_CODE, CUSTOMER_SMART_CODE, REL_SMART_CODE


APPOINTMENT_SMART_CODE = "HERA.SALON.APPOINTMENT.BOOKING.STANDARD.v1"


@pytest.fixture
def pair(db_session, ctx_a):
    customer = entity_service.create_entity(
        ctx_a, {"entity_type": "CUSTOMER", "entity_name": "Sara", "smart_code": CUSTOMER_SMART_CODE},
    )
    branch = entity_service.create_entity(
        ctx_a, {"entity_type": "BRANCH", "entity_name": "Main", "smart_code": BRANCH_SMART_CODE},
    )
    return customer, branch


@pytest.fixture
def appointment(db_session, ctx_a):
    return entity_service.create_entity(
        ctx_a, {"entity_type": "APPOINTMENT", "entity_name": "Cut & colour", "smart_code": APPOINTMENT_SMART_CODE},
    )


def _edge(customer, branch, **extra):
    spec = {
        "from_entity_id": customer.id,
        "to_entity_id": branch.id,
        "relationship_type": "CUSTOMER_OF",
        "smart_code": REL_SMART_CODE,
    }
    spec.update(extra)
    return spec


class TestRelationships:

    def test_create_and_query(self, ctx_a, pair):
        customer, branch = pair
        edge = relationship_service.create_relationship(ctx_a, _edge(customer, branch, relationship_data={"since": 2021}))

        outgoing = relationship_service.query_relationships(ctx_a, customer.id)
        assert [e.id for e in outgoing] == [edge.id]
        assert outgoing[0].relationship_data == {"since": 2021}

        incoming = relationship_service.query_relationships(ctx_a, branch.id, direction="incoming")
        assert [e.id for e in incoming] == [edge.id]
        assert relationship_service.query_relationships(ctx_a, branch.id) == []

    def test_type_outside_vocabulary_is_rejected(self, ctx_a, pair):
        customer, branch = pair
        with pytest.raises(ValidationError) as exc:
            relationship_service.create_relationship(ctx_a, _edge(customer, branch, relationship_type="BEST_FRIEND_OF"))
        assert exc.value.code == INVALID_RELATIONSHIP_TYPE

    def test_lowercase_type_is_normalized(self, ctx_a, pair):
        customer, branch = pair
        edge = relationship_service.create_relationship(ctx_a, _edge(customer, branch, relationship_type="customer_of"))
        assert edge.relationship_type == "CUSTOMER_OF"

    def test_registered_type_is_accepted(self, ctx_a, pair):
        customer, branch = pair
        relationship_service.register_relationship_type("REFERRED_BY")
        try:
            edge = relationship_service.create_relationship(ctx_a, _edge(customer, branch, relationship_type="REFERRED_BY"))
            assert edge.relationship_type == "REFERRED_BY"
        finally:
            relationship_service.RELATIONSHIP_TYPES.discard("REFERRED_BY")

    def test_unknown_endpoint_is_not_found(self, ctx_a, pair):
        customer, _ = pair
        with pytest.raises(NotFoundError) as exc:
            relationship_service.create_relationship(ctx_a, {
                "from_entity_id": customer.id,
                "to_entity_id": "missing-id",
                "relationship_type": "CUSTOMER_OF",
                "smart_code": REL_SMART_CODE,
            })
        assert exc.value.details["entity_ids"] == ["missing-id"]

    def test_deactivate_keeps_row(self, db_session, ctx_a, pair):
        customer, branch = pair
        edge = relationship_service.create_relationship(ctx_a, _edge(customer, branch))

        relationship_service.deactivate_relationship(ctx_a, edge.id, "moved branch")

        assert relationship_service.query_relationships(ctx_a, customer.id) == []
        history = relationship_service.query_relationships(ctx_a, customer.id, include_inactive=True)
        assert [e.id for e in history] == [edge.id]
        stored = db_session.get(Relationship, edge.id)
        assert stored.is_active is False
        assert stored.deactivated_by == ctx_a.actor_user_id
        assert stored.relationship_data["deactivation_reason"] == "moved branch"

    def test_deactivate_twice_is_a_no_op(self, ctx_a, pair):
        customer, branch = pair
        edge = relationship_service.create_relationship(ctx_a, _edge(customer, branch))
        first = relationship_service.deactivate_relationship(ctx_a, edge.id)
        stamped_at = first.deactivated_at

        second = relationship_service.deactivate_relationship(ctx_a, edge.id, "again")
        assert second.deactivated_at == stamped_at
        assert "deactivation_reason" not in (second.relationship_data or {})

    def test_deactivate_unknown_is_not_found(self, ctx_a, pair):
        with pytest.raises(NotFoundError) as exc:
            relationship_service.deactivate_relationship(ctx_a, "missing-id")
        assert exc.value.code == RELATIONSHIP_NOT_FOUND

    def test_contract_create_query_deactivate(self, db_session, org_a, owner_a, ctx_a, pair):
        customer, branch = pair
        db_session.commit()
        base = {"organization_id": org_a.id, "actor_user_id": owner_a.id}

        created = relationship_crud({**base, "action": "CREATE", "relationship": _edge(customer, branch)})
        assert created["success"] is True
        edge_id = created["relationship_id"]

        listed = relationship_crud({**base, "action": "QUERY", "relationship": {"entity_id": customer.id}})
        assert listed["data"]["count"] == 1

        ended = relationship_crud({**base, "action": "DEACTIVATE", "relationship": {"relationship_id": edge_id}})
        assert ended["data"]["is_active"] is False

        after = relationship_crud({
            **base, "action": "QUERY",
            "relationship": {"entity_id": customer.id, "include_inactive": True},
        })
        assert after["data"]["count"] == 1
        assert after["data"]["items"][0]["is_active"] is False


class TestWorkflow:

    def test_first_transition_must_be_initial_state(self, ctx_a, appointment):
        with pytest.raises(ConflictError) as exc:
            workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "BOOKED")
        assert exc.value.code == INVALID_STATE_TRANSITION
        assert exc.value.details["allowed"] == ["DRAFT"]

    def test_legal_path_records_history(self, db_session, ctx_a, appointment):
        for state in ("DRAFT", "BOOKED", "CHECKED_IN"):
            workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", state, f"to {state.lower()}")

        assert workflow_service.current_state(ctx_a, appointment.id, "APPOINTMENT") == "CHECKED_IN"

        history = workflow_service.history(ctx_a, appointment.id, "APPOINTMENT")
        assert [h["state"] for h in history] == ["DRAFT", "BOOKED", "CHECKED_IN"]
        assert [h["from_state"] for h in history] == [None, "DRAFT", "BOOKED"]
        assert [h["is_active"] for h in history] == [False, False, True]
        assert history[1]["reason"] == "to booked"
        assert all(h["actor_user_id"] == ctx_a.actor_user_id for h in history)

        active = (
            db_session.query(Relationship)
            .filter_by(from_entity_id=appointment.id, relationship_type="HAS_STATUS", is_active=True)
            .all()
        )
        assert len(active) == 1

    def test_illegal_transition_keeps_current_state(self, ctx_a, appointment):
        workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "DRAFT")
        workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "BOOKED")

        with pytest.raises(ConflictError) as exc:
            workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "COMPLETED")
        assert exc.value.details["from_state"] == "BOOKED"

        assert workflow_service.current_state(ctx_a, appointment.id, "APPOINTMENT") == "BOOKED"
        assert len(workflow_service.history(ctx_a, appointment.id, "APPOINTMENT")) == 2

    def test_terminal_state_has_no_exits(self, ctx_a, appointment):
        for state in ("DRAFT", "CANCELLED"):
            workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", state)
        assert workflow_service.APPOINTMENT.is_terminal("CANCELLED")
        with pytest.raises(ConflictError):
            workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "BOOKED")

    def test_status_entities_are_shared_per_org(self, db_session, ctx_a, appointment):
        other = entity_service.create_entity(
            ctx_a, {"entity_type": "APPOINTMENT", "entity_name": "Trim", "smart_code": APPOINTMENT_SMART_CODE},
        )
        workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "DRAFT")
        workflow_service.transition(ctx_a, other.id, "APPOINTMENT", "DRAFT")

        statuses = db_session.query(Entity).filter_by(entity_type="STATUS").all()
        assert [s.entity_code for s in statuses] == ["APPOINTMENT.DRAFT"]

    def test_deleted_status_entity_blocks_transition(self, db_session, ctx_a, appointment):
        workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "DRAFT")
        draft = db_session.query(Entity).filter_by(entity_type="STATUS", entity_code="APPOINTMENT.DRAFT").one()
        entity_service.delete_entity(ctx_a, draft.id, "retired")

        second = entity_service.create_entity(
            ctx_a, {"entity_type": "APPOINTMENT", "entity_name": "Trim", "smart_code": APPOINTMENT_SMART_CODE},
        )
        with pytest.raises(ConflictError) as exc:
            workflow_service.transition(ctx_a, second.id, "APPOINTMENT", "DRAFT")
        assert exc.value.details["status_entity_id"] == draft.id
        assert workflow_service.current_state(ctx_a, second.id, "APPOINTMENT") is None
        assert db_session.query(Relationship).filter_by(to_entity_id=draft.id, from_entity_id=second.id).count() == 0

    def test_unknown_state_and_workflow(self, ctx_a, appointment):
        with pytest.raises(ValidationError):
            workflow_service.transition(ctx_a, appointment.id, "APPOINTMENT", "TELEPORTED")
        with pytest.raises(ValidationError):
            workflow_service.transition(ctx_a, appointment.id, "SHIPMENT", "DRAFT")

    def test_transition_through_contract(self, db_session, org_a, owner_a, appointment):
        db_session.commit()
        base = {
            "organization_id": org_a.id,
            "actor_user_id": owner_a.id,
            "action": "TRANSITION",
            "entity_id": appointment.id,
        }

        ok = entity_crud({**base, "options": {"workflow": "APPOINTMENT", "to_state": "DRAFT"}})
        assert ok["success"] is True
        assert ok["data"]["state"] == "DRAFT"
        assert len(ok["data"]["history"]) == 1

        bad = entity_crud({**base, "options": {"workflow": "APPOINTMENT", "to_state": "COMPLETED"}})
        assert bad["success"] is False
        assert bad["error"] == INVALID_STATE_TRANSITION
        assert bad["category"] == "CONFLICT"
