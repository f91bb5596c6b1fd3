"""
Pytest fixtures for HERA core tests.

Provides test database setup, tenant fixtures (two organizations with their
own members), resolved actor contexts, and a test client.
"""

import pytest
from hera import create_app
from hera.extensions import db
from hera.models import Organization, OrganizationMembership, User
from hera.services.guard_service import resolve_actor_context


CUSTOMER_SMART_CODE = "HERA.SALON.CUSTOMER.PROFILE.VIP.v1"
BRANCH_SMART_CODE = "HERA.SALON.ORG.BRANCH.MAIN.v1"
REL_SMART_CODE = "HERA.SALON.REL.CUSTOMER.BRANCH.v1"
SALE_SMART_CODE = "HERA.SALON.SALE.TXN.RETAIL.v1"
SERVICE_LINE_SMART_CODE = "HERA.SALON.SALE.LINE.SERVICE.v1"
PAYMENT_LINE_SMART_CODE = "HERA.SALON.SALE.PAYMENT.CASH.v1"
JOURNAL_SMART_CODE = "HERA.FIN.GL.JOURNAL.ENTRY.v1"
GL_LINE_SMART_CODE = "HERA.FIN.GL.JOURNAL.LINE.v1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _member(db_session, org, username, role):
    user = User(username=username, email=f"{username}@example.com", is_active=True)
    db_session.add(user)
    db_session.flush()
    db_session.add(OrganizationMembership(organization_id=org.id, user_id=user.id, role=role, is_active=True))
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Hair Talkz", code="HAIRTALKZ", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Mario's", code="MARIO", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def owner_a(db_session, org_a):
    """Owner of Organization A."""
    return _member(db_session, org_a, "owner_a", "owner")


@pytest.fixture(scope='function')
def staff_a(db_session, org_a):
    """Front-line staff in Organization A (no void, no audit)."""
    return _member(db_session, org_a, "staff_a", "staff")


@pytest.fixture(scope='function')
def viewer_a(db_session, org_a):
    """Read-only member of Organization A."""
    return _member(db_session, org_a, "viewer_a", "viewer")


@pytest.fixture(scope='function')
def owner_b(db_session, org_b):
    """Owner of Organization B."""
    return _member(db_session, org_b, "owner_b", "owner")


@pytest.fixture(scope='function')
def ctx_a(org_a, owner_a):
    """Resolved owner context in Organization A."""
    return resolve_actor_context(org_a.id, owner_a.id)


@pytest.fixture(scope='function')
def ctx_b(org_b, owner_b):
    """Resolved owner context in Organization B."""
    return resolve_actor_context(org_b.id, owner_b.id)


@pytest.fixture(scope='function')
def sale_payload():
    """Factory for a balanced single-line sale payload."""
    def _build(total=100, amount=100, **extra):
        payload = {
            "header": {
                "transaction_type": "sale",
                "smart_code": SALE_SMART_CODE,
                "total_amount": total,
                "transaction_currency_code": "AED",
            },
            "lines": [
                {
                    "line_type": "service",
                    "description": "Haircut",
                    "line_amount": amount,
                    "smart_code": SERVICE_LINE_SMART_CODE,
                },
            ],
        }
        payload.update(extra)
        return payload
    return _build


def context_headers(org_id: str, user_id: str) -> dict:
    """Helper to create tenant context headers."""
    return {'X-Organization-Id': org_id, 'X-Actor-User-Id': user_id}
