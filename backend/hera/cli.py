# Overview: Flask CLI command groups for tenant bootstrap and inspection.

# backend/hera/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to hera (PowerShell: $env:FLASK_APP="hera").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply migrations (Flask-Migrate).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations with member and entity counts.
# - python -m flask orgs create --name "Hair Talkz" --code "HAIRTALKZ"
#   Create a new organization (tenant).
# - python -m flask orgs deactivate --code "HAIRTALKZ"
#   Deactivate an organization; every guard check for it then fails.
#
# Users:
# - python -m flask users list
#   List all users.
# - python -m flask users create --username michele --email michele@example.com
#   Create an actor identity.
#
# Memberships (who may act in which organization, with which role):
# - python -m flask members add --org-code HAIRTALKZ --username michele --role owner
#   Add or re-activate a membership (role is updated if it already exists).
# - python -m flask members list --org-code HAIRTALKZ
#   List memberships of an organization.
# - python -m flask members remove --org-code HAIRTALKZ --username michele
#   Deactivate a membership.
#
# Smart codes:
# - python -m flask smart-codes validate HERA.SALON.SALE.TXN.RETAIL.v1
#   Validate one or more smart codes and print their components.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Entity, Organization, OrganizationMembership, User
from .permissions import VALID_ROLES
from .services.smart_code_service import validate_smart_code


def _org_by_code(code: str) -> Organization | None:
    return db.session.query(Organization).filter_by(code=code).first()


# =============================================================================
# ORGANIZATION COMMANDS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.name).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<38} {'Name':<25} {'Code':<15} {'Active':<8} {'Members':<8} {'Entities'}")
    click.echo("="*100)

    for org in orgs:
        member_count = db.session.query(OrganizationMembership).filter_by(organization_id=org.id, is_active=True).count()
        entity_count = db.session.query(Entity).filter_by(organization_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"

        click.echo(f"{org.id:<38} {org.name:<25} {org.code or '-':<15} {active_str:<8} {member_count:<8} {entity_count}")

    click.echo("="*100 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_org_cli(name, code):
    """Create a new organization (tenant)."""
    if _org_by_code(code):
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@orgs_group.command('deactivate')
@click.option('--code', required=True, help='Organization code')
@with_appcontext
def deactivate_org_cli(code):
    """Deactivate an organization. Data is kept; access is denied."""
    org = _org_by_code(code)
    if not org:
        click.echo(f"FAIL Organization '{code}' not found")
        return

    org.is_active = False
    db.session.commit()
    click.echo(f"PASS Deactivated organization: {org.name}")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User (actor) commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', default=None, help='Email address')
@click.option('--display-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, email, display_name):
    """Create an actor identity."""
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL User '{username}' already exists")
        return

    user = User(username=username, email=email, display_name=display_name, is_active=True)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.username} (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.username).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<38} {'Username':<20} {'Email':<24} {'Active'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<38} {user.username:<20} {user.email or '-':<24} {active_str}")
    click.echo("="*90 + "\n")


# =============================================================================
# MEMBERSHIP COMMANDS
# =============================================================================

@click.group('members')
def members_group():
    """Organization membership commands."""


@members_group.command('add')
@click.option('--org-code', required=True, help='Organization code')
@click.option('--username', required=True, help='Username')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), required=True, help='Role in the organization')
@with_appcontext
def add_member_cli(org_code, username, role):
    """Add a membership, or update role / re-activate an existing one."""
    org = _org_by_code(org_code)
    if not org:
        click.echo(f"FAIL Organization '{org_code}' not found")
        return
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return

    membership = (
        db.session.query(OrganizationMembership)
        .filter_by(organization_id=org.id, user_id=user.id)
        .first()
    )
    if membership:
        membership.role = role
        membership.is_active = True
    else:
        membership = OrganizationMembership(organization_id=org.id, user_id=user.id, role=role, is_active=True)
        db.session.add(membership)
    db.session.commit()
    click.echo(f"PASS {user.username} is {role} in {org.name}")


@members_group.command('list')
@click.option('--org-code', required=True, help='Organization code')
@with_appcontext
def list_members_cli(org_code):
    """List memberships of an organization."""
    org = _org_by_code(org_code)
    if not org:
        click.echo(f"FAIL Organization '{org_code}' not found")
        return

    rows = (
        db.session.query(OrganizationMembership, User)
        .join(User, User.id == OrganizationMembership.user_id)
        .filter(OrganizationMembership.organization_id == org.id)
        .order_by(User.username)
        .all()
    )
    if not rows:
        click.echo("No members found.")
        return
    for membership, user in rows:
        active_str = "active" if membership.is_active else "inactive"
        click.echo(f"{user.username:<20} {membership.role:<10} {active_str}")


@members_group.command('remove')
@click.option('--org-code', required=True, help='Organization code')
@click.option('--username', required=True, help='Username')
@with_appcontext
def remove_member_cli(org_code, username):
    """Deactivate a membership."""
    org = _org_by_code(org_code)
    user = db.session.query(User).filter_by(username=username).first()
    membership = None
    if org and user:
        membership = (
            db.session.query(OrganizationMembership)
            .filter_by(organization_id=org.id, user_id=user.id)
            .first()
        )
    if not membership:
        click.echo(f"FAIL No membership for '{username}' in '{org_code}'")
        return

    membership.is_active = False
    db.session.commit()
    click.echo(f"PASS Deactivated {username} in {org.name}")


# =============================================================================
# SMART CODE COMMANDS
# =============================================================================

@click.group('smart-codes')
def smart_codes_group():
    """Smart code governance tools."""


@smart_codes_group.command('validate')
@click.argument('codes', nargs=-1, required=True)
def validate_smart_codes_cli(codes):
    """Validate smart codes; exits non-zero if any is invalid."""
    failures = 0
    for code in codes:
        result = validate_smart_code(code)
        if result["valid"]:
            parts = result["components"]
            click.echo(
                f"PASS {code}  industry={parts['industry']} "
                f"segments={'.'.join(parts['segments'])} version={parts['version']}"
            )
        else:
            failures += 1
            click.echo(f"FAIL {code}  {result['reason']}")
    if failures:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(users_group)
    app.cli.add_command(members_group)
    app.cli.add_command(smart_codes_group)
