"""
Permission System Constants and Definitions

WHY: Centralized permission definitions ensure consistency across the engine.
All permission codes and role mappings defined here; the guard resolves an
actor's membership role and checks it against these sets on every call.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for display and CLI listing
- Default role mappings follow principle of least privilege
- Owner and admin have all permissions
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    ENTITIES = "ENTITIES"
    RELATIONSHIPS = "RELATIONSHIPS"
    TRANSACTIONS = "TRANSACTIONS"
    AUDIT = "AUDIT"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # ENTITY PERMISSIONS
    (
        "ENTITY_READ",
        "Read Entities",
        "Read and query entities, dynamic fields and relationships",
        PermissionCategory.ENTITIES
    ),
    (
        "ENTITY_WRITE",
        "Write Entities",
        "Create and update entities and their dynamic fields",
        PermissionCategory.ENTITIES
    ),
    (
        "ENTITY_DELETE",
        "Delete Entities",
        "Soft-delete entities (status change, relationships deactivated)",
        PermissionCategory.ENTITIES
    ),

    # RELATIONSHIP PERMISSIONS
    (
        "RELATIONSHIP_WRITE",
        "Write Relationships",
        "Append and deactivate relationships between entities",
        PermissionCategory.RELATIONSHIPS
    ),
    (
        "WORKFLOW_TRANSITION",
        "Transition Workflow",
        "Move entities between workflow states (HAS_STATUS edges)",
        PermissionCategory.RELATIONSHIPS
    ),

    # TRANSACTION PERMISSIONS
    (
        "TRANSACTION_READ",
        "Read Transactions",
        "Read and query transactions and their lines",
        PermissionCategory.TRANSACTIONS
    ),
    (
        "TRANSACTION_CREATE",
        "Create Transactions",
        "Create transactions with lines",
        PermissionCategory.TRANSACTIONS
    ),
    (
        "TRANSACTION_COMPLETE",
        "Complete Transactions",
        "Move transactions from created to completed",
        PermissionCategory.TRANSACTIONS
    ),
    (
        "TRANSACTION_VOID",
        "Void Transactions",
        "Void transactions (terminal, audited)",
        PermissionCategory.TRANSACTIONS
    ),

    # AUDIT PERMISSIONS
    (
        "VIEW_AUDIT",
        "View Audit",
        "Read voided transactions and deleted entities (include_deleted)",
        PermissionCategory.AUDIT
    ),
]

ALL_PERMISSIONS = frozenset(code for code, _, _, _ in PERMISSION_DEFINITIONS)


# =============================================================================
# DEFAULT ROLE -> PERMISSION MAPPINGS
# =============================================================================

DEFAULT_ROLE_PERMISSIONS = {
    # Owner: everything
    "owner": ALL_PERMISSIONS,

    # Admin: everything
    "admin": ALL_PERMISSIONS,

    # Manager: day-to-day operations including voids and audit views
    "manager": frozenset({
        "ENTITY_READ",
        "ENTITY_WRITE",
        "ENTITY_DELETE",
        "RELATIONSHIP_WRITE",
        "WORKFLOW_TRANSITION",
        "TRANSACTION_READ",
        "TRANSACTION_CREATE",
        "TRANSACTION_COMPLETE",
        "TRANSACTION_VOID",
        "VIEW_AUDIT",
    }),

    # Staff: front-line work, no deletes, voids or audit views
    "staff": frozenset({
        "ENTITY_READ",
        "ENTITY_WRITE",
        "RELATIONSHIP_WRITE",
        "WORKFLOW_TRANSITION",
        "TRANSACTION_READ",
        "TRANSACTION_CREATE",
        "TRANSACTION_COMPLETE",
    }),

    # Viewer: read only
    "viewer": frozenset({
        "ENTITY_READ",
        "TRANSACTION_READ",
    }),
}

VALID_ROLES = frozenset(DEFAULT_ROLE_PERMISSIONS)


def permissions_for_role(role: str | None) -> frozenset[str]:
    """Unknown roles get nothing (fail closed)."""
    if not role:
        return frozenset()
    return DEFAULT_ROLE_PERMISSIONS.get(role.lower(), frozenset())
