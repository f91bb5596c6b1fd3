"""Core schema: tenants, actors, entities, dynamic data, relationships, transactions

Revision ID: hera001_core_schema
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "hera001_core_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("organizations", schema=None) as batch_op:
        batch_op.create_index("ix_organizations_code", ["code"], unique=True)
        batch_op.create_index("ix_organizations_is_active", ["is_active"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_username", ["username"], unique=True)

    op.create_table(
        "organization_memberships",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_memberships_org_user"),
    )
    with op.batch_alter_table("organization_memberships", schema=None) as batch_op:
        batch_op.create_index("ix_organization_memberships_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_organization_memberships_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_organization_memberships_is_active", ["is_active"], unique=False)

    op.create_table(
        "entities",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_name", sa.String(255), nullable=False),
        sa.Column("entity_code", sa.String(100), nullable=True),
        sa.Column("entity_description", sa.Text(), nullable=True),
        sa.Column("parent_entity_id", sa.String(36), nullable=True),
        sa.Column("smart_code", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("updated_by", sa.String(36), nullable=False),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["parent_entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "entity_type", "entity_code", name="uq_entities_org_type_code"),
    )
    with op.batch_alter_table("entities", schema=None) as batch_op:
        batch_op.create_index("ix_entities_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_entities_parent_entity_id", ["parent_entity_id"], unique=False)
        batch_op.create_index("ix_entities_smart_code", ["smart_code"], unique=False)
        batch_op.create_index("ix_entities_org_type_status", ["organization_id", "entity_type", "status"], unique=False)

    op.create_table(
        "dynamic_data",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("field_name", sa.String(128), nullable=False),
        sa.Column("field_type", sa.String(16), nullable=False),
        sa.Column("field_value_text", sa.Text(), nullable=True),
        sa.Column("field_value_number", sa.Numeric(18, 4), nullable=True),
        sa.Column("field_value_boolean", sa.Boolean(), nullable=True),
        sa.Column("field_value_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("field_value_json", sa.JSON(), nullable=True),
        sa.Column("smart_code", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("updated_by", sa.String(36), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_id", "field_name", name="uq_dynamic_data_entity_field"),
    )
    with op.batch_alter_table("dynamic_data", schema=None) as batch_op:
        batch_op.create_index("ix_dynamic_data_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_dynamic_data_entity_id", ["entity_id"], unique=False)
        batch_op.create_index("ix_dynamic_data_org_field", ["organization_id", "field_name"], unique=False)

    op.create_table(
        "relationships",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("from_entity_id", sa.String(36), nullable=False),
        sa.Column("to_entity_id", sa.String(36), nullable=False),
        sa.Column("relationship_type", sa.String(64), nullable=False),
        sa.Column("relationship_data", sa.JSON(), nullable=True),
        sa.Column("smart_code", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("effective_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiration_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deactivated_by", sa.String(36), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("updated_by", sa.String(36), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["from_entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["to_entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["deactivated_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("relationships", schema=None) as batch_op:
        batch_op.create_index("ix_relationships_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_relationships_from_type_active", ["from_entity_id", "relationship_type", "is_active"], unique=False)
        batch_op.create_index("ix_relationships_to_type_active", ["to_entity_id", "relationship_type", "is_active"], unique=False)

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("transaction_type", sa.String(64), nullable=False),
        sa.Column("transaction_code", sa.String(100), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source_entity_id", sa.String(36), nullable=True),
        sa.Column("target_entity_id", sa.String(36), nullable=True),
        sa.Column("total_amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("transaction_currency_code", sa.String(3), nullable=True),
        sa.Column("transaction_status", sa.String(16), nullable=False, server_default="created"),
        sa.Column("smart_code", sa.String(255), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("request_fingerprint", sa.String(64), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.String(36), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("updated_by", sa.String(36), nullable=False),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["source_entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["target_entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["voided_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "idempotency_key", name="uq_transactions_org_idempotency_key"),
        sa.UniqueConstraint("organization_id", "transaction_code", name="uq_transactions_org_code"),
    )
    with op.batch_alter_table("transactions", schema=None) as batch_op:
        batch_op.create_index("ix_transactions_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_transactions_source_entity_id", ["source_entity_id"], unique=False)
        batch_op.create_index("ix_transactions_target_entity_id", ["target_entity_id"], unique=False)
        batch_op.create_index("ix_transactions_smart_code", ["smart_code"], unique=False)
        batch_op.create_index("ix_transactions_org_type_date", ["organization_id", "transaction_type", "transaction_date"], unique=False)
        batch_op.create_index("ix_transactions_org_status", ["organization_id", "transaction_status"], unique=False)

    op.create_table(
        "transaction_lines",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("transaction_id", sa.String(36), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("line_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 4), nullable=True),
        sa.Column("unit_amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("line_amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("smart_code", sa.String(255), nullable=False),
        sa.Column("line_data", sa.JSON(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["transactions.id"]),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["entity_id"], ["entities.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_txn_line"),
    )
    with op.batch_alter_table("transaction_lines", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_lines_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_transaction_lines_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_transaction_lines_entity_id", ["entity_id"], unique=False)

    op.create_table(
        "transaction_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=False),
        sa.Column("transaction_type", sa.String(64), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", "transaction_type", name="uq_transaction_sequences_org_type"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("transaction_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_transaction_sequences_organization_id", ["organization_id"], unique=False)

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("resource", sa.String(128), nullable=True),
        sa.Column("action", sa.String(64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("security_events", schema=None) as batch_op:
        batch_op.create_index("ix_security_events_organization_id", ["organization_id"], unique=False)
        batch_op.create_index("ix_security_events_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_security_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_security_events_success", ["success"], unique=False)
        batch_op.create_index("ix_security_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_security_events_user_type", ["user_id", "event_type"], unique=False)
        batch_op.create_index("ix_security_events_org_occurred", ["organization_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("security_events")
    op.drop_table("transaction_sequences")
    op.drop_table("transaction_lines")
    op.drop_table("transactions")
    op.drop_table("relationships")
    op.drop_table("dynamic_data")
    op.drop_table("entities")
    op.drop_table("organization_memberships")
    op.drop_table("users")
    op.drop_table("organizations")
