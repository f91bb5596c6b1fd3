from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import to_float
from .common import new_id


TXN_STATUS_CREATED = "created"
TXN_STATUS_COMPLETED = "completed"
TXN_STATUS_VOIDED = "voided"


class Transaction(db.Model):
    """
    Business-event header (sale, journal entry, appointment booking, ...).

    LIFECYCLE: created -> completed -> voided (terminal).
    Voiding stamps reason/actor/time and leaves lines untouched; nothing is
    ever physically deleted.

    IDEMPOTENCY: (organization_id, idempotency_key) is unique at the storage
    layer, so concurrent retries can produce at most one row.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "idempotency_key", name="uq_transactions_org_idempotency_key"),
        db.UniqueConstraint("organization_id", "transaction_code", name="uq_transactions_org_code"),
        db.Index("ix_transactions_org_type_date", "organization_id", "transaction_type", "transaction_date"),
        db.Index("ix_transactions_org_status", "organization_id", "transaction_status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(64), nullable=False)
    transaction_code = db.Column(db.String(100), nullable=False)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False)

    source_entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=True, index=True)
    target_entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=True, index=True)

    total_amount = db.Column(db.Numeric(18, 4), nullable=True)
    transaction_currency_code = db.Column(db.String(3), nullable=True)
    transaction_status = db.Column(db.String(16), nullable=False, default=TXN_STATUS_CREATED)

    smart_code = db.Column(db.String(255), nullable=False, index=True)
    transaction_metadata = db.Column("metadata", db.JSON, nullable=True)

    # Idempotent creation
    idempotency_key = db.Column(db.String(255), nullable=True)
    request_fingerprint = db.Column(db.String(64), nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Void audit trail
    voided_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    updated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "TransactionLine",
        backref="transaction",
        lazy=True,
        order_by="TransactionLine.line_number",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.transaction_type} status={self.transaction_status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "transaction_type": self.transaction_type,
            "transaction_code": self.transaction_code,
            "transaction_date": to_utc_z(self.transaction_date),
            "source_entity_id": self.source_entity_id,
            "target_entity_id": self.target_entity_id,
            "total_amount": to_float(self.total_amount),
            "transaction_currency_code": self.transaction_currency_code,
            "transaction_status": self.transaction_status,
            "smart_code": self.smart_code,
            "metadata": self.transaction_metadata or {},
            "idempotency_key": self.idempotency_key,
            "completed_at": to_utc_z(self.completed_at),
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at),
            "void_reason": self.void_reason,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class TransactionLine(db.Model):
    """Individual line on a transaction. Immutable once written."""
    __tablename__ = "transaction_lines"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_number", name="uq_transaction_lines_txn_line"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    transaction_id = db.Column(db.String(36), db.ForeignKey("transactions.id"), nullable=False, index=True)
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)

    line_number = db.Column(db.Integer, nullable=False)
    line_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=True, index=True)
    description = db.Column(db.String(500), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=True)
    unit_amount = db.Column(db.Numeric(18, 4), nullable=True)
    line_amount = db.Column(db.Numeric(18, 4), nullable=False)

    smart_code = db.Column(db.String(255), nullable=False)
    line_data = db.Column(db.JSON, nullable=True)  # GL lines: {"side": "DR"|"CR", "account": "110000"}

    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "organization_id": self.organization_id,
            "line_number": self.line_number,
            "line_type": self.line_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "quantity": to_float(self.quantity),
            "unit_amount": to_float(self.unit_amount),
            "line_amount": to_float(self.line_amount),
            "smart_code": self.smart_code,
            "line_data": self.line_data or {},
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }


class TransactionSequence(db.Model):
    """
    Per-organization, per-type counter for human-readable transaction codes.

    Allocation happens inside the creating DB transaction, so a rejected
    CREATE never burns a number.
    """
    __tablename__ = "transaction_sequences"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "transaction_type", name="uq_transaction_sequences_org_type"),
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(64), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
