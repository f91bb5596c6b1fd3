from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_id


class Entity(db.Model):
    """
    Polymorphic business object (customer, product, appointment, staff, role, ...).

    WHY: One generic table serves every vertical. entity_type is the tag;
    anything outside the fixed columns lives in dynamic_data rows.

    LIFECYCLE: created via CREATE, changed via UPDATE (never re-typed),
    soft-deleted by status. Rows are never physically removed.
    """
    __tablename__ = "entities"
    __table_args__ = (
        # NULL codes never collide, so code-less entities are unconstrained
        db.UniqueConstraint("organization_id", "entity_type", "entity_code", name="uq_entities_org_type_code"),
        db.Index("ix_entities_org_type_status", "organization_id", "entity_type", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)

    entity_type = db.Column(db.String(64), nullable=False)
    entity_name = db.Column(db.String(255), nullable=False)
    entity_code = db.Column(db.String(100), nullable=True)
    entity_description = db.Column(db.Text, nullable=True)
    parent_entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=True, index=True)

    smart_code = db.Column(db.String(255), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="active")
    entity_metadata = db.Column("metadata", db.JSON, nullable=True)

    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    updated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Entity id={self.id} type={self.entity_type} org={self.organization_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity_type": self.entity_type,
            "entity_name": self.entity_name,
            "entity_code": self.entity_code,
            "entity_description": self.entity_description,
            "parent_entity_id": self.parent_entity_id,
            "smart_code": self.smart_code,
            "status": self.status,
            "metadata": self.entity_metadata or {},
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class DynamicField(db.Model):
    """
    Typed attribute attached to an entity outside its fixed columns.

    One row per (entity_id, field_name); exactly one field_value_* column is
    populated, chosen by field_type. Distinct fields are distinct rows, so
    concurrent writers touching different fields never contend.
    """
    __tablename__ = "dynamic_data"
    __table_args__ = (
        db.UniqueConstraint("entity_id", "field_name", name="uq_dynamic_data_entity_field"),
        db.Index("ix_dynamic_data_org_field", "organization_id", "field_name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)
    entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=False, index=True)

    field_name = db.Column(db.String(128), nullable=False)
    field_type = db.Column(db.String(16), nullable=False)  # text, number, boolean, date, json

    field_value_text = db.Column(db.Text, nullable=True)
    field_value_number = db.Column(db.Numeric(18, 4), nullable=True)
    field_value_boolean = db.Column(db.Boolean, nullable=True)
    field_value_date = db.Column(db.DateTime(timezone=True), nullable=True)
    field_value_json = db.Column(db.JSON, nullable=True)

    smart_code = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    updated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    entity = db.relationship("Entity", backref=db.backref("dynamic_fields", lazy=True))

    @property
    def value(self):
        if self.field_type == "number":
            return float(self.field_value_number) if self.field_value_number is not None else None
        if self.field_type == "boolean":
            return self.field_value_boolean
        if self.field_type == "date":
            return to_utc_z(self.field_value_date)
        if self.field_type == "json":
            return self.field_value_json
        return self.field_value_text

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "organization_id": self.organization_id,
            "field_name": self.field_name,
            "field_type": self.field_type,
            "value": self.value,
            "smart_code": self.smart_code,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Relationship(db.Model):
    """
    Directed, typed edge between two entities of the same organization.

    APPEND-ONLY HISTORY: edges are never overwritten. A state change appends
    a new edge and deactivates the prior one (is_active=False), so the full
    trail stays queryable. Status/workflow is modeled this way instead of
    mutable status columns.
    """
    __tablename__ = "relationships"
    __table_args__ = (
        db.Index("ix_relationships_from_type_active", "from_entity_id", "relationship_type", "is_active"),
        db.Index("ix_relationships_to_type_active", "to_entity_id", "relationship_type", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    organization_id = db.Column(db.String(36), db.ForeignKey("organizations.id"), nullable=False, index=True)
    from_entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=False)
    to_entity_id = db.Column(db.String(36), db.ForeignKey("entities.id"), nullable=False)

    relationship_type = db.Column(db.String(64), nullable=False)
    relationship_data = db.Column(db.JSON, nullable=True)
    smart_code = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=True)

    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deactivated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)

    created_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    updated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    from_entity = db.relationship("Entity", foreign_keys=[from_entity_id], backref=db.backref("outgoing_relationships", lazy=True))
    to_entity = db.relationship("Entity", foreign_keys=[to_entity_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "from_entity_id": self.from_entity_id,
            "to_entity_id": self.to_entity_id,
            "relationship_type": self.relationship_type,
            "relationship_data": self.relationship_data or {},
            "smart_code": self.smart_code,
            "is_active": self.is_active,
            "effective_date": to_utc_z(self.effective_date),
            "expiration_date": to_utc_z(self.expiration_date),
            "deactivated_at": to_utc_z(self.deactivated_at),
            "deactivated_by": self.deactivated_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
