"""
Entity kinds: the tagged variants stored in the generic entities table.

entity_type is the tag. Known kinds declare the dynamic fields they cannot
live without and the smart-code family their codes should belong to;
anything else is accepted as the generic kind.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..validation import GovernanceError, ValidationError, normalize_type_name
from .smart_code_service import SmartCode


@dataclass(frozen=True)
class EntityKind:
    entity_type: str
    label: str
    required_fields: tuple[str, ...] = ()
    # Segment expected right after the industry, e.g. "CUSTOMER" in HERA.SALON.CUSTOMER.PROFILE.VIP.v1
    smart_code_module: str | None = None
    generic: bool = False


GENERIC = EntityKind(entity_type="*", label="Generic entity", generic=True)

_REGISTRY: dict[str, EntityKind] = {}


def register_entity_kind(kind: EntityKind) -> EntityKind:
    normalized = normalize_type_name(kind.entity_type, field="entity_type")
    if normalized != kind.entity_type:
        kind = EntityKind(
            entity_type=normalized,
            label=kind.label,
            required_fields=kind.required_fields,
            smart_code_module=kind.smart_code_module,
        )
    _REGISTRY[normalized] = kind
    return kind


def get_entity_kind(entity_type: str) -> EntityKind:
    return _REGISTRY.get(entity_type, GENERIC)


def check_required_fields(kind: EntityKind, dynamic_names: set[str]) -> None:
    """CREATE-time check; UPDATE is additive so it never re-checks."""
    missing = [name for name in kind.required_fields if name not in dynamic_names]
    if missing:
        raise ValidationError(
            f"{kind.entity_type} requires dynamic fields: {', '.join(missing)}",
            details={"entity_type": kind.entity_type, "missing_dynamic": missing},
        )


def check_smart_code_family(kind: EntityKind, smart_code: SmartCode) -> None:
    if kind.smart_code_module and not smart_code.has_segment(kind.smart_code_module):
        raise GovernanceError(
            f"{kind.entity_type} smart codes must include the {kind.smart_code_module} segment",
            details={"entity_type": kind.entity_type, "smart_code": smart_code.code},
        )


for _kind in (
    EntityKind("CUSTOMER", "Customer"),
    EntityKind("PRODUCT", "Product", smart_code_module="PRODUCT"),
    EntityKind("SERVICE", "Service", smart_code_module="SERVICE"),
    EntityKind("STAFF", "Staff member"),
    EntityKind("APPOINTMENT", "Appointment"),
    EntityKind("BRANCH", "Branch / location"),
    EntityKind("ROLE", "Role"),
    EntityKind("STATUS", "Workflow status"),
    EntityKind("GL_ACCOUNT", "General ledger account", required_fields=("account_number",)),
):
    register_entity_kind(_kind)
