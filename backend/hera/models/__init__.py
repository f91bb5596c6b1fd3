from .tenancy import Organization, User, OrganizationMembership
from .entities import Entity, DynamicField, Relationship
from .transactions import Transaction, TransactionLine, TransactionSequence
from .security import SecurityEvent

__all__ = [
    'Organization', 'User', 'OrganizationMembership',
    'Entity', 'DynamicField', 'Relationship',
    'Transaction', 'TransactionLine', 'TransactionSequence',
    'SecurityEvent',
]
