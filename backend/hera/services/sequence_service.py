# Overview: Per-organization transaction_code allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import TransactionSequence


def _bump(organization_id: str, transaction_type: str) -> int | None:
    stmt = (
        update(TransactionSequence)
        .where(
            TransactionSequence.organization_id == organization_id,
            TransactionSequence.transaction_type == transaction_type,
        )
        .values(next_number=TransactionSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    db.session.flush()
    current = (
        db.session.query(TransactionSequence.next_number)
        .filter_by(organization_id=organization_id, transaction_type=transaction_type)
        .scalar()
    )
    return current - 1


def next_transaction_code(organization_id: str, transaction_type: str, *, pad: int = 6) -> str:
    """
    Allocate the next "<TYPE>-000001" code for an organization/type.

    Runs inside the caller's transaction, so a CREATE that is later rolled
    back also releases its number. The first allocation for a type races on
    the (organization_id, transaction_type) unique constraint; the loser
    falls back to the UPDATE path inside a savepoint.
    """
    next_num = _bump(organization_id, transaction_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(TransactionSequence(
                    organization_id=organization_id,
                    transaction_type=transaction_type,
                    next_number=2,
                ))
            next_num = 1
        except IntegrityError:
            next_num = _bump(organization_id, transaction_type)
            if next_num is None:
                raise
    return f"{transaction_type}-{next_num:0{pad}d}"
