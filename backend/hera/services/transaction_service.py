"""
Transaction CRUD Engine - header + lines, balance-checked, idempotent

WHY: Every business event (sale, journal entry, booking, payment) is a
header with lines in the generic transactions tables. Lines must reconcile
under the type's balance rule before anything is written.

LIFECYCLE:
    created -> completed -> voided (terminal)
    created -> voided
Voiding stamps reason/actor/time and leaves lines untouched. Nothing is
physically deleted; voided rows are visible only in audit reads.

IDEMPOTENCY:
    (organization_id, idempotency_key) is unique in storage. A repeat
    CREATE with the same key and the same payload returns the original;
    the same key with a different payload is IDEMPOTENCY_CONFLICT. Two
    concurrent first attempts race on the constraint and the loser replays
    the winner's row.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Transaction, TransactionLine
from ..models.transactions import TXN_STATUS_COMPLETED, TXN_STATUS_CREATED, TXN_STATUS_VOIDED
from ..time_utils import parse_range_end, utcnow
from ..validation import (
    ALREADY_VOIDED,
    DUPLICATE_CODE,
    IDEMPOTENCY_CONFLICT,
    INVALID_STATE_TRANSITION,
    TRANSACTION_NOT_FOUND,
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_datetime,
    coerce_id_list,
    coerce_page,
    coerce_text,
    normalize_type_name,
    require_dict,
    require_fields,
    require_list,
    to_decimal,
)
from .balance_service import LineView, check_balance
from .concurrency import lock_for_update
from .guard_service import ActorContext, require_permission, scoped_query, warn_on_foreign_org
from .relationship_service import require_entities_in_org
from .sequence_service import next_transaction_code
from .smart_code_service import require_smart_code


STATUS_ALIASES = {
    "draft": TXN_STATUS_CREATED,
    "created": TXN_STATUS_CREATED,
    "posted": TXN_STATUS_COMPLETED,
    "completed": TXN_STATUS_COMPLETED,
    "voided": TXN_STATUS_VOIDED,
}

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def normalize_status(value, *, field: str = "transaction_status") -> str:
    if not isinstance(value, str) or value.strip().lower() not in STATUS_ALIASES:
        raise ValidationError(
            f"{field} must be one of {', '.join(sorted(STATUS_ALIASES))}",
            details={"field": field},
        )
    return STATUS_ALIASES[value.strip().lower()]


def _normalize_header(header: dict) -> dict:
    # Short keys are accepted for the common fields
    if "transaction_type" not in header and "type" in header:
        header = {**header, "transaction_type": header["type"]}
    if "total_amount" not in header and "total" in header:
        header = {**header, "total_amount": header["total"]}
    require_fields(header, ("transaction_type", "smart_code"), where="header")

    currency = header.get("transaction_currency_code")
    if currency is not None:
        currency = str(currency).strip().upper()
        if not _CURRENCY_RE.match(currency):
            raise ValidationError(
                "transaction_currency_code must be a 3-letter code",
                details={"field": "transaction_currency_code"},
            )

    status = normalize_status(header.get("transaction_status", TXN_STATUS_CREATED))
    if status == TXN_STATUS_VOIDED:
        raise ValidationError("Transactions cannot be created voided", details={"field": "transaction_status"})

    return {
        "transaction_type": normalize_type_name(header["transaction_type"], field="transaction_type"),
        "smart_code": require_smart_code(header["smart_code"], field="header.smart_code").code,
        "transaction_code": coerce_text(header.get("transaction_code"), field="transaction_code", max_length=100) or None,
        "transaction_date": coerce_datetime(header.get("transaction_date"), field="transaction_date"),
        "source_entity_id": header.get("source_entity_id") or None,
        "target_entity_id": header.get("target_entity_id") or None,
        "total_amount": to_decimal(header.get("total_amount"), field="total_amount"),
        "transaction_currency_code": currency,
        "transaction_status": status,
        "metadata": require_dict(header.get("metadata"), where="header.metadata"),
    }


def _normalize_line(raw, index: int) -> dict:
    line = require_dict(raw, where=f"lines[{index}]")
    if "line_amount" not in line and "amount" in line:
        line = {**line, "line_amount": line["amount"]}
    where = f"lines[{index}]"
    require_fields(line, ("line_type", "smart_code"), where=where)

    quantity = to_decimal(line.get("quantity"), field=f"{where}.quantity")
    unit_amount = to_decimal(line.get("unit_amount"), field=f"{where}.unit_amount")
    line_amount = to_decimal(line.get("line_amount"), field=f"{where}.line_amount")
    if line_amount is None:
        if quantity is None or unit_amount is None:
            raise ValidationError(
                f"{where}.line_amount is required (or quantity and unit_amount)",
                details={"field": f"{where}.line_amount"},
            )
        line_amount = quantity * unit_amount

    line_number = line.get("line_number", index + 1)
    if isinstance(line_number, bool) or not isinstance(line_number, int) or line_number < 1:
        raise ValidationError(f"{where}.line_number must be a positive integer", details={"field": f"{where}.line_number"})

    entity_id = line.get("entity_id") or None
    if entity_id is not None and not isinstance(entity_id, str):
        raise ValidationError(f"{where}.entity_id must be a string", details={"field": f"{where}.entity_id"})

    return {
        "line_number": line_number,
        "line_type": normalize_type_name(line["line_type"], field=f"{where}.line_type"),
        "entity_id": entity_id,
        "description": coerce_text(line.get("description"), field=f"{where}.description", max_length=500),
        "quantity": quantity,
        "unit_amount": unit_amount,
        "line_amount": line_amount,
        "smart_code": require_smart_code(line["smart_code"], field=f"{where}.smart_code").code,
        "line_data": require_dict(line.get("line_data"), where=f"{where}.line_data"),
    }


def request_fingerprint(header: dict, lines: list[dict]) -> str:
    """sha256 over the normalized request; stable across key order and number formatting."""
    def _canonical(value):
        if isinstance(value, dict):
            return {k: _canonical(v) for k, v in value.items()}
        if isinstance(value, list):
            return [_canonical(v) for v in value]
        if isinstance(value, Decimal):
            return format(value.normalize(), "f")
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    body = json.dumps({"header": _canonical(header), "lines": _canonical(lines)}, sort_keys=True)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def find_by_idempotency_key(organization_id: str, idempotency_key: str) -> Transaction | None:
    return (
        db.session.query(Transaction)
        .filter_by(organization_id=organization_id, idempotency_key=idempotency_key)
        .first()
    )


def _replay(existing: Transaction, fingerprint: str) -> Transaction:
    if existing.request_fingerprint and existing.request_fingerprint != fingerprint:
        raise ConflictError(
            "idempotency_key was already used with a different payload",
            code=IDEMPOTENCY_CONFLICT,
            details={"idempotency_key": existing.idempotency_key, "transaction_id": existing.id},
        )
    return existing


def compose_transaction(txn: Transaction, *, include_lines: bool = True) -> dict:
    return {
        "header": txn.to_dict(),
        "lines": [line.to_dict() for line in txn.lines] if include_lines else [],
    }


def create_transaction(ctx: ActorContext, payload: dict) -> tuple[Transaction, bool]:
    """
    Validate and insert header + lines atomically.

    Returns (transaction, replayed). replayed is True when an earlier
    CREATE with the same idempotency key is returned instead.

    Raises:
        ValidationError / GovernanceError for malformed input or smart codes
        NotFoundError when a referenced entity is outside the organization
        BalanceError when the lines do not reconcile (nothing is written)
        ConflictError for duplicate codes and idempotency mismatches
    """
    payload = require_dict(payload, where="payload")
    header_in = require_dict(payload.get("header"), where="header")
    if not header_in:
        raise ValidationError("header is required", details={"field": "header"})
    warn_on_foreign_org(ctx, header_in, where="transaction CREATE")

    idempotency_key = coerce_text(
        payload.get("idempotency_key") or header_in.get("idempotency_key"),
        field="idempotency_key",
        max_length=255,
    ) or None

    header = _normalize_header(header_in)
    lines = [_normalize_line(raw, i) for i, raw in enumerate(require_list(payload.get("lines"), where="lines"))]

    numbers = [l["line_number"] for l in lines]
    if len(set(numbers)) != len(numbers):
        raise ValidationError("line_number values must be unique", details={"field": "lines"})

    fingerprint = request_fingerprint(header, lines)

    if idempotency_key:
        existing = find_by_idempotency_key(ctx.organization_id, idempotency_key)
        if existing is not None:
            return _replay(existing, fingerprint), True

    referenced = {header["source_entity_id"], header["target_entity_id"]}
    referenced.update(l["entity_id"] for l in lines)
    require_entities_in_org(referenced, ctx.organization_id)

    total_amount = check_balance(
        header["transaction_type"],
        [
            LineView(
                line_number=l["line_number"],
                line_type=l["line_type"],
                line_amount=l["line_amount"],
                smart_code=l["smart_code"],
                line_data=l["line_data"],
            )
            for l in lines
        ],
        header["total_amount"],
        header["transaction_currency_code"],
    )

    transaction_code = header["transaction_code"]
    if transaction_code:
        clash = scoped_query(Transaction, ctx.organization_id).filter_by(transaction_code=transaction_code).first()
        if clash is not None:
            raise ConflictError(
                f"transaction_code {transaction_code!r} already exists",
                code=DUPLICATE_CODE,
                details={"transaction_code": transaction_code},
            )
    else:
        transaction_code = next_transaction_code(ctx.organization_id, header["transaction_type"])

    now = utcnow()
    txn = Transaction(
        organization_id=ctx.organization_id,
        transaction_type=header["transaction_type"],
        transaction_code=transaction_code,
        transaction_date=header["transaction_date"] or now,
        source_entity_id=header["source_entity_id"],
        target_entity_id=header["target_entity_id"],
        total_amount=total_amount,
        transaction_currency_code=header["transaction_currency_code"],
        transaction_status=header["transaction_status"],
        smart_code=header["smart_code"],
        transaction_metadata=header["metadata"] or None,
        idempotency_key=idempotency_key,
        request_fingerprint=fingerprint,
        completed_at=now if header["transaction_status"] == TXN_STATUS_COMPLETED else None,
        created_by=ctx.actor_user_id,
        updated_by=ctx.actor_user_id,
    )
    db.session.add(txn)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        if idempotency_key:
            existing = find_by_idempotency_key(ctx.organization_id, idempotency_key)
            if existing is not None:
                current_app.logger.info(
                    "Idempotent CREATE race resolved to transaction %s (org=%s)",
                    existing.id, ctx.organization_id,
                )
                return _replay(existing, fingerprint), True
        raise ConflictError(
            "Transaction conflicts with an existing row",
            code=DUPLICATE_CODE,
            details={"transaction_code": transaction_code},
        )

    for l in lines:
        db.session.add(TransactionLine(
            transaction_id=txn.id,
            organization_id=ctx.organization_id,
            line_number=l["line_number"],
            line_type=l["line_type"],
            entity_id=l["entity_id"],
            description=l["description"],
            quantity=l["quantity"],
            unit_amount=l["unit_amount"],
            line_amount=l["line_amount"],
            smart_code=l["smart_code"],
            line_data=l["line_data"] or None,
            created_by=ctx.actor_user_id,
        ))
    db.session.flush()
    db.session.refresh(txn)
    return txn, False


def get_transaction(ctx: ActorContext, transaction_id, *, include_deleted: bool = False, lock: bool = False) -> Transaction:
    if not transaction_id or not isinstance(transaction_id, str):
        raise ValidationError("transaction_id is required", details={"field": "transaction_id"})
    query = scoped_query(Transaction, ctx.organization_id).filter_by(id=transaction_id)
    if lock:
        query = lock_for_update(query)
    txn = query.first()
    if txn is None or (txn.transaction_status == TXN_STATUS_VOIDED and not include_deleted):
        raise NotFoundError(
            "Transaction not found",
            code=TRANSACTION_NOT_FOUND,
            details={"transaction_id": transaction_id},
        )
    return txn


def read_transaction(ctx: ActorContext, payload: dict) -> dict:
    """include_deleted=True is the audit view and needs VIEW_AUDIT."""
    payload = require_dict(payload, where="payload")
    include_deleted = coerce_bool(payload.get("include_deleted", False), field="include_deleted")
    if include_deleted:
        require_permission(ctx, "VIEW_AUDIT")
    txn = get_transaction(ctx, payload.get("transaction_id"), include_deleted=include_deleted)
    return compose_transaction(
        txn,
        include_lines=coerce_bool(payload.get("include_lines", True), field="include_lines"),
    )


def query_transactions(ctx: ActorContext, filters: dict | None = None, options: dict | None = None) -> dict:
    """
    Filters: transaction_type, smart_code (str or list), transaction_code,
    source_entity_id, target_entity_id, entity_id (either side),
    transaction_status, date_from, date_to (inclusive).
    Newest first.
    """
    filters = require_dict(filters, where="filters")
    options = require_dict(options, where="options")
    limit, offset = coerce_page(
        options,
        default_limit=current_app.config.get("DEFAULT_QUERY_LIMIT", 100),
        max_limit=current_app.config.get("MAX_QUERY_LIMIT", 1000),
    )
    include_deleted = coerce_bool(options.get("include_deleted", False), field="include_deleted")
    status = normalize_status(filters["transaction_status"]) if filters.get("transaction_status") else None
    if include_deleted or status == TXN_STATUS_VOIDED:
        require_permission(ctx, "VIEW_AUDIT")

    query = scoped_query(Transaction, ctx.organization_id)

    if filters.get("transaction_type") is not None:
        raw = filters["transaction_type"]
        types = raw if isinstance(raw, list) else [raw]
        query = query.filter(Transaction.transaction_type.in_(
            [normalize_type_name(t, field="transaction_type") for t in types]
        ))
    if filters.get("smart_code") is not None:
        query = query.filter(Transaction.smart_code.in_(coerce_id_list(filters["smart_code"], field="smart_code")))
    if filters.get("transaction_code") is not None:
        query = query.filter(Transaction.transaction_code == str(filters["transaction_code"]))
    if filters.get("source_entity_id"):
        query = query.filter(Transaction.source_entity_id == filters["source_entity_id"])
    if filters.get("target_entity_id"):
        query = query.filter(Transaction.target_entity_id == filters["target_entity_id"])
    if filters.get("entity_id"):
        query = query.filter(or_(
            Transaction.source_entity_id == filters["entity_id"],
            Transaction.target_entity_id == filters["entity_id"],
        ))
    if status is not None:
        query = query.filter(Transaction.transaction_status == status)
    elif not include_deleted:
        query = query.filter(Transaction.transaction_status != TXN_STATUS_VOIDED)

    for name in ("date_from", "date_to"):
        if filters.get(name) is not None and not isinstance(filters[name], str):
            raise ValidationError(f"{name} must be an ISO-8601 string", details={"field": name})
    try:
        date_from = coerce_datetime(filters.get("date_from"), field="date_from")
        date_to = parse_range_end(filters.get("date_to"))
    except ValueError:
        raise ValidationError("date_to must be an ISO-8601 date or datetime", details={"field": "date_to"})
    if date_from is not None:
        query = query.filter(Transaction.transaction_date >= date_from)
    if date_to is not None:
        query = query.filter(Transaction.transaction_date < date_to)

    total = query.count()
    rows = (
        query.order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc(), Transaction.id)
        .limit(limit)
        .offset(offset)
        .all()
    )
    include_lines = coerce_bool(options.get("include_lines", False), field="include_lines")
    return {
        "items": [compose_transaction(t, include_lines=include_lines) for t in rows],
        "count": total,
        "limit": limit,
        "offset": offset,
    }


def complete_transaction(ctx: ActorContext, transaction_id) -> Transaction:
    txn = get_transaction(ctx, transaction_id, include_deleted=True, lock=True)
    if txn.transaction_status != TXN_STATUS_CREATED:
        raise ConflictError(
            f"Cannot complete a {txn.transaction_status} transaction",
            code=INVALID_STATE_TRANSITION,
            details={"transaction_status": txn.transaction_status},
        )
    txn.transaction_status = TXN_STATUS_COMPLETED
    txn.completed_at = utcnow()
    txn.updated_by = ctx.actor_user_id
    db.session.flush()
    return txn


def void_transaction(ctx: ActorContext, transaction_id, reason) -> Transaction:
    """
    created|completed -> voided. A second void is ALREADY_VOIDED (conflict);
    lines are never touched.
    """
    reason = coerce_text(reason, field="reason", max_length=255, required=True)

    txn = get_transaction(ctx, transaction_id, include_deleted=True, lock=True)
    if txn.transaction_status == TXN_STATUS_VOIDED:
        raise ConflictError(
            "Transaction already voided",
            code=ALREADY_VOIDED,
            details={"transaction_id": txn.id, "voided_at": txn.to_dict()["voided_at"]},
        )
    now = utcnow()
    txn.transaction_status = TXN_STATUS_VOIDED
    txn.voided_at = now
    txn.voided_by = ctx.actor_user_id
    txn.void_reason = reason
    txn.updated_by = ctx.actor_user_id
    db.session.flush()
    return txn
