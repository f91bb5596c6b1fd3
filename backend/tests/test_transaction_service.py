"""
Transaction CRUD engine tests.

Covers:
- Balance rules (header total, payment, GL ledger, journal) reject before any write
- CREATE/READ round with lines
- Lifecycle: created -> completed -> voided, voided rows hidden from normal reads
- Idempotent CREATE, including a simulated concurrent first attempt
- Per-organization transaction codes and date range filters
"""

import pytest

from hera.models import Transaction, TransactionLine, TransactionSequence
from hera.services import balance_service, transaction_service
from hera.services.crud_service import transaction_crud
from hera.validation import (
    ALREADY_VOIDED,
    BALANCE,
    BALANCE_ERROR,
    IDEMPOTENCY_CONFLICT,
    INVALID_STATE_TRANSITION,
    NOT_AUTHORIZED,
    TRANSACTION_NOT_FOUND,
    BalanceError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

from conftest import GL_LINE_SMART_CODE, JOURNAL_SMART_CODE, PAYMENT_LINE_SMART_CODE


def _journal(*lines):
    return {
        "header": {"transaction_type": "journal_entry", "smart_code": JOURNAL_SMART_CODE},
        "lines": [
            {"line_type": "GL", "line_amount": amount, "smart_code": GL_LINE_SMART_CODE, "line_data": {"side": side}}
            for side, amount in lines
        ],
    }


@pytest.fixture
def crud(org_a, owner_a):
    """Call transaction_crud as the Org A owner."""
    def _call(action, payload, actor=None):
        return transaction_crud({
            "action": action,
            "organization_id": org_a.id,
            "actor_user_id": (actor or owner_a).id,
            "payload": payload,
        })
    return _call


class TestBalance:

    def test_header_total_mismatch_writes_nothing(self, db_session, crud, sale_payload):
        result = crud("CREATE", sale_payload(total=100, amount=90))

        assert result["success"] is False
        assert result["error"] == BALANCE_ERROR
        assert result["category"] == BALANCE
        assert result["details"]["rule"] == "header_total"
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(TransactionLine).count() == 0
        assert db_session.query(TransactionSequence).count() == 0

    def test_tolerance_allows_rounding(self, db_session, crud, sale_payload):
        result = crud("CREATE", sale_payload(total="100.00", amount="99.995"))
        assert result["success"] is True

    def test_missing_header_total_is_derived(self, db_session, ctx_a, sale_payload):
        payload = sale_payload()
        del payload["header"]["total_amount"]
        txn, _ = transaction_service.create_transaction(ctx_a, payload)
        assert float(txn.total_amount) == 100.0

    def test_payment_lines_must_cover_business_lines(self, db_session, ctx_a, sale_payload):
        payload = sale_payload()
        payload["lines"].append({"line_type": "payment", "line_amount": 90, "smart_code": PAYMENT_LINE_SMART_CODE})

        with pytest.raises(BalanceError) as exc:
            transaction_service.create_transaction(ctx_a, payload)
        assert exc.value.details["rule"] == "payment"

        payload["lines"][1]["line_amount"] = 100
        txn, _ = transaction_service.create_transaction(ctx_a, payload)
        assert len(txn.lines) == 2

    def test_payment_lines_without_business_lines(self, db_session, crud, sale_payload):
        payload = sale_payload(total=100)
        payload["lines"] = [{"line_type": "payment", "line_amount": 90, "smart_code": PAYMENT_LINE_SMART_CODE}]

        result = crud("CREATE", payload)

        assert result["error"] == BALANCE_ERROR
        assert db_session.query(Transaction).count() == 0

        del payload["header"]["total_amount"]
        result = crud("CREATE", payload)
        assert result["error"] == BALANCE_ERROR
        assert result["details"]["rule"] == "payment"
        assert result["details"]["line_total"] == 0.0

    def test_header_total_without_lines(self, db_session, crud, sale_payload):
        payload = sale_payload(total=100)
        payload["lines"] = []

        result = crud("CREATE", payload)

        assert result["error"] == BALANCE_ERROR
        assert result["details"]["rule"] == "header_total"
        assert result["details"]["line_total"] == 0.0
        assert db_session.query(Transaction).count() == 0

    def test_journal_header_total_matches_debits(self, db_session, ctx_a):
        payload = _journal(("DR", 250), ("CR", 250))
        payload["header"]["total_amount"] = 250
        txn, _ = transaction_service.create_transaction(ctx_a, payload)
        assert float(txn.total_amount) == 250.0

        payload = _journal(("DR", 250), ("CR", 250))
        payload["header"]["total_amount"] = 400
        with pytest.raises(BalanceError) as exc:
            transaction_service.create_transaction(ctx_a, payload)
        assert exc.value.details["rule"] == "header_total"

    def test_balanced_journal(self, db_session, ctx_a):
        txn, _ = transaction_service.create_transaction(ctx_a, _journal(("DR", 250), ("CR", 200), ("CR", 50)))
        assert txn.transaction_type == "JOURNAL_ENTRY"
        assert [line.line_number for line in txn.lines] == [1, 2, 3]

    def test_unbalanced_journal(self, db_session, ctx_a):
        with pytest.raises(BalanceError) as exc:
            transaction_service.create_transaction(ctx_a, _journal(("DR", 250), ("CR", 200)))
        assert exc.value.details["rule"] == "ledger"
        assert exc.value.details["debits"] == 250.0
        assert exc.value.details["credits"] == 200.0

    def test_journal_needs_two_lines(self, db_session, ctx_a):
        with pytest.raises(BalanceError) as exc:
            transaction_service.create_transaction(ctx_a, _journal(("DR", 0)))
        assert exc.value.details["rule"] == "journal"

    def test_gl_line_without_side_is_invalid(self, db_session, ctx_a):
        payload = _journal(("DR", 10), ("CR", 10))
        payload["lines"][1]["line_data"] = {}
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(ctx_a, payload)

    def test_registered_rules_for_custom_type(self, db_session, ctx_a, sale_payload):
        balance_service.register_rules("DEPOSIT", balance_service.RuleSet(header_total=False))
        try:
            payload = sale_payload(total=500, amount=100)
            payload["header"]["transaction_type"] = "deposit"
            txn, _ = transaction_service.create_transaction(ctx_a, payload)
            assert float(txn.total_amount) == 500.0
        finally:
            balance_service._RULES.pop("DEPOSIT", None)

    def test_line_amount_from_quantity_and_unit(self, db_session, ctx_a, sale_payload):
        payload = sale_payload()
        line = payload["lines"][0]
        del line["line_amount"]
        line.update({"quantity": 2, "unit_amount": "50"})

        txn, _ = transaction_service.create_transaction(ctx_a, payload)
        assert float(txn.lines[0].line_amount) == 100.0


class TestLifecycle:

    def test_create_then_read(self, db_session, crud, sale_payload):
        created = crud("CREATE", sale_payload())
        assert created["success"] is True
        assert created["action"] == "CREATE"
        assert "idempotent_replay" not in created

        read = crud("READ", {"transaction_id": created["transaction_id"]})
        header = read["data"]["header"]
        assert header["total_amount"] == 100.0
        assert header["transaction_status"] == "created"
        assert header["transaction_currency_code"] == "AED"
        assert len(read["data"]["lines"]) == 1
        assert read["data"]["lines"][0]["line_type"] == "SERVICE"

    def test_void_hides_transaction_from_normal_reads(self, db_session, crud, sale_payload):
        txn_id = crud("CREATE", sale_payload())["transaction_id"]

        voided = crud("VOID", {"transaction_id": txn_id, "reason": "customer refund"})
        assert voided["success"] is True
        assert voided["data"]["header"]["void_reason"] == "customer refund"

        hidden = crud("READ", {"transaction_id": txn_id})
        assert hidden["success"] is False
        assert hidden["error"] == TRANSACTION_NOT_FOUND

        audit = crud("READ", {"transaction_id": txn_id, "include_deleted": True})
        assert audit["data"]["header"]["transaction_status"] == "voided"
        assert len(audit["data"]["lines"]) == 1

    def test_second_void_is_already_voided(self, db_session, crud, sale_payload):
        txn_id = crud("CREATE", sale_payload())["transaction_id"]
        crud("VOID", {"transaction_id": txn_id, "reason": "duplicate"})

        again = crud("VOID", {"transaction_id": txn_id, "reason": "duplicate"})
        assert again["error"] == ALREADY_VOIDED
        assert again["category"] == "CONFLICT"

    def test_void_requires_reason(self, db_session, ctx_a, sale_payload):
        txn, _ = transaction_service.create_transaction(ctx_a, sale_payload())
        with pytest.raises(ValidationError):
            transaction_service.void_transaction(ctx_a, txn.id, "  ")

    def test_complete_only_from_created(self, db_session, ctx_a, sale_payload):
        txn, _ = transaction_service.create_transaction(ctx_a, sale_payload())

        transaction_service.complete_transaction(ctx_a, txn.id)
        assert txn.transaction_status == "completed"
        assert txn.completed_at is not None

        with pytest.raises(ConflictError) as exc:
            transaction_service.complete_transaction(ctx_a, txn.id)
        assert exc.value.code == INVALID_STATE_TRANSITION

        voided = transaction_service.void_transaction(ctx_a, txn.id, "reversal")
        assert voided.transaction_status == "voided"

    def test_voided_is_not_completable(self, db_session, ctx_a, sale_payload):
        txn, _ = transaction_service.create_transaction(ctx_a, sale_payload())
        transaction_service.void_transaction(ctx_a, txn.id, "mistake")
        with pytest.raises(ConflictError):
            transaction_service.complete_transaction(ctx_a, txn.id)

    def test_created_voided_is_rejected(self, db_session, ctx_a, sale_payload):
        payload = sale_payload()
        payload["header"]["transaction_status"] = "voided"
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(ctx_a, payload)

    def test_staff_cannot_void(self, db_session, crud, staff_a, sale_payload):
        txn_id = crud("CREATE", sale_payload(), actor=staff_a)["transaction_id"]
        result = crud("VOID", {"transaction_id": txn_id, "reason": "oops"}, actor=staff_a)
        assert result["error"] == NOT_AUTHORIZED
        assert db_session.get(Transaction, txn_id).transaction_status == "created"

    def test_unknown_transaction(self, db_session, ctx_a):
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(ctx_a, "missing-id")


class TestIdempotency:

    def test_replay_returns_original(self, db_session, crud, sale_payload):
        first = crud("CREATE", sale_payload(idempotency_key="pos-42"))
        second = crud("CREATE", sale_payload(idempotency_key="pos-42"))

        assert second["success"] is True
        assert second["idempotent_replay"] is True
        assert second["transaction_id"] == first["transaction_id"]
        assert db_session.query(Transaction).count() == 1
        assert db_session.query(TransactionLine).count() == 1

    def test_equivalent_number_formatting_still_replays(self, db_session, crud, sale_payload):
        first = crud("CREATE", sale_payload(total=100, amount=100, idempotency_key="pos-43"))
        second = crud("CREATE", sale_payload(total="100.00", amount=100.0, idempotency_key="pos-43"))
        assert second["transaction_id"] == first["transaction_id"]

    def test_same_key_different_payload_conflicts(self, db_session, crud, sale_payload):
        crud("CREATE", sale_payload(idempotency_key="pos-44"))
        result = crud("CREATE", sale_payload(total=200, amount=200, idempotency_key="pos-44"))

        assert result["error"] == IDEMPOTENCY_CONFLICT
        assert db_session.query(Transaction).count() == 1

    def test_keys_are_scoped_per_org(self, db_session, ctx_a, ctx_b, sale_payload):
        a, _ = transaction_service.create_transaction(ctx_a, sale_payload(idempotency_key="shared"))
        b, replayed = transaction_service.create_transaction(ctx_b, sale_payload(idempotency_key="shared"))
        assert replayed is False
        assert a.id != b.id

    def test_concurrent_first_attempt_replays_winner(self, db_session, crud, sale_payload, monkeypatch):
        winner = crud("CREATE", sale_payload(idempotency_key="pos-45"))

        # The loser's pre-check ran before the winner committed
        real_lookup = transaction_service.find_by_idempotency_key
        calls = []

        def late_lookup(organization_id, idempotency_key):
            calls.append(idempotency_key)
            if len(calls) == 1:
                return None
            return real_lookup(organization_id, idempotency_key)

        monkeypatch.setattr(transaction_service, "find_by_idempotency_key", late_lookup)

        loser = crud("CREATE", sale_payload(idempotency_key="pos-45"))

        assert len(calls) == 2
        assert loser["success"] is True
        assert loser["idempotent_replay"] is True
        assert loser["transaction_id"] == winner["transaction_id"]
        assert db_session.query(Transaction).count() == 1


class TestCodesAndQuery:

    def test_codes_are_sequential_per_org_and_type(self, db_session, ctx_a, ctx_b, sale_payload):
        first, _ = transaction_service.create_transaction(ctx_a, sale_payload())
        second, _ = transaction_service.create_transaction(ctx_a, sale_payload())
        journal, _ = transaction_service.create_transaction(ctx_a, _journal(("DR", 5), ("CR", 5)))
        other_org, _ = transaction_service.create_transaction(ctx_b, sale_payload())

        assert first.transaction_code == "SALE-000001"
        assert second.transaction_code == "SALE-000002"
        assert journal.transaction_code == "JOURNAL_ENTRY-000001"
        assert other_org.transaction_code == "SALE-000001"

    def test_explicit_code_must_be_unique(self, db_session, ctx_a, sale_payload):
        payload = sale_payload()
        payload["header"]["transaction_code"] = "INV-1"
        transaction_service.create_transaction(ctx_a, payload)
        with pytest.raises(ConflictError):
            transaction_service.create_transaction(ctx_a, payload)

    def test_date_to_covers_whole_day(self, db_session, ctx_a, sale_payload):
        payload = sale_payload()
        payload["header"]["transaction_date"] = "2025-01-31T18:30:00Z"
        transaction_service.create_transaction(ctx_a, payload)

        same_day = transaction_service.query_transactions(ctx_a, {"date_to": "2025-01-31"})
        assert same_day["count"] == 1

        day_before = transaction_service.query_transactions(ctx_a, {"date_to": "2025-01-30"})
        assert day_before["count"] == 0

        window = transaction_service.query_transactions(
            ctx_a, {"date_from": "2025-01-31", "date_to": "2025-01-31"},
        )
        assert window["count"] == 1

    def test_query_excludes_voided_unless_audit(self, db_session, ctx_a, sale_payload):
        kept, _ = transaction_service.create_transaction(ctx_a, sale_payload())
        gone, _ = transaction_service.create_transaction(ctx_a, sale_payload())
        transaction_service.void_transaction(ctx_a, gone.id, "mistake")

        normal = transaction_service.query_transactions(ctx_a, {})
        assert [i["header"]["id"] for i in normal["items"]] == [kept.id]

        audit = transaction_service.query_transactions(ctx_a, {}, {"include_deleted": True})
        assert audit["count"] == 2

        only_voided = transaction_service.query_transactions(ctx_a, {"transaction_status": "voided"})
        assert [i["header"]["id"] for i in only_voided["items"]] == [gone.id]

    def test_query_through_contract(self, db_session, crud, staff_a, sale_payload):
        crud("CREATE", sale_payload())
        crud("CREATE", _journal(("DR", 5), ("CR", 5)))

        result = crud("QUERY", {"filters": {"transaction_type": "sale"}, "include_lines": True}, actor=staff_a)
        assert result["success"] is True
        assert result["data"]["count"] == 1
        assert len(result["data"]["items"][0]["lines"]) == 1

        denied = crud("QUERY", {"filters": {"transaction_status": "voided"}}, actor=staff_a)
        assert denied["error"] == NOT_AUTHORIZED
