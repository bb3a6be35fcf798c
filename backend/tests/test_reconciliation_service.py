"""
Reconciliation ledger tests.

Verifies:
- pending list merges all six kinds for one business date
- status moves forward only (pending -> reconciled -> completed)
- store roles reconcile only their own same-day pending items and never finalize
- batch items succeed or fail independently
"""

from datetime import timedelta

import pytest

from dsr.errors import AuthorizationError, StateConflictError, ValidationError
from dsr.models import AuditEvent, Sale
from dsr.services import reconciliation_service, transaction_service


def _record(db_session, kind, payload, user):
    row = transaction_service.record_transaction(kind=kind, payload=payload, recorded_by=user.id)
    db_session.commit()
    return row


def _sale(db_session, store, user, day, amount=1_000_00, tender="cash"):
    return _record(
        db_session,
        "sale",
        {"store_id": store.id, "sale_date": day.isoformat(), "amount_paise": amount, "tender_type": tender},
        user,
    )


@pytest.fixture
def day_of_activity(db_session, store, manager, today):
    """One pending transaction of every kind, recorded by the manager today."""
    day = today.isoformat()
    return {
        "sale": _sale(db_session, store, manager, today),
        "expense": _record(db_session, "expense", {
            "store_id": store.id, "expense_date": day, "amount_paise": 250_00,
            "category": "Supplies", "description": "Cleaning",
        }, manager),
        "return": _record(db_session, "return", {
            "store_id": store.id, "return_date": day, "return_amount_paise": 300_00,
            "original_bill_reference": "INV-100", "tender_type": "cash",
        }, manager),
        "hand_bill": _record(db_session, "hand_bill", {
            "store_id": store.id, "bill_date": day, "bill_number": "HB-1",
            "total_amount_paise": 450_00, "tender_type": "upi",
        }, manager),
        "gift_voucher": _record(db_session, "gift_voucher", {
            "store_id": store.id, "voucher_number": "GV-100", "issued_date": day,
            "amount_paise": 1_000_00, "tender_type": "cash",
        }, manager),
        "sales_order": _record(db_session, "sales_order", {
            "store_id": store.id, "order_date": day, "order_number": "SO-1",
            "total_amount_paise": 5_000_00, "advance_amount_paise": 1_000_00, "tender_type": "cash",
        }, manager),
    }


class TestListPending:

    def test_all_kinds_listed(self, day_of_activity, store, today):
        pending = reconciliation_service.list_pending(today, [store.id])

        assert sorted(item.kind for item in pending) == sorted(day_of_activity)
        by_kind = {item.kind: item for item in pending}
        assert by_kind["return"].amount_paise == 300_00
        assert by_kind["sales_order"].amount_paise == 1_000_00
        assert by_kind["hand_bill"].description == "Hand Bill - HB-1"
        assert all(item.status == "pending" for item in pending)

    def test_other_day_and_other_store_excluded(self, db_session, store, other_store, manager, today):
        _sale(db_session, store, manager, today - timedelta(days=1))
        db_session.add(Sale(store_id=other_store.id, sale_date=today, amount_paise=100_00, tender_type="cash"))
        db_session.commit()

        assert reconciliation_service.list_pending(today, [store.id]) == []

    def test_gift_vouchers_ignore_store_scope(self, day_of_activity, other_store, today):
        pending = reconciliation_service.list_pending(today, [other_store.id])
        assert [item.kind for item in pending] == ["gift_voucher"]

    def test_cancelled_voucher_not_listed(self, day_of_activity, store, accounts, db_session, today):
        transaction_service.cancel_gift_voucher(
            voucher_id=day_of_activity["gift_voucher"].id, cancelled_by=accounts.id,
        )
        db_session.commit()

        kinds = {item.kind for item in reconciliation_service.list_pending(today, [store.id])}
        assert "gift_voucher" not in kinds


class TestReconcile:

    def test_manager_reconciles_own_same_day_item(self, db_session, day_of_activity, manager):
        sale = day_of_activity["sale"]
        result = reconciliation_service.reconcile(
            kind="sale",
            transaction_id=sale.id,
            reconciled_by=manager.id,
            source="bank",
            external_reference="UTR-1",
        )
        db_session.commit()

        assert result.status == "reconciled"
        assert result.envelope["reconciled_by_user_id"] == manager.id
        assert result.envelope["reconciliation_source"] == "bank"
        assert result.envelope["external_reference"] == "UTR-1"
        event = db_session.query(AuditEvent).filter_by(event_type="transaction.reconciled").one()
        assert event.entity_type == "sale"
        assert event.payload["from_status"] == "pending"

    def test_already_reconciled_conflicts(self, db_session, day_of_activity, manager):
        sale = day_of_activity["sale"]
        reconciliation_service.reconcile(kind="sale", transaction_id=sale.id, reconciled_by=manager.id)
        db_session.commit()

        with pytest.raises(StateConflictError) as exc:
            reconciliation_service.reconcile(kind="sale", transaction_id=sale.id, reconciled_by=manager.id)
        assert exc.value.current_status == "reconciled"

    def test_manager_cannot_finalize(self, db_session, day_of_activity, manager):
        sale = day_of_activity["sale"]
        with pytest.raises(AuthorizationError):
            reconciliation_service.reconcile(
                kind="sale", transaction_id=sale.id, reconciled_by=manager.id, status="completed",
            )
        db_session.rollback()

        db_session.refresh(sale)
        assert sale.status == "pending"

    def test_accounts_finalizes_reconciled(self, db_session, day_of_activity, manager, accounts):
        expense = day_of_activity["expense"]
        reconciliation_service.reconcile(kind="expense", transaction_id=expense.id, reconciled_by=manager.id)
        db_session.commit()

        result = reconciliation_service.reconcile(
            kind="expense", transaction_id=expense.id, reconciled_by=accounts.id, status="completed",
        )
        db_session.commit()
        assert result.status == "completed"

        with pytest.raises(StateConflictError) as exc:
            reconciliation_service.reconcile(
                kind="expense", transaction_id=expense.id, reconciled_by=accounts.id, status="completed",
            )
        assert exc.value.current_status == "completed"

    def test_cashier_cannot_reconcile_someone_elses_item(self, db_session, day_of_activity, cashier):
        with pytest.raises(AuthorizationError):
            reconciliation_service.reconcile(
                kind="sale", transaction_id=day_of_activity["sale"].id, reconciled_by=cashier.id,
            )

    def test_store_role_cannot_reconcile_yesterday(self, db_session, store, cashier, today):
        sale = _sale(db_session, store, cashier, today - timedelta(days=1))
        with pytest.raises(AuthorizationError):
            reconciliation_service.reconcile(kind="sale", transaction_id=sale.id, reconciled_by=cashier.id)

    def test_accounts_reconciles_any_day(self, db_session, store, cashier, accounts, today):
        sale = _sale(db_session, store, cashier, today - timedelta(days=10))
        result = reconciliation_service.reconcile(kind="sale", transaction_id=sale.id, reconciled_by=accounts.id)
        assert result.status == "reconciled"

    def test_unknown_kind_and_source(self, db_session, day_of_activity, accounts):
        with pytest.raises(ValidationError):
            reconciliation_service.reconcile(kind="refund", transaction_id=1, reconciled_by=accounts.id)
        with pytest.raises(ValidationError):
            reconciliation_service.reconcile(
                kind="sale", transaction_id=day_of_activity["sale"].id, reconciled_by=accounts.id, source="paytm",
            )


class TestReconcileBatch:

    def test_failures_do_not_stop_other_items(self, db_session, day_of_activity, manager, cashier):
        sale = day_of_activity["sale"]
        reconciliation_service.reconcile(kind="sale", transaction_id=sale.id, reconciled_by=manager.id)
        db_session.commit()

        results = reconciliation_service.reconcile_batch(
            [
                {"kind": "sale", "id": sale.id},
                {"kind": "expense", "id": day_of_activity["expense"].id, "source": "cash"},
                {"kind": "nope", "id": 1},
                {"kind": "hand_bill", "id": 99999},
                {"kind": "return", "id": day_of_activity["return"].id},
            ],
            reconciled_by=manager.id,
        )

        assert [r.ok for r in results] == [False, True, False, False, True]
        assert results[0].error["code"] == "STATE_CONFLICT"
        assert results[2].error["code"] == "VALIDATION_ERROR"
        assert results[3].error["code"] == "NOT_FOUND"
        assert results[1].status == "reconciled"

        db_session.expire_all()
        assert day_of_activity["expense"].status == "reconciled"
        assert day_of_activity["return"].status == "reconciled"

    def test_denied_items_reported_per_item(self, db_session, day_of_activity, cashier):
        results = reconciliation_service.reconcile_batch(
            [{"kind": "sale", "id": day_of_activity["sale"].id}],
            reconciled_by=cashier.id,
        )
        assert results[0].ok is False
        assert results[0].error["code"] == "PERMISSION_DENIED"

    @pytest.mark.parametrize("items", [[], None, {"kind": "sale"}])
    def test_items_must_be_a_non_empty_list(self, app, items, accounts):
        with pytest.raises(ValidationError):
            reconciliation_service.reconcile_batch(items, reconciled_by=accounts.id)


class TestSummary:

    def test_counts_per_kind(self, db_session, day_of_activity, manager, accounts, today):
        reconciliation_service.reconcile(
            kind="sale", transaction_id=day_of_activity["sale"].id, reconciled_by=manager.id,
        )
        reconciliation_service.reconcile(
            kind="expense", transaction_id=day_of_activity["expense"].id,
            reconciled_by=accounts.id, status="completed",
        )
        db_session.commit()

        summary = reconciliation_service.summarize(today, today)
        assert summary["total_transactions"] == 6
        assert summary["reconciled_transactions"] == 2
        assert summary["pending_transactions"] == 4
        assert summary["by_kind"]["sale"] == {"total": 1, "reconciled": 1, "pending": 0}
        assert summary["by_kind"]["return"] == {"total": 1, "reconciled": 0, "pending": 1}

    def test_inverted_range(self, app, today):
        with pytest.raises(ValidationError):
            reconciliation_service.summarize(today, today - timedelta(days=1))
