"""
Transfer workflow tests.

Verifies:
- approval moves the approved amount from sales_cash to petty_cash atomically
- an approved amount different from the request records the variance
- a transfer resolves exactly once
- requests and approvals never exceed available sales cash
- only approver roles resolve transfers
"""

import pytest

from dsr.errors import (
    AuthorizationError,
    InsufficientBalanceError,
    StateConflictError,
    ValidationError,
)
from dsr.models import AuditEvent, CashMovement
from dsr.services import transfer_service
from dsr.services.cash_position_service import get_balances, verify_pool_balance


@pytest.fixture
def funded_store(store, fund_pool):
    fund_pool(store, "sales_cash", 10_000_00)
    fund_pool(store, "petty_cash", 1_500_00)
    return store


def _request(db_session, store, user, amount, reason="Petty cash top-up"):
    transfer = transfer_service.request_transfer(
        store_id=store.id,
        amount_paise=amount,
        reason=reason,
        requested_by=user.id,
    )
    db_session.commit()
    return transfer


class TestRequestTransfer:

    def test_request_moves_nothing(self, db_session, funded_store, manager):
        transfer = _request(db_session, funded_store, manager, 3_000_00)

        assert transfer.status == "pending"
        assert transfer.sales_cash_balance_paise == 10_000_00
        assert transfer.petty_cash_balance_paise == 1_500_00
        assert get_balances(funded_store.id) == {"sales_cash": 10_000_00, "petty_cash": 1_500_00}

    def test_request_above_sales_cash(self, db_session, funded_store, manager):
        with pytest.raises(InsufficientBalanceError) as exc:
            _request(db_session, funded_store, manager, 10_000_01)
        assert exc.value.current_balance_paise == 10_000_00

    @pytest.mark.parametrize("amount", [0, -100, "12.50", None])
    def test_amount_must_be_positive_integer(self, db_session, funded_store, manager, amount):
        with pytest.raises(ValidationError):
            _request(db_session, funded_store, manager, amount)

    def test_reason_is_required(self, db_session, funded_store, manager):
        with pytest.raises(ValidationError):
            _request(db_session, funded_store, manager, 100_00, reason="  ")

    def test_accounts_cannot_request(self, db_session, funded_store, accounts):
        with pytest.raises(AuthorizationError):
            _request(db_session, funded_store, accounts, 100_00)

    def test_priority_from_amount(self, db_session, funded_store, manager):
        small = _request(db_session, funded_store, manager, 1_000_00)
        large = _request(db_session, funded_store, manager, 5_000_00)
        assert small.priority == "low"
        assert large.priority == "medium"


class TestResolveTransfer:

    def test_full_approval(self, db_session, funded_store, manager, accounts):
        transfer = _request(db_session, funded_store, manager, 3_000_00)

        transfer_service.approve_transfer(transfer_id=transfer.id, approved_by=accounts.id)
        db_session.commit()

        assert transfer.status == "approved"
        assert transfer.approved_amount_paise == 3_000_00
        assert transfer.approval_variance_paise == 0
        assert get_balances(funded_store.id) == {"sales_cash": 7_000_00, "petty_cash": 4_500_00}

        movements = db_session.query(CashMovement).filter_by(source_type="cash_transfer", source_id=transfer.id).all()
        assert sorted(m.amount_paise for m in movements) == [-3_000_00, 3_000_00]

    def test_partial_approval_records_variance(self, db_session, funded_store, manager, accounts):
        transfer = _request(db_session, funded_store, manager, 3_000_00)

        transfer_service.approve_transfer(
            transfer_id=transfer.id,
            approved_by=accounts.id,
            approved_amount_paise=2_000_00,
            notes="Only 2k needed this week",
        )
        db_session.commit()

        assert transfer.approved_amount_paise == 2_000_00
        assert transfer.approval_variance_paise == -1_000_00
        assert get_balances(funded_store.id) == {"sales_cash": 8_000_00, "petty_cash": 3_500_00}
        for pool in ("sales_cash", "petty_cash"):
            assert verify_pool_balance(funded_store.id, pool)["ok"] is True

    def test_second_resolution_conflicts(self, db_session, funded_store, manager, accounts, super_user):
        transfer = _request(db_session, funded_store, manager, 1_000_00)
        transfer_service.approve_transfer(transfer_id=transfer.id, approved_by=accounts.id)
        db_session.commit()

        with pytest.raises(StateConflictError) as exc:
            transfer_service.reject_transfer(transfer_id=transfer.id, rejected_by=super_user.id, notes="Too late")
        db_session.rollback()

        assert exc.value.current_status == "approved"
        assert get_balances(funded_store.id) == {"sales_cash": 9_000_00, "petty_cash": 2_500_00}

    def test_rejection_moves_nothing(self, db_session, funded_store, manager, accounts):
        transfer = _request(db_session, funded_store, manager, 1_000_00)

        transfer_service.reject_transfer(transfer_id=transfer.id, rejected_by=accounts.id, notes="Use float")
        db_session.commit()

        assert transfer.status == "rejected"
        assert transfer.approval_notes == "Use float"
        assert get_balances(funded_store.id) == {"sales_cash": 10_000_00, "petty_cash": 1_500_00}

    def test_rejection_needs_notes(self, db_session, funded_store, manager, accounts):
        transfer = _request(db_session, funded_store, manager, 1_000_00)
        with pytest.raises(ValidationError):
            transfer_service.reject_transfer(transfer_id=transfer.id, rejected_by=accounts.id, notes="")

    def test_approval_above_current_sales_cash(self, db_session, funded_store, manager, accounts):
        first = _request(db_session, funded_store, manager, 6_000_00)
        second = _request(db_session, funded_store, manager, 6_000_00)
        transfer_service.approve_transfer(transfer_id=first.id, approved_by=accounts.id)
        db_session.commit()

        with pytest.raises(InsufficientBalanceError):
            transfer_service.approve_transfer(transfer_id=second.id, approved_by=accounts.id)
        db_session.rollback()

        db_session.refresh(second)
        assert second.status == "pending"
        assert get_balances(funded_store.id) == {"sales_cash": 4_000_00, "petty_cash": 7_500_00}

    @pytest.mark.parametrize("approver", ["manager", "cashier"])
    def test_store_roles_cannot_approve(self, request, db_session, funded_store, manager, approver):
        transfer = _request(db_session, funded_store, manager, 1_000_00)
        user = request.getfixturevalue(approver)

        with pytest.raises(AuthorizationError):
            transfer_service.approve_transfer(transfer_id=transfer.id, approved_by=user.id)
        db_session.rollback()

        db_session.refresh(transfer)
        assert transfer.status == "pending"

    def test_audit_trail(self, db_session, funded_store, manager, accounts):
        transfer = _request(db_session, funded_store, manager, 1_000_00)
        transfer_service.approve_transfer(transfer_id=transfer.id, approved_by=accounts.id)
        db_session.commit()

        events = (
            db_session.query(AuditEvent)
            .filter_by(entity_type="cash_transfer", entity_id=transfer.id)
            .order_by(AuditEvent.id.asc())
            .all()
        )
        assert [e.event_type for e in events] == ["transfer.requested", "transfer.approved"]


class TestPendingQueue:

    def test_highest_priority_first(self, db_session, funded_store, manager):
        low = _request(db_session, funded_store, manager, 500_00)
        high = _request(db_session, funded_store, manager, 9_000_00)

        pending = transfer_service.list_pending_transfers(store_ids=[funded_store.id])
        assert [t.id for t in pending] == [high.id, low.id]

    def test_store_filter(self, db_session, funded_store, other_store, manager):
        _request(db_session, funded_store, manager, 500_00)
        assert transfer_service.list_pending_transfers(store_ids=[other_store.id]) == []
