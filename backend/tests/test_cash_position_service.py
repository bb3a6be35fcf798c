"""
Cash position tests.

Verifies:
- balances only move through movements (transfer approval, adjustment application)
- balance reads are idempotent
- expected amount = baseline count + movements + cash transactions - deposits
- verify_pool_balance detects drift
"""

from datetime import timedelta

import pytest

from dsr.config import get_cash_policy
from dsr.errors import InsufficientBalanceError, NotFoundError, ValidationError
from dsr.models import CashCount, CashMovement, CashPool, Expense, GiftVoucher, Sale, SaleReturn
from dsr.services import cash_position_service
from dsr.services.cash_position_service import (
    VARIANCE_CRITICAL,
    VARIANCE_OK,
    VARIANCE_WARNING,
    apply_movement,
    classify_variance,
    compute_expected_balance,
    get_balances,
    get_current_balance,
    verify_pool_balance,
)
from dsr.time_utils import business_day_start_utc


class TestBalances:

    def test_new_store_has_zero_balances(self, store):
        assert get_balances(store.id) == {"sales_cash": 0, "petty_cash": 0}

    def test_unknown_pool_is_rejected(self, store):
        with pytest.raises(ValidationError):
            get_current_balance(store.id, "safe")

    def test_reads_are_idempotent(self, store, fund_pool):
        fund_pool(store, "sales_cash", 10_000_00)
        first = get_current_balance(store.id, "sales_cash")
        second = get_current_balance(store.id, "sales_cash")
        assert first == second == 10_000_00

    def test_balance_equals_sum_of_movements(self, db_session, store, fund_pool):
        fund_pool(store, "sales_cash", 10_000_00)
        apply_movement(
            store_id=store.id,
            pool="sales_cash",
            amount_paise=-2_500_00,
            movement_type="adjustment",
            source_type="cash_adjustment",
            source_id=999,
            actor_user_id=None,
        )
        db_session.commit()

        result = verify_pool_balance(store.id, "sales_cash")
        assert result["materialized_paise"] == 7_500_00
        assert result["computed_paise"] == 7_500_00
        assert result["ok"] is True

    def test_movement_below_zero_writes_nothing(self, db_session, store, fund_pool):
        fund_pool(store, "petty_cash", 1_000_00)
        with pytest.raises(InsufficientBalanceError) as exc:
            apply_movement(
                store_id=store.id,
                pool="petty_cash",
                amount_paise=-1_000_01,
                movement_type="adjustment",
                source_type="cash_adjustment",
                source_id=1,
                actor_user_id=None,
            )
        db_session.rollback()

        assert exc.value.current_balance_paise == 1_000_00
        assert get_current_balance(store.id, "petty_cash") == 1_000_00
        assert db_session.query(CashMovement).filter_by(store_id=store.id, pool="petty_cash").count() == 1

    def test_verify_detects_drift(self, db_session, store, fund_pool):
        fund_pool(store, "sales_cash", 5_000_00)
        pool = db_session.query(CashPool).filter_by(store_id=store.id, pool="sales_cash").one()
        pool.balance_paise = 4_000_00
        db_session.commit()

        result = verify_pool_balance(store.id, "sales_cash")
        assert result["ok"] is False
        assert result["drift_paise"] == -1_000_00


class TestExpectedBalance:

    def _count(self, db_session, store, user, pool, count_date, total):
        count = CashCount(
            store_id=store.id,
            pool=pool,
            count_date=count_date,
            denominations={"500": total // 500_00},
            total_counted_paise=total,
            expected_amount_paise=total,
            variance_paise=0,
            variance_level="ok",
            counted_by_user_id=user.id,
        )
        db_session.add(count)
        db_session.commit()
        return count

    def test_no_history_is_zero(self, store, today):
        expected = compute_expected_balance(store.id, "sales_cash", today)
        assert expected.expected_paise == 0
        assert expected.baseline_count_id is None

    def test_opening_balance_counts_as_movement(self, store, today, fund_pool):
        fund_pool(store, "sales_cash", 15_000_00)
        expected = compute_expected_balance(store.id, "sales_cash", today)
        assert expected.movements_paise == 15_000_00
        assert expected.expected_paise == 15_000_00

    def test_sales_cash_formula(self, db_session, store, cashier, today):
        yesterday = today - timedelta(days=1)
        self._count(db_session, store, cashier, "sales_cash", yesterday, 5_000_00)

        db_session.add_all([
            Sale(store_id=store.id, sale_date=today, amount_paise=2_000_00, tender_type="cash"),
            # Card sales never reach the drawer
            Sale(store_id=store.id, sale_date=today, amount_paise=9_000_00, tender_type="card"),
            # Already inside yesterday's count
            Sale(store_id=store.id, sale_date=yesterday, amount_paise=7_000_00, tender_type="cash"),
            SaleReturn(
                store_id=store.id,
                return_date=today,
                return_amount_paise=500_00,
                original_bill_reference="B-1",
                tender_type="cash",
            ),
            GiftVoucher(
                store_id=store.id,
                voucher_number="GV-1",
                issued_date=today,
                amount_paise=1_000_00,
                tender_type="cash",
            ),
            GiftVoucher(
                store_id=store.id,
                voucher_number="GV-2",
                issued_date=today,
                amount_paise=3_000_00,
                tender_type="cash",
                voucher_status="cancelled",
            ),
        ])
        db_session.commit()

        cash_position_service.record_deposit(
            store_id=store.id,
            amount_paise=1_500_00,
            deposited_by=cashier.id,
            deposit_date=today,
        )
        db_session.commit()

        expected = compute_expected_balance(store.id, "sales_cash", today)
        assert expected.baseline_paise == 5_000_00
        assert expected.baseline_date == yesterday
        assert expected.transactions_paise == 2_000_00 - 500_00 + 1_000_00
        assert expected.deposits_paise == 1_500_00
        assert expected.expected_paise == 5_000_00 + 2_500_00 - 1_500_00

    def test_petty_cash_expenses_regardless_of_tender(self, db_session, store, today, fund_pool):
        fund_pool(store, "petty_cash", 3_000_00)
        db_session.add_all([
            Expense(store_id=store.id, expense_date=today, amount_paise=400_00,
                    category="Supplies", description="Tea", tender_type="cash"),
            Expense(store_id=store.id, expense_date=today, amount_paise=100_00,
                    category="Supplies", description="Pens", tender_type="upi"),
        ])
        db_session.commit()

        expected = compute_expected_balance(store.id, "petty_cash", today)
        assert expected.expected_paise == 3_000_00 - 500_00
        assert expected.deposits_paise == 0

    def test_movement_after_count_on_count_day(self, db_session, store, cashier, today):
        yesterday = today - timedelta(days=1)
        day_start = business_day_start_utc(yesterday, get_cash_policy().business_timezone)
        count = self._count(db_session, store, cashier, "petty_cash", yesterday, 1_000_00)
        count.counted_at = day_start + timedelta(hours=10)

        def _movement(amount, hours):
            return CashMovement(
                store_id=store.id,
                pool="petty_cash",
                amount_paise=amount,
                movement_type="transfer_in",
                source_type="cash_transfer",
                source_id=1,
                occurred_at=day_start + timedelta(hours=hours),
                balance_after_paise=amount,
            )

        db_session.add_all([
            # Already in the drawer when it was counted
            _movement(300_00, 8),
            # Topped up after the count, same business day
            _movement(200_00, 12),
        ])
        db_session.commit()

        expected = compute_expected_balance(store.id, "petty_cash", today)
        assert expected.baseline_paise == 1_000_00
        assert expected.movements_paise == 200_00
        assert expected.expected_paise == 1_200_00

    def test_same_day_count_is_not_a_baseline(self, db_session, store, cashier, today):
        self._count(db_session, store, cashier, "sales_cash", today, 8_000_00)
        expected = compute_expected_balance(store.id, "sales_cash", today)
        assert expected.baseline_count_id is None
        assert expected.expected_paise == 0


class TestClassifyVariance:

    @pytest.mark.parametrize(
        "pool,variance,level",
        [
            ("sales_cash", 0, VARIANCE_OK),
            ("sales_cash", 100_00, VARIANCE_OK),
            ("sales_cash", 100_01, VARIANCE_WARNING),
            ("sales_cash", -499_99, VARIANCE_WARNING),
            ("sales_cash", 500_00, VARIANCE_CRITICAL),
            ("sales_cash", -600_00, VARIANCE_CRITICAL),
            ("petty_cash", 50_00, VARIANCE_OK),
            ("petty_cash", 50_01, VARIANCE_WARNING),
            ("petty_cash", 500_00, VARIANCE_CRITICAL),
        ],
    )
    def test_levels(self, app, pool, variance, level):
        with app.app_context():
            assert classify_variance(pool, variance) == level


class TestDeposits:

    def test_deposit_needs_permission(self, store, accounts):
        from dsr.errors import AuthorizationError

        with pytest.raises(AuthorizationError):
            cash_position_service.record_deposit(
                store_id=store.id, amount_paise=100_00, deposited_by=accounts.id,
            )

    def test_unknown_store(self, db_session, cashier):
        with pytest.raises(NotFoundError):
            cash_position_service.record_deposit(
                store_id=9999, amount_paise=100_00, deposited_by=cashier.id,
            )

    def test_deposit_does_not_touch_balance(self, db_session, store, cashier, fund_pool, today):
        fund_pool(store, "sales_cash", 2_000_00)
        deposit = cash_position_service.record_deposit(
            store_id=store.id,
            amount_paise=1_000_00,
            deposited_by=cashier.id,
            deposit_slip_number="SLIP-7",
            bank_name="State Bank",
        )
        db_session.commit()

        assert deposit.deposit_date == today
        assert get_current_balance(store.id, "sales_cash") == 2_000_00
        assert cash_position_service.list_deposits(store.id)[0].id == deposit.id


class TestSummary:

    def test_petty_cash_low_flag(self, store, fund_pool):
        fund_pool(store, "petty_cash", 1_000_00)
        summary = cash_position_service.get_cash_summary(store.id)
        assert summary["petty_cash_balance_paise"] == 1_000_00
        assert summary["petty_cash_low"] is True
        assert summary["pending_transfers"] == 0

    def test_activity_lists_adjustments(self, store, fund_pool):
        fund_pool(store, "sales_cash", 1_000_00)
        activity = cash_position_service.get_cash_activity(store.id)
        assert activity[0]["activity_type"] == "adjustment"
        assert activity[0]["status"] == "completed"
