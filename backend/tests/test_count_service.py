"""
Denomination count tests.

Verifies:
- count total, expected and variance against the funded pool
- critical variance blocks unless acknowledged, and nothing is stored when blocked
- counts never move the pool balance
- recounts on the same day supersede the earlier row
"""

import pytest

from dsr.errors import AuthorizationError, CriticalVarianceError, ValidationError
from dsr.models import AuditEvent, CashCount
from dsr.services.cash_position_service import get_current_balance
from dsr.services.count_service import list_counts, submit_count


class TestSubmitCount:

    def test_small_excess_is_ok(self, db_session, store, cashier, fund_pool):
        fund_pool(store, "sales_cash", 15_000_00)

        result = submit_count(
            store_id=store.id,
            pool="sales_cash",
            denominations={"500": 30, "50": 1},
            counted_by=cashier.id,
        )
        db_session.commit()

        assert result.total_paise == 15_050_00
        assert result.expected_paise == 15_000_00
        assert result.variance_paise == 50_00
        assert result.level == "ok"
        assert result.count.denominations == {"500": 30, "50": 1}
        assert get_current_balance(store.id, "sales_cash") == 15_000_00

    def test_warning_does_not_block(self, db_session, store, cashier, fund_pool):
        fund_pool(store, "petty_cash", 1_000_00)

        result = submit_count(
            store_id=store.id,
            pool="petty_cash",
            denominations={"500": 2, "100": 1},
            counted_by=cashier.id,
        )
        db_session.commit()

        assert result.variance_paise == 100_00
        assert result.level == "warning"
        assert result.count.variance_acknowledged is False

    def test_critical_variance_blocks_without_acknowledgment(self, db_session, store, cashier, fund_pool):
        fund_pool(store, "sales_cash", 10_000_00)

        with pytest.raises(CriticalVarianceError) as exc:
            submit_count(
                store_id=store.id,
                pool="sales_cash",
                denominations={"500": 21, "100": 1},
                counted_by=cashier.id,
            )
        db_session.rollback()

        assert exc.value.variance_paise == 600_00
        assert exc.value.to_dict()["requires_acknowledgment"] is True
        assert db_session.query(CashCount).count() == 0
        assert db_session.query(AuditEvent).filter_by(event_type="count.submitted").count() == 0

    def test_acknowledged_critical_variance_is_stored(self, db_session, store, cashier, fund_pool):
        fund_pool(store, "sales_cash", 10_000_00)

        result = submit_count(
            store_id=store.id,
            pool="sales_cash",
            denominations={"500": 21, "100": 1},
            counted_by=cashier.id,
            acknowledge_variance=True,
            notes="Till float left in drawer",
        )
        db_session.commit()

        assert result.level == "critical"
        assert result.count.variance_acknowledged is True
        assert result.count.notes == "Till float left in drawer"
        assert get_current_balance(store.id, "sales_cash") == 10_000_00

    def test_recount_supersedes(self, db_session, store, cashier, manager):
        first = submit_count(
            store_id=store.id, pool="petty_cash", denominations={}, counted_by=cashier.id,
        )
        db_session.commit()
        second = submit_count(
            store_id=store.id, pool="petty_cash", denominations={}, counted_by=manager.id,
        )
        db_session.commit()

        assert second.count.supersedes_count_id == first.count.id
        current = list_counts(store.id, pool="petty_cash", include_superseded=False)
        assert [c.id for c in current] == [second.count.id]
        assert len(list_counts(store.id, pool="petty_cash")) == 2

    def test_accounts_cannot_count(self, db_session, store, accounts):
        with pytest.raises(AuthorizationError):
            submit_count(
                store_id=store.id, pool="sales_cash", denominations={"10": 1}, counted_by=accounts.id,
            )

    def test_cashier_of_other_store_is_denied(self, db_session, other_store, cashier):
        with pytest.raises(AuthorizationError):
            submit_count(
                store_id=other_store.id, pool="sales_cash", denominations={"10": 1}, counted_by=cashier.id,
            )

    def test_unknown_denomination_is_rejected(self, db_session, store, cashier):
        with pytest.raises(ValidationError):
            submit_count(
                store_id=store.id, pool="sales_cash", denominations={"25": 4}, counted_by=cashier.id,
            )
