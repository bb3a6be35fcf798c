"""
Concurrency tests against a file-backed SQLite database.

Each worker gets its own app context and DB session, so these exercise real
cross-session behaviour that the shared in-memory database cannot.

Verifies:
- batch reconciliation fans kind groups out to worker threads and still
  reports every item in input order
- a resolution racing a committed resolution of the same record fails with
  StateConflictError and moves no cash
"""

import threading

import pytest

from dsr import create_app
from dsr.config import TestConfig, get_cash_policy
from dsr.errors import StateConflictError
from dsr.extensions import db
from dsr.models import CashMovement, CashTransfer, Expense, HandBill, Sale, Store, User, UserStoreAccess
from dsr.services import adjustment_service, reconciliation_service, transaction_service, transfer_service
from dsr.services.cash_position_service import get_balances
from dsr.time_utils import business_today


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.sqlite3"

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{db_path}"
        RECONCILE_BATCH_WORKERS = 4
        # Writers queue on the file lock instead of failing fast
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """One store, its manager, an accounts user and a super user; ids only."""
    store = Store(code="S1", name="Store One", is_active=True)
    db.session.add(store)
    db.session.flush()

    users = {}
    for username, role in (("manager", "store_manager"), ("accounts", "accounts_incharge"), ("admin", "super_user")):
        user = User(
            username=username,
            full_name=username.title(),
            role=role,
            default_store_id=store.id if role == "store_manager" else None,
            is_active=True,
        )
        db.session.add(user)
        db.session.flush()
        users[username] = user.id
    db.session.add(UserStoreAccess(user_id=users["manager"], store_id=store.id, can_view=True))
    db.session.commit()

    return {"store_id": store.id, **users}


def _in_thread(app, func):
    """Run func in its own thread, app context and session; re-raise its error."""
    errors = []

    def worker():
        with app.app_context():
            try:
                func()
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                errors.append(exc)
            finally:
                db.session.remove()

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    if errors:
        raise errors[0]


def _record(kind, payload, user_id):
    row = transaction_service.record_transaction(kind=kind, payload=payload, recorded_by=user_id)
    db.session.commit()
    return row.id


class TestParallelBatch:

    def test_groups_run_in_workers_and_report_in_order(self, file_app, seeded):
        assert get_cash_policy().reconcile_batch_workers == 4
        store_id, manager = seeded["store_id"], seeded["manager"]
        day = business_today(get_cash_policy().business_timezone).isoformat()

        sale_id = _record(
            "sale", {"store_id": store_id, "sale_date": day, "amount_paise": 1_000_00, "tender_type": "cash"}, manager,
        )
        hand_bill_id = _record(
            "hand_bill",
            {"store_id": store_id, "bill_date": day, "bill_number": "HB-7", "total_amount_paise": 450_00, "tender_type": "upi"},
            manager,
        )
        voucher_id = _record(
            "gift_voucher",
            {"store_id": store_id, "voucher_number": "GV-7", "issued_date": day, "amount_paise": 500_00, "tender_type": "cash"},
            manager,
        )
        expense_id = _record(
            "expense",
            {"store_id": store_id, "expense_date": day, "amount_paise": 250_00, "category": "Supplies", "description": "Tea"},
            manager,
        )

        results = reconciliation_service.reconcile_batch(
            [
                {"kind": "sale", "id": sale_id, "source": "cash"},
                {"kind": "hand_bill", "id": hand_bill_id},
                {"kind": "gift_voucher", "id": voucher_id},
                {"kind": "sale", "id": 999999},
                {"kind": "expense", "id": expense_id},
            ],
            reconciled_by=manager,
        )

        assert [(r.kind, r.transaction_id) for r in results] == [
            ("sale", sale_id),
            ("hand_bill", hand_bill_id),
            ("gift_voucher", voucher_id),
            ("sale", 999999),
            ("expense", expense_id),
        ]
        assert [r.ok for r in results] == [True, True, True, False, True]
        assert results[3].error["code"] == "NOT_FOUND"

        # Worker sessions committed; read back through a fresh one
        db.session.remove()
        assert db.session.get(Sale, sale_id).status == "reconciled"
        assert db.session.get(HandBill, hand_bill_id).status == "reconciled"
        assert db.session.get(Expense, expense_id).status == "reconciled"


class TestRacingResolutions:

    def _funded_transfer(self, seeded, amount):
        store_id = seeded["store_id"]
        setup = adjustment_service.request_adjustment(
            store_id=store_id,
            pool="sales_cash",
            adjustment_type="initial_setup",
            amount_paise=10_000_00,
            reason="Opening balance",
            requested_by=seeded["admin"],
        )
        db.session.commit()
        adjustment_service.approve_adjustment(adjustment_id=setup.id, approved_by=seeded["accounts"])
        adjustment_service.apply_adjustment(adjustment_id=setup.id, applied_by=seeded["accounts"])
        db.session.commit()

        transfer = transfer_service.request_transfer(
            store_id=store_id, amount_paise=amount, reason="Top-up", requested_by=seeded["manager"],
        )
        db.session.commit()
        return transfer.id

    def test_approve_after_committed_reject(self, file_app, seeded):
        transfer_id = self._funded_transfer(seeded, 1_000_00)

        # This session still sees the transfer as pending
        stale = db.session.get(CashTransfer, transfer_id)
        assert stale.status == "pending"

        _in_thread(
            file_app,
            lambda: transfer_service.reject_transfer(
                transfer_id=transfer_id, rejected_by=seeded["admin"], notes="Not needed",
            ),
        )

        with pytest.raises(StateConflictError) as exc:
            transfer_service.approve_transfer(transfer_id=transfer_id, approved_by=seeded["accounts"])
        db.session.rollback()

        assert exc.value.current_status == "rejected"
        assert get_balances(seeded["store_id"]) == {"sales_cash": 10_000_00, "petty_cash": 0}
        movements = db.session.query(CashMovement).filter_by(source_type="cash_transfer", source_id=transfer_id)
        assert movements.count() == 0

    def test_reconcile_after_committed_reconcile(self, file_app, seeded):
        day = business_today(get_cash_policy().business_timezone).isoformat()
        sale_id = _record(
            "sale",
            {"store_id": seeded["store_id"], "sale_date": day, "amount_paise": 700_00, "tender_type": "card"},
            seeded["manager"],
        )
        stale = db.session.get(Sale, sale_id)
        assert stale.status == "pending"

        _in_thread(
            file_app,
            lambda: reconciliation_service.reconcile(
                kind="sale", transaction_id=sale_id, reconciled_by=seeded["accounts"], source="bank",
            ),
        )

        with pytest.raises(StateConflictError) as exc:
            reconciliation_service.reconcile(kind="sale", transaction_id=sale_id, reconciled_by=seeded["manager"])
        db.session.rollback()

        assert exc.value.current_status == "reconciled"
        db.session.expire_all()
        assert db.session.get(Sale, sale_id).reconciled_by_user_id == seeded["accounts"]
