# backend/dsr/services/cash_position_service.py
"""
Cash position of a store's two pools (sales_cash, petty_cash).

WHY: One place answers "what is in pool P now" and "what should be in pool P
on day D", and one function (apply_movement) is allowed to change a balance.

INVARIANTS:
- CashPool.balance_paise == sum(CashMovement.amount_paise) for that pool.
- Only transfer approval and adjustment application write movements.
- Counts and deposits never touch balance_paise; they only feed the
  expected-amount computation.
- A balance never goes below zero.

Expected amount for (store, pool, day D):
    baseline  = latest count of the pool with count_date < D (0 if none)
    expected  = baseline
              + pool movements after the baseline day through D
              + cash-affecting transactions in the same window (CASH_IMPACT)
              - deposits in the same window (sales_cash only)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func

from ..config import CashPolicy, get_cash_policy
from ..errors import InsufficientBalanceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import (
    POOLS,
    CashAdjustment,
    CashCount,
    CashDeposit,
    CashMovement,
    CashPool,
    CashTransfer,
    GiftVoucher,
    Store,
)
from ..time_utils import business_day_start_utc, business_today, to_iso_date, utcnow
from ..validation import coerce_paise, optional_text
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .identity_service import authorize
from .reconcilables import cash_impacts_for, get_adapter


VARIANCE_OK = "ok"
VARIANCE_WARNING = "warning"
VARIANCE_CRITICAL = "critical"


def require_pool(pool: str) -> str:
    if pool not in POOLS:
        raise ValidationError(f"pool must be one of: {', '.join(POOLS)}")
    return pool


def require_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id) if store_id is not None else None
    if store is None:
        raise NotFoundError(f"Store {store_id} not found")
    return store


def get_pool(store_id: int, pool: str) -> CashPool | None:
    return db.session.query(CashPool).filter_by(store_id=store_id, pool=pool).first()


def _get_or_create_pool_locked(store_id: int, pool: str) -> CashPool:
    row = lock_for_update(
        db.session.query(CashPool).filter_by(store_id=store_id, pool=pool)
    ).first()
    if row is None:
        row = CashPool(store_id=store_id, pool=pool, balance_paise=0)
        db.session.add(row)
        db.session.flush()
    return row


def get_current_balance(store_id: int, pool: str) -> int:
    """Materialized balance; 0 when the pool has never moved. Read-only."""
    require_pool(pool)
    row = get_pool(store_id, pool)
    return row.balance_paise if row is not None else 0


def get_balances(store_id: int) -> dict[str, int]:
    return {pool: get_current_balance(store_id, pool) for pool in POOLS}


# -- expected amount --

@dataclass(frozen=True)
class ExpectedBalance:
    store_id: int
    pool: str
    business_date: date
    baseline_paise: int
    baseline_count_id: Optional[int]
    baseline_date: Optional[date]
    movements_paise: int
    transactions_paise: int
    deposits_paise: int

    @property
    def expected_paise(self) -> int:
        return self.baseline_paise + self.movements_paise + self.transactions_paise - self.deposits_paise

    def to_dict(self) -> dict:
        data = asdict(self)
        data["business_date"] = to_iso_date(self.business_date)
        data["baseline_date"] = to_iso_date(self.baseline_date)
        data["expected_paise"] = self.expected_paise
        return data


def latest_count_before(store_id: int, pool: str, business_date: date) -> CashCount | None:
    """Latest count strictly before `business_date`; same-day recounts resolve to the newest row."""
    return (
        db.session.query(CashCount)
        .filter(
            CashCount.store_id == store_id,
            CashCount.pool == pool,
            CashCount.count_date < business_date,
        )
        .order_by(CashCount.count_date.desc(), CashCount.id.desc())
        .first()
    )


def _sum_movements(store_id: int, pool: str, since: datetime | None, business_date: date, tz: str) -> int:
    q = db.session.query(func.coalesce(func.sum(CashMovement.amount_paise), 0)).filter(
        CashMovement.store_id == store_id,
        CashMovement.pool == pool,
        CashMovement.occurred_at < business_day_start_utc(business_date + timedelta(days=1), tz),
    )
    if since is not None:
        q = q.filter(CashMovement.occurred_at > since)
    return int(q.scalar() or 0)


def _movements_since(baseline: CashCount, tz: str) -> datetime:
    """
    Movements after the count instant are not in the counted cash. A count
    entered after its business day closed still covers that whole day.
    """
    day_end = business_day_start_utc(baseline.count_date + timedelta(days=1), tz)
    counted_at = baseline.counted_at
    if counted_at is None:
        return day_end
    if counted_at.tzinfo is not None:
        counted_at = counted_at.astimezone(timezone.utc).replace(tzinfo=None)
    return min(counted_at, day_end)


def _sum_transactions(store_id: int, pool: str, window_start: date | None, business_date: date) -> int:
    total = 0
    for impact in cash_impacts_for(pool):
        adapter = get_adapter(impact.kind)
        model = adapter.model
        q = db.session.query(func.coalesce(func.sum(adapter.amount_attr), 0)).filter(
            model.store_id == store_id,
            adapter.date_attr <= business_date,
        )
        if window_start is not None:
            q = q.filter(adapter.date_attr >= window_start)
        if impact.cash_only:
            q = q.filter(model.tender_type == "cash")
        if model is GiftVoucher:
            q = q.filter(GiftVoucher.voucher_status != "cancelled")
        total += impact.sign * int(q.scalar() or 0)
    return total


def _sum_deposits(store_id: int, window_start: date | None, business_date: date) -> int:
    q = db.session.query(func.coalesce(func.sum(CashDeposit.amount_paise), 0)).filter(
        CashDeposit.store_id == store_id,
        CashDeposit.deposit_date <= business_date,
    )
    if window_start is not None:
        q = q.filter(CashDeposit.deposit_date >= window_start)
    return int(q.scalar() or 0)


def compute_expected_balance(
    store_id: int,
    pool: str,
    business_date: date | None = None,
    *,
    policy: CashPolicy | None = None,
) -> ExpectedBalance:
    require_pool(pool)
    policy = policy or get_cash_policy()
    business_date = business_date or business_today(policy.business_timezone)

    baseline = latest_count_before(store_id, pool, business_date)
    window_start = baseline.count_date + timedelta(days=1) if baseline else None

    return ExpectedBalance(
        store_id=store_id,
        pool=pool,
        business_date=business_date,
        baseline_paise=baseline.total_counted_paise if baseline else 0,
        baseline_count_id=baseline.id if baseline else None,
        baseline_date=baseline.count_date if baseline else None,
        movements_paise=_sum_movements(
            store_id,
            pool,
            _movements_since(baseline, policy.business_timezone) if baseline else None,
            business_date,
            policy.business_timezone,
        ),
        transactions_paise=_sum_transactions(store_id, pool, window_start, business_date),
        deposits_paise=_sum_deposits(store_id, window_start, business_date) if pool == "sales_cash" else 0,
    )


def get_expected_balance(
    store_id: int,
    pool: str,
    business_date: date | None = None,
    *,
    policy: CashPolicy | None = None,
) -> int:
    return compute_expected_balance(store_id, pool, business_date, policy=policy).expected_paise


def classify_variance(pool: str, variance_paise: int | None, policy: CashPolicy | None = None) -> str:
    """ok | warning | critical. Critical wins; warning is strictly above the pool's threshold."""
    if variance_paise is None:
        return VARIANCE_OK
    policy = policy or get_cash_policy()
    magnitude = abs(variance_paise)
    if magnitude >= policy.critical_variance_paise:
        return VARIANCE_CRITICAL
    if magnitude > policy.warning_variance_paise(pool):
        return VARIANCE_WARNING
    return VARIANCE_OK


# -- balance mutation --

def apply_movement(
    *,
    store_id: int,
    pool: str,
    amount_paise: int,
    movement_type: str,
    source_type: str,
    source_id: int,
    actor_user_id: int | None,
) -> CashMovement:
    """
    Append a movement and update the materialized balance in the caller's
    transaction. Raises InsufficientBalanceError (nothing written) when the
    result would be negative.

    Callers run inside run_with_retry; a concurrent writer on the same pool
    surfaces as StaleDataError through version_id and is retried there.
    """
    require_pool(pool)
    row = _get_or_create_pool_locked(store_id, pool)

    new_balance = row.balance_paise + amount_paise
    if new_balance < 0:
        raise InsufficientBalanceError(
            f"Insufficient {pool} balance",
            current_balance_paise=row.balance_paise,
            requested_paise=abs(amount_paise),
        )

    now = utcnow()
    row.balance_paise = new_balance
    if row.initialized_at is None:
        row.initialized_at = now

    movement = CashMovement(
        store_id=store_id,
        pool=pool,
        amount_paise=amount_paise,
        movement_type=movement_type,
        source_type=source_type,
        source_id=source_id,
        actor_user_id=actor_user_id,
        occurred_at=now,
        balance_after_paise=new_balance,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def verify_pool_balance(store_id: int, pool: str) -> dict:
    """Recompute the balance from movements and report drift against the materialized value."""
    require_pool(pool)
    computed = int(
        db.session.query(func.coalesce(func.sum(CashMovement.amount_paise), 0))
        .filter(CashMovement.store_id == store_id, CashMovement.pool == pool)
        .scalar()
        or 0
    )
    materialized = get_current_balance(store_id, pool)
    return {
        "store_id": store_id,
        "pool": pool,
        "materialized_paise": materialized,
        "computed_paise": computed,
        "drift_paise": materialized - computed,
        "ok": materialized == computed,
    }


# -- read models --

def petty_cash_threshold(store_id: int, policy: CashPolicy | None = None) -> int:
    policy = policy or get_cash_policy()
    row = get_pool(store_id, "petty_cash")
    if row is not None and row.low_balance_threshold_paise is not None:
        return row.low_balance_threshold_paise
    return policy.petty_cash_low_balance_paise


def _latest_count(store_id: int, pool: str) -> CashCount | None:
    return (
        db.session.query(CashCount)
        .filter_by(store_id=store_id, pool=pool)
        .order_by(CashCount.count_date.desc(), CashCount.id.desc())
        .first()
    )


def get_cash_summary(store_id: int, *, policy: CashPolicy | None = None) -> dict:
    require_store(store_id)
    policy = policy or get_cash_policy()
    balances = get_balances(store_id)
    threshold = petty_cash_threshold(store_id, policy)

    latest = {}
    for pool in POOLS:
        count = _latest_count(store_id, pool)
        latest[pool] = count.to_dict() if count else None

    pending_transfers = (
        db.session.query(func.count(CashTransfer.id))
        .filter_by(store_id=store_id, status="pending")
        .scalar()
    )
    pending_adjustments = (
        db.session.query(func.count(CashAdjustment.id))
        .filter_by(store_id=store_id, status="pending")
        .scalar()
    )
    unapplied_adjustments = (
        db.session.query(func.count(CashAdjustment.id))
        .filter_by(store_id=store_id, status="approved")
        .scalar()
    )

    return {
        "store_id": store_id,
        "sales_cash_balance_paise": balances["sales_cash"],
        "petty_cash_balance_paise": balances["petty_cash"],
        "total_cash_paise": balances["sales_cash"] + balances["petty_cash"],
        "petty_cash_low_balance_threshold_paise": threshold,
        "petty_cash_low": balances["petty_cash"] < threshold,
        "latest_counts": latest,
        "pending_transfers": int(pending_transfers or 0),
        "pending_adjustments": int(pending_adjustments or 0),
        "unapplied_adjustments": int(unapplied_adjustments or 0),
    }


def get_cash_activity(store_id: int, *, limit: int = 20) -> list[dict]:
    """Recent counts, transfers and adjustments merged newest first."""
    require_store(store_id)
    limit = max(1, min(int(limit), 200))

    items: list[tuple] = []
    for count in (
        db.session.query(CashCount).filter_by(store_id=store_id)
        .order_by(CashCount.counted_at.desc()).limit(limit).all()
    ):
        items.append((count.counted_at, "count", count.to_dict()))
    for transfer in (
        db.session.query(CashTransfer).filter_by(store_id=store_id)
        .order_by(CashTransfer.requested_at.desc()).limit(limit).all()
    ):
        items.append((transfer.requested_at, "transfer", transfer.to_dict()))
    for adjustment in (
        db.session.query(CashAdjustment).filter_by(store_id=store_id)
        .order_by(CashAdjustment.requested_at.desc()).limit(limit).all()
    ):
        items.append((adjustment.requested_at, "adjustment", adjustment.to_dict()))

    items.sort(key=lambda item: item[0], reverse=True)
    return [{"activity_type": kind, **payload} for _, kind, payload in items[:limit]]


# -- deposits --

def record_deposit(
    *,
    store_id: int,
    amount_paise,
    deposited_by: int,
    deposit_date: date | None = None,
    deposit_slip_number: str | None = None,
    bank_name: str | None = None,
    cash_count_id: int | None = None,
    notes: str | None = None,
    policy: CashPolicy | None = None,
) -> CashDeposit:
    """
    Record a bank deposit out of sales cash. Lowers the expected sales-cash
    amount from deposit_date on; the materialized balance is untouched.
    """
    policy = policy or get_cash_policy()
    require_store(store_id)
    authorize(deposited_by, "RECORD_DEPOSIT", store_id=store_id)

    amount = coerce_paise(amount_paise, "amount_paise")
    slip = optional_text(deposit_slip_number, "deposit_slip_number", max_length=64)
    bank = optional_text(bank_name, "bank_name", max_length=120)

    if cash_count_id is not None:
        count = db.session.get(CashCount, cash_count_id)
        if count is None or count.store_id != store_id or count.pool != "sales_cash":
            raise ValidationError("cash_count_id must reference a sales_cash count of this store")

    def _op():
        deposit = CashDeposit(
            store_id=store_id,
            deposit_date=deposit_date or business_today(policy.business_timezone),
            amount_paise=amount,
            deposit_slip_number=slip,
            bank_name=bank,
            deposited_by_user_id=deposited_by,
            deposited_at=utcnow(),
            cash_count_id=cash_count_id,
            notes=optional_text(notes, "notes"),
        )
        db.session.add(deposit)
        db.session.flush()

        append_audit_event(
            store_id=store_id,
            event_type="deposit.recorded",
            entity_type="cash_deposit",
            entity_id=deposit.id,
            actor_user_id=deposited_by,
            occurred_at=deposit.deposited_at,
            note=slip,
            payload={"amount_paise": amount, "bank_name": bank},
        )
        return deposit

    return run_with_retry(_op)


def list_deposits(
    store_id: int,
    *,
    from_date: date | None = None,
    to_date: date | None = None,
    limit: int = 100,
) -> list[CashDeposit]:
    q = db.session.query(CashDeposit).filter(CashDeposit.store_id == store_id)
    if from_date is not None:
        q = q.filter(CashDeposit.deposit_date >= from_date)
    if to_date is not None:
        q = q.filter(CashDeposit.deposit_date <= to_date)
    return q.order_by(CashDeposit.deposit_date.desc(), CashDeposit.id.desc()).limit(limit).all()
