from __future__ import annotations

from sqlalchemy import text

from ..extensions import db
from dsr.time_utils import to_iso_date, to_utc_z, utcnow


POOLS = ("sales_cash", "petty_cash")


class CashPool(db.Model):
    """
    One cash holding area of a store.

    balance_paise is a materialized sum of the pool's CashMovement rows and is
    only written by cash_position_service.apply_movement, in the same
    transaction as the movement it reflects.
    """
    __tablename__ = "cash_pools"
    __table_args__ = (
        db.UniqueConstraint("store_id", "pool", name="uq_cash_pools_store_pool"),
        db.CheckConstraint("balance_paise >= 0", name="ck_cash_pools_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    pool = db.Column(db.String(16), nullable=False)  # sales_cash | petty_cash

    balance_paise = db.Column(db.Integer, nullable=False, default=0)

    # Petty cash only; NULL falls back to the configured default
    low_balance_threshold_paise = db.Column(db.Integer, nullable=True)

    initialized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    store = db.relationship("Store", backref=db.backref("cash_pools", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CashPool store_id={self.store_id} pool={self.pool} balance={self.balance_paise}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "pool": self.pool,
            "balance_paise": self.balance_paise,
            "low_balance_threshold_paise": self.low_balance_threshold_paise,
            "initialized_at": to_utc_z(self.initialized_at),
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class CashMovement(db.Model):
    """
    Append-only balance event. The only rows that change a pool balance.

    amount_paise is signed: positive credits the pool, negative debits it.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_store_pool_occurred", "store_id", "pool", "occurred_at"),
        db.Index("ix_cash_movements_source", "source_type", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    pool = db.Column(db.String(16), nullable=False)

    amount_paise = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(16), nullable=False)  # transfer_out | transfer_in | adjustment

    # cash_transfer | cash_adjustment
    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.Integer, nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    balance_after_paise = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "pool": self.pool,
            "amount_paise": self.amount_paise,
            "movement_type": self.movement_type,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "balance_after_paise": self.balance_after_paise,
        }


class CashCount(db.Model):
    """
    Physical denomination count of one pool on one business day.

    IMMUTABLE: a recount inserts a new row pointing at the one it supersedes.
    A count never changes the pool balance; it records what was found.
    """
    __tablename__ = "cash_counts"
    __table_args__ = (
        db.Index("ix_cash_counts_store_pool_date", "store_id", "pool", "count_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    pool = db.Column(db.String(16), nullable=False)
    count_date = db.Column(db.Date, nullable=False)

    # {"500": 3, "100": 2}; face values in rupees
    denominations = db.Column(db.JSON, nullable=False)

    total_counted_paise = db.Column(db.Integer, nullable=False)
    expected_amount_paise = db.Column(db.Integer, nullable=False)
    variance_paise = db.Column(db.Integer, nullable=False)
    variance_level = db.Column(db.String(16), nullable=False)  # ok | warning | critical
    variance_acknowledged = db.Column(db.Boolean, nullable=False, default=False)

    supersedes_count_id = db.Column(db.Integer, db.ForeignKey("cash_counts.id"), nullable=True)

    counted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    counted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "pool": self.pool,
            "count_date": to_iso_date(self.count_date),
            "denominations": self.denominations,
            "total_counted_paise": self.total_counted_paise,
            "expected_amount_paise": self.expected_amount_paise,
            "variance_paise": self.variance_paise,
            "variance_level": self.variance_level,
            "variance_acknowledged": self.variance_acknowledged,
            "supersedes_count_id": self.supersedes_count_id,
            "counted_by_user_id": self.counted_by_user_id,
            "counted_at": to_utc_z(self.counted_at),
            "notes": self.notes,
        }


class CashDeposit(db.Model):
    """
    Bank deposit taken out of sales cash.

    Lowers the expected sales-cash amount for its day; never touches the
    materialized pool balance.
    """
    __tablename__ = "cash_deposits"
    __table_args__ = (
        db.Index("ix_cash_deposits_store_date", "store_id", "deposit_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    deposit_date = db.Column(db.Date, nullable=False)
    amount_paise = db.Column(db.Integer, nullable=False)

    deposit_slip_number = db.Column(db.String(64), nullable=True)
    bank_name = db.Column(db.String(120), nullable=True)

    deposited_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    deposited_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    cash_count_id = db.Column(db.Integer, db.ForeignKey("cash_counts.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "deposit_date": to_iso_date(self.deposit_date),
            "amount_paise": self.amount_paise,
            "deposit_slip_number": self.deposit_slip_number,
            "bank_name": self.bank_name,
            "deposited_by_user_id": self.deposited_by_user_id,
            "deposited_at": to_utc_z(self.deposited_at),
            "cash_count_id": self.cash_count_id,
            "notes": self.notes,
        }


class CashTransfer(db.Model):
    """
    Request to move cash from sales_cash to petty_cash within one store.

    LIFECYCLE: pending -> approved | rejected (both terminal).
    Resolved exactly once; never deleted.
    """
    __tablename__ = "cash_transfers"
    __table_args__ = (
        db.Index("ix_cash_transfers_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    requested_amount_paise = db.Column(db.Integer, nullable=False)
    approved_amount_paise = db.Column(db.Integer, nullable=True)
    # approved - requested; set on approval, 0 when approved in full
    approval_variance_paise = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(8), nullable=False, default="low")  # low | medium | high

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)

    # Pool balances when the request was made
    sales_cash_balance_paise = db.Column(db.Integer, nullable=False)
    petty_cash_balance_paise = db.Column(db.Integer, nullable=False)

    store = db.relationship("Store")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "requested_amount_paise": self.requested_amount_paise,
            "approved_amount_paise": self.approved_amount_paise,
            "approval_variance_paise": self.approval_variance_paise,
            "reason": self.reason,
            "priority": self.priority,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at),
            "approval_notes": self.approval_notes,
            "sales_cash_balance_paise": self.sales_cash_balance_paise,
            "petty_cash_balance_paise": self.petty_cash_balance_paise,
        }


class CashAdjustment(db.Model):
    """
    Non-transfer change to a single pool.

    LIFECYCLE: pending -> approved | rejected; approved -> completed once the
    movement has been written. approved-but-not-completed rows are visible
    through list_unapplied_adjustments.

    Amounts are stored as magnitudes with a direction fixed at request time;
    final_amount_paise carries the sign (negative for loss).
    """
    __tablename__ = "cash_adjustments"
    __table_args__ = (
        db.Index("ix_cash_adjustments_store_pool_status", "store_id", "pool", "status"),
        # At most one live initial_setup per pool; a rejected one frees the slot
        db.Index(
            "uq_cash_adjustments_initial_setup",
            "store_id",
            "pool",
            unique=True,
            sqlite_where=text("adjustment_type = 'initial_setup' AND status <> 'rejected'"),
            postgresql_where=text("adjustment_type = 'initial_setup' AND status <> 'rejected'"),
        ),
        db.CheckConstraint("direction IN (-1, 1)", name="ck_cash_adjustments_direction"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    pool = db.Column(db.String(16), nullable=False)

    # initial_setup | correction | injection | loss
    adjustment_type = db.Column(db.String(16), nullable=False)
    direction = db.Column(db.Integer, nullable=False)

    requested_amount_paise = db.Column(db.Integer, nullable=False)
    approved_amount_paise = db.Column(db.Integer, nullable=True)
    final_amount_paise = db.Column(db.Integer, nullable=False)
    approval_variance_paise = db.Column(db.Integer, nullable=True)

    reason = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(8), nullable=False, default="low")

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    applied_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.Text, nullable=True)

    # Pool balance when the request was made
    balance_snapshot_paise = db.Column(db.Integer, nullable=False)

    store = db.relationship("Store")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "pool": self.pool,
            "adjustment_type": self.adjustment_type,
            "direction": self.direction,
            "requested_amount_paise": self.requested_amount_paise,
            "approved_amount_paise": self.approved_amount_paise,
            "final_amount_paise": self.final_amount_paise,
            "approval_variance_paise": self.approval_variance_paise,
            "reason": self.reason,
            "priority": self.priority,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "applied_by_user_id": self.applied_by_user_id,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at),
            "applied_at": to_utc_z(self.applied_at),
            "approval_notes": self.approval_notes,
            "balance_snapshot_paise": self.balance_snapshot_paise,
        }
