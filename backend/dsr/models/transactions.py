from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from dsr.time_utils import to_iso_date, to_utc_z, utcnow


RECONCILIATION_STATUSES = ("pending", "reconciled", "completed")
RECONCILIATION_SOURCES = ("bank", "erp", "cash", "voucher")
TENDER_TYPES = ("cash", "card", "upi", "bank_transfer", "credit", "gift_voucher")


class ReconciliationMixin:
    """
    Shared reconciliation envelope carried by every reconcilable transaction.

    LIFECYCLE: pending -> reconciled -> completed; pending -> completed.
    Transactional fields are editable only while can_edit_transaction allows.
    """

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciliation_source = db.Column(db.String(16), nullable=True)  # bank | erp | cash | voucher
    external_reference = db.Column(db.String(128), nullable=True)
    reconciliation_notes = db.Column(db.Text, nullable=True)

    tender_type = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @declared_attr
    def reconciled_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    @declared_attr
    def created_by_user_id(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    def envelope_dict(self) -> dict:
        return {
            "status": self.status,
            "reconciled_by_user_id": self.reconciled_by_user_id,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "reconciliation_source": self.reconciliation_source,
            "external_reference": self.external_reference,
            "reconciliation_notes": self.reconciliation_notes,
        }

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "tender_type": self.tender_type,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            **self.envelope_dict(),
        }


class Sale(ReconciliationMixin, db.Model):
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_date_status", "store_id", "sale_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    sale_date = db.Column(db.Date, nullable=False)
    amount_paise = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            **self._base_dict(),
            "sale_date": to_iso_date(self.sale_date),
            "amount_paise": self.amount_paise,
            "notes": self.notes,
        }


class Expense(ReconciliationMixin, db.Model):
    """Petty-cash expense. Always paid out of petty cash regardless of tender_type."""
    __tablename__ = "expenses"
    __table_args__ = (
        db.Index("ix_expenses_store_date_status", "store_id", "expense_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    expense_date = db.Column(db.Date, nullable=False)
    amount_paise = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text, nullable=False)

    def to_dict(self) -> dict:
        return {
            **self._base_dict(),
            "expense_date": to_iso_date(self.expense_date),
            "amount_paise": self.amount_paise,
            "category": self.category,
            "description": self.description,
        }


class SaleReturn(ReconciliationMixin, db.Model):
    """Customer return; tender_type is the refund method."""
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_store_date_status", "store_id", "return_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    return_date = db.Column(db.Date, nullable=False)
    return_amount_paise = db.Column(db.Integer, nullable=False)
    original_bill_reference = db.Column(db.String(64), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    customer_name = db.Column(db.String(120), nullable=True)

    def to_dict(self) -> dict:
        return {
            **self._base_dict(),
            "return_date": to_iso_date(self.return_date),
            "return_amount_paise": self.return_amount_paise,
            "original_bill_reference": self.original_bill_reference,
            "reason": self.reason,
            "customer_name": self.customer_name,
        }


class HandBill(ReconciliationMixin, db.Model):
    """Manually written sale recorded outside the POS, converted later."""
    __tablename__ = "hand_bills"
    __table_args__ = (
        db.Index("ix_hand_bills_store_date_status", "store_id", "bill_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    bill_date = db.Column(db.Date, nullable=False)
    bill_number = db.Column(db.String(64), nullable=False)
    total_amount_paise = db.Column(db.Integer, nullable=False)
    customer_name = db.Column(db.String(120), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            **self._base_dict(),
            "bill_date": to_iso_date(self.bill_date),
            "bill_number": self.bill_number,
            "total_amount_paise": self.total_amount_paise,
            "customer_name": self.customer_name,
            "notes": self.notes,
        }


class GiftVoucher(ReconciliationMixin, db.Model):
    """
    Gift voucher sold at a store and redeemable at any store.

    voucher_status is the voucher's own lifecycle (active -> redeemed |
    cancelled), separate from the reconciliation envelope status.
    Redemption is all-or-nothing.
    """
    __tablename__ = "gift_vouchers"
    __table_args__ = (
        db.Index("ix_gift_vouchers_issued_status", "issued_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Store where the voucher was sold; vouchers themselves are not store-scoped
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    voucher_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    issued_date = db.Column(db.Date, nullable=False)
    amount_paise = db.Column(db.Integer, nullable=False)
    customer_name = db.Column(db.String(120), nullable=True)

    voucher_status = db.Column(db.String(16), nullable=False, default="active", index=True)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    redeemed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    redeemed_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            **self._base_dict(),
            "voucher_number": self.voucher_number,
            "issued_date": to_iso_date(self.issued_date),
            "amount_paise": self.amount_paise,
            "customer_name": self.customer_name,
            "voucher_status": self.voucher_status,
            "redeemed_at": to_utc_z(self.redeemed_at),
            "redeemed_by_user_id": self.redeemed_by_user_id,
            "redeemed_store_id": self.redeemed_store_id,
        }


class SalesOrder(ReconciliationMixin, db.Model):
    """Customer order; only the advance is collected up front and reconciled."""
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.Index("ix_sales_orders_store_date_status", "store_id", "order_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    order_date = db.Column(db.Date, nullable=False)
    order_number = db.Column(db.String(64), nullable=False)
    customer_name = db.Column(db.String(120), nullable=True)
    total_amount_paise = db.Column(db.Integer, nullable=False)
    advance_amount_paise = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            **self._base_dict(),
            "order_date": to_iso_date(self.order_date),
            "order_number": self.order_number,
            "customer_name": self.customer_name,
            "total_amount_paise": self.total_amount_paise,
            "advance_amount_paise": self.advance_amount_paise,
            "notes": self.notes,
        }
