# Overview: Uniform view over the six reconcilable transaction kinds plus their cash-impact table.

"""
Each kind gets one adapter that knows its model, business-date column,
amount column, description format and which fields clients may write.
The reconciliation and transaction services work only through REGISTRY, so
adding a kind means adding an adapter here.

CASH_IMPACT is the lookup the expected-balance computation uses: which kinds
move which pool, in which direction, and whether only cash tender counts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable

from ..errors import ValidationError
from ..extensions import db
from ..models import Expense, GiftVoucher, HandBill, Sale, SaleReturn, SalesOrder
from ..time_utils import to_iso_date, to_utc_z
from ..validation import ModelValidationPolicy


KINDS = ("sale", "expense", "return", "hand_bill", "gift_voucher", "sales_order")


@dataclass(frozen=True)
class Reconcilable:
    kind: str
    id: int
    amount_paise: int
    business_date: date
    store_id: int | None
    description: str
    tender_type: str | None
    status: str
    created_at: datetime
    envelope: dict

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.id,
            "amount_paise": self.amount_paise,
            "business_date": to_iso_date(self.business_date),
            "store_id": self.store_id,
            "description": self.description,
            "tender_type": self.tender_type,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            **{k: v for k, v in self.envelope.items() if k != "status"},
        }


def _join(*parts) -> str:
    return " - ".join(str(p) for p in parts if p not in (None, ""))


@dataclass(frozen=True)
class KindAdapter:
    kind: str
    model: type
    date_column: str
    amount_column: str
    describe: Callable
    create_policy: ModelValidationPolicy
    update_policy: ModelValidationPolicy
    store_scoped: bool = True

    @property
    def date_attr(self):
        return getattr(self.model, self.date_column)

    @property
    def amount_attr(self):
        return getattr(self.model, self.amount_column)

    def to_reconcilable(self, row) -> Reconcilable:
        return Reconcilable(
            kind=self.kind,
            id=row.id,
            amount_paise=getattr(row, self.amount_column),
            business_date=getattr(row, self.date_column),
            store_id=row.store_id,
            description=self.describe(row),
            tender_type=row.tender_type,
            status=row.status,
            created_at=row.created_at,
            envelope=row.envelope_dict(),
        )

    def pending_query(self, business_date: date, store_ids=None):
        q = db.session.query(self.model).filter(
            self.date_attr == business_date,
            self.model.status == "pending",
        )
        if self.store_scoped and store_ids is not None:
            q = q.filter(self.model.store_id.in_(list(store_ids)))
        return q

    def range_query(self, from_date: date, to_date: date, store_ids=None):
        q = db.session.query(self.model).filter(
            self.date_attr >= from_date,
            self.date_attr <= to_date,
        )
        if self.store_scoped and store_ids is not None:
            q = q.filter(self.model.store_id.in_(list(store_ids)))
        return q


@dataclass(frozen=True)
class GiftVoucherAdapter(KindAdapter):
    """Vouchers are redeemable anywhere: pending listing ignores store scope."""

    store_scoped: bool = field(default=False)

    def pending_query(self, business_date: date, store_ids=None):
        return db.session.query(GiftVoucher).filter(
            GiftVoucher.issued_date == business_date,
            GiftVoucher.status == "pending",
            GiftVoucher.reconciled_at.is_(None),
            GiftVoucher.voucher_status != "cancelled",
        )


def _policy(writable, required=()):
    return ModelValidationPolicy(
        writable_fields=frozenset(writable),
        required_on_create=frozenset(required),
    )


REGISTRY: dict[str, KindAdapter] = {
    "sale": KindAdapter(
        kind="sale",
        model=Sale,
        date_column="sale_date",
        amount_column="amount_paise",
        describe=lambda r: _join("Sale", r.tender_type, r.notes),
        create_policy=_policy(
            {"store_id", "sale_date", "amount_paise", "tender_type", "notes"},
            {"store_id", "sale_date", "amount_paise", "tender_type"},
        ),
        update_policy=_policy({"sale_date", "amount_paise", "tender_type", "notes"}),
    ),
    "expense": KindAdapter(
        kind="expense",
        model=Expense,
        date_column="expense_date",
        amount_column="amount_paise",
        describe=lambda r: _join(r.category, r.description),
        create_policy=_policy(
            {"store_id", "expense_date", "amount_paise", "category", "description", "tender_type"},
            {"store_id", "expense_date", "amount_paise", "category", "description"},
        ),
        update_policy=_policy({"expense_date", "amount_paise", "category", "description", "tender_type"}),
    ),
    "return": KindAdapter(
        kind="return",
        model=SaleReturn,
        date_column="return_date",
        amount_column="return_amount_paise",
        describe=lambda r: _join("Return", r.original_bill_reference, r.reason),
        create_policy=_policy(
            {
                "store_id", "return_date", "return_amount_paise", "original_bill_reference",
                "reason", "customer_name", "tender_type",
            },
            {"store_id", "return_date", "return_amount_paise", "original_bill_reference", "tender_type"},
        ),
        update_policy=_policy(
            {"return_date", "return_amount_paise", "original_bill_reference", "reason", "customer_name", "tender_type"}
        ),
    ),
    "hand_bill": KindAdapter(
        kind="hand_bill",
        model=HandBill,
        date_column="bill_date",
        amount_column="total_amount_paise",
        describe=lambda r: _join("Hand Bill", r.bill_number),
        create_policy=_policy(
            {"store_id", "bill_date", "bill_number", "total_amount_paise", "customer_name", "tender_type", "notes"},
            {"store_id", "bill_date", "bill_number", "total_amount_paise", "tender_type"},
        ),
        update_policy=_policy(
            {"bill_date", "bill_number", "total_amount_paise", "customer_name", "tender_type", "notes"}
        ),
    ),
    "gift_voucher": GiftVoucherAdapter(
        kind="gift_voucher",
        model=GiftVoucher,
        date_column="issued_date",
        amount_column="amount_paise",
        describe=lambda r: _join("Gift Voucher", r.voucher_number),
        create_policy=_policy(
            {"store_id", "voucher_number", "issued_date", "amount_paise", "customer_name", "tender_type"},
            {"voucher_number", "issued_date", "amount_paise", "tender_type"},
        ),
        update_policy=_policy({"issued_date", "amount_paise", "customer_name", "tender_type"}),
    ),
    "sales_order": KindAdapter(
        kind="sales_order",
        model=SalesOrder,
        date_column="order_date",
        amount_column="advance_amount_paise",
        describe=lambda r: _join("Sales Order", r.order_number, r.customer_name),
        create_policy=_policy(
            {
                "store_id", "order_date", "order_number", "customer_name",
                "total_amount_paise", "advance_amount_paise", "tender_type", "notes",
            },
            {"store_id", "order_date", "order_number", "total_amount_paise", "tender_type"},
        ),
        update_policy=_policy(
            {"order_date", "order_number", "customer_name", "total_amount_paise", "advance_amount_paise",
             "tender_type", "notes"}
        ),
    ),
}


def get_adapter(kind: str) -> KindAdapter:
    adapter = REGISTRY.get(kind)
    if adapter is None:
        raise ValidationError(f"kind must be one of: {', '.join(KINDS)}")
    return adapter


@dataclass(frozen=True)
class CashImpact:
    kind: str
    pool: str
    sign: int
    cash_only: bool = True


# Which transactions move which pool's expected amount
CASH_IMPACT: tuple[CashImpact, ...] = (
    CashImpact("sale", "sales_cash", +1),
    CashImpact("hand_bill", "sales_cash", +1),
    CashImpact("sales_order", "sales_cash", +1),
    CashImpact("gift_voucher", "sales_cash", +1),
    CashImpact("return", "sales_cash", -1),
    # Expenses are paid out of petty cash whatever tender_type says
    CashImpact("expense", "petty_cash", -1, cash_only=False),
)


def cash_impacts_for(pool: str) -> list[CashImpact]:
    return [impact for impact in CASH_IMPACT if impact.pool == pool]
