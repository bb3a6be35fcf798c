# backend/dsr/services/transaction_service.py
"""
Recording and editing of reconcilable transactions, and gift-voucher redemption.

RULES:
- Only fields in the kind's write policy are accepted (validate_payload).
- Transactional fields are editable while can_edit_transaction allows it:
  pending for everyone with EDIT_TRANSACTION, reconciled for accounts staff,
  completed never.
- Gift vouchers are redeemed in full or not at all.
"""
from __future__ import annotations

from flask import current_app

from ..config import CashPolicy, get_cash_policy
from ..errors import NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import TENDER_TYPES, GiftVoucher
from ..permissions import ACCOUNTS_INCHARGE, can_edit_transaction
from ..time_utils import business_today, utcnow
from ..validation import coerce_paise, require_choice, validate_payload
from .audit_service import append_audit_event
from .cash_position_service import require_store
from .concurrency import claim_status, run_with_retry
from .identity_service import authorize, get_caller_role
from .reconcilables import get_adapter


def _check_fields(adapter, values: dict, *, row=None) -> None:
    """Kind-specific checks that column metadata cannot express."""
    if "tender_type" in values and values["tender_type"] is not None:
        require_choice(values["tender_type"], "tender_type", TENDER_TYPES)

    if adapter.amount_column in values and adapter.kind != "sales_order":
        coerce_paise(values[adapter.amount_column], adapter.amount_column)

    if adapter.kind == "sales_order":
        total = values.get("total_amount_paise", row.total_amount_paise if row is not None else None)
        advance = values.get("advance_amount_paise", row.advance_amount_paise if row is not None else 0) or 0
        coerce_paise(total, "total_amount_paise")
        if advance > total:
            raise ValidationError("advance_amount_paise cannot exceed total_amount_paise")


def record_transaction(
    *,
    kind: str,
    payload: dict,
    recorded_by: int,
):
    """
    Create a pending transaction of `kind` from a client payload.

    Expenses also need RECORD_EXPENSE, which carries an amount ceiling for
    store managers.
    """
    adapter = get_adapter(kind)
    values = validate_payload(model=adapter.model, payload=payload, policy=adapter.create_policy, partial=False)

    store_id = values.get("store_id")
    if store_id is not None:
        require_store(store_id)
    elif adapter.store_scoped:
        raise ValidationError("store_id is required")

    authorize(recorded_by, "RECORD_TRANSACTION", store_id=store_id)
    if kind == "expense":
        values.setdefault("tender_type", "cash")
        authorize(recorded_by, "RECORD_EXPENSE", store_id=store_id, amount_paise=values.get("amount_paise"))

    _check_fields(adapter, values)

    if kind == "gift_voucher":
        exists = db.session.query(GiftVoucher.id).filter_by(voucher_number=values["voucher_number"]).first()
        if exists is not None:
            raise ValidationError(f"Voucher {values['voucher_number']} already exists")

    def _op():
        row = adapter.model(
            **values,
            status="pending",
            created_by_user_id=recorded_by,
            created_at=utcnow(),
        )
        db.session.add(row)
        db.session.flush()

        append_audit_event(
            store_id=row.store_id,
            event_type="transaction.recorded",
            entity_type=kind,
            entity_id=row.id,
            actor_user_id=recorded_by,
            occurred_at=row.created_at,
            payload={"amount_paise": getattr(row, adapter.amount_column)},
        )
        return row

    return run_with_retry(_op)


def update_transaction(
    *,
    kind: str,
    transaction_id: int,
    changes: dict,
    updated_by: int,
    policy: CashPolicy | None = None,
):
    """
    Patch transactional fields. The status seen at check time must still hold
    when the UPDATE runs, otherwise StateConflictError.
    """
    policy = policy or get_cash_policy()
    adapter = get_adapter(kind)
    row = db.session.get(adapter.model, transaction_id)
    if row is None:
        raise NotFoundError(f"{kind} {transaction_id} not found")

    role = get_caller_role(updated_by)
    current = row.status
    authorize(
        updated_by,
        "EDIT_TRANSACTION",
        store_id=row.store_id,
        status=current,
        is_own=row.created_by_user_id == updated_by,
        days_since=(business_today(policy.business_timezone) - getattr(row, adapter.date_column)).days,
    )
    if not can_edit_transaction(current, role):
        raise StateConflictError(f"{kind} {row.id} is {current} and can no longer be edited", current_status=current)

    patch = validate_payload(model=adapter.model, payload=changes, policy=adapter.update_policy, partial=True)
    if not patch:
        raise ValidationError("No changes supplied")
    _check_fields(adapter, patch, row=row)

    # Editing an expense amount needs the same authority as recording it.
    # Accounts staff correct reconciled figures and record no expenses.
    if kind == "expense" and "amount_paise" in patch and role != ACCOUNTS_INCHARGE:
        authorize(updated_by, "RECORD_EXPENSE", store_id=row.store_id, amount_paise=patch["amount_paise"])

    def _op():
        before = {k: getattr(row, k) for k in patch}
        claim_status(adapter.model, row, [current], patch, label=kind)
        append_audit_event(
            store_id=row.store_id,
            event_type="transaction.updated",
            entity_type=kind,
            entity_id=row.id,
            actor_user_id=updated_by,
            payload={
                "status": current,
                "fields": sorted(patch),
                "before": {k: _jsonable(v) for k, v in before.items()},
            },
        )
        return row

    return run_with_retry(_op)


def _jsonable(value):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def redeem_gift_voucher(
    *,
    voucher_id: int,
    amount_paise,
    redeemed_by: int,
    store_id: int | None = None,
) -> GiftVoucher:
    """
    Redeem an active voucher for its full value.

    Partial redemption is refused (unlike transfer/adjustment approval,
    where the approver may change the amount).
    """
    voucher = db.session.get(GiftVoucher, voucher_id)
    if voucher is None:
        raise NotFoundError(f"Gift voucher {voucher_id} not found")
    if store_id is not None:
        require_store(store_id)
    authorize(redeemed_by, "REDEEM_VOUCHER", store_id=store_id)

    amount = coerce_paise(amount_paise, "amount_paise")
    if voucher.voucher_status != "active":
        raise StateConflictError(
            f"Voucher {voucher.voucher_number} is {voucher.voucher_status}",
            current_status=voucher.voucher_status,
        )
    if amount != voucher.amount_paise:
        raise ValidationError(
            f"Partial redemption is not allowed; voucher value is {voucher.amount_paise} paise"
        )

    def _op():
        now = utcnow()
        claim_status(
            GiftVoucher,
            voucher,
            ["active"],
            {
                "voucher_status": "redeemed",
                "redeemed_at": now,
                "redeemed_by_user_id": redeemed_by,
                "redeemed_store_id": store_id,
            },
            label="Gift voucher",
            column="voucher_status",
        )
        append_audit_event(
            store_id=store_id,
            event_type="voucher.redeemed",
            entity_type="gift_voucher",
            entity_id=voucher.id,
            actor_user_id=redeemed_by,
            occurred_at=now,
            payload={"voucher_number": voucher.voucher_number, "amount_paise": amount},
        )
        current_app.logger.info("Voucher %s redeemed by user %s", voucher.voucher_number, redeemed_by)
        return voucher

    return run_with_retry(_op)


def cancel_gift_voucher(*, voucher_id: int, cancelled_by: int, reason: str | None = None) -> GiftVoucher:
    """active -> cancelled. Cancelled vouchers drop out of pending reconciliation and expected cash."""
    voucher = db.session.get(GiftVoucher, voucher_id)
    if voucher is None:
        raise NotFoundError(f"Gift voucher {voucher_id} not found")
    authorize(cancelled_by, "CANCEL_VOUCHER", store_id=voucher.store_id)

    def _op():
        claim_status(
            GiftVoucher,
            voucher,
            ["active"],
            {"voucher_status": "cancelled"},
            label="Gift voucher",
            column="voucher_status",
        )
        append_audit_event(
            store_id=voucher.store_id,
            event_type="voucher.cancelled",
            entity_type="gift_voucher",
            entity_id=voucher.id,
            actor_user_id=cancelled_by,
            note=reason,
        )
        return voucher

    return run_with_retry(_op)
