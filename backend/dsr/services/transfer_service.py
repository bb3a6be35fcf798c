# backend/dsr/services/transfer_service.py
"""
Sales-cash to petty-cash transfer workflow.

WHY: Petty cash is topped up from the day's sales cash, but only after an
approver signs off on the amount.

LIFECYCLE:
1. pending: requested by store staff; nothing moves
2. approved: approver fixed the amount (may differ from the request);
   sales_cash debited and petty_cash credited in the same transaction
3. rejected: closed with notes; nothing moves

Both approved and rejected are terminal. The pending -> resolved step is a
conditional UPDATE, so of two concurrent resolutions exactly one wins and
the other gets StateConflictError.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..config import CashPolicy, get_cash_policy
from ..errors import InsufficientBalanceError, NotFoundError, ValidationError
from ..extensions import db
from ..models import CashTransfer
from ..time_utils import utcnow
from ..validation import coerce_paise, optional_text, require_text
from .audit_service import append_audit_event
from .cash_position_service import apply_movement, get_current_balance, require_store
from .concurrency import claim_status, run_with_retry
from .identity_service import authorize
from .priority import age_hours, derive_priority, effective_priority, priority_sort_key


TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_APPROVED = "approved"
TRANSFER_STATUS_REJECTED = "rejected"

SOURCE_POOL = "sales_cash"
DESTINATION_POOL = "petty_cash"


def get_transfer(transfer_id: int) -> CashTransfer:
    transfer = db.session.get(CashTransfer, transfer_id)
    if transfer is None:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def request_transfer(
    *,
    store_id: int,
    amount_paise,
    reason: str,
    requested_by: int,
    policy: CashPolicy | None = None,
) -> CashTransfer:
    """
    Create a pending transfer.

    The amount must be available in sales cash right now, read from the
    stored balance rather than trusted from the caller.
    """
    policy = policy or get_cash_policy()
    require_store(store_id)
    authorize(requested_by, "REQUEST_TRANSFER", store_id=store_id)

    amount = coerce_paise(amount_paise, "amount_paise")
    reason_text = require_text(reason, "reason")

    def _op():
        sales_balance = get_current_balance(store_id, SOURCE_POOL)
        petty_balance = get_current_balance(store_id, DESTINATION_POOL)
        if sales_balance < amount:
            raise InsufficientBalanceError(
                "Requested amount exceeds available sales cash",
                current_balance_paise=sales_balance,
                requested_paise=amount,
            )

        transfer = CashTransfer(
            store_id=store_id,
            requested_amount_paise=amount,
            reason=reason_text,
            priority=derive_priority(amount, policy),
            status=TRANSFER_STATUS_PENDING,
            requested_by_user_id=requested_by,
            requested_at=utcnow(),
            sales_cash_balance_paise=sales_balance,
            petty_cash_balance_paise=petty_balance,
        )
        db.session.add(transfer)
        db.session.flush()

        append_audit_event(
            store_id=store_id,
            event_type="transfer.requested",
            entity_type="cash_transfer",
            entity_id=transfer.id,
            actor_user_id=requested_by,
            occurred_at=transfer.requested_at,
            note=reason_text,
            payload={"requested_amount_paise": amount, "priority": transfer.priority},
        )
        return transfer

    return run_with_retry(_op)


def approve_transfer(
    *,
    transfer_id: int,
    approved_by: int,
    approved_amount_paise=None,
    notes: str | None = None,
) -> CashTransfer:
    """
    Resolve pending -> approved and move the APPROVED amount (defaults to the
    requested amount) from sales_cash to petty_cash.

    Raises:
        AuthorizationError, NotFoundError, ValidationError
        StateConflictError: transfer already resolved
        InsufficientBalanceError: sales cash cannot cover the approved amount
    """
    transfer = get_transfer(transfer_id)
    authorize(approved_by, "APPROVE_TRANSFER", store_id=transfer.store_id)

    if approved_amount_paise is None:
        approved = transfer.requested_amount_paise
    else:
        approved = coerce_paise(approved_amount_paise, "approved_amount_paise")
    notes_text = optional_text(notes, "notes")

    def _op():
        # Balance check before the status claim so a refusal writes nothing
        available = get_current_balance(transfer.store_id, SOURCE_POOL)
        if available < approved:
            raise InsufficientBalanceError(
                "Approved amount exceeds available sales cash",
                current_balance_paise=available,
                requested_paise=approved,
            )

        now = utcnow()
        claim_status(
            CashTransfer,
            transfer,
            [TRANSFER_STATUS_PENDING],
            {
                "status": TRANSFER_STATUS_APPROVED,
                "approved_amount_paise": approved,
                "approval_variance_paise": approved - transfer.requested_amount_paise,
                "approved_by_user_id": approved_by,
                "approved_at": now,
                "approval_notes": notes_text,
            },
            label="Transfer",
        )

        apply_movement(
            store_id=transfer.store_id,
            pool=SOURCE_POOL,
            amount_paise=-approved,
            movement_type="transfer_out",
            source_type="cash_transfer",
            source_id=transfer.id,
            actor_user_id=approved_by,
        )
        apply_movement(
            store_id=transfer.store_id,
            pool=DESTINATION_POOL,
            amount_paise=approved,
            movement_type="transfer_in",
            source_type="cash_transfer",
            source_id=transfer.id,
            actor_user_id=approved_by,
        )

        append_audit_event(
            store_id=transfer.store_id,
            event_type="transfer.approved",
            entity_type="cash_transfer",
            entity_id=transfer.id,
            actor_user_id=approved_by,
            occurred_at=now,
            note=notes_text,
            payload={
                "requested_amount_paise": transfer.requested_amount_paise,
                "approved_amount_paise": approved,
                "approval_variance_paise": transfer.approval_variance_paise,
            },
        )
        current_app.logger.info(
            "Transfer %s approved by user %s: requested=%s approved=%s",
            transfer.id, approved_by, transfer.requested_amount_paise, approved,
        )
        return transfer

    return run_with_retry(_op)


def reject_transfer(*, transfer_id: int, rejected_by: int, notes: str) -> CashTransfer:
    """Resolve pending -> rejected. Notes are required; no balance changes."""
    transfer = get_transfer(transfer_id)
    authorize(rejected_by, "APPROVE_TRANSFER", store_id=transfer.store_id)
    notes_text = require_text(notes, "notes")

    def _op():
        now = utcnow()
        claim_status(
            CashTransfer,
            transfer,
            [TRANSFER_STATUS_PENDING],
            {
                "status": TRANSFER_STATUS_REJECTED,
                "approved_by_user_id": rejected_by,
                "approved_at": now,
                "approval_notes": notes_text,
            },
            label="Transfer",
        )
        append_audit_event(
            store_id=transfer.store_id,
            event_type="transfer.rejected",
            entity_type="cash_transfer",
            entity_id=transfer.id,
            actor_user_id=rejected_by,
            occurred_at=now,
            note=notes_text,
        )
        current_app.logger.info("Transfer %s rejected by user %s", transfer.id, rejected_by)
        return transfer

    return run_with_retry(_op)


def transfer_to_dict(transfer: CashTransfer, *, policy: CashPolicy | None = None, now: datetime | None = None) -> dict:
    policy = policy or get_cash_policy()
    data = transfer.to_dict()
    if transfer.status == TRANSFER_STATUS_PENDING:
        data["effective_priority"] = effective_priority(transfer.priority, transfer.requested_at, policy, now)
        data["age_hours"] = round(age_hours(transfer.requested_at, now), 1)
    else:
        data["effective_priority"] = transfer.priority
    return data


def list_transfers(
    *,
    store_ids: list[int] | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[CashTransfer]:
    """Newest first. store_ids=None means every store."""
    q = db.session.query(CashTransfer)
    if store_ids is not None:
        q = q.filter(CashTransfer.store_id.in_(store_ids))
    if status is not None:
        if status not in (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED):
            raise ValidationError("status must be one of: pending, approved, rejected")
        q = q.filter(CashTransfer.status == status)
    return q.order_by(CashTransfer.requested_at.desc(), CashTransfer.id.desc()).limit(limit).all()


def list_pending_transfers(
    *,
    store_ids: list[int] | None = None,
    policy: CashPolicy | None = None,
    now: datetime | None = None,
) -> list[CashTransfer]:
    """Approval queue: highest effective priority first, then oldest."""
    policy = policy or get_cash_policy()
    q = db.session.query(CashTransfer).filter(CashTransfer.status == TRANSFER_STATUS_PENDING)
    if store_ids is not None:
        q = q.filter(CashTransfer.store_id.in_(store_ids))
    rows = q.all()
    return sorted(
        rows,
        key=lambda t: priority_sort_key(effective_priority(t.priority, t.requested_at, policy, now), t.requested_at),
    )
