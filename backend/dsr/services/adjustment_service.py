# backend/dsr/services/adjustment_service.py
"""
Single-pool cash adjustment workflow.

WHY: Opening balances, corrections, emergency injections and losses change
one pool without a matching transfer, so each needs its own approval trail.

LIFECYCLE:
1. pending: requested; direction and magnitude fixed here
2. approved / rejected: resolved once by an approver
3. completed: the approved amount has been written to the pool

approved and completed are distinct so an approval whose movement has not
been applied yet stays visible (list_unapplied_adjustments).

SIGN: amounts are stored as magnitudes; `direction` is decided at request
time (loss -1, injection/initial_setup +1, correction follows the entered
figure) and final_amount_paise = direction * amount.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..config import CashPolicy, get_cash_policy
from ..errors import InsufficientBalanceError, NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import POOLS, CashAdjustment, CashCount, CashMovement
from ..time_utils import utcnow
from ..validation import coerce_paise, optional_text, require_choice, require_text
from .audit_service import append_audit_event, list_audit_events
from .cash_position_service import apply_movement, get_current_balance, require_pool, require_store
from .concurrency import claim_status, run_with_retry
from .identity_service import authorize
from .priority import age_hours, derive_priority, effective_priority, priority_sort_key


ADJUSTMENT_TYPES = ("initial_setup", "correction", "injection", "loss")

ADJUSTMENT_STATUS_PENDING = "pending"
ADJUSTMENT_STATUS_APPROVED = "approved"
ADJUSTMENT_STATUS_REJECTED = "rejected"
ADJUSTMENT_STATUS_COMPLETED = "completed"

ADJUSTMENT_STATUSES = (
    ADJUSTMENT_STATUS_PENDING,
    ADJUSTMENT_STATUS_APPROVED,
    ADJUSTMENT_STATUS_REJECTED,
    ADJUSTMENT_STATUS_COMPLETED,
)


def get_adjustment(adjustment_id: int) -> CashAdjustment:
    adjustment = db.session.get(CashAdjustment, adjustment_id)
    if adjustment is None:
        raise NotFoundError(f"Adjustment {adjustment_id} not found")
    return adjustment


def normalize_amount(adjustment_type: str, amount_paise) -> tuple[int, int]:
    """
    (direction, magnitude) for a requested figure.

    - injection, initial_setup: strictly positive input
    - loss: entered as a positive figure (a negative one is taken as its magnitude)
    - correction: any non-zero signed figure
    """
    if adjustment_type in ("injection", "initial_setup"):
        return 1, coerce_paise(amount_paise, "amount_paise")
    if adjustment_type == "loss":
        amount = coerce_paise(amount_paise, "amount_paise", allow_negative=True)
        return -1, abs(amount)
    amount = coerce_paise(amount_paise, "amount_paise", allow_negative=True)
    return (1 if amount > 0 else -1), abs(amount)


def is_pool_initialized(store_id: int, pool: str) -> bool:
    """Any count, any movement, or an initial_setup that was not rejected."""
    has_count = db.session.query(CashCount.id).filter_by(store_id=store_id, pool=pool).first() is not None
    if has_count:
        return True
    has_movement = db.session.query(CashMovement.id).filter_by(store_id=store_id, pool=pool).first() is not None
    if has_movement:
        return True
    return (
        db.session.query(CashAdjustment.id)
        .filter(
            CashAdjustment.store_id == store_id,
            CashAdjustment.pool == pool,
            CashAdjustment.adjustment_type == "initial_setup",
            CashAdjustment.status != ADJUSTMENT_STATUS_REJECTED,
        )
        .first()
        is not None
    )


def request_adjustment(
    *,
    store_id: int,
    pool: str,
    adjustment_type: str,
    amount_paise,
    reason: str,
    requested_by: int,
    policy: CashPolicy | None = None,
) -> CashAdjustment:
    """
    Create a pending adjustment.

    Raises:
        ValidationError: bad pool/type/amount, missing reason
        AuthorizationError: caller may not request adjustments at this store
        StateConflictError: initial_setup on a pool that is already initialized
    """
    policy = policy or get_cash_policy()
    require_store(store_id)
    require_pool(pool)
    require_choice(adjustment_type, "adjustment_type", ADJUSTMENT_TYPES)
    authorize(requested_by, "REQUEST_ADJUSTMENT", store_id=store_id)

    direction, magnitude = normalize_amount(adjustment_type, amount_paise)
    reason_text = require_text(reason, "reason")

    def _op():
        if adjustment_type == "initial_setup" and is_pool_initialized(store_id, pool):
            raise StateConflictError(f"{pool} at store {store_id} is already initialized")

        adjustment = CashAdjustment(
            store_id=store_id,
            pool=pool,
            adjustment_type=adjustment_type,
            direction=direction,
            requested_amount_paise=magnitude,
            final_amount_paise=direction * magnitude,
            reason=reason_text,
            priority=derive_priority(magnitude, policy, adjustment_type=adjustment_type),
            status=ADJUSTMENT_STATUS_PENDING,
            requested_by_user_id=requested_by,
            requested_at=utcnow(),
            balance_snapshot_paise=get_current_balance(store_id, pool),
        )
        db.session.add(adjustment)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost the race to uq_cash_adjustments_initial_setup
            db.session.rollback()
            raise StateConflictError(f"{pool} at store {store_id} is already initialized")

        append_audit_event(
            store_id=store_id,
            event_type="adjustment.requested",
            entity_type="cash_adjustment",
            entity_id=adjustment.id,
            actor_user_id=requested_by,
            occurred_at=adjustment.requested_at,
            note=reason_text,
            payload={
                "pool": pool,
                "adjustment_type": adjustment_type,
                "final_amount_paise": adjustment.final_amount_paise,
            },
        )
        return adjustment

    return run_with_retry(_op)


def approve_adjustment(
    *,
    adjustment_id: int,
    approved_by: int,
    approved_amount_paise=None,
    notes: str | None = None,
) -> CashAdjustment:
    """
    Resolve pending -> approved. The approved amount is a magnitude; the
    direction chosen at request time is kept. Does not touch the pool; see
    apply_adjustment.
    """
    adjustment = get_adjustment(adjustment_id)
    authorize(approved_by, "APPROVE_ADJUSTMENT", store_id=adjustment.store_id)

    if approved_amount_paise is None:
        approved = adjustment.requested_amount_paise
    else:
        approved = coerce_paise(approved_amount_paise, "approved_amount_paise")
    notes_text = optional_text(notes, "notes")

    def _op():
        now = utcnow()
        claim_status(
            CashAdjustment,
            adjustment,
            [ADJUSTMENT_STATUS_PENDING],
            {
                "status": ADJUSTMENT_STATUS_APPROVED,
                "approved_amount_paise": approved,
                "final_amount_paise": adjustment.direction * approved,
                "approval_variance_paise": approved - adjustment.requested_amount_paise,
                "approved_by_user_id": approved_by,
                "approved_at": now,
                "approval_notes": notes_text,
            },
            label="Adjustment",
        )
        append_audit_event(
            store_id=adjustment.store_id,
            event_type="adjustment.approved",
            entity_type="cash_adjustment",
            entity_id=adjustment.id,
            actor_user_id=approved_by,
            occurred_at=now,
            note=notes_text,
            payload={
                "requested_amount_paise": adjustment.requested_amount_paise,
                "approved_amount_paise": approved,
                "approval_variance_paise": adjustment.approval_variance_paise,
                "final_amount_paise": adjustment.final_amount_paise,
            },
        )
        current_app.logger.info(
            "Adjustment %s (%s) approved by user %s: final=%s",
            adjustment.id, adjustment.adjustment_type, approved_by, adjustment.final_amount_paise,
        )
        return adjustment

    return run_with_retry(_op)


def reject_adjustment(*, adjustment_id: int, rejected_by: int, notes: str) -> CashAdjustment:
    adjustment = get_adjustment(adjustment_id)
    authorize(rejected_by, "APPROVE_ADJUSTMENT", store_id=adjustment.store_id)
    notes_text = require_text(notes, "notes")

    def _op():
        now = utcnow()
        claim_status(
            CashAdjustment,
            adjustment,
            [ADJUSTMENT_STATUS_PENDING],
            {
                "status": ADJUSTMENT_STATUS_REJECTED,
                "approved_by_user_id": rejected_by,
                "approved_at": now,
                "approval_notes": notes_text,
            },
            label="Adjustment",
        )
        append_audit_event(
            store_id=adjustment.store_id,
            event_type="adjustment.rejected",
            entity_type="cash_adjustment",
            entity_id=adjustment.id,
            actor_user_id=rejected_by,
            occurred_at=now,
            note=notes_text,
        )
        current_app.logger.info("Adjustment %s rejected by user %s", adjustment.id, rejected_by)
        return adjustment

    return run_with_retry(_op)


def apply_adjustment(*, adjustment_id: int, applied_by: int) -> CashAdjustment:
    """
    approved -> completed, writing final_amount_paise to the pool.

    InsufficientBalanceError leaves the adjustment approved and the pool as it was.
    """
    adjustment = get_adjustment(adjustment_id)
    authorize(applied_by, "APPROVE_ADJUSTMENT", store_id=adjustment.store_id)

    def _op():
        if adjustment.status != ADJUSTMENT_STATUS_APPROVED:
            raise StateConflictError(
                f"Adjustment {adjustment.id} is {adjustment.status}, expected approved",
                current_status=adjustment.status,
            )

        balance = get_current_balance(adjustment.store_id, adjustment.pool)
        if balance + adjustment.final_amount_paise < 0:
            raise InsufficientBalanceError(
                f"Insufficient {adjustment.pool} balance for adjustment",
                current_balance_paise=balance,
                requested_paise=abs(adjustment.final_amount_paise),
            )

        now = utcnow()
        claim_status(
            CashAdjustment,
            adjustment,
            [ADJUSTMENT_STATUS_APPROVED],
            {
                "status": ADJUSTMENT_STATUS_COMPLETED,
                "applied_by_user_id": applied_by,
                "applied_at": now,
            },
            label="Adjustment",
        )
        movement = apply_movement(
            store_id=adjustment.store_id,
            pool=adjustment.pool,
            amount_paise=adjustment.final_amount_paise,
            movement_type="adjustment",
            source_type="cash_adjustment",
            source_id=adjustment.id,
            actor_user_id=applied_by,
        )
        append_audit_event(
            store_id=adjustment.store_id,
            event_type="adjustment.applied",
            entity_type="cash_adjustment",
            entity_id=adjustment.id,
            actor_user_id=applied_by,
            occurred_at=now,
            payload={
                "final_amount_paise": adjustment.final_amount_paise,
                "balance_after_paise": movement.balance_after_paise,
            },
        )
        current_app.logger.info(
            "Adjustment %s applied to %s store=%s balance_after=%s",
            adjustment.id, adjustment.pool, adjustment.store_id, movement.balance_after_paise,
        )
        return adjustment

    return run_with_retry(_op)


def adjustment_to_dict(adjustment: CashAdjustment, *, policy: CashPolicy | None = None, now: datetime | None = None) -> dict:
    policy = policy or get_cash_policy()
    data = adjustment.to_dict()
    if adjustment.status == ADJUSTMENT_STATUS_PENDING:
        data["effective_priority"] = effective_priority(adjustment.priority, adjustment.requested_at, policy, now)
        data["age_hours"] = round(age_hours(adjustment.requested_at, now), 1)
    else:
        data["effective_priority"] = adjustment.priority
    return data


def list_adjustments(
    *,
    store_ids: list[int] | None = None,
    status: str | None = None,
    pool: str | None = None,
    limit: int = 100,
) -> list[CashAdjustment]:
    q = db.session.query(CashAdjustment)
    if store_ids is not None:
        q = q.filter(CashAdjustment.store_id.in_(store_ids))
    if status is not None:
        q = q.filter(CashAdjustment.status == require_choice(status, "status", ADJUSTMENT_STATUSES))
    if pool is not None:
        q = q.filter(CashAdjustment.pool == require_choice(pool, "pool", POOLS))
    return q.order_by(CashAdjustment.requested_at.desc(), CashAdjustment.id.desc()).limit(limit).all()


def list_pending_adjustments(
    *,
    store_ids: list[int] | None = None,
    policy: CashPolicy | None = None,
    now: datetime | None = None,
) -> list[CashAdjustment]:
    policy = policy or get_cash_policy()
    rows = list_adjustments(store_ids=store_ids, status=ADJUSTMENT_STATUS_PENDING, limit=1000)
    return sorted(
        rows,
        key=lambda a: priority_sort_key(effective_priority(a.priority, a.requested_at, policy, now), a.requested_at),
    )


def list_unapplied_adjustments(*, store_ids: list[int] | None = None) -> list[CashAdjustment]:
    """Approved but not yet written to the pool, oldest approval first."""
    q = db.session.query(CashAdjustment).filter(CashAdjustment.status == ADJUSTMENT_STATUS_APPROVED)
    if store_ids is not None:
        q = q.filter(CashAdjustment.store_id.in_(store_ids))
    return q.order_by(CashAdjustment.approved_at.asc(), CashAdjustment.id.asc()).all()


def get_adjustment_audit(adjustment_id: int) -> dict:
    """Adjustment, requested vs approved figures, its movement and its audit events."""
    adjustment = get_adjustment(adjustment_id)
    movements = (
        db.session.query(CashMovement)
        .filter_by(source_type="cash_adjustment", source_id=adjustment.id)
        .order_by(CashMovement.id.asc())
        .all()
    )
    events = list_audit_events(entity_type="cash_adjustment", entity_id=adjustment.id)
    return {
        "adjustment": adjustment.to_dict(),
        "requested_amount_paise": adjustment.requested_amount_paise,
        "approved_amount_paise": adjustment.approved_amount_paise,
        "approval_variance_paise": adjustment.approval_variance_paise,
        "movements": [m.to_dict() for m in movements],
        "events": [e.to_dict() for e in reversed(events)],
    }
