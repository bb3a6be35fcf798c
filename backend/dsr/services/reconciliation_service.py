# backend/dsr/services/reconciliation_service.py
"""
Reconciliation of sales, expenses, returns, hand bills, gift vouchers and
sales orders against bank, ERP, cash or voucher records.

LIFECYCLE (per transaction):
- pending -> reconciled      any role allowed by RECONCILE_TRANSACTIONS
- pending -> completed       accounts staff (FINALIZE_RECONCILIATION)
- reconciled -> completed    accounts staff only
- completed                  terminal

Each transition is a conditional UPDATE on the prior status, so one record
is reconciled at most once even under concurrent callers.
"""
from __future__ import annotations

from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from flask import current_app
from sqlalchemy import func

from ..config import CashPolicy, get_cash_policy
from ..errors import DomainError, NotFoundError, StateConflictError, ValidationError
from ..extensions import db
from ..models import RECONCILIATION_SOURCES
from ..time_utils import business_today, utcnow
from ..validation import coerce_int, optional_text, require_choice
from .audit_service import append_audit_event
from .concurrency import claim_status, commit_with_retry, run_with_retry
from .identity_service import authorize
from .reconcilables import KINDS, REGISTRY, Reconcilable, get_adapter


TARGET_STATUSES = ("reconciled", "completed")

# Prior statuses each target may be reached from
_ALLOWED_FROM = {
    "reconciled": ("pending",),
    "completed": ("pending", "reconciled"),
}


def list_pending(business_date: date, store_ids: Iterable[int] | None = None) -> list[Reconcilable]:
    """
    Pending transactions of all six kinds for one business date, oldest first.

    Gift vouchers are not store-scoped: they are listed for every caller while
    unreconciled and not cancelled.
    """
    store_ids = list(store_ids) if store_ids is not None else None
    items: list[Reconcilable] = []
    for kind in KINDS:
        adapter = REGISTRY[kind]
        rows = adapter.pending_query(business_date, store_ids).all()
        items.extend(adapter.to_reconcilable(row) for row in rows)
    items.sort(key=lambda r: (r.created_at, KINDS.index(r.kind), r.id))
    return items


def get_transaction(kind: str, transaction_id: int):
    adapter = get_adapter(kind)
    row = db.session.get(adapter.model, transaction_id)
    if row is None:
        raise NotFoundError(f"{kind} {transaction_id} not found")
    return row


def reconcile(
    *,
    kind: str,
    transaction_id: int,
    reconciled_by: int,
    source: str | None = None,
    notes: str | None = None,
    external_reference: str | None = None,
    status: str = "reconciled",
    policy: CashPolicy | None = None,
) -> Reconcilable:
    """
    Move one transaction to `status` (reconciled or completed).

    Raises:
        ValidationError: unknown kind, target status or source
        NotFoundError: no such transaction
        StateConflictError: completed already, or already at the target status
        AuthorizationError: role/ownership/day rules forbid the transition
    """
    policy = policy or get_cash_policy()
    adapter = get_adapter(kind)
    require_choice(status, "status", TARGET_STATUSES)
    if source is not None:
        require_choice(source, "source", RECONCILIATION_SOURCES)
    notes_text = optional_text(notes, "notes")
    reference = optional_text(external_reference, "external_reference", max_length=128)

    row = get_transaction(kind, transaction_id)
    current = row.status

    if current == "completed":
        raise StateConflictError(f"{kind} {row.id} is already completed", current_status=current)
    if current not in _ALLOWED_FROM[status]:
        raise StateConflictError(f"{kind} {row.id} is already {current}", current_status=current)

    business_date = getattr(row, adapter.date_column)
    context = {
        "status": current,
        "is_own": row.created_by_user_id == reconciled_by,
        "days_since": (business_today(policy.business_timezone) - business_date).days,
        "amount_paise": getattr(row, adapter.amount_column),
    }
    authorize(reconciled_by, "RECONCILE_TRANSACTIONS", store_id=row.store_id, **context)
    if status == "completed":
        authorize(reconciled_by, "FINALIZE_RECONCILIATION", store_id=row.store_id, **context)

    def _op():
        now = utcnow()
        claim_status(
            adapter.model,
            row,
            _ALLOWED_FROM[status],
            {
                "status": status,
                "reconciled_by_user_id": reconciled_by,
                "reconciled_at": now,
                "reconciliation_source": source,
                "external_reference": reference,
                "reconciliation_notes": notes_text,
            },
            label=kind,
        )
        append_audit_event(
            store_id=row.store_id,
            event_type=f"transaction.{status}",
            entity_type=kind,
            entity_id=row.id,
            actor_user_id=reconciled_by,
            occurred_at=now,
            note=notes_text,
            payload={"from_status": current, "source": source, "external_reference": reference},
        )
        return adapter.to_reconcilable(row)

    return run_with_retry(_op)


@dataclass(frozen=True)
class BatchItemResult:
    kind: str | None
    transaction_id: int | None
    ok: bool
    status: str | None = None
    error: dict | None = field(default=None)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.transaction_id,
            "ok": self.ok,
            "status": self.status,
            "error": self.error,
        }


def _reconcile_group(kind: str, items: list[tuple[int, dict]], reconciled_by: int, policy: CashPolicy):
    """
    Reconcile one kind's items, committing each on its own. A failing item is
    rolled back and reported; the rest of the group carries on.
    """
    results = []
    for position, item in items:
        transaction_id = item.get("id")
        try:
            transaction_id = coerce_int(transaction_id, "id")
            reconciled = reconcile(
                kind=kind,
                transaction_id=transaction_id,
                reconciled_by=reconciled_by,
                source=item.get("source"),
                notes=item.get("notes"),
                external_reference=item.get("external_reference"),
                status=item.get("status") or "reconciled",
                policy=policy,
            )
            commit_with_retry()
            results.append((position, BatchItemResult(kind, transaction_id, True, status=reconciled.status)))
        except DomainError as e:
            db.session.rollback()
            results.append((position, BatchItemResult(kind, transaction_id, False, error=e.to_dict())))
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Batch reconcile failed for %s %s", kind, transaction_id)
            results.append((
                position,
                BatchItemResult(kind, transaction_id, False, error={"error": "Internal error", "code": "INTERNAL_ERROR"}),
            ))
    return results


def _run_group_in_app(app, kind, items, reconciled_by, policy):
    with app.app_context():
        try:
            return _reconcile_group(kind, items, reconciled_by, policy)
        finally:
            db.session.remove()


def reconcile_batch(
    items: list[dict],
    *,
    reconciled_by: int,
    policy: CashPolicy | None = None,
) -> list[BatchItemResult]:
    """
    Reconcile a heterogeneous list of {"kind", "id", "source"?, "notes"?,
    "external_reference"?, "status"?} items.

    Items are grouped by kind; groups run in parallel when the policy allows
    more than one worker (one app context and DB session per worker), inline
    otherwise. Every item is committed independently and reported in input
    order; no failure stops another item.
    """
    policy = policy or get_cash_policy()
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    results: dict[int, BatchItemResult] = {}
    groups: "OrderedDict[str, list[tuple[int, dict]]]" = OrderedDict()
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            results[position] = BatchItemResult(None, None, False, error=ValidationError("item must be an object").to_dict())
            continue
        kind = item.get("kind")
        if kind not in REGISTRY:
            results[position] = BatchItemResult(
                kind, item.get("id"), False, error=ValidationError(f"kind must be one of: {', '.join(KINDS)}").to_dict()
            )
            continue
        groups.setdefault(kind, []).append((position, item))

    workers = min(policy.reconcile_batch_workers, len(groups))
    if workers > 1:
        app = current_app._get_current_object()
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(_run_group_in_app, app, kind, group, reconciled_by, policy)
                for kind, group in groups.items()
            ]
            for future in futures:
                results.update(dict(future.result()))
    else:
        for kind, group in groups.items():
            results.update(dict(_reconcile_group(kind, group, reconciled_by, policy)))

    ordered = [results[i] for i in range(len(items))]
    failed = sum(1 for r in ordered if not r.ok)
    current_app.logger.info(
        "Batch reconcile by user %s: %s items, %s failed", reconciled_by, len(ordered), failed,
    )
    return ordered


def summarize(from_date: date, to_date: date, store_ids: Iterable[int] | None = None) -> dict:
    """Total / reconciled (incl. completed) / pending counts per kind and overall."""
    if from_date > to_date:
        raise ValidationError("from date must be on or before to date")
    store_ids = list(store_ids) if store_ids is not None else None

    by_kind = {}
    totals = {"total": 0, "reconciled": 0, "pending": 0}
    for kind in KINDS:
        adapter = REGISTRY[kind]
        rows = (
            adapter.range_query(from_date, to_date, store_ids)
            .with_entities(adapter.model.status, func.count(adapter.model.id))
            .group_by(adapter.model.status)
            .all()
        )
        counts = {status: int(n) for status, n in rows}
        total = sum(counts.values())
        reconciled = counts.get("reconciled", 0) + counts.get("completed", 0)
        entry = {"total": total, "reconciled": reconciled, "pending": total - reconciled}
        by_kind[kind] = entry
        for key in totals:
            totals[key] += entry[key]

    return {
        "from_date": from_date.isoformat(),
        "to_date": to_date.isoformat(),
        "total_transactions": totals["total"],
        "reconciled_transactions": totals["reconciled"],
        "pending_transactions": totals["pending"],
        "by_kind": by_kind,
    }

