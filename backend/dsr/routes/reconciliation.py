# backend/dsr/routes/reconciliation.py
"""
Reconciliation API: pending list, single and batch reconcile, summary.
"""
from flask import Blueprint, current_app, g, jsonify

from ..config import get_cash_policy
from ..errors import DomainError
from ..extensions import db
from ..decorators import require_auth, require_permission
from ..services import reconciliation_service
from ..services.concurrency import commit_with_retry
from ..services.identity_service import resolve_store_scope
from ..time_utils import business_today
from ._helpers import json_body, query_date, query_store_ids


reconciliation_bp = Blueprint("reconciliation", __name__, url_prefix="/api/reconciliation")


@reconciliation_bp.get("/pending")
@require_auth
@require_permission("VIEW_RECONCILIATION")
def list_pending():
    """
    Pending transactions of every kind for one business date.

    Query params: date (YYYY-MM-DD, default today), store_id (repeatable)
    """
    try:
        today = business_today(get_cash_policy().business_timezone)
        business_date = query_date("date", today)
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        items = reconciliation_service.list_pending(business_date, store_ids)
        return jsonify({
            "date": business_date.isoformat(),
            "count": len(items),
            "transactions": [item.to_dict() for item in items],
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list pending transactions")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/<kind>/<int:transaction_id>")
@require_auth
@require_permission("RECONCILE_TRANSACTIONS")
def reconcile(kind: str, transaction_id: int):
    """
    Reconcile one transaction.

    Request body:
    {
        "source": "bank" | "erp" | "cash" | "voucher" (optional),
        "notes": str (optional),
        "external_reference": str (optional),
        "status": "reconciled" | "completed" (optional, default reconciled)
    }

    Returns:
        200: the transaction in its new state
        403: role, ownership or day rule forbids it
        404: no such transaction
        409: already reconciled / completed
    """
    try:
        data = json_body()
        result = reconciliation_service.reconcile(
            kind=kind,
            transaction_id=transaction_id,
            reconciled_by=g.current_user.id,
            source=data.get("source"),
            notes=data.get("notes"),
            external_reference=data.get("external_reference"),
            status=data.get("status") or "reconciled",
        )
        commit_with_retry()
        return jsonify(result.to_dict()), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reconcile %s %s", kind, transaction_id)
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.post("/batch")
@require_auth
@require_permission("RECONCILE_TRANSACTIONS")
def reconcile_batch():
    """
    Reconcile many transactions; each item succeeds or fails on its own.

    Request body:
    {
        "items": [{"kind": str, "id": int, "source"?, "notes"?, "external_reference"?, "status"?}, ...]
    }

    Returns:
        200: {"results": [...], "succeeded": n, "failed": n} in input order
        400: items missing or empty
    """
    try:
        data = json_body()
        results = reconciliation_service.reconcile_batch(
            data.get("items"),
            reconciled_by=g.current_user.id,
        )
        succeeded = sum(1 for r in results if r.ok)
        return jsonify({
            "results": [r.to_dict() for r in results],
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
        }), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Batch reconcile failed")
        return jsonify({"error": "Internal server error"}), 500


@reconciliation_bp.get("/summary")
@require_auth
@require_permission("VIEW_RECONCILIATION")
def summary():
    """
    Counts per kind over a date range.

    Query params: from, to (YYYY-MM-DD, default today), store_id (repeatable)
    """
    try:
        today = business_today(get_cash_policy().business_timezone)
        from_date = query_date("from", today)
        to_date = query_date("to", today)
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        return jsonify(reconciliation_service.summarize(from_date, to_date, store_ids)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to summarize reconciliation")
        return jsonify({"error": "Internal server error"}), 500
