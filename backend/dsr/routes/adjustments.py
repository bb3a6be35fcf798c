# backend/dsr/routes/adjustments.py
"""
Single-pool cash adjustment API.

Approval and application are separate service steps. The approve endpoint
commits the approval first and then applies it unless ?apply=false, so a
balance refusal at apply time leaves the adjustment approved (listed under
/unapplied) instead of undoing the approval.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..errors import DomainError
from ..extensions import db
from ..decorators import require_auth, require_permission
from ..services import adjustment_service
from ..services.concurrency import commit_with_retry
from ..services.identity_service import resolve_store_scope
from ._helpers import json_body, query_flag, query_int, query_store_ids, require_store_access


adjustments_bp = Blueprint("adjustments", __name__, url_prefix="/api/cash/adjustments")


def _internal_error(message: str, *args):
    db.session.rollback()
    current_app.logger.exception(message, *args)
    return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("")
@require_auth
@require_permission("REQUEST_ADJUSTMENT")
def request_adjustment():
    """
    Request an adjustment to one pool.

    Request body:
    {
        "store_id": int,
        "pool": "sales_cash" | "petty_cash",
        "adjustment_type": "initial_setup" | "correction" | "injection" | "loss",
        "amount_paise": int (signed for corrections),
        "reason": str
    }

    Returns:
        201: pending adjustment
        400: invalid input, or pool already initialized for initial_setup
    """
    try:
        data = json_body()
        adjustment = adjustment_service.request_adjustment(
            store_id=data.get("store_id"),
            pool=data.get("pool"),
            adjustment_type=data.get("adjustment_type"),
            amount_paise=data.get("amount_paise"),
            reason=data.get("reason"),
            requested_by=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(adjustment_service.adjustment_to_dict(adjustment)), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to request adjustment")


@adjustments_bp.get("")
@require_auth
@require_permission("VIEW_CASH")
def list_adjustments():
    try:
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        adjustments = adjustment_service.list_adjustments(
            store_ids=store_ids,
            status=request.args.get("status"),
            pool=request.args.get("pool"),
            limit=query_int("limit", 100),
        )
        return jsonify({"adjustments": [adjustment_service.adjustment_to_dict(a) for a in adjustments]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list adjustments")


@adjustments_bp.get("/pending")
@require_auth
@require_permission("APPROVE_ADJUSTMENT")
def list_pending_adjustments():
    try:
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        adjustments = adjustment_service.list_pending_adjustments(store_ids=store_ids)
        return jsonify({"adjustments": [adjustment_service.adjustment_to_dict(a) for a in adjustments]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list pending adjustments")


@adjustments_bp.get("/unapplied")
@require_auth
@require_permission("APPROVE_ADJUSTMENT")
def list_unapplied_adjustments():
    try:
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        adjustments = adjustment_service.list_unapplied_adjustments(store_ids=store_ids)
        return jsonify({"adjustments": [adjustment_service.adjustment_to_dict(a) for a in adjustments]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list unapplied adjustments")


@adjustments_bp.get("/<int:adjustment_id>")
@require_auth
@require_permission("VIEW_CASH")
def get_adjustment(adjustment_id: int):
    try:
        adjustment = adjustment_service.get_adjustment(adjustment_id)
        require_store_access(adjustment.store_id)
        return jsonify(adjustment_service.adjustment_to_dict(adjustment)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@adjustments_bp.get("/<int:adjustment_id>/audit")
@require_auth
@require_permission("VIEW_CASH")
def get_adjustment_audit(adjustment_id: int):
    try:
        adjustment = adjustment_service.get_adjustment(adjustment_id)
        require_store_access(adjustment.store_id)
        return jsonify(adjustment_service.get_adjustment_audit(adjustment_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to load adjustment audit %s", adjustment_id)


@adjustments_bp.post("/<int:adjustment_id>/approve")
@require_auth
@require_permission("APPROVE_ADJUSTMENT")
def approve_adjustment(adjustment_id: int):
    """
    Approve a pending adjustment and, unless ?apply=false, apply it.

    Request body:
    {
        "approved_amount_paise": int (optional magnitude, default requested),
        "notes": str (optional)
    }

    Returns:
        200: completed adjustment (or approved when apply=false)
        409: already resolved, or applying would make the pool negative
             (the approval itself is kept)
    """
    try:
        data = json_body()
        adjustment = adjustment_service.approve_adjustment(
            adjustment_id=adjustment_id,
            approved_by=g.current_user.id,
            approved_amount_paise=data.get("approved_amount_paise"),
            notes=data.get("notes"),
        )
        commit_with_retry()
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to approve adjustment %s", adjustment_id)

    if not query_flag("apply", True):
        return jsonify(adjustment_service.adjustment_to_dict(adjustment)), 200

    try:
        adjustment = adjustment_service.apply_adjustment(
            adjustment_id=adjustment_id,
            applied_by=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(adjustment_service.adjustment_to_dict(adjustment)), 200
    except DomainError as e:
        db.session.rollback()
        body = e.to_dict()
        body["adjustment_status"] = adjustment_service.ADJUSTMENT_STATUS_APPROVED
        return jsonify(body), e.status_code
    except Exception:
        return _internal_error("Failed to apply adjustment %s", adjustment_id)


@adjustments_bp.post("/<int:adjustment_id>/reject")
@require_auth
@require_permission("APPROVE_ADJUSTMENT")
def reject_adjustment(adjustment_id: int):
    """Reject a pending adjustment. Body: {"notes": str} (required)."""
    try:
        data = json_body()
        adjustment = adjustment_service.reject_adjustment(
            adjustment_id=adjustment_id,
            rejected_by=g.current_user.id,
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(adjustment_service.adjustment_to_dict(adjustment)), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to reject adjustment %s", adjustment_id)


@adjustments_bp.post("/<int:adjustment_id>/apply")
@require_auth
@require_permission("APPROVE_ADJUSTMENT")
def apply_adjustment(adjustment_id: int):
    """Write an approved adjustment to its pool (approved -> completed)."""
    try:
        adjustment = adjustment_service.apply_adjustment(
            adjustment_id=adjustment_id,
            applied_by=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(adjustment_service.adjustment_to_dict(adjustment)), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to apply adjustment %s", adjustment_id)
