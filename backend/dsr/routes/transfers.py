# backend/dsr/routes/transfers.py
"""
Sales cash -> petty cash transfer API.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..errors import DomainError
from ..extensions import db
from ..decorators import require_auth, require_permission
from ..services import transfer_service
from ..services.concurrency import commit_with_retry
from ..services.identity_service import resolve_store_scope
from ._helpers import json_body, query_int, query_store_ids, require_store_access


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/cash/transfers")


@transfers_bp.post("")
@require_auth
@require_permission("REQUEST_TRANSFER")
def request_transfer():
    """
    Request a transfer from sales cash to petty cash.

    Request body:
    {
        "store_id": int,
        "amount_paise": int,
        "reason": str
    }

    Returns:
        201: pending transfer
        400: invalid amount / missing reason
        403: no access to store
        409: sales cash below the requested amount
    """
    try:
        data = json_body()
        transfer = transfer_service.request_transfer(
            store_id=data.get("store_id"),
            amount_paise=data.get("amount_paise"),
            reason=data.get("reason"),
            requested_by=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(transfer_service.transfer_to_dict(transfer)), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to request transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("")
@require_auth
@require_permission("VIEW_CASH")
def list_transfers():
    try:
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        transfers = transfer_service.list_transfers(
            store_ids=store_ids,
            status=request.args.get("status"),
            limit=query_int("limit", 100),
        )
        return jsonify({"transfers": [transfer_service.transfer_to_dict(t) for t in transfers]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transfers")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("/pending")
@require_auth
@require_permission("APPROVE_TRANSFER")
def list_pending_transfers():
    """Approval queue ordered by effective priority, then age."""
    try:
        store_ids = resolve_store_scope(g.current_user.id, query_store_ids())
        transfers = transfer_service.list_pending_transfers(store_ids=store_ids)
        return jsonify({"transfers": [transfer_service.transfer_to_dict(t) for t in transfers]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list pending transfers")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("/<int:transfer_id>")
@require_auth
@require_permission("VIEW_CASH")
def get_transfer(transfer_id: int):
    try:
        transfer = transfer_service.get_transfer(transfer_id)
        require_store_access(transfer.store_id)
        return jsonify(transfer_service.transfer_to_dict(transfer)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@transfers_bp.post("/<int:transfer_id>/approve")
@require_auth
@require_permission("APPROVE_TRANSFER")
def approve_transfer(transfer_id: int):
    """
    Approve a pending transfer, optionally for a different amount.

    Request body:
    {
        "approved_amount_paise": int (optional, default requested amount),
        "notes": str (optional)
    }

    Returns:
        200: approved transfer; balances moved
        409: already resolved, or sales cash below the approved amount
    """
    try:
        data = json_body()
        transfer = transfer_service.approve_transfer(
            transfer_id=transfer_id,
            approved_by=g.current_user.id,
            approved_amount_paise=data.get("approved_amount_paise"),
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(transfer_service.transfer_to_dict(transfer)), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to approve transfer %s", transfer_id)
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/<int:transfer_id>/reject")
@require_auth
@require_permission("APPROVE_TRANSFER")
def reject_transfer(transfer_id: int):
    """Reject a pending transfer. Body: {"notes": str} (required)."""
    try:
        data = json_body()
        transfer = transfer_service.reject_transfer(
            transfer_id=transfer_id,
            rejected_by=g.current_user.id,
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(transfer_service.transfer_to_dict(transfer)), 200
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to reject transfer %s", transfer_id)
        return jsonify({"error": "Internal server error"}), 500
