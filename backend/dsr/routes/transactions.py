# backend/dsr/routes/transactions.py
"""
Recording and editing of the reconcilable transactions, plus voucher redemption.
"""
from flask import Blueprint, current_app, g, jsonify

from ..errors import DomainError
from ..extensions import db
from ..decorators import require_auth, require_permission
from ..services import reconciliation_service, transaction_service
from ..services.concurrency import commit_with_retry
from ._helpers import json_body, require_store_access


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _error(e: DomainError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def _internal_error(message: str, *args):
    db.session.rollback()
    current_app.logger.exception(message, *args)
    return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<kind>")
@require_auth
@require_permission("RECORD_TRANSACTION")
def record_transaction(kind: str):
    """
    Record a pending transaction.

    Body fields depend on the kind, e.g. for a sale:
    {"store_id": 1, "sale_date": "2026-03-01", "amount_paise": 150000, "tender_type": "cash"}

    Returns:
        201: created transaction
        400: unknown kind, unknown/missing fields, bad amounts
        403: role may not record this (e.g. expense above the ceiling)
    """
    try:
        row = transaction_service.record_transaction(
            kind=kind,
            payload=json_body(),
            recorded_by=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(row.to_dict()), 201
    except DomainError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to record %s", kind)


@transactions_bp.get("/<kind>/<int:transaction_id>")
@require_auth
@require_permission("VIEW_RECONCILIATION")
def get_transaction(kind: str, transaction_id: int):
    try:
        row = reconciliation_service.get_transaction(kind, transaction_id)
        if row.store_id is not None:
            require_store_access(row.store_id)
        return jsonify(row.to_dict()), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@transactions_bp.patch("/<kind>/<int:transaction_id>")
@require_auth
@require_permission("EDIT_TRANSACTION")
def update_transaction(kind: str, transaction_id: int):
    """
    Edit transactional fields while the record is still editable.

    Returns:
        200: updated transaction
        400: unknown or non-editable field
        403: role may not edit in this status
        409: completed, or status changed underneath the edit
    """
    try:
        row = transaction_service.update_transaction(
            kind=kind,
            transaction_id=transaction_id,
            changes=json_body(),
            updated_by=g.current_user.id,
        )
        commit_with_retry()
        return jsonify(row.to_dict()), 200
    except DomainError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to update %s %s", kind, transaction_id)


@transactions_bp.post("/gift_voucher/<int:voucher_id>/redeem")
@require_auth
@require_permission("REDEEM_VOUCHER")
def redeem_gift_voucher(voucher_id: int):
    """
    Redeem a voucher for its full value.

    Request body: {"amount_paise": int, "store_id": int (optional)}

    Returns:
        200: redeemed voucher
        400: amount differs from voucher value
        409: voucher not active
    """
    try:
        data = json_body()
        voucher = transaction_service.redeem_gift_voucher(
            voucher_id=voucher_id,
            amount_paise=data.get("amount_paise"),
            redeemed_by=g.current_user.id,
            store_id=data.get("store_id"),
        )
        commit_with_retry()
        return jsonify(voucher.to_dict()), 200
    except DomainError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to redeem voucher %s", voucher_id)


@transactions_bp.post("/gift_voucher/<int:voucher_id>/cancel")
@require_auth
@require_permission("CANCEL_VOUCHER")
def cancel_gift_voucher(voucher_id: int):
    try:
        data = json_body()
        voucher = transaction_service.cancel_gift_voucher(
            voucher_id=voucher_id,
            cancelled_by=g.current_user.id,
            reason=data.get("reason"),
        )
        commit_with_retry()
        return jsonify(voucher.to_dict()), 200
    except DomainError as e:
        return _error(e)
    except Exception:
        return _internal_error("Failed to cancel voucher %s", voucher_id)
