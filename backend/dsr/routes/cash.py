# backend/dsr/routes/cash.py
"""
Cash position API: balances, expected amounts, counts, deposits.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..errors import DomainError, NotFoundError
from ..extensions import db
from ..models import POOLS
from ..decorators import require_auth, require_permission
from ..services import cash_position_service, count_service, identity_service
from ..services.concurrency import commit_with_retry
from ..validation import coerce_date, coerce_int
from ._helpers import json_body, query_date, query_flag, query_int, require_store_access


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _internal_error(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def _body_date(data: dict, name: str):
    value = data.get(name)
    return coerce_date(value, name) if value not in (None, "") else None


@cash_bp.get("/stores")
@require_auth
@require_permission("VIEW_CASH")
def list_accessible_stores():
    try:
        stores = identity_service.get_accessible_stores(g.current_user.id)
        return jsonify({"stores": [s.to_dict() for s in stores]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list stores")


@cash_bp.get("/stores/default")
@require_auth
@require_permission("VIEW_CASH")
def default_store():
    try:
        store = identity_service.get_default_store(g.current_user.id)
        if store is None:
            raise NotFoundError("No accessible store")
        return jsonify(store.to_dict()), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to resolve default store")


@cash_bp.get("/<int:store_id>/balances")
@require_auth
@require_permission("VIEW_CASH")
def get_balances(store_id: int):
    """
    Current materialized balances of both pools.

    Returns:
        200: {"store_id", "sales_cash_paise", "petty_cash_paise"}
    """
    try:
        cash_position_service.require_store(store_id)
        require_store_access(store_id)
        balances = cash_position_service.get_balances(store_id)
        return jsonify({
            "store_id": store_id,
            "sales_cash_paise": balances["sales_cash"],
            "petty_cash_paise": balances["petty_cash"],
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to read balances")


@cash_bp.get("/<int:store_id>/expected")
@require_auth
@require_permission("VIEW_CASH")
def get_expected(store_id: int):
    """
    Expected amount for a pool on a business date, with its breakdown.

    Query params: pool (sales_cash | petty_cash), date (YYYY-MM-DD, default today)
    """
    try:
        cash_position_service.require_store(store_id)
        require_store_access(store_id)
        pool = cash_position_service.require_pool(request.args.get("pool", "sales_cash"))
        expected = cash_position_service.compute_expected_balance(store_id, pool, query_date("date"))
        return jsonify(expected.to_dict()), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to compute expected balance")


@cash_bp.get("/<int:store_id>/summary")
@require_auth
@require_permission("VIEW_CASH")
def get_summary(store_id: int):
    try:
        require_store_access(store_id)
        return jsonify(cash_position_service.get_cash_summary(store_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to build cash summary")


@cash_bp.get("/<int:store_id>/activity")
@require_auth
@require_permission("VIEW_CASH")
def get_activity(store_id: int):
    try:
        require_store_access(store_id)
        limit = query_int("limit", 20)
        return jsonify({"activity": cash_position_service.get_cash_activity(store_id, limit=limit)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list cash activity")


@cash_bp.get("/<int:store_id>/verify")
@require_auth
@require_permission("APPROVE_ADJUSTMENT")
def verify_balances(store_id: int):
    """Recompute both pools from their movements and report drift."""
    try:
        cash_position_service.require_store(store_id)
        require_store_access(store_id)
        results = [cash_position_service.verify_pool_balance(store_id, pool) for pool in POOLS]
        return jsonify({"store_id": store_id, "pools": results, "ok": all(r["ok"] for r in results)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to verify balances")


@cash_bp.post("/<int:store_id>/counts")
@require_auth
@require_permission("COUNT_CASH")
def submit_count(store_id: int):
    """
    Submit a denomination count.

    Request body:
    {
        "pool": "sales_cash" | "petty_cash",
        "denominations": {"500": 10, "100": 3, ...},
        "count_date": "YYYY-MM-DD" (optional, default today),
        "notes": str (optional),
        "acknowledge_variance": bool (optional)
    }

    Returns:
        201: count stored, with total / expected / variance / variance_level
        400: invalid input
        403: forbidden
        422: critical variance not acknowledged (nothing stored)
    """
    try:
        data = json_body()
        result = count_service.submit_count(
            store_id=store_id,
            pool=data.get("pool"),
            denominations=data.get("denominations"),
            counted_by=g.current_user.id,
            count_date=_body_date(data, "count_date"),
            notes=data.get("notes"),
            acknowledge_variance=bool(data.get("acknowledge_variance", False)),
        )
        commit_with_retry()
        return jsonify(result.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to submit count")


@cash_bp.get("/<int:store_id>/counts")
@require_auth
@require_permission("VIEW_CASH")
def list_counts(store_id: int):
    try:
        require_store_access(store_id)
        counts = count_service.list_counts(
            store_id,
            pool=request.args.get("pool"),
            count_date=query_date("date"),
            include_superseded=query_flag("include_superseded", True),
            limit=query_int("limit", 100),
        )
        return jsonify({"counts": [c.to_dict() for c in counts]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list counts")


@cash_bp.post("/<int:store_id>/deposits")
@require_auth
@require_permission("RECORD_DEPOSIT")
def record_deposit(store_id: int):
    """
    Record a bank deposit out of sales cash.

    Request body:
    {
        "amount_paise": int,
        "deposit_date": "YYYY-MM-DD" (optional),
        "deposit_slip_number": str (optional),
        "bank_name": str (optional),
        "cash_count_id": int (optional),
        "notes": str (optional)
    }
    """
    try:
        data = json_body()
        deposit = cash_position_service.record_deposit(
            store_id=store_id,
            amount_paise=data.get("amount_paise"),
            deposited_by=g.current_user.id,
            deposit_date=_body_date(data, "deposit_date"),
            deposit_slip_number=data.get("deposit_slip_number"),
            bank_name=data.get("bank_name"),
            cash_count_id=coerce_int(data["cash_count_id"], "cash_count_id") if data.get("cash_count_id") is not None else None,
            notes=data.get("notes"),
        )
        commit_with_retry()
        return jsonify(deposit.to_dict()), 201
    except DomainError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to record deposit")


@cash_bp.get("/<int:store_id>/deposits")
@require_auth
@require_permission("VIEW_CASH")
def list_deposits(store_id: int):
    try:
        require_store_access(store_id)
        deposits = cash_position_service.list_deposits(
            store_id,
            from_date=query_date("from"),
            to_date=query_date("to"),
            limit=query_int("limit", 100),
        )
        return jsonify({"deposits": [d.to_dict() for d in deposits]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        return _internal_error("Failed to list deposits")
