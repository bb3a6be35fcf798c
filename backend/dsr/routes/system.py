# backend/dsr/routes/system.py
"""
System health and version endpoints.
"""

import time
from importlib.metadata import PackageNotFoundError, version as package_version

from flask import Blueprint, current_app

from ..extensions import db
from ..models import CashPool, Store, User
from ..services import cash_position_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        user_count = db.session.query(User).count()
        pool_count = db.session.query(CashPool).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "stores": store_count,
                "users": user_count,
                "cash_pools": pool_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_cash_ledger_health() -> dict:
    """
    Compare every materialized pool balance with the sum of its movements.

    Drift means a balance was written outside apply_movement; the API keeps
    serving but reports "degraded".
    """
    start_time = time.time()
    try:
        drifted = []
        pools = db.session.query(CashPool).order_by(CashPool.store_id, CashPool.pool).all()
        for pool in pools:
            result = cash_position_service.verify_pool_balance(pool.store_id, pool.pool)
            if not result["ok"]:
                drifted.append({
                    "store_id": pool.store_id,
                    "pool": pool.pool,
                    "drift_paise": result["drift_paise"],
                })

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "degraded" if drifted else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pools_checked": len(pools),
                "drifted": drifted,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Cash ledger health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Cash ledger error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy, or degraded when a pool balance drifted from its movements
    - 503: database or ledger unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    ledger_health = check_cash_ledger_health()
    statuses = {database_health["status"], ledger_health["status"]}

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "cash_ledger": ledger_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Returns non-sensitive information about the deployment; never secrets,
    database credentials or internal paths.
    """
    import sys

    env = "production" if not current_app.debug else "development"

    try:
        app_version = package_version("dsr-cash")
    except PackageNotFoundError:
        app_version = "unknown"

    return {
        "api_version": app_version,
        "environment": env,
        "python_version": sys.version.split()[0],
        "business_timezone": current_app.config.get("BUSINESS_TIMEZONE"),
        "server_time": utcnow().isoformat() + "Z",
    }
