# backend/dsr/config.py
from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/dsr.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///dsr.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Business dates (count_date, sale_date, ...) are local to the stores
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Kolkata")

    # Batch reconciliation fan-out. 1 = process kind groups inline.
    RECONCILE_BATCH_WORKERS = _env_int("RECONCILE_BATCH_WORKERS", 4)

    # Variance policy (paise). 1 rupee = 100 paise.
    CRITICAL_VARIANCE_PAISE = _env_int("CRITICAL_VARIANCE_PAISE", 500_00)
    SALES_CASH_WARNING_VARIANCE_PAISE = _env_int("SALES_CASH_WARNING_VARIANCE_PAISE", 100_00)
    PETTY_CASH_WARNING_VARIANCE_PAISE = _env_int("PETTY_CASH_WARNING_VARIANCE_PAISE", 50_00)

    # Petty cash pool alert level used when a pool has no explicit threshold
    PETTY_CASH_LOW_BALANCE_PAISE = _env_int("PETTY_CASH_LOW_BALANCE_PAISE", 2_000_00)

    # Request priority bands (paise) and age escalation (hours)
    PRIORITY_MEDIUM_FROM_PAISE = _env_int("PRIORITY_MEDIUM_FROM_PAISE", 5_000_00)
    PRIORITY_HIGH_FROM_PAISE = _env_int("PRIORITY_HIGH_FROM_PAISE", 10_000_00)
    PRIORITY_ESCALATE_AFTER_HOURS = _env_int("PRIORITY_ESCALATE_AFTER_HOURS", 24)

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RECONCILE_BATCH_WORKERS = 1
    LOG_LEVEL = "WARNING"


@dataclass(frozen=True)
class CashPolicy:
    """
    Cash-handling policy constants, built once from app config at startup
    and handed to the workflows (see get_cash_policy).
    """
    business_timezone: str = "Asia/Kolkata"
    critical_variance_paise: int = 500_00
    sales_cash_warning_variance_paise: int = 100_00
    petty_cash_warning_variance_paise: int = 50_00
    petty_cash_low_balance_paise: int = 2_000_00
    priority_medium_from_paise: int = 5_000_00
    priority_high_from_paise: int = 10_000_00
    priority_escalate_after_hours: int = 24
    reconcile_batch_workers: int = 1

    @classmethod
    def from_mapping(cls, config) -> "CashPolicy":
        return cls(
            business_timezone=config.get("BUSINESS_TIMEZONE", cls.business_timezone),
            critical_variance_paise=int(config.get("CRITICAL_VARIANCE_PAISE", cls.critical_variance_paise)),
            sales_cash_warning_variance_paise=int(
                config.get("SALES_CASH_WARNING_VARIANCE_PAISE", cls.sales_cash_warning_variance_paise)
            ),
            petty_cash_warning_variance_paise=int(
                config.get("PETTY_CASH_WARNING_VARIANCE_PAISE", cls.petty_cash_warning_variance_paise)
            ),
            petty_cash_low_balance_paise=int(
                config.get("PETTY_CASH_LOW_BALANCE_PAISE", cls.petty_cash_low_balance_paise)
            ),
            priority_medium_from_paise=int(config.get("PRIORITY_MEDIUM_FROM_PAISE", cls.priority_medium_from_paise)),
            priority_high_from_paise=int(config.get("PRIORITY_HIGH_FROM_PAISE", cls.priority_high_from_paise)),
            priority_escalate_after_hours=int(
                config.get("PRIORITY_ESCALATE_AFTER_HOURS", cls.priority_escalate_after_hours)
            ),
            reconcile_batch_workers=max(1, int(config.get("RECONCILE_BATCH_WORKERS", cls.reconcile_batch_workers))),
        )

    def warning_variance_paise(self, pool: str) -> int:
        if pool == "petty_cash":
            return self.petty_cash_warning_variance_paise
        return self.sales_cash_warning_variance_paise


def get_cash_policy() -> CashPolicy:
    """Policy for the current app; falls back to defaults outside a configured app."""
    from flask import current_app

    policy = current_app.extensions.get("cash_policy")
    if policy is None:
        policy = CashPolicy.from_mapping(current_app.config)
        current_app.extensions["cash_policy"] = policy
    return policy
