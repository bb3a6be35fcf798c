# backend/dsr/services/count_service.py
"""
Denomination count submission.

WHY: Staff record what is physically in a pool; the system compares it to
the expected amount and flags the variance.

RULES:
- A count never changes the pool balance.
- Counts are immutable. Submitting again for the same (store, pool, day)
  inserts a new row that supersedes the previous one.
- Critical variance blocks the submission unless acknowledged; warning
  variance is reported back but never blocks.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional

from flask import current_app

from ..config import CashPolicy, get_cash_policy
from ..denominations import parse_denominations, tally
from ..errors import CriticalVarianceError
from ..extensions import db
from ..models import CashCount
from ..time_utils import business_today, utcnow
from ..validation import optional_text
from .audit_service import append_audit_event
from .cash_position_service import (
    VARIANCE_CRITICAL,
    classify_variance,
    get_expected_balance,
    require_pool,
    require_store,
)
from .concurrency import run_with_retry
from .identity_service import authorize


@dataclass(frozen=True)
class CountResult:
    count: CashCount
    total_paise: int
    expected_paise: int
    variance_paise: int
    level: str

    def to_dict(self) -> dict:
        return {
            "count": self.count.to_dict(),
            "total_paise": self.total_paise,
            "expected_paise": self.expected_paise,
            "variance_paise": self.variance_paise,
            "variance_level": self.level,
            "requires_acknowledgment": False,
        }


def _latest_same_day(store_id: int, pool: str, count_date: date) -> CashCount | None:
    return (
        db.session.query(CashCount)
        .filter_by(store_id=store_id, pool=pool, count_date=count_date)
        .order_by(CashCount.id.desc())
        .first()
    )


def submit_count(
    *,
    store_id: int,
    pool: str,
    denominations: Mapping,
    counted_by: int,
    count_date: date | None = None,
    notes: Optional[str] = None,
    acknowledge_variance: bool = False,
    policy: CashPolicy | None = None,
) -> CountResult:
    """
    Validate, tally against the expected amount for the day, classify and store.

    Raises:
        ValidationError: bad pool or denomination input
        AuthorizationError: caller may not count cash at this store
        CriticalVarianceError: variance is critical and not acknowledged (nothing stored)
    """
    policy = policy or get_cash_policy()
    require_pool(pool)
    require_store(store_id)
    authorize(counted_by, "COUNT_CASH", store_id=store_id)

    counts = parse_denominations(denominations)
    count_date = count_date or business_today(policy.business_timezone)
    note_text = optional_text(notes, "notes")

    def _op():
        expected = get_expected_balance(store_id, pool, count_date, policy=policy)
        result = tally(counts, expected_paise=expected)
        level = classify_variance(pool, result.variance_paise, policy)

        if level == VARIANCE_CRITICAL and not acknowledge_variance:
            raise CriticalVarianceError(
                f"Critical variance of {result.variance_paise} paise must be acknowledged",
                total_paise=result.total_paise,
                expected_paise=expected,
                variance_paise=result.variance_paise,
            )

        previous = _latest_same_day(store_id, pool, count_date)

        count = CashCount(
            store_id=store_id,
            pool=pool,
            count_date=count_date,
            denominations={str(k): v for k, v in result.counts().items()},
            total_counted_paise=result.total_paise,
            expected_amount_paise=expected,
            variance_paise=result.variance_paise,
            variance_level=level,
            variance_acknowledged=bool(acknowledge_variance and level == VARIANCE_CRITICAL),
            supersedes_count_id=previous.id if previous else None,
            counted_by_user_id=counted_by,
            counted_at=utcnow(),
            notes=note_text,
        )
        db.session.add(count)
        db.session.flush()

        append_audit_event(
            store_id=store_id,
            event_type="count.submitted",
            entity_type="cash_count",
            entity_id=count.id,
            actor_user_id=counted_by,
            occurred_at=count.counted_at,
            note=note_text,
            payload={
                "pool": pool,
                "total_paise": result.total_paise,
                "expected_paise": expected,
                "variance_paise": result.variance_paise,
                "variance_level": level,
                "supersedes_count_id": count.supersedes_count_id,
            },
        )

        if level != "ok":
            current_app.logger.info(
                "Count %s store=%s pool=%s variance=%s level=%s",
                count.id, store_id, pool, result.variance_paise, level,
            )

        return CountResult(
            count=count,
            total_paise=result.total_paise,
            expected_paise=expected,
            variance_paise=result.variance_paise,
            level=level,
        )

    return run_with_retry(_op)


def list_counts(
    store_id: int,
    *,
    pool: str | None = None,
    count_date: date | None = None,
    include_superseded: bool = True,
    limit: int = 100,
) -> list[CashCount]:
    q = db.session.query(CashCount).filter(CashCount.store_id == store_id)
    if pool is not None:
        q = q.filter(CashCount.pool == require_pool(pool))
    if count_date is not None:
        q = q.filter(CashCount.count_date == count_date)
    rows = q.order_by(CashCount.count_date.desc(), CashCount.id.desc()).limit(limit).all()
    if include_superseded:
        return rows
    superseded = {row.supersedes_count_id for row in rows if row.supersedes_count_id}
    return [row for row in rows if row.id not in superseded]
