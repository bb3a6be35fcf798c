# Overview: Request priority for transfers and adjustments, derived from amount and escalated by age.

from __future__ import annotations

from datetime import datetime

from ..config import CashPolicy
from ..time_utils import utcnow


PRIORITIES = ("low", "medium", "high")


def derive_priority(amount_paise: int, policy: CashPolicy, *, adjustment_type: str | None = None) -> str:
    # Opening balances block everything else at the store
    if adjustment_type == "initial_setup":
        return "high"
    magnitude = abs(amount_paise)
    if magnitude >= policy.priority_high_from_paise:
        return "high"
    if magnitude >= policy.priority_medium_from_paise:
        return "medium"
    return "low"


def age_hours(requested_at: datetime | None, now: datetime | None = None) -> float:
    if requested_at is None:
        return 0.0
    now = now or utcnow()
    if requested_at.tzinfo is not None:
        requested_at = requested_at.replace(tzinfo=None)
    return max(0.0, (now - requested_at).total_seconds() / 3600.0)


def effective_priority(priority: str, requested_at: datetime | None, policy: CashPolicy, now: datetime | None = None) -> str:
    """
    Stored priority bumped one level after PRIORITY_ESCALATE_AFTER_HOURS and
    straight to high after three times that.
    """
    hours = age_hours(requested_at, now)
    threshold = policy.priority_escalate_after_hours
    level = PRIORITIES.index(priority) if priority in PRIORITIES else 0
    if threshold > 0 and hours >= threshold * 3:
        level = len(PRIORITIES) - 1
    elif threshold > 0 and hours >= threshold:
        level = min(level + 1, len(PRIORITIES) - 1)
    return PRIORITIES[level]


def priority_sort_key(priority: str, requested_at: datetime | None):
    """Highest priority first, then oldest first."""
    rank = PRIORITIES.index(priority) if priority in PRIORITIES else 0
    return (-rank, requested_at or datetime.min)
