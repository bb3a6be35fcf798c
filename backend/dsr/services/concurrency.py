# Overview: Locking, retry and single-resolution helpers shared by the cash workflows.

from __future__ import annotations

import time
from typing import Iterable

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StateConflictError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id column on locked rows still catches lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_with_retry(*, attempts: int = 3, backoff_base: float = 0.1):
    """Commit current session with retry handling."""
    def _op():
        db.session.commit()
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def claim_status(
    model,
    obj,
    from_statuses: Iterable[str],
    values: dict,
    *,
    label: str | None = None,
    column: str = "status",
):
    """
    Conditional status transition: UPDATE ... WHERE id = ? AND status IN (...).

    Exactly one concurrent caller sees rowcount 1; everyone else gets
    StateConflictError carrying the status that won. `obj` is refreshed so
    callers see the committed-to-be state.
    """
    allowed = tuple(from_statuses)
    db.session.flush()
    result = db.session.execute(
        update(model)
        .where(model.id == obj.id, getattr(model, column).in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(obj)
    if result.rowcount != 1:
        name = label or model.__tablename__
        raise StateConflictError(
            f"{name} {obj.id} is {getattr(obj, column)}, expected {' or '.join(allowed)}",
            current_status=getattr(obj, column),
        )
    return obj
