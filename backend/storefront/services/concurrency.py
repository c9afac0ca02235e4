# Overview: Service-layer helpers for concurrency; row locks, conditional updates, and retries.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def conditional_update(stmt) -> int:
    """
    Execute a guarded UPDATE inside the current transaction.

    WHY: A single `UPDATE ... WHERE <guard>` is atomic on every backend we
    support (including SQLite, which ignores FOR UPDATE). The row count is
    the only source of truth for whether the caller won the race.

    Returns:
        Number of rows changed (0 means the guard did not hold)
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts). The session is rolled
    back before each new attempt, and before any other exception propagates.
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
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc

