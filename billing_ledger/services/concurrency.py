# Overview: Service-layer helpers for row locking and optimistic-lock retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, invoice_id: int | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). `func` must reload everything it reads,
    since the session is rolled back between attempts. Once attempts are
    exhausted a StaleDataError surfaces as ConcurrencyConflict.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Concurrent update on invoice %s (attempt %d/%d): %s",
                invoice_id, attempt + 1, attempts, exc,
            )
            if attempt >= attempts - 1:
                if isinstance(exc, StaleDataError):
                    raise ConcurrencyConflict(invoice_id) from exc
                raise
            time.sleep(backoff_base * (2 ** attempt))
    raise ValueError("attempts must be at least 1")
