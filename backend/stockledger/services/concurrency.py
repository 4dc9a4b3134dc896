# Overview: Row locking, bounded retries and transaction boundaries shared by the services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflictError
from ..extensions import db


class ConcurrentInsertError(Exception):
    """Another transaction created the same unique row first; retry to pick it up."""


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConcurrentInsertError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id columns turn a lost race into StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConcurrentInsertError (get-or-create
    races). Raises ConcurrencyConflictError once attempts are exhausted.
    """
    if attempts is None:
        attempts = current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LOCK_RETRY_BACKOFF_SECONDS", 0.1)
    attempts = max(1, int(attempts))

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError(
                    f"Concurrent update conflict persisted after {attempts} attempts"
                ) from exc
            current_app.logger.warning(
                "Concurrency conflict (attempt %s/%s): %s",
                attempt + 1,
                attempts,
                exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, commit: bool = True):
    """
    Run func as one unit of work.

    commit=True: commit on success, roll back on any failure, retry conflicts.
    commit=False: run inside the caller's unit; the caller commits or rolls back.
    """
    if not commit:
        return func()

    def _op():
        try:
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op)
