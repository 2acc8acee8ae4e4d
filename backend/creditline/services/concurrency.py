# Overview: Locking, write-transaction and retry helpers shared by every mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict, InternalError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already in the identity map are refreshed from the database, so
    the caller never decides on a value read before the lock was taken.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there begin_write() takes the
    database write lock up front instead.
    """
    return query.with_for_update().populate_existing()


def lock_rows(model, ids):
    """
    Lock several rows of one table in ascending id order.

    LOCK ORDER: customer -> delivery -> orders -> products -> register.
    Within one table rows are always locked by ascending id so two
    transactions touching overlapping sets cannot deadlock.
    """
    ordered = sorted(set(ids))
    if not ordered:
        return {}
    rows = (
        lock_for_update(db.session.query(model).filter(model.id.in_(ordered)))
        .order_by(model.id)
        .all()
    )
    return {row.id: row for row in rows}


def begin_write():
    """
    Open the write transaction.

    On SQLite this issues BEGIN IMMEDIATE so the read-check-write sequences
    below (stock check, credit check) run under the single writer lock.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.driver_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks, deadlocks) and StaleDataError
    (optimistic version conflicts). Every failure rolls the session back so
    no partial write survives and SQLite releases its write lock.

    - retries exhausted -> ConcurrencyConflict (retryable by the caller)
    - other storage failures -> InternalError (logged, not retried)
    - domain errors propagate unchanged
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %s attempts on concurrency failure: %s", attempts, exc
                )
                raise ConcurrencyConflict(
                    "Concurrent modification, retry the request",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Storage failure")
            raise InternalError() from exc
        except Exception:
            db.session.rollback()
            raise
