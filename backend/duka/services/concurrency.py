# Overview: Transaction and retry helpers shared by every write path.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError, DukaError, PersistenceError


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the write lock comes from BEGIN IMMEDIATE in unit_of_work().
    """
    return query.with_for_update()


def _begin_immediate() -> None:
    connection = db.session.connection()
    raw = connection.connection.dbapi_connection
    # A DBAPI transaction already open means a write happened earlier in this
    # session; SQLite refuses a nested BEGIN.
    if not getattr(raw, "in_transaction", False):
        db.session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def unit_of_work():
    """
    One all-or-nothing database transaction.

    Everything written through db.session inside the block commits together
    on normal exit. On any exception the whole session is rolled back and:
    - DukaError subclasses are re-raised verbatim
    - IntegrityError becomes ConflictError (duplicate unique key)
    - OperationalError / StaleDataError are re-raised so run_with_retry can retry
    - any other SQLAlchemyError becomes PersistenceError
    """
    if db.engine.dialect.name == "sqlite":
        _begin_immediate()
    try:
        yield db.session
        db.session.commit()
    except DukaError:
        db.session.rollback()
        raise
    except RETRYABLE_ERRORS:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Duplicate or conflicting record",
            details={"reason": str(exc.orig)},
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Database error; no changes were saved") from exc
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, busy timeouts) and
    StaleDataError (optimistic locking conflicts). When attempts run out the
    failure surfaces as PersistenceError; the session has already been
    rolled back, so nothing was partially committed.
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %d attempts: %s", attempts, exc.__class__.__name__
                )
                raise PersistenceError(
                    "The store was busy; the operation was rolled back",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))

