# Overview: Transaction and row-locking helpers shared by every stock-writing service.

"""
Write transactions for stock changes follow one shape:

    def _op():
        begin_write_transaction()
        ...lock rows, re-read on-hand, validate, insert...
        return result

    return run_atomic(_op, operation="...")

run_atomic commits on success and rolls back on any exception, so a caller
either sees the whole operation committed or exactly one raised error.
Lock waits that exceed LOCK_TIMEOUT_MS surface as ConcurrencyConflictError.
The caller decides whether to retry; nothing here retries on its own.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflictError, ConflictError, DomainError
from ..extensions import db

logger = logging.getLogger(__name__)

# lock_not_available, deadlock_detected, serialization_failure
_PG_LOCK_CODES = {"55P03", "40P01", "40001"}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock up front instead.
    """
    return query.with_for_update()


def _dialect_name() -> str:
    return db.session.get_bind().dialect.name


def begin_write_transaction() -> None:
    """
    Open the current session transaction for writing.

    SQLite: BEGIN IMMEDIATE, so the check-then-insert sequence runs under the
    database write lock and a concurrent writer waits (busy timeout) instead
    of reading stale on-hand. Skipped when the connection already holds an
    open transaction (e.g. unflushed test fixtures in the same session).

    PostgreSQL: bound row-lock waits with SET LOCAL lock_timeout.
    """
    dialect = _dialect_name()
    if dialect == "sqlite":
        raw = db.session.connection().connection.dbapi_connection
        if not raw.in_transaction:
            db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql":
        timeout_ms = int(current_app.config.get("LOCK_TIMEOUT_MS", 5000))
        db.session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


def _is_lock_failure(exc: OperationalError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _PG_LOCK_CODES:
        return True
    message = str(orig or exc).lower()
    return "locked" in message or "busy" in message or "deadlock" in message or "lock wait" in message


def run_atomic(func, *, operation: str):
    """
    Run func() in one transaction and commit it.

    - DomainError: rolled back and re-raised unchanged.
    - Lock timeouts, deadlocks and stale version checks: rolled back and
      raised as ConcurrencyConflictError (retryable by the caller).
    - IntegrityError: rolled back and raised as ConflictError.
    - Anything else: rolled back and re-raised.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except DomainError:
        db.session.rollback()
        raise
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent modification during %s: %s", operation, exc)
        raise ConcurrencyConflictError(
            "Record was modified concurrently; retry the operation",
            details={"operation": operation},
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        if not _is_lock_failure(exc):
            raise
        logger.warning("Lock wait aborted during %s: %s", operation, exc.orig)
        raise ConcurrencyConflictError(
            "Could not acquire locks in time; retry the operation",
            details={"operation": operation},
        ) from exc
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Write conflicts with existing data",
            details={"operation": operation, "constraint": str(exc.orig)},
        ) from exc
    except Exception:
        db.session.rollback()
        raise
