# Overview: Concurrency helpers: retry on lock/stale-data failures and conditional writes.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def conditional_update(stmt) -> int:
    """
    Execute an UPDATE whose WHERE clause encodes the expected current state
    (compare-and-set) and return the number of rows it changed.

    A return of 0 means another writer got there first; callers turn that
    into a ConflictError instead of overwriting.

    The identity map is not synchronized: callers refresh the objects they
    go on to read.
    """
    result = db.session.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (database locked, deadlock) and
    StaleDataError (optimistic version_id conflicts). Business errors
    (ValidationError, ConflictError) propagate immediately.
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


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run a unit of work and commit it, retrying the whole unit on conflict.

    The retry wraps the work and the commit together: after a rollback the
    session is empty, so retrying only the commit would commit nothing.
    """
    def _op():
        result = func()
        db.session.commit()
        return result
    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
