# Overview: Unit-of-work helpers shared by every ledger mutation.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the rows a mutation is about to change.

    Rows already in the session are overwritten with what the locked read
    returns, so checks made after the lock see the committed state.

    SQLite has no row locks and ignores this; there the version_id column on
    Voucher, Charge, Merchant and Commission turns a racing write into
    StaleDataError, which run_with_retry absorbs.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 5, backoff_base: float = 0.05):
    """
    Run func (read, mutate, commit) until it succeeds or attempts run out.

    Lock timeouts and version conflicts are retried with exponential
    backoff. Any other exception rolls back and propagates on the first try.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except RETRYABLE:
            db.session.rollback()
            if attempt == attempts:
                raise
            time.sleep(backoff_base * 2 ** (attempt - 1))
        except Exception:
            db.session.rollback()
            raise


def release_read_transaction() -> None:
    """Close the implicit read transaction; call before any gateway request."""
    db.session.commit()
