# Overview: Transaction boundary and row locking shared by every ledger service.

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

_DEPTH_KEY = "posledger.unit_of_work_depth"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the unit of work takes
    the database write lock up front with BEGIN IMMEDIATE instead.
    """
    return query.with_for_update()


def _begin_immediate_if_sqlite() -> None:
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    # A write already pending on this connection means sqlite is mid-transaction
    if not getattr(dbapi_conn, "in_transaction", False):
        db.session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def unit_of_work():
    """
    One all-or-nothing storage transaction.

    Everything written inside the block commits together when the outermost
    block exits cleanly; any exception rolls all of it back. Nested blocks
    join the enclosing unit instead of committing on their own, so a service
    that is atomic when called directly is simply one step when composed.

    Optimistic-lock conflicts (StaleDataError) and lock timeouts surface as
    ConcurrentModificationError. Nothing is retried here.
    """
    depth = db.session.info.get(_DEPTH_KEY, 0)
    if depth:
        db.session.info[_DEPTH_KEY] = depth + 1
        try:
            yield db.session
        finally:
            db.session.info[_DEPTH_KEY] = depth
        return

    db.session.info[_DEPTH_KEY] = 1
    try:
        _begin_immediate_if_sqlite()
        yield db.session
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Optimistic lock conflict: %s", exc)
        raise ConcurrentModificationError(
            "Record was modified by another transaction; retry the operation"
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        if "locked" in str(exc).lower():
            raise ConcurrentModificationError(
                "Database is busy with a conflicting transaction; retry the operation"
            ) from exc
        raise
    except BaseException:
        db.session.rollback()
        raise
    finally:
        db.session.info[_DEPTH_KEY] = 0
