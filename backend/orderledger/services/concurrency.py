# Overview: Transaction scope, row locking and SQLite writer serialization for core operations.

"""
Concurrency helpers.

LOCKING MODEL:
- Every mutating operation runs inside atomic(session): commit on success,
  rollback on any exception, never a partial write.
- Rows that gate a decision (the order header, item balances) are loaded
  through lock_for_update(). PostgreSQL / MySQL honor SELECT ... FOR UPDATE.
- SQLite ignores FOR UPDATE, so install_sqlite_locking() makes every
  transaction BEGIN IMMEDIATE. Writers on the same database file then run
  one at a time; a waiting writer gives up after the busy timeout.
- Lock order: order row first, then item balances by (item_id, warehouse).

No retries happen here. A lock wait that times out surfaces as
ConflictError and the caller decides whether to try again.
"""

from __future__ import annotations

import logging
import weakref
from contextlib import contextmanager

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError

logger = logging.getLogger(__name__)

_LOCK_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock wait timeout",
    "could not obtain lock",
    "deadlock",
)

# Unique keys that two writers can both try to create first
_RACE_CONSTRAINTS = (
    "uq_item_balances_item_warehouse",
    "item_balances.item_id, item_balances.warehouse_code",
)

_serialized_engines = weakref.WeakSet()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; see install_sqlite_locking().
    """
    return query.with_for_update()


def is_lock_error(exc: BaseException) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


def is_race_violation(exc: BaseException) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _RACE_CONSTRAINTS)


@contextmanager
def atomic(session):
    """
    Run a unit of work in one transaction.

    Commits when the block exits cleanly. On any exception the session is
    rolled back and the exception re-raised; lock timeouts, optimistic
    version conflicts and a lost race to create an item balance row are
    re-raised as ConflictError.
    """
    try:
        yield session
        session.flush()
        session.commit()
    except StaleDataError as exc:
        session.rollback()
        raise ConflictError("Record was modified by another transaction") from exc
    except IntegrityError as exc:
        session.rollback()
        if is_race_violation(exc):
            raise ConflictError("Balance row was created by another transaction; try again") from exc
        raise
    except OperationalError as exc:
        session.rollback()
        if is_lock_error(exc):
            raise ConflictError("Timed out waiting for a lock; try again") from exc
        raise
    except Exception:
        session.rollback()
        raise


def set_lock_timeout(session, timeout_seconds: float) -> None:
    """Bound row-lock waits for the current transaction (PostgreSQL only)."""
    if session.get_bind().dialect.name != "postgresql":
        return
    # SET LOCAL does not accept bind parameters
    session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout_seconds * 1000)}ms'"))


def install_sqlite_locking(engine, timeout_seconds: float) -> None:
    """
    Serialize SQLite writers.

    pysqlite's own transaction handling is switched off so that SQLAlchemy's
    "begin" event can emit BEGIN IMMEDIATE, which takes the database write
    lock up front. busy_timeout bounds how long a second writer waits.
    """
    if engine.dialect.name != "sqlite":
        return
    if engine in _serialized_engines:
        return

    busy_ms = int(timeout_seconds * 1000)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {busy_ms}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    _serialized_engines.add(engine)
    logger.debug("SQLite writer serialization enabled (busy_timeout=%sms)", busy_ms)
