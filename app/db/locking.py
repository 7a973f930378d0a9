"""
Row locking and transient-failure retry for ledger critical sections.

Every write to a student's ledger (payment insert, aggregate recompute, credit carryover)
runs under row locks on that student's ledger records. PostgreSQL gets a bounded
lock_timeout per transaction; SQLite has no row locks, so its transactions are opened
with BEGIN IMMEDIATE and writers queue on the database lock instead.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from app.core.config import settings
from app.core.exceptions import LedgerBusyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# lock_not_available, serialization_failure, deadlock_detected
_TRANSIENT_SQLSTATES = {"55P03", "40001", "40P01"}


def use_immediate_transactions(engine: AsyncEngine) -> None:
    """On SQLite, take the write lock when a transaction begins instead of on first write."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


async def set_lock_timeout(db: AsyncSession) -> None:
    """Bound how long the current transaction waits for row locks (PostgreSQL only)."""
    if db.bind.dialect.name != "postgresql":
        return
    timeout_ms = int(settings.ledger_lock_timeout_ms)
    await db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _TRANSIENT_SQLSTATES:
            return True
        return "database is locked" in str(orig)
    return False


async def run_with_transient_retry(
    db: AsyncSession,
    unit: Callable[[], Awaitable[T]],
    *,
    description: str,
) -> T:
    """
    Run one transactional unit, rolling back and retrying on lock timeouts,
    serialization failures and deadlocks. The unit must re-read everything it
    needs: nothing loaded before a rollback is reused.
    """
    attempts = max(0, int(settings.transient_retry_attempts))
    attempt = 0
    while True:
        try:
            return await unit()
        except Exception as exc:
            await db.rollback()
            if not is_transient_error(exc):
                raise
            if attempt >= attempts:
                logger.error("Giving up on %s after %d attempt(s): %s", description, attempt + 1, exc)
                raise LedgerBusyError() from exc
            delay = settings.transient_retry_backoff_seconds * (2 ** attempt)
            attempt += 1
            logger.warning("Transient failure during %s, retrying in %.2fs: %s", description, delay, exc)
            await asyncio.sleep(delay)
