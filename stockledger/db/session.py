"""SQLAlchemy engine and session helpers."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..core.config import settings
from ..core.exceptions import StorageUnavailableError, TransactionTimeoutError
from ..core.logging import log_extra

logger = logging.getLogger(__name__)

# ``Base`` is the parent class for every SQLAlchemy model defined in models/.
Base = declarative_base()


# Connection execution option that makes the "begin" hook take the SQLite
# write lock up front. Only ``UnitOfWork`` sets it.
WRITE_LOCK_OPTION = "stockledger_write_lock"


def build_engine(url: str, *, lock_wait_seconds: float | None = None, **kwargs) -> Engine:
    """Create an engine configured for stock ledger transactions.

    SQLite has no row locks. A transaction opened with
    :data:`WRITE_LOCK_OPTION` starts with ``BEGIN IMMEDIATE``: the write lock
    is taken before the product row is read, and concurrent mutations queue on
    the busy timeout instead of racing on a stale read. Everything else gets a
    plain deferred ``BEGIN``, and WAL journaling lets those readers run while a
    writer holds the lock.
    """

    wait = settings.STOCK_LOCK_WAIT_SECONDS if lock_wait_seconds is None else lock_wait_seconds
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    connect_args.setdefault("timeout", wait)
    engine = create_engine(url, connect_args=connect_args, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):
        # Hand transaction control to the "begin" hook below.
        dbapi_conn.isolation_level = None
        cur = dbapi_conn.cursor()
        try:
            cur.execute("PRAGMA foreign_keys=ON")
            cur.execute(f"PRAGMA busy_timeout={int(wait * 1000)}")
            cur.execute("PRAGMA journal_mode=WAL")
        finally:
            cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(WRITE_LOCK_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")

    return engine


# The engine manages the connection pool; one per process.
engine = build_engine(settings.DB_URL)
# ``SessionLocal`` builds new sessions per request.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """FastAPI dependency that yields a session and guarantees cleanup."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_lock_timeout(exc: DBAPIError) -> bool:
    """True when the driver gave up waiting for a lock held by someone else."""

    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in {"55P03", "57014"}:  # lock_not_available, query_canceled
        return True
    text = str(orig or exc).lower()
    return "database is locked" in text or "database table is locked" in text


def translate_storage_error(exc: SQLAlchemyError, *, operation: str) -> Exception:
    """Map a SQLAlchemy failure onto the ledger's error taxonomy."""

    if isinstance(exc, OperationalError) and is_lock_timeout(exc):
        logger.warning("storage.lock_timeout", extra=log_extra(operation=operation))
        return TransactionTimeoutError()
    logger.error("storage.unavailable", exc_info=exc, extra=log_extra(operation=operation))
    return StorageUnavailableError()


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise driver failures inside the block as ledger errors."""

    try:
        yield
    except SQLAlchemyError as exc:
        raise translate_storage_error(exc, operation=operation) from exc


def commit_changes(db: Session, *, operation: str) -> None:
    """Commit ``db``, rolling back and translating driver failures.

    ``IntegrityError`` is re-raised untouched so callers can map it onto
    their own conflict error.
    """

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise translate_storage_error(exc, operation=operation) from exc


def init_db(bind: Engine | None = None) -> None:
    # Importing the models registers them with the metadata.
    from ..models import inventory_log, product, user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
