"""
Module: ledger_kernel.db.engine
Responsibility: The one place the ledger's database connection is made,
    plus the commit-or-rollback scope every unit of work runs in.
Architecture position: Kernel > DB.  Imports db/base.py and
    db/immutability.py; ``create_tables`` imports the model modules so the
    metadata is complete.  Nothing here knows about vouchers.

Backends:
    - PostgreSQL in production: READ COMMITTED, with the numbering counter
      row taken FOR UPDATE.
    - SQLite for tests and local tools.  Every transaction opens with
      BEGIN IMMEDIATE, so writers queue on the database lock instead of
      failing with SQLITE_BUSY halfway through.  A thread therefore must
      not start a second transaction while its own session holds one; the
      workflow takes voucher and statement numbers before it opens its
      unit of work.

Every session handed out here runs with the immutability listeners
(posted vouchers frozen, allocations and history write-once).
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _sqlite_engine(database_url: str, echo: bool, lock_timeout: int) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": lock_timeout},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite's implicit BEGIN is disabled; SQLAlchemy issues our own.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={lock_timeout * 1000}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Connect the ledger to ``database_url`` and build its session factory.

    Sessions from the factory do not expire on commit, so a voucher read
    inside a unit of work can still be turned into a snapshot after it.
    On SQLite ``pool_timeout`` doubles as the lock wait; the pool
    arguments apply to server databases only.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = _sqlite_engine(database_url, echo, pool_timeout)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from ledger_kernel.db.immutability import register_immutability_listeners

    register_immutability_listeners()

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("Ledger database not initialized; call init_engine_from_url() first")


def get_engine() -> Engine:
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory the workflow opens one session per unit of work from."""
    if _SessionFactory is None:
        raise _not_initialized()
    return _SessionFactory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

        with session_scope(factory) as session:
            VoucherStore(session).add(voucher)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("unit_of_work_rolled_back")
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every ledger table: vouchers, statements, allocations, history and counters."""
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401
    import ledger_kernel.services.sequence_service  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from ledger_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose of the engine and forget the factory.  Used between tests."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
