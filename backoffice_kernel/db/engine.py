"""
Module: backoffice_kernel.db.engine
Responsibility: the process-wide engine and session factory, dialect
    specific transaction setup and per-transaction timeouts.  The only
    place that knows how to connect to the database.
Architecture position: Kernel > DB.  MUST NOT import from services/,
    selectors/ or config (create_tables/drop_tables import models lazily).

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED; linearization comes from
      explicit row locks (SELECT ... FOR UPDATE) in the services.
    - SQLite connections open every transaction with BEGIN IMMEDIATE, which
      takes the database write lock up front and serializes writers.  Row
      locks are a no-op there, the whole-database lock stands in for them.
    - Every write transaction opened through the orchestrator gets a
      bounded lock wait and statement time (apply_transaction_timeout).

Failure modes:
    - RuntimeError from any accessor before init_engine_from_url().
    - sqlalchemy TimeoutError when every pooled connection is checked out
      for longer than pool_timeout.
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker

from backoffice_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_locking(engine: Engine) -> None:
    """Take over transaction control from pysqlite so BEGIN IMMEDIATE is used."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable pysqlite's implicit BEGIN; the "begin" listener emits ours.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    lock_timeout_ms: int = 5000,
) -> Engine:
    """
    Create an engine for PostgreSQL or a SQLite file database.

    ``lock_timeout_ms`` becomes the SQLite busy timeout.  PostgreSQL bounds
    lock waits per transaction instead (apply_transaction_timeout).
    """
    url = make_url(database_url)
    pool_options: dict[str, Any] = {
        "echo": echo,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
    }

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            connect_args={"timeout": lock_timeout_ms / 1000, "check_same_thread": False},
            **pool_options,
        )
        _install_sqlite_locking(engine)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
        **pool_options,
    )


def init_engine_from_url(database_url: str, **options: Any) -> Engine:
    """
    Build the process-wide engine and session factory.

    ``options`` are passed to build_engine.  A second call replaces the
    first without disposing it; call reset_engine() for that.
    """
    global _engine, _SessionFactory

    _engine = build_engine(database_url, **options)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": options.get("pool_size", 20),
            "lock_timeout_ms": options.get("lock_timeout_ms", 5000),
        },
    )
    return _engine


def init_engine_from_settings(settings) -> Engine:
    """Initialize the engine from a ``KernelSettings`` instance."""
    return init_engine_from_url(
        settings.database_url,
        echo=settings.echo_sql,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        lock_timeout_ms=settings.transaction_timeout_ms,
    )


def _require_initialized() -> sessionmaker[Session]:
    if _engine is None or _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    _require_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory AccountingCore and worker threads open sessions from."""
    return _require_initialized()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One session, committed on normal exit and rolled back on any exception.

    For scripts and maintenance tasks.  Core operations go through
    AccountingCore, which also applies timeouts and logs outcomes.
    """
    session = _require_initialized()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def is_postgres_session(session: Session) -> bool:
    return session.get_bind().dialect.name == "postgresql"


def is_postgres() -> bool:
    """True when the process-wide engine is PostgreSQL."""
    return _engine is not None and _engine.dialect.name == "postgresql"


def apply_transaction_timeout(session: Session, timeout_ms: int) -> None:
    """
    Bound lock waits and statement time for the current transaction.

    PostgreSQL only (SET LOCAL expires with the transaction).  On SQLite
    the connection's busy timeout plays the same role.
    """
    if not is_postgres_session(session):
        return
    timeout = int(timeout_ms)
    session.execute(text(f"SET LOCAL lock_timeout = {timeout}"))
    session.execute(text(f"SET LOCAL statement_timeout = {timeout}"))


def begin_snapshot_read(session: Session) -> None:
    """
    Start the session's transaction with a consistent snapshot.

    Must be called before any other statement in the transaction.
    PostgreSQL gets REPEATABLE READ; SQLite transactions are already
    serialized by BEGIN IMMEDIATE.
    """
    if is_postgres_session(session):
        session.connection(execution_options={"isolation_level": "REPEATABLE READ"})


def create_tables() -> None:
    from backoffice_kernel.db.base import Base
    import backoffice_kernel.models  # noqa: F401  registers every table

    Base.metadata.create_all(get_engine())
    logger.info("tables_created", extra={"table_count": len(Base.metadata.tables)})


def drop_tables() -> None:
    """Drop every kernel table.  Test and development use."""
    from backoffice_kernel.db.base import Base
    import backoffice_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_at_exit() -> None:
    if _engine is not None:
        _engine.dispose()
