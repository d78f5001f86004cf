"""
Database connection setup for the costing engine and the operator CLI.

One process-wide engine and session factory live here, created by
``init_engine_from_url()``.  ``build_engine()`` is the side-effect free
variant that tests use to get an isolated database.

PostgreSQL runs at READ COMMITTED; the ledger takes explicit row locks and
conditional UPDATEs where it needs more.  SQLite gets working SAVEPOINTs so
a failed order line can be rolled back without losing the rest of the run.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from inventory_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_IN_MEMORY_SQLITE = frozenset({"sqlite://", "sqlite:///:memory:"})

_POSTGRES_POOL = {
    "pool_size": 10,
    "max_overflow": 5,
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "pool_recycle": 1800,
}

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    # pysqlite starts transactions on its own and then mishandles SAVEPOINT;
    # switch that off and have SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """
    Create an engine for ``database_url`` without registering it globally.

    In-memory SQLite URLs are pinned to a single shared connection, otherwise
    each session would see its own empty database.  ``pool_options``
    override the PostgreSQL pool defaults and are ignored for SQLite.
    """
    if database_url.startswith("sqlite"):
        sqlite_options: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in _IN_MEMORY_SQLITE:
            sqlite_options["poolclass"] = StaticPool
        engine = create_engine(database_url, echo=echo, **sqlite_options)
        return enable_sqlite_savepoints(engine)

    pool = {**_POSTGRES_POOL, **pool_options}
    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **pool,
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
) -> Engine:
    """Build the process-wide engine and bind the session factory to it."""
    global _engine, _session_factory

    engine = build_engine(
        database_url, echo=echo, pool_size=pool_size, max_overflow=max_overflow
    )
    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": engine.dialect.name, "pool_size": pool_size, "echo": echo},
    )
    return engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("No database engine; call init_engine_from_url() first.")


def get_engine() -> Engine:
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session() -> Session:
    """New session from the process-wide factory."""
    if _session_factory is None:
        raise _not_initialized()
    return _session_factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Unit of work for one operator command.

    Commits when the block exits cleanly.  Any exception rolls the session
    back and propagates; the session is always closed.

        with session_scope() as session:
            COGSService(session).apply_cogs(start, end, "FIFO")
    """
    session = get_session()
    try:
        yield session
        session.commit()
        logger.debug("session_committed")
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create all mapped tables, importing every model module first."""
    from inventory_kernel.db.base import Base
    from inventory_kernel.models import import_all_models

    import_all_models()
    Base.metadata.create_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose of the process-wide engine; used between tests."""
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        engine.dispose()


atexit.register(reset_engine)
