"""
Engine and session management.

PostgreSQL is the production backend: READ COMMITTED with explicit
``SELECT ... FOR UPDATE`` on receipt layers, pooled through QueuePool.
SQLite serves the tests.  pysqlite's implicit transaction handling is
switched off there so ``session.begin_nested()`` emits real SAVEPOINTs;
per-line atomicity in the allocation engine and the batch runner relies
on them.

``session_scope()`` is the commit-or-rollback boundary around one unit of
work, typically a whole batch run.  Services underneath only flush.
"""

from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from costing_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


@dataclass(frozen=True)
class PoolSettings:
    """QueuePool sizing for server databases.  Ignored for SQLite."""

    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True


_engine: Engine | None = None
_factory: sessionmaker[Session] | None = None


def _sqlite_engine(url, echo: bool) -> Engine:
    options: dict[str, Any] = {
        "echo": echo,
        "connect_args": {"check_same_thread": False},
    }
    if url.database in (None, "", ":memory:"):
        # One shared connection, otherwise each checkout sees an empty database.
        options["poolclass"] = StaticPool
    engine = create_engine(url, **options)

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(
    database_url: str,
    echo: bool = False,
    pool: PoolSettings | None = None,
    **pool_overrides: Any,
) -> Engine:
    """
    Create an engine for ``database_url`` without registering it.

    ``pool_overrides`` are PoolSettings field names, e.g.
    ``build_engine(url, pool_size=5)``.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return _sqlite_engine(url, echo)

    settings = PoolSettings(**{**asdict(pool or PoolSettings()), **pool_overrides})
    return create_engine(
        url,
        echo=echo,
        poolclass=QueuePool,
        isolation_level="READ COMMITTED",
        **asdict(settings),
    )


def init_engine_from_url(database_url: str, echo: bool = False, **pool_overrides: Any) -> Engine:
    """Build the process-wide engine and session factory.  A second call replaces the first."""
    global _engine, _factory

    if _engine is not None:
        _engine.dispose()
    _engine = build_engine(database_url, echo=echo, **pool_overrides)
    _factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _factory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on clean exit, roll back and re-raise otherwise.  Always closes.

        with session_scope() as session:
            CostingOrchestrator.from_session(session).apply_cogs(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from costing_kernel.db.base import Base
    import costing_batch.models  # noqa: F401
    import costing_kernel.models  # noqa: F401

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    metadata = _metadata()
    metadata.create_all(engine or get_engine())
    logger.info("tables_created", extra={"table_count": len(metadata.tables)})


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every costing table.  Tests and local resets only."""
    _metadata().drop_all(engine or get_engine())


def reset_engine() -> None:
    global _engine, _factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _factory = None


def is_postgres(bind: Session | Engine | None = None) -> bool:
    """True when ``bind`` (or the process-wide engine) talks to PostgreSQL."""
    if isinstance(bind, Session):
        bind = bind.get_bind()
    target = bind if bind is not None else _engine
    return target is not None and target.dialect.name == "postgresql"
