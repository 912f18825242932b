"""
Relational database connection and utilities.

Provides the engine and session factory singletons, schema creation, and a
transactional session scope. All connection lifecycle events are logged for
observability.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from oncoassist.config.config import get_settings
from oncoassist.config.logging_config import get_logger
from oncoassist.database.tables import Base

logger = get_logger(__name__)

# Singleton instances
_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the given URL.

    SQLite connections get foreign key enforcement switched on; in-memory
    SQLite shares one connection so every session sees the same database.

    Args:
        database_url: SQLAlchemy database URL.
        echo: Echo SQL statements.

    Returns:
        Configured Engine.
    """
    kwargs: dict = {"echo": echo, "future": True}
    is_sqlite = database_url.startswith("sqlite")

    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory whose objects stay readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


def get_engine() -> Engine:
    """
    Get or create the engine singleton.

    Returns:
        Engine for the configured database URL.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_database_engine(settings.database_url, echo=settings.database_echo)
        logger.info("Database engine initialized", dialect=_engine.dialect.name)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get or create the session factory singleton.

    Creates the schema on first use.
    """
    global _session_factory
    if _session_factory is None:
        engine = get_engine()
        init_db(engine)
        _session_factory = create_session_factory(engine)
    return _session_factory


def init_db(engine: Engine) -> None:
    """
    Create all tables that do not exist yet.

    Args:
        engine: The engine to create tables on.
    """
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ready", tables=sorted(Base.metadata.tables))


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """
    Transactional scope: commit on success, roll back on any error.

    Args:
        factory: Session factory to open the session from.

    Yields:
        An open session.
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_connection() -> None:
    """Dispose of the engine and reset the singletons."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
        logger.info("Database connection closed")
    _engine = None
    _session_factory = None
