# telecare/database.py
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
import structlog

from .config import Settings

logger = structlog.get_logger(__name__)

# Base class for models
Base = declarative_base()


def create_db_engine(settings: Settings) -> Engine:
    """Build the engine for ``settings.database_url``.

    The caller owns the returned engine and must ``dispose()`` it.
    """
    url = settings.database_url
    if settings.is_sqlite:
        connect_args = {"check_same_thread": False, "timeout": settings.sqlite_busy_timeout}
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=False)
        else:
            engine = create_engine(url, connect_args=connect_args, poolclass=NullPool, echo=False)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=False,
        )
    logger.info("database_engine_created", dialect=engine.dialect.name)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit stays off so committed objects can still be rendered
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


# Dependency to get database session
def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def create_tables(engine: Engine):
    """Create all database tables - models must be imported first"""
    from . import models  # noqa: F401  registers tables on Base.metadata

    Base.metadata.create_all(bind=engine)
    logger.info("database_tables_created")


def drop_tables(engine: Engine):
    """Drop all database tables"""
    from . import models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    logger.info("database_tables_dropped")
