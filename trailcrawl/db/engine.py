from typing import Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from trailcrawl import config
from trailcrawl.db.models import Base

# Simple cache to avoid creating multiple Engine objects for the same URL in one process.
_ENGINES: Dict[str, Engine] = {}


def _sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


def make_engine(database_url: Optional[str] = None) -> Engine:
    """Create or return a cached SQLAlchemy Engine for `database_url`.

    Defaults to a SQLite file next to the working directory when no URL is
    configured. In-memory SQLite shares one connection across threads.
    """
    database_url = database_url or config.DATABASE_URL or "sqlite:///trailcrawl.db"
    engine = _ENGINES.get(database_url)
    if engine is not None:
        return engine
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}, "future": True}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        if database_url not in ("sqlite://", "sqlite:///:memory:"):
            event.listen(engine, "connect", _sqlite_pragmas)
    else:
        engine = create_engine(database_url, future=True, pool_pre_ping=True)
    _ENGINES[database_url] = engine
    return engine


def init_schema(engine: Engine) -> Engine:
    Base.metadata.create_all(engine)
    return engine
