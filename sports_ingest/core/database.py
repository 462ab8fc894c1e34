"""
Database configuration and session management.
"""
import os
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _engine_kwargs(url: str) -> dict:
    echo = os.getenv("SQL_ECHO", "false").lower() == "true"
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "echo": echo}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before using
        "echo": echo,
    }


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Let pysqlite honour SAVEPOINT.

    The driver's implicit transaction handling breaks nested transactions,
    which the batch upsert fallback relies on. BEGIN is emitted explicitly
    instead. See the SQLAlchemy pysqlite "Serializable isolation / Savepoints" notes.
    """
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(url: str) -> Engine:
    """Create an engine for ``url`` with driver-specific settings."""
    engine = create_engine(url, **_engine_kwargs(url))
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(engine)
    return engine


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine, _SessionLocal

    if _engine is None:
        from sports_ingest.core.config import settings
        _engine = build_engine(settings.DATABASE_URL)
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def SessionLocal() -> Session:
    """Open a new session bound to the application engine."""
    get_engine()
    return _SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.

    Usage in FastAPI:
    ```python
    @router.get("/endpoint")
    def endpoint(db: Session = Depends(get_db)):
        ...
    ```
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables."""
    from sports_ingest.models.tables import Base
    Base.metadata.create_all(bind=get_engine(), checkfirst=True)
