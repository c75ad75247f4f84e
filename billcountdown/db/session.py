from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from billcountdown.config.settings import settings


def sqlite_connect_args(database_url: str, busy_timeout: float) -> Dict[str, Any]:
    """
    Connection arguments for SQLite URLs; empty for other backends.

    FastAPI opens and closes dependency sessions on threadpool workers, so the
    connection may not be pinned to one thread. Jobs call the sync session from
    the event loop, so a lock wait stalls every coroutine in the batch; keep
    the busy timeout short.
    """
    if not database_url.startswith("sqlite"):
        return {}
    return {"check_same_thread": False, "timeout": busy_timeout}


_database_url = str(settings.DATABASE_URL)

engine = create_engine(
    _database_url,
    pool_pre_ping=True,
    pool_recycle=3600,
    connect_args=sqlite_connect_args(
        _database_url, settings.SQLITE_BUSY_TIMEOUT_SECONDS
    ),
    echo=False,
)

SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


def get_sync_session():
    """Dependency to get sync database session"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Factory for jobs that open one session per concurrent unit of work."""
    return SessionLocal
