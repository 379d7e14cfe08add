import logging
from typing import Generator, Optional, Any

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .config import database_url, store_timeout


# Load environment variables from .env if present
load_dotenv()

logger = logging.getLogger("propass.db")


def get_engine(dsn: Optional[str] = None):
    """
    Create a synchronous SQLAlchemy engine from the given DSN or DATABASE_URL env var.

    Every store call is bounded by STORE_TIMEOUT_SEC: SQLite uses it as the busy
    timeout, pooled drivers as the checkout timeout.
    """
    effective_dsn = dsn or database_url()
    timeout = store_timeout()
    options: dict = {"future": True, "pool_pre_ping": True}
    if effective_dsn.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": timeout}
    else:
        options["pool_recycle"] = 3600
        options["pool_timeout"] = timeout
    return create_engine(effective_dsn, **options)


# Global engine and session factory for the app
_engine = None
_SessionLocal = None


def _ensure_engine_and_session():
    global _engine, _SessionLocal
    if _engine is None:
        _engine = get_engine()
    if _SessionLocal is None:
        # Plain factory: FastAPI may run a sync dependency and its endpoint on
        # different worker threads, so sessions must not be thread-scoped.
        _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False)


def reset_engine() -> None:
    """Drop the cached engine so the next call re-reads DATABASE_URL."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def init_db() -> None:
    """Create all tables on the configured engine (idempotent)."""
    from .models import Base

    _ensure_engine_and_session()
    Base.metadata.create_all(_engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that provides a DB session and ensures proper cleanup."""
    _ensure_engine_and_session()
    db: Session = _SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("DB session rolled back due to exception: %s", exc)
        raise
    finally:
        db.close()


def execute_scalar(sql: str, **params: Any) -> Any:
    """Execute a SQL statement and return the first scalar value.

    Uses the global engine and a short-lived connection. Intended for health checks.
    """
    _ensure_engine_and_session()
    with _engine.connect() as conn:
        result = conn.exec_driver_sql(sql, params) if params else conn.exec_driver_sql(sql)
        row = result.fetchone()
        return row[0] if row is not None and len(row) > 0 else None
