"""
SQLAlchemy engine, session, and base. DB location from config or default.
"""
import logging
from pathlib import Path
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_SessionLocal = None

DEFAULT_DATA_DIR = Path.home() / ".signage"


def utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager for a single DB session. Commits on success, rolls back on error."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_engine():
    return _engine


def _default_db_url() -> str:
    DEFAULT_DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DEFAULT_DATA_DIR / 'signage.db'}"


def _db_url_from_config(config_data: Optional[dict]) -> Optional[str]:
    db_config = (config_data or {}).get("database") or {}
    if db_config.get("url"):
        return db_config["url"]
    path = db_config.get("path")
    if path:
        path = Path(path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path}"
    return None


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """
    Initialize database engine and create tables.
    config_data: app config dict; used for database.url / database.path if db_url not given.
    db_url: optional SQLAlchemy URL override.
    """
    global _engine, _SessionLocal

    if _engine is not None:
        logger.debug("Database already initialized")
        return

    if db_url is None:
        db_url = _db_url_from_config(config_data) or _default_db_url()

    connect_args = {}
    if db_url.startswith("sqlite"):
        # API handlers and timers use the engine from worker threads
        connect_args["check_same_thread"] = False

    _engine = create_engine(db_url, echo=False, future=True, connect_args=connect_args)

    # Import all model modules so tables are registered with Base
    from signage.plugins.devices import models as _devices  # noqa: F401
    from signage.plugins.prayer_schedules import models as _schedules  # noqa: F401
    from signage.plugins.previews import models as _previews  # noqa: F401

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False, expire_on_commit=False)
    logger.info(f"Database initialized: {db_url.split('?')[0]}")


def close_db() -> None:
    """Dispose the engine so init_db() can be called again (shutdown, tests)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
