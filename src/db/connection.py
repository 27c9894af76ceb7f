"""Database session management and schema initialization."""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Generator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from src.config.settings import settings
from src.db.schema import metadata
from src.logger import get_logger


logger = get_logger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


def _create_engine(url: str) -> Engine:
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, pool_size=5)


engine = _create_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    :return: Database session generator
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _ensure_sqlite_dir(bind: Engine) -> None:
    url = bind.url
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def init_schema(bind: Engine | None = None) -> None:
    """Create tables if they are missing."""
    bind = bind or engine
    _ensure_sqlite_dir(bind)
    metadata.create_all(bind)
    logger.info("schema_initialized", backend=bind.url.get_backend_name())


def check_connection() -> bool:
    try:
        with get_session() as session:
            session.execute(text("SELECT 1"))
        logger.info("database_ok")
        return True
    except Exception as e:
        logger.error("database_failed", error=str(e))
        return False
