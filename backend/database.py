"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        # Webhook and sync requests run in FastAPI's threadpool
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
        pool_pre_ping=not database_url.startswith("sqlite"),
    )
    logger.info("Database engine created (%s)", engine.url.get_backend_name())
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services ``flush()``, API layer ``commit()``
    - Exceptions that commit internally:
      - ``SyncService.sync_connection()``: the cursor commit must follow the
        transaction batch commit, so the service owns both commits
      - ``WebhookService.process()``: the raw event is committed before
        dispatch so it survives a failed dispatch
      - ``ConnectionLifecycleService``: soft delete and its audit records
        commit together
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
