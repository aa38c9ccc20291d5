"""
SQLAlchemy engine and sessions.

The engine is built on first use, so importing the app (and /healthz) never
needs a reachable database.
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool, StaticPool

from .core.config import settings

logger = logging.getLogger(__name__)

# Built by get_engine()
_engine = None
_SessionLocal = None

Base = declarative_base()


def get_engine():
    """Process-wide engine, pooled per backend."""
    global _engine
    if _engine is None:
        if settings.ENV == "prod" and settings.database_url.startswith("sqlite"):
            error_msg = (
                "CRITICAL: SQLite database is not supported in production. "
                "Please use PostgreSQL."
            )
            logger.error(error_msg)
            raise ValueError(error_msg)

        # Never log credentials
        logger.info(f"Creating database engine for {settings.database_url.split('@', 1)[-1]}")

        if settings.database_url == "sqlite:///:memory:":
            _engine = create_engine(
                settings.database_url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        elif settings.database_url.startswith("sqlite"):
            # File-backed SQLite for local development
            _engine = create_engine(
                settings.database_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=0,
                connect_args={"check_same_thread": False},
            )
        else:
            # PostgreSQL: production pooling
            _engine = create_engine(
                settings.database_url,
                poolclass=QueuePool,
                pool_size=20,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=3600,
            )
        logger.info("Database engine created successfully")
    return _engine


def get_session_local():
    """Session factory bound to the engine."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    return _SessionLocal


def SessionLocal():
    """Open a new session bound to the lazily created engine."""
    return get_session_local()()


def get_db():
    """FastAPI dependency: one session per request, always closed."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
