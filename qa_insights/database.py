"""
Database session management and configuration.

This module provides SQLAlchemy engine, session factory, and
dependency injection for FastAPI endpoints.
"""
from typing import Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from qa_insights.config import get_settings

settings = get_settings()

pool_config = {}
if "postgresql" in settings.DATABASE_URL or "mysql" in settings.DATABASE_URL:
    pool_config = {
        'pool_size': 10,
        'max_overflow': 20,
        'pool_pre_ping': True,
        'pool_recycle': 3600,
    }
elif "sqlite" in settings.DATABASE_URL:
    # SQLite doesn't benefit from pooling but needs thread safety
    pool_config = {
        'connect_args': {"check_same_thread": False}
    }

engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,  # Log SQL queries in debug mode
    **pool_config
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for read-only report sessions.

    Rolls back on exceptions and always closes the session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """
    Initialize database tables.

    Note: In production the schema is owned by the application that writes
    execution data; this is for development and tests.
    """
    from qa_insights.models.db_models import Base
    Base.metadata.create_all(bind=engine)
