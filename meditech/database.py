"""
MediTech - Database Configuration

SQLModel database setup with connection pooling.
Supports PostgreSQL (production) and SQLite (development, tests).

Usage:
    from meditech.database import get_engine, init_db
    
    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)  # Creates tables
"""

from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine


def get_engine(database_url: str, echo: bool = False):
    """
    Create SQLAlchemy engine with appropriate configuration.
    
    Args:
        database_url: SQLAlchemy URL
        echo: Log SQL statements
        
    Returns:
        SQLAlchemy Engine
    """
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
        
        if ":memory:" in database_url or database_url == "sqlite://":
            # Single shared connection, otherwise every session sees an empty db
            return create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        
        return create_engine(database_url, echo=echo, connect_args=connect_args)
    
    # PostgreSQL configuration with connection pooling
    return create_engine(
        database_url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


def init_db(engine) -> None:
    """
    Initialize database tables.
    
    Safe to call multiple times (uses CREATE IF NOT EXISTS).
    """
    # Import models to register them with SQLModel
    from meditech.auth import models as auth_models  # noqa: F401
    from meditech.audit import models as audit_models  # noqa: F401
    
    SQLModel.metadata.create_all(engine)


def get_session_factory(engine) -> Callable[[], Session]:
    """
    Create a session factory bound to engine.
    
    Returns:
        Callable that creates new database sessions
    """
    def session_factory() -> Session:
        return Session(engine)
    
    return session_factory


def utcnow() -> datetime:
    """Naive UTC now; all stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
